"""
Flag evaluation.

``evaluate`` is the single implementation of the targeting and rollout
semantics. ``FlagEvaluator`` wraps it for whole environments: it reads
snapshots from the store it was built with and hands every decision to its
recorder without waiting on it.
"""

from typing import Callable, Dict, Iterable, Optional, Protocol, Sequence, Tuple

from flagsvc.evaluation.matcher import matches
from flagsvc.evaluation.rollout import in_rollout, rollout_identifier
from flagsvc.logging import get_logger
from flagsvc.metrics import EVALS
from flagsvc.models import EvaluationContext, EvaluationResult, Flag, Reason, Rule
from flagsvc.services.recorder import ANONYMOUS, EvaluationRecorder, record_safely
from flagsvc.validation import InvalidDefinition, validate_rollout_percentage

logger = get_logger(__name__)

Scheduler = Callable[..., None]


class FlagSource(Protocol):
    def fetch_flags_with_rules(self, environment_id: str) -> Sequence[Tuple[Flag, Sequence[Rule]]]:
        ...


def _is_valid(flag: Flag) -> bool:
    try:
        validate_rollout_percentage(flag.rollout_percentage)
    except InvalidDefinition:
        return False
    return True


def evaluate(flag: Flag, rules: Iterable[Rule], context: EvaluationContext) -> EvaluationResult:
    if not _is_valid(flag):
        logger.warning(
            "invalid_flag_definition",
            flag_id=flag.id,
            key=flag.key,
            rollout_percentage=flag.rollout_percentage,
        )
        return EvaluationResult(False, Reason.DISABLED)

    if not flag.enabled:
        return EvaluationResult(False, Reason.DISABLED)

    # sorted() is stable, so equal priorities keep the order they came in
    active = sorted((r for r in rules if r.enabled), key=lambda r: r.priority, reverse=True)
    for rule in active:
        if matches(rule, context):
            return EvaluationResult(True, Reason.RULE_MATCH)

    if in_rollout(flag.key, rollout_identifier(context), flag.rollout_percentage):
        return EvaluationResult(True, Reason.ROLLOUT)
    return EvaluationResult(False, Reason.ROLLOUT_EXCLUDED)


class FlagEvaluator:
    def __init__(self, store: FlagSource, recorder: EvaluationRecorder):
        self.store = store
        self.recorder = recorder

    def evaluate(self, flag: Flag, rules: Iterable[Rule], context: EvaluationContext) -> EvaluationResult:
        return evaluate(flag, rules, context)

    def evaluate_environment(
        self,
        environment_id: str,
        context: EvaluationContext,
        schedule: Optional[Scheduler] = None,
    ) -> Dict[str, EvaluationResult]:
        """Evaluate every flag in an environment for one user.

        ``schedule`` receives ``(func, *args)`` for each recorder call, e.g.
        ``BackgroundTasks.add_task``. Without one, recording happens inline
        after each decision; failures are swallowed either way.
        """
        identifier = rollout_identifier(context) or ANONYMOUS
        results: Dict[str, EvaluationResult] = {}
        for flag, rules in self.store.fetch_flags_with_rules(environment_id):
            result = evaluate(flag, rules, context)
            results[flag.key] = result
            EVALS.labels(flag.key, result.reason.value).inc()
            if schedule is None:
                record_safely(self.recorder, flag.id, identifier, result)
            else:
                schedule(record_safely, self.recorder, flag.id, identifier, result)
        return results
