"""
Evaluation recorders.

Recording is analytics, not correctness: a recorder may fail and the caller
must never notice. ``record_safely`` is the only way the evaluator calls one.
"""

from datetime import datetime, timezone
from typing import Callable, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from flagsvc.logging import get_logger
from flagsvc.metrics import RECORD_FAILURES
from flagsvc.models import EvaluationResult

logger = get_logger(__name__)

ANONYMOUS = "anonymous"


class EvaluationRecorder(Protocol):
    def record(self, flag_id: str, user_identifier: str, result: EvaluationResult) -> None:
        ...


class NullRecorder:
    def record(self, flag_id: str, user_identifier: str, result: EvaluationResult) -> None:
        return None


class SqlEvaluationRecorder:
    """Append each decision to ``flag_evaluations``.

    Runs after the response has gone out, so it opens its own session
    instead of borrowing the request's.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, flag_id: str, user_identifier: str, result: EvaluationResult) -> None:
        db = self.session_factory()
        try:
            db.execute(
                text(
                    """INSERT INTO flag_evaluations (flag_id, user_identifier, result, reason, evaluated_at)
                    VALUES (:flag_id, :user_identifier, :result, :reason, :evaluated_at)"""
                ),
                {
                    "flag_id": flag_id,
                    "user_identifier": user_identifier,
                    "result": result.enabled,
                    "reason": result.reason.value,
                    "evaluated_at": datetime.now(timezone.utc),
                },
            )
            db.commit()
        finally:
            db.close()


def record_safely(recorder: EvaluationRecorder, flag_id: str, user_identifier: str, result: EvaluationResult) -> None:
    try:
        recorder.record(flag_id, user_identifier, result)
    except Exception as exc:
        RECORD_FAILURES.inc()
        logger.warning("evaluation_record_failed", flag_id=flag_id, error=str(exc))
