from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends

from flagsvc.deps import get_environment_id, get_evaluator
from flagsvc.evaluation.evaluator import FlagEvaluator
from flagsvc.models import EvaluationContext
from flagsvc.schemas import EvaluateRequest, FlagState

router = APIRouter(prefix="/sdk/v1", tags=["sdk"])


@router.post("/evaluate", response_model=Dict[str, FlagState])
def evaluate(
    payload: EvaluateRequest,
    background_tasks: BackgroundTasks,
    environment_id: str = Depends(get_environment_id),
    evaluator: FlagEvaluator = Depends(get_evaluator),
):
    context = EvaluationContext(
        user_id=payload.user_id,
        user_email=payload.user_email,
        custom_attributes=payload.custom_attributes or {},
    )
    # recording runs after the response is sent
    results = evaluator.evaluate_environment(environment_id, context, schedule=background_tasks.add_task)
    return {key: result.to_dict() for key, result in results.items()}
