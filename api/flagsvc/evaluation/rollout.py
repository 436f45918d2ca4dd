import hashlib
from typing import Optional

from flagsvc.models import EvaluationContext

BUCKETS = 100


def bucket(flag_key: str, identifier: str) -> int:
    # 0..99, stable across processes
    digest = hashlib.sha1(f"{flag_key}:{identifier}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % BUCKETS


def rollout_identifier(context: EvaluationContext) -> Optional[str]:
    """Pick the identifier percentage rollout hashes on.

    ``user_id`` wins over ``user_email`` when both are set. A context with
    neither is unidentified and gets ``None``.
    """
    if context.user_id:
        return context.user_id
    if context.user_email:
        return context.user_email
    return None


def in_rollout(flag_key: str, identifier: Optional[str], rollout_percentage: int) -> bool:
    if identifier is None:
        return False
    return bucket(flag_key, identifier) < rollout_percentage
