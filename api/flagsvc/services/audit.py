import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session


def _dump(state: Optional[dict]) -> Optional[str]:
    # timestamps come back as datetime from postgres
    return json.dumps(state, default=str) if state is not None else None


def record_audit(
    db: Session,
    environment_id: str,
    feature_key: str,
    actor: str,
    action: str,
    before_state: Optional[dict],
    after_state: Optional[dict],
):
    db.execute(
        text(
            """INSERT INTO audits (environment_id, feature_key, actor, action, before_state, after_state, created_at)
            VALUES (:environment_id, :feature_key, :actor, :action, :before_state, :after_state, :created_at)"""
        ),
        {
            "environment_id": environment_id,
            "feature_key": feature_key,
            "actor": actor,
            "action": action,
            "before_state": _dump(before_state),
            "after_state": _dump(after_state),
            "created_at": datetime.now(timezone.utc),
        },
    )
