"""
Flag and rule persistence.

``FlagStore`` is the only place that speaks SQL about flags. The evaluator
sees it through ``fetch_flags_with_rules``; the management routes use the
CRUD methods. ``CachedFlagStore`` puts the Redis snapshot cache in front of
the evaluation read path.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.orm import Session

from flagsvc import cache
from flagsvc.logging import get_logger
from flagsvc.metrics import CACHE_LOOKUPS
from flagsvc.models import Flag, Rule

FLAG_COLUMNS = "id, environment_id, key, name, description, enabled, rollout_percentage, created_at, updated_at"
RULE_COLUMNS = "id, flag_id, rule_type, rule_value, enabled, priority, created_at"
# evaluation order; creation order breaks priority ties
RULE_ORDER = "priority DESC, created_at ASC, id ASC"

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def row_to_flag(row) -> dict:
    return {
        "id": str(row.id),
        "environment_id": str(row.environment_id),
        "key": row.key,
        "name": row.name,
        "description": row.description,
        "enabled": bool(row.enabled),
        "rollout_percentage": row.rollout_percentage,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def row_to_rule(row) -> dict:
    return {
        "id": str(row.id),
        "flag_id": str(row.flag_id),
        "rule_type": row.rule_type,
        "rule_value": row.rule_value,
        "enabled": bool(row.enabled),
        "priority": row.priority,
        "created_at": row.created_at,
    }


def snapshot_to_flags(snapshot: List[dict]) -> List[Tuple[Flag, List[Rule]]]:
    out = []
    for entry in snapshot:
        f = entry["flag"]
        flag = Flag(
            id=f["id"],
            key=f["key"],
            enabled=f["enabled"],
            rollout_percentage=f["rollout_percentage"],
            environment_id=f.get("environment_id"),
            name=f.get("name"),
            description=f.get("description"),
        )
        rules = [
            Rule(
                id=r["id"],
                flag_id=r["flag_id"],
                rule_type=r["rule_type"],
                rule_value=r["rule_value"],
                enabled=r["enabled"],
                priority=r["priority"],
            )
            for r in entry["rules"]
        ]
        out.append((flag, rules))
    return out


class FlagStore:
    def __init__(self, db: Session):
        self.db = db

    # SDK read path

    def environment_exists(self, environment_id: str) -> bool:
        row = self.db.execute(text("SELECT 1 FROM environments WHERE id=:env"), {"env": environment_id}).fetchone()
        return row is not None

    def resolve_sdk_key(self, sdk_key: str) -> Optional[str]:
        row = self.db.execute(text("SELECT id FROM environments WHERE sdk_key=:k"), {"k": sdk_key}).fetchone()
        return str(row.id) if row else None

    def load_snapshot(self, environment_id: str) -> List[dict]:
        """Flags of an environment with their rules, as plain JSON-able dicts."""
        flags = self.db.execute(
            text(
                """SELECT id, environment_id, key, name, description, enabled, rollout_percentage
                FROM feature_flags WHERE environment_id=:env ORDER BY key"""
            ),
            {"env": environment_id},
        ).fetchall()
        rules = self.db.execute(
            text(
                """SELECT r.id, r.flag_id, r.rule_type, r.rule_value, r.enabled, r.priority
                FROM flag_rules r JOIN feature_flags f ON r.flag_id = f.id
                WHERE f.environment_id=:env
                ORDER BY r.priority DESC, r.created_at ASC, r.id ASC"""
            ),
            {"env": environment_id},
        ).fetchall()

        by_flag: Dict[str, List[dict]] = {}
        for r in rules:
            by_flag.setdefault(str(r.flag_id), []).append(
                {
                    "id": str(r.id),
                    "flag_id": str(r.flag_id),
                    "rule_type": r.rule_type,
                    "rule_value": r.rule_value,
                    "enabled": bool(r.enabled),
                    "priority": r.priority,
                }
            )
        return [
            {
                "flag": {
                    "id": str(f.id),
                    "environment_id": str(f.environment_id),
                    "key": f.key,
                    "name": f.name,
                    "description": f.description,
                    "enabled": bool(f.enabled),
                    "rollout_percentage": f.rollout_percentage,
                },
                "rules": by_flag.get(str(f.id), []),
            }
            for f in flags
        ]

    def fetch_flags_with_rules(self, environment_id: str) -> List[Tuple[Flag, List[Rule]]]:
        return snapshot_to_flags(self.load_snapshot(environment_id))

    # flags

    def list_flags(self, environment_id: str) -> List[dict]:
        rs = self.db.execute(
            text(f"SELECT {FLAG_COLUMNS} FROM feature_flags WHERE environment_id=:env ORDER BY key"),
            {"env": environment_id},
        )
        return [row_to_flag(r) for r in rs.fetchall()]

    def get_flag(self, environment_id: str, key: str) -> Optional[dict]:
        row = self.db.execute(
            text(f"SELECT {FLAG_COLUMNS} FROM feature_flags WHERE environment_id=:env AND key=:k"),
            {"env": environment_id, "k": key},
        ).fetchone()
        return row_to_flag(row) if row else None

    def create_flag(self, environment_id: str, values: Dict[str, Any]) -> dict:
        now = _now()
        self.db.execute(
            text(
                """INSERT INTO feature_flags
                    (id, environment_id, key, name, description, enabled, rollout_percentage, created_at, updated_at)
                VALUES (:id, :env, :key, :name, :description, :enabled, :rollout_percentage, :now, :now)"""
            ),
            {
                "id": str(uuid.uuid4()),
                "env": environment_id,
                "key": values["key"],
                "name": values.get("name") or values["key"],
                "description": values.get("description"),
                "enabled": values.get("enabled", False),
                "rollout_percentage": values.get("rollout_percentage", 0),
                "now": now,
            },
        )
        return self.get_flag(environment_id, values["key"])

    def update_flag(self, environment_id: str, key: str, changes: Dict[str, Any]) -> Optional[dict]:
        before = self.get_flag(environment_id, key)
        if before is None:
            return None
        merged = {field: changes.get(field, before[field]) for field in ("name", "description", "enabled", "rollout_percentage")}
        self.db.execute(
            text(
                """UPDATE feature_flags
                 SET name=:name,
                     description=:description,
                     enabled=:enabled,
                     rollout_percentage=:rollout_percentage,
                     updated_at=:now
                 WHERE environment_id=:env AND key=:key"""
            ),
            {**merged, "now": _now(), "env": environment_id, "key": key},
        )
        return self.get_flag(environment_id, key)

    def toggle_flag(self, environment_id: str, key: str) -> Optional[dict]:
        self.db.execute(
            text(
                """UPDATE feature_flags
                 SET enabled = NOT enabled, updated_at=:now
                 WHERE environment_id=:env AND key=:key"""
            ),
            {"now": _now(), "env": environment_id, "key": key},
        )
        return self.get_flag(environment_id, key)

    def delete_flag(self, environment_id: str, key: str) -> bool:
        flag = self.get_flag(environment_id, key)
        if flag is None:
            return False
        self.db.execute(text("DELETE FROM flag_rules WHERE flag_id=:f"), {"f": flag["id"]})
        self.db.execute(text("DELETE FROM feature_flags WHERE id=:f"), {"f": flag["id"]})
        return True

    # rules

    def list_rules(self, flag_id: str) -> List[dict]:
        rs = self.db.execute(
            text(f"SELECT {RULE_COLUMNS} FROM flag_rules WHERE flag_id=:f ORDER BY {RULE_ORDER}"),
            {"f": flag_id},
        )
        return [row_to_rule(r) for r in rs.fetchall()]

    def get_rule(self, flag_id: str, rule_id: str) -> Optional[dict]:
        row = self.db.execute(
            text(f"SELECT {RULE_COLUMNS} FROM flag_rules WHERE flag_id=:f AND id=:r"),
            {"f": flag_id, "r": rule_id},
        ).fetchone()
        return row_to_rule(row) if row else None

    def create_rule(self, flag_id: str, values: Dict[str, Any]) -> dict:
        rule_id = str(uuid.uuid4())
        self.db.execute(
            text(
                """INSERT INTO flag_rules (id, flag_id, rule_type, rule_value, enabled, priority, created_at)
                VALUES (:id, :flag_id, :rule_type, :rule_value, :enabled, :priority, :now)"""
            ),
            {
                "id": rule_id,
                "flag_id": flag_id,
                "rule_type": values["rule_type"],
                "rule_value": values["rule_value"],
                "enabled": values.get("enabled", True),
                "priority": values.get("priority", 0),
                "now": _now(),
            },
        )
        return self.get_rule(flag_id, rule_id)

    def update_rule(self, flag_id: str, rule_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        before = self.get_rule(flag_id, rule_id)
        if before is None:
            return None
        merged = {field: changes.get(field, before[field]) for field in ("rule_value", "enabled", "priority")}
        self.db.execute(
            text(
                """UPDATE flag_rules
                 SET rule_value=:rule_value, enabled=:enabled, priority=:priority
                 WHERE flag_id=:f AND id=:r"""
            ),
            {**merged, "f": flag_id, "r": rule_id},
        )
        return self.get_rule(flag_id, rule_id)

    def delete_rule(self, flag_id: str, rule_id: str) -> bool:
        rs = self.db.execute(text("DELETE FROM flag_rules WHERE flag_id=:f AND id=:r"), {"f": flag_id, "r": rule_id})
        return rs.rowcount > 0


class CachedFlagStore:
    """Serves evaluation snapshots from Redis, falling back to the database."""

    def __init__(self, store: FlagStore, ttl_seconds: int):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def fetch_flags_with_rules(self, environment_id: str) -> List[Tuple[Flag, List[Rule]]]:
        snapshot = cache.get_environment_cache(environment_id)
        if snapshot is not None:
            try:
                return snapshot_to_flags(snapshot)
            except (KeyError, TypeError, AttributeError):
                # parses as JSON but not as a snapshot, e.g. written by an older deploy
                logger.warning("cache_entry_corrupt", environment_id=environment_id)
                CACHE_LOOKUPS.labels("error").inc()
        snapshot = self.store.load_snapshot(environment_id)
        cache.set_environment_cache(environment_id, snapshot, self.ttl_seconds)
        return snapshot_to_flags(snapshot)
