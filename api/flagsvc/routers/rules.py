from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from flagsvc.deps import get_actor, get_db, get_store
from flagsvc.logging import get_logger
from flagsvc.routers.flags import invalidate, require_environment, require_flag
from flagsvc.schemas import RuleCreate, RuleOut, RuleUpdate
from flagsvc.services.audit import record_audit
from flagsvc.services.store import FlagStore
from flagsvc.validation import InvalidDefinition, validate_rule_value

logger = get_logger(__name__)

router = APIRouter(prefix="/environments/{environment_id}/flags/{key}/rules", tags=["rules"])


def require_rule(flag_id: str, rule_id: str, store: FlagStore) -> dict:
    rule = store.get_rule(flag_id, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="rule not found")
    return rule


@router.get("", response_model=List[RuleOut])
def list_rules(key: str, environment_id: str = Depends(require_environment), store: FlagStore = Depends(get_store)):
    flag = require_flag(environment_id, key, store)
    return store.list_rules(flag["id"])


@router.post("", response_model=RuleOut, status_code=201)
def create_rule(
    key: str,
    payload: RuleCreate,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    flag = require_flag(environment_id, key, store)
    rule = store.create_rule(flag["id"], payload.model_dump())
    record_audit(db, environment_id, key, actor, "create_rule", before_state=None, after_state=rule)
    db.commit()
    invalidate(environment_id, key)
    logger.info("rule_created", environment_id=environment_id, key=key, rule_id=rule["id"], actor=actor)
    return rule


@router.get("/{rule_id}", response_model=RuleOut)
def get_rule(
    key: str,
    rule_id: str,
    environment_id: str = Depends(require_environment),
    store: FlagStore = Depends(get_store),
):
    flag = require_flag(environment_id, key, store)
    return require_rule(flag["id"], rule_id, store)


@router.put("/{rule_id}", response_model=RuleOut)
def update_rule(
    key: str,
    rule_id: str,
    payload: RuleUpdate,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    flag = require_flag(environment_id, key, store)
    before = require_rule(flag["id"], rule_id, store)
    changes = payload.model_dump(exclude_none=True)
    if "rule_value" in changes:
        # the type is fixed at creation, the value must still fit it
        try:
            validate_rule_value(before["rule_type"], changes["rule_value"])
        except InvalidDefinition as exc:
            raise HTTPException(status_code=422, detail=str(exc))
    rule = store.update_rule(flag["id"], rule_id, changes)
    record_audit(db, environment_id, key, actor, "update_rule", before_state=before, after_state=rule)
    db.commit()
    invalidate(environment_id, key)
    logger.info("rule_updated", environment_id=environment_id, key=key, rule_id=rule_id, actor=actor)
    return rule


@router.delete("/{rule_id}", status_code=204)
def delete_rule(
    key: str,
    rule_id: str,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    flag = require_flag(environment_id, key, store)
    before = require_rule(flag["id"], rule_id, store)
    store.delete_rule(flag["id"], rule_id)
    record_audit(db, environment_id, key, actor, "delete_rule", before_state=before, after_state=None)
    db.commit()
    invalidate(environment_id, key)
    logger.info("rule_deleted", environment_id=environment_id, key=key, rule_id=rule_id, actor=actor)
    return
