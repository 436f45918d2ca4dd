from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flagsvc.cache import delete_environment_cache, publish_update
from flagsvc.deps import get_actor, get_db, get_store
from flagsvc.logging import get_logger
from flagsvc.schemas import FlagCreate, FlagOut, FlagUpdate
from flagsvc.services.audit import record_audit
from flagsvc.services.store import FlagStore

logger = get_logger(__name__)

router = APIRouter(prefix="/environments/{environment_id}/flags", tags=["flags"])


def require_environment(environment_id: str, store: FlagStore = Depends(get_store)) -> str:
    if not store.environment_exists(environment_id):
        raise HTTPException(status_code=404, detail="environment not found")
    return environment_id


def require_flag(environment_id: str, key: str, store: FlagStore) -> dict:
    flag = store.get_flag(environment_id, key)
    if flag is None:
        raise HTTPException(status_code=404, detail="flag not found")
    return flag


def invalidate(environment_id: str, key: str):
    delete_environment_cache(environment_id)
    publish_update(environment_id, key)


@router.get("", response_model=List[FlagOut])
def list_flags(environment_id: str = Depends(require_environment), store: FlagStore = Depends(get_store)):
    return store.list_flags(environment_id)


@router.get("/{key}", response_model=FlagOut)
def get_flag(key: str, environment_id: str = Depends(require_environment), store: FlagStore = Depends(get_store)):
    return require_flag(environment_id, key, store)


@router.post("", response_model=FlagOut, status_code=201)
def create_flag(
    payload: FlagCreate,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    # check exists
    if store.get_flag(environment_id, payload.key):
        raise HTTPException(status_code=409, detail="flag already exists")
    try:
        item = store.create_flag(environment_id, payload.model_dump())
    except IntegrityError:
        # lost a race with a concurrent create of the same key
        db.rollback()
        raise HTTPException(status_code=409, detail="flag already exists")
    record_audit(db, environment_id, payload.key, actor, "create", before_state=None, after_state=item)
    db.commit()
    invalidate(environment_id, payload.key)
    logger.info("flag_created", environment_id=environment_id, key=payload.key, actor=actor)
    return item


@router.put("/{key}", response_model=FlagOut)
def update_flag(
    key: str,
    payload: FlagUpdate,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    before = require_flag(environment_id, key, store)
    # Merge; only description may be cleared
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    item = store.update_flag(environment_id, key, changes)
    record_audit(db, environment_id, key, actor, "update", before_state=before, after_state=item)
    db.commit()
    invalidate(environment_id, key)
    logger.info("flag_updated", environment_id=environment_id, key=key, actor=actor, fields=sorted(changes))
    return item


@router.post("/{key}/toggle", response_model=FlagOut)
def toggle_flag(
    key: str,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    before = require_flag(environment_id, key, store)
    item = store.toggle_flag(environment_id, key)
    record_audit(db, environment_id, key, actor, "toggle", before_state=before, after_state=item)
    db.commit()
    invalidate(environment_id, key)
    logger.info("flag_toggled", environment_id=environment_id, key=key, actor=actor, enabled=item["enabled"])
    return item


@router.delete("/{key}", status_code=204)
def delete_flag(
    key: str,
    environment_id: str = Depends(require_environment),
    actor: str = Depends(get_actor),
    store: FlagStore = Depends(get_store),
    db: Session = Depends(get_db),
):
    before = require_flag(environment_id, key, store)
    store.delete_flag(environment_id, key)
    record_audit(db, environment_id, key, actor, "delete", before_state=before, after_state=None)
    db.commit()
    invalidate(environment_id, key)
    logger.info("flag_deleted", environment_id=environment_id, key=key, actor=actor)
    return
