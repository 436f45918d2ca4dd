from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from flagsvc.config import Settings, get_settings
from flagsvc.database import SessionLocal
from flagsvc.evaluation.evaluator import FlagEvaluator
from flagsvc.services.recorder import EvaluationRecorder, NullRecorder, SqlEvaluationRecorder
from flagsvc.services.store import CachedFlagStore, FlagStore


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> FlagStore:
    return FlagStore(db)


def get_recorder(settings: Settings = Depends(get_settings)) -> EvaluationRecorder:
    if not settings.record_evaluations:
        return NullRecorder()
    return SqlEvaluationRecorder(SessionLocal)


def get_evaluator(
    store: FlagStore = Depends(get_store),
    recorder: EvaluationRecorder = Depends(get_recorder),
    settings: Settings = Depends(get_settings),
) -> FlagEvaluator:
    return FlagEvaluator(CachedFlagStore(store, settings.cache_ttl_seconds), recorder)


def get_environment_id(
    x_sdk_key: str | None = Header(None, alias="X-SDK-Key"),
    store: FlagStore = Depends(get_store),
) -> str:
    if not x_sdk_key:
        raise HTTPException(status_code=401, detail="Missing X-SDK-Key header")
    environment_id = store.resolve_sdk_key(x_sdk_key)
    if environment_id is None:
        raise HTTPException(status_code=401, detail="Invalid SDK key")
    return environment_id


def get_actor(x_actor: str = Header("anonymous", alias="X-Actor")) -> str:
    return x_actor
