from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, conint, field_validator, model_validator

from flagsvc.models import AttributeValue, Reason
from flagsvc.validation import validate_flag_key, validate_rule_type, validate_rule_value


class EvaluateRequest(BaseModel):
    user_id: str = ""
    user_email: Optional[str] = None
    custom_attributes: Optional[Dict[str, AttributeValue]] = None


class FlagState(BaseModel):
    enabled: bool
    reason: Reason


class FlagCreate(BaseModel):
    key: str
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = False
    rollout_percentage: conint(ge=0, le=100) = 0

    @field_validator("key")
    @classmethod
    def check_key(cls, v: str) -> str:
        return validate_flag_key(v)


class FlagUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None
    rollout_percentage: Optional[conint(ge=0, le=100)] = None


class FlagOut(BaseModel):
    id: str
    environment_id: str
    key: str
    name: str
    description: Optional[str] = None
    enabled: bool
    rollout_percentage: int
    created_at: datetime
    updated_at: datetime


class RuleCreate(BaseModel):
    rule_type: str = Field(..., description="user_id, user_email or email_domain")
    rule_value: str
    enabled: bool = True
    priority: int = 0

    @field_validator("rule_type")
    @classmethod
    def check_type(cls, v: str) -> str:
        return validate_rule_type(v).value

    @model_validator(mode="after")
    def check_value(self):
        validate_rule_value(self.rule_type, self.rule_value)
        return self


class RuleUpdate(BaseModel):
    rule_value: Optional[str] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = None


class RuleOut(BaseModel):
    id: str
    flag_id: str
    rule_type: str
    rule_value: str
    enabled: bool
    priority: int
    created_at: datetime
