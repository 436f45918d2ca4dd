from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

AttributeValue = Union[str, int, float, bool]


class RuleType(str, Enum):
    USER_ID = "user_id"
    USER_EMAIL = "user_email"
    EMAIL_DOMAIN = "email_domain"


class Reason(str, Enum):
    DISABLED = "disabled"
    RULE_MATCH = "rule_match"
    ROLLOUT = "rollout"
    ROLLOUT_EXCLUDED = "rollout_excluded"


@dataclass(frozen=True)
class Flag:
    id: str
    key: str
    enabled: bool
    rollout_percentage: int
    environment_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Rule:
    id: str
    flag_id: str
    rule_type: str
    rule_value: str
    enabled: bool = True
    priority: int = 0


@dataclass(frozen=True)
class EvaluationContext:
    user_id: str = ""
    user_email: Optional[str] = None
    # reserved for future rule types, never read by matching
    custom_attributes: Dict[str, AttributeValue] = field(default_factory=dict)


@dataclass(frozen=True)
class EvaluationResult:
    enabled: bool
    reason: Reason

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "reason": self.reason.value}
