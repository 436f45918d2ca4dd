"""
Write-time checks for flag and rule definitions.

The evaluator trusts what the store hands it, so anything that reaches the
database must have gone through these first.
"""

import re

from flagsvc.models import RuleType

FLAG_KEY_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
FLAG_KEY_MAX_LENGTH = 64


class InvalidDefinition(ValueError):
    pass


def validate_flag_key(key: str) -> str:
    if not key:
        raise InvalidDefinition("flag key cannot be empty")
    if len(key) > FLAG_KEY_MAX_LENGTH:
        raise InvalidDefinition(f"flag key is too long (max {FLAG_KEY_MAX_LENGTH} characters)")
    if not FLAG_KEY_RE.fullmatch(key):
        raise InvalidDefinition(
            "flag key must start with a lowercase letter and contain only "
            "lowercase letters, digits, underscores and hyphens"
        )
    return key


def validate_rollout_percentage(percentage: int) -> int:
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise InvalidDefinition("rollout percentage must be an integer")
    if not 0 <= percentage <= 100:
        raise InvalidDefinition("rollout percentage must be between 0 and 100")
    return percentage


def validate_rule_type(rule_type: str) -> RuleType:
    try:
        return RuleType(rule_type)
    except ValueError:
        allowed = ", ".join(t.value for t in RuleType)
        raise InvalidDefinition(f"invalid rule type '{rule_type}', must be one of: {allowed}") from None


def validate_rule_value(rule_type: str, rule_value: str) -> str:
    rule_type = validate_rule_type(rule_type)
    if not rule_value or not rule_value.strip():
        raise InvalidDefinition("rule value cannot be empty")
    if rule_type is RuleType.EMAIL_DOMAIN:
        if not rule_value.startswith("@"):
            raise InvalidDefinition("email domain must start with '@' (e.g. @company.com)")
        if len(rule_value) < 3:
            raise InvalidDefinition("email domain too short")
    elif rule_type is RuleType.USER_EMAIL:
        if "@" not in rule_value:
            raise InvalidDefinition("invalid email format")
    return rule_value
