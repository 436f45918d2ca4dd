from flagsvc.models import EvaluationContext, Rule, RuleType


def matches(rule: Rule, context: EvaluationContext) -> bool:
    if rule.rule_type == RuleType.USER_ID:
        return bool(context.user_id) and context.user_id == rule.rule_value
    if rule.rule_type == RuleType.USER_EMAIL:
        return context.user_email is not None and context.user_email == rule.rule_value
    if rule.rule_type == RuleType.EMAIL_DOMAIN:
        return bool(context.user_email) and context.user_email.endswith(rule.rule_value)
    # unknown rule type
    return False
