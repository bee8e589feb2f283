"""
Categorization Package

Company-scoped, priority-ordered rules that assign categories to bank
transactions.

Usage:
    from categorization import CategorizationEngine, CategoryRule

    engine = CategorizationEngine(store, CategoryRuleStore(store))
    engine.create_rule(CategoryRule(company_id=1, name="Luz", pattern="ELECTRICIDAD", category="Suministros"))
    tx = engine.categorize(tx)
"""

from .models import (
    CategoryRule,
    RuleField,
    LiteralPattern,
    RegexPattern,
    RecategorizeResult,
    DEFAULT_RULE_PRIORITY,
)
from .rules import compile_pattern, validate_rule, order_rules
from .db import CategoryRuleStore
from .engine import CategorizationEngine

__all__ = [
    "CategoryRule",
    "RuleField",
    "LiteralPattern",
    "RegexPattern",
    "RecategorizeResult",
    "DEFAULT_RULE_PRIORITY",
    "compile_pattern",
    "validate_rule",
    "order_rules",
    "CategoryRuleStore",
    "CategorizationEngine",
]
