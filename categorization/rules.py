"""
Pattern Compilation

Turns a stored rule pattern into a LiteralPattern or RegexPattern and
validates rules before they are written.
"""

import re
from typing import Iterable, List, Optional, Tuple

from core.errors import InvalidPatternError

from .models import (
    CategoryRule,
    LiteralPattern,
    Pattern,
    RegexPattern,
)


def compile_pattern(pattern: str, is_regex: bool, rule_id: Optional[int] = None) -> Pattern:
    """
    Compile a rule pattern.

    Literal patterns are split on "|"; blank alternatives are dropped, so
    "ENDESA||IBERDROLA " matches either supplier.

    Raises:
        InvalidPatternError: If is_regex and the expression does not compile
    """
    if is_regex:
        try:
            return RegexPattern(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            raise InvalidPatternError(f"Invalid regular expression {pattern!r}: {e}", rule_id=rule_id)

    alternatives = tuple(
        alt.strip().lower() for alt in pattern.split("|") if alt.strip()
    )
    return LiteralPattern(alternatives)


def validate_rule(rule: CategoryRule) -> None:
    """
    Check a rule before it is stored.

    Raises:
        InvalidPatternError: Empty pattern or category, or a bad regex
    """
    if not rule.pattern or not rule.pattern.strip():
        raise InvalidPatternError("Pattern must not be empty", rule_id=rule.id)
    if not rule.category or not rule.category.strip():
        raise InvalidPatternError("Category must not be empty", rule_id=rule.id)

    compiled = compile_pattern(rule.pattern, rule.is_regex, rule_id=rule.id)
    if isinstance(compiled, LiteralPattern) and not compiled.alternatives:
        raise InvalidPatternError("Pattern has no non-empty alternatives", rule_id=rule.id)


def order_rules(rules: Iterable[CategoryRule]) -> List[CategoryRule]:
    """Active rules in evaluation order: priority ascending, then id ascending."""
    return sorted((r for r in rules if r.active), key=lambda r: r.sort_key)


def compile_rules(rules: Iterable[CategoryRule], on_invalid=None) -> List[Tuple[CategoryRule, Pattern]]:
    """
    Compile rules in evaluation order.

    A rule whose pattern fails to compile is skipped; on_invalid, if given,
    receives the rule and the InvalidPatternError.
    """
    compiled = []
    for rule in order_rules(rules):
        try:
            compiled.append((rule, compile_pattern(rule.pattern, rule.is_regex, rule_id=rule.id)))
        except InvalidPatternError as e:
            if on_invalid:
                on_invalid(rule, e)
    return compiled
