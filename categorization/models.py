"""
Categorization Models

Defines data structures for:
- Category rules (company-scoped, priority-ordered)
- Compiled patterns (literal alternatives or regular expression)
- Re-run results
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union


DEFAULT_RULE_PRIORITY = 1


class RuleField(str, Enum):
    """Transaction text a rule matches against"""
    DESCRIPTION = "description"
    REFERENCE = "reference"
    COUNTERPARTY = "counterparty"


@dataclass
class CategoryRule:
    """
    A categorization rule.

    Attributes:
        company_id: Company owning the rule
        name: Human-readable label
        pattern: "|"-separated literals, or a regular expression when is_regex
        field: Which transaction text is matched
        category: Category assigned on match
        priority: Lower runs first; ties broken by id
        active: Inactive rules are ignored
    """
    company_id: int
    name: str
    pattern: str
    category: str
    is_regex: bool = False
    field: RuleField = RuleField.DESCRIPTION
    priority: int = DEFAULT_RULE_PRIORITY
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.priority, self.id if self.id is not None else 0)


# =============================================================================
# Compiled Patterns
# =============================================================================

@dataclass(frozen=True)
class LiteralPattern:
    """Case-insensitive substring match against any of the alternatives."""
    alternatives: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        haystack = text.lower()
        return any(alt in haystack for alt in self.alternatives)


@dataclass(frozen=True)
class RegexPattern:
    """Case-insensitive regular expression search."""
    compiled: re.Pattern

    def matches(self, text: str) -> bool:
        return self.compiled.search(text) is not None


Pattern = Union[LiteralPattern, RegexPattern]


@dataclass
class RecategorizeResult:
    """Outcome of an explicit rule re-run over stored transactions."""
    company_id: int
    evaluated: int = 0
    updated: int = 0
    skipped_rules: List[int] = field(default_factory=list)
