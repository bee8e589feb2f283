"""
Category Rule Storage

CRUD for the category_rules table created by BankingStore.init_schema().
"""

import sqlite3
from typing import List, Optional

from banking.db import BankingStore, _iso, _parse_datetime, utcnow

from .models import CategoryRule, RuleField


class CategoryRuleStore:
    """Company-scoped category rule persistence."""

    def __init__(self, store: BankingStore):
        self._store = store

    def add_rule(self, rule: CategoryRule) -> CategoryRule:
        now = utcnow()
        rule.created_at = now
        rule.updated_at = now
        conn = self._store.connect()
        try:
            with conn:
                cursor = conn.execute("""
                    INSERT INTO category_rules
                    (company_id, name, pattern, is_regex, field, category, priority, active,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    rule.company_id,
                    rule.name,
                    rule.pattern,
                    1 if rule.is_regex else 0,
                    rule.field.value,
                    rule.category,
                    rule.priority,
                    1 if rule.active else 0,
                    _iso(rule.created_at),
                    _iso(rule.updated_at),
                ))
            rule.id = cursor.lastrowid
        finally:
            conn.close()
        return rule

    def update_rule(self, rule: CategoryRule) -> CategoryRule:
        rule.updated_at = utcnow()
        conn = self._store.connect()
        try:
            with conn:
                conn.execute("""
                    UPDATE category_rules
                    SET name = ?, pattern = ?, is_regex = ?, field = ?, category = ?,
                        priority = ?, active = ?, updated_at = ?
                    WHERE id = ? AND company_id = ?
                """, (
                    rule.name,
                    rule.pattern,
                    1 if rule.is_regex else 0,
                    rule.field.value,
                    rule.category,
                    rule.priority,
                    1 if rule.active else 0,
                    _iso(rule.updated_at),
                    rule.id,
                    rule.company_id,
                ))
        finally:
            conn.close()
        return rule

    def delete_rule(self, company_id: int, rule_id: int) -> bool:
        conn = self._store.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM category_rules WHERE id = ? AND company_id = ?",
                    (rule_id, company_id),
                )
            return cursor.rowcount > 0
        finally:
            conn.close()

    def get_rule(self, company_id: int, rule_id: int) -> Optional[CategoryRule]:
        conn = self._store.connect()
        try:
            row = conn.execute(
                "SELECT * FROM category_rules WHERE id = ? AND company_id = ?",
                (rule_id, company_id),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_rule(row) if row else None

    def list_rules(self, company_id: int, active_only: bool = False) -> List[CategoryRule]:
        sql = "SELECT * FROM category_rules WHERE company_id = ?"
        if active_only:
            sql += " AND active = 1"
        conn = self._store.connect()
        try:
            rows = conn.execute(sql + " ORDER BY priority, id", (company_id,)).fetchall()
        finally:
            conn.close()
        return [_row_to_rule(row) for row in rows]


def _row_to_rule(row: sqlite3.Row) -> CategoryRule:
    return CategoryRule(
        id=row["id"],
        company_id=row["company_id"],
        name=row["name"],
        pattern=row["pattern"],
        is_regex=bool(row["is_regex"]),
        field=RuleField(row["field"]),
        category=row["category"],
        priority=row["priority"],
        active=bool(row["active"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )
