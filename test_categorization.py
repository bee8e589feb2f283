"""
Categorization Engine Tests

Rule ordering, literal and regex patterns, manual overrides and re-runs.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from banking.models import Transaction
from categorization import CategoryRule, RuleField, compile_pattern, order_rules, validate_rule
from categorization.models import LiteralPattern, RegexPattern
from core.errors import InvalidPatternError, NotFoundError

from conftest import COMPANY_ID


def _rule(**overrides) -> CategoryRule:
    values = dict(company_id=COMPANY_ID, name="rule", pattern="ELECTRICIDAD", category="Suministros")
    values.update(overrides)
    return CategoryRule(**values)


def _tx(description: str = "", **overrides) -> Transaction:
    values = dict(account_id=1, amount=Decimal("-50.00"), transaction_date=date(2025, 3, 1), description=description)
    values.update(overrides)
    return Transaction(**values)


class TestPatterns:

    def test_literal_alternatives_are_case_insensitive(self):
        pattern = compile_pattern("ENDESA| iberdrola ||", is_regex=False)

        assert isinstance(pattern, LiteralPattern)
        assert pattern.alternatives == ("endesa", "iberdrola")
        assert pattern.matches("Recibo Iberdrola Clientes")
        assert not pattern.matches("Naturgy")

    def test_regex_pattern(self):
        pattern = compile_pattern(r"^nomina\s+\d{2}/\d{4}$", is_regex=True)

        assert isinstance(pattern, RegexPattern)
        assert pattern.matches("NOMINA 02/2025")
        assert not pattern.matches("ANTICIPO NOMINA 02/2025")

    def test_invalid_regex(self):
        with pytest.raises(InvalidPatternError):
            compile_pattern("(unclosed", is_regex=True)

    @pytest.mark.parametrize("overrides", [
        {"pattern": "  "},
        {"pattern": "||"},
        {"category": ""},
        {"pattern": "[a-", "is_regex": True},
    ])
    def test_validate_rule_rejects(self, overrides):
        with pytest.raises(InvalidPatternError):
            validate_rule(_rule(**overrides))

    def test_order_by_priority_then_id(self):
        rules = [
            _rule(id=3, priority=10),
            _rule(id=1, priority=20),
            _rule(id=2, priority=10),
            _rule(id=4, priority=1, active=False),
        ]

        assert [r.id for r in order_rules(rules)] == [2, 3, 1]


class TestCategorize:

    def test_first_matching_rule_wins(self, services):
        engine = services.categorization
        engine.create_rule(_rule(name="Generic", pattern="RECIBO", category="Recibos", priority=50))
        engine.create_rule(_rule(name="Light", pattern="ELECTRICIDAD", category="Suministros", priority=10))

        result = engine.categorize(_tx("RECIBO ELECTRICIDAD MARZO"), engine.rules_for_company(COMPANY_ID))

        assert result.category == "Suministros"

    def test_literal_rule_ahead_of_catch_all_regex(self, services):
        rules = [
            _rule(id=1, priority=1, pattern="ELECTRICIDAD", category="Suministros"),
            _rule(id=2, priority=2, pattern=".*", is_regex=True, category="Otros"),
        ]
        engine = services.categorization

        first = engine.categorize(_tx("PAGO ELECTRICIDAD IBERDROLA"), rules)
        second = engine.categorize(replace(first, category=None), rules)

        assert first.category == second.category == "Suministros"
        assert engine.categorize(_tx("CAFETERIA"), rules).category == "Otros"

    def test_regex_rule_on_counterparty(self, services):
        engine = services.categorization
        engine.create_rule(_rule(
            pattern=r"^(amazon|aws)\b", is_regex=True, field=RuleField.COUNTERPARTY, category="Software",
        ))

        rules = engine.rules_for_company(COMPANY_ID)
        assert engine.categorize(_tx("PAGO", counterparty_name="AWS EMEA SARL"), rules).category == "Software"
        assert engine.categorize(_tx("AWS EMEA SARL"), rules).category is None

    def test_no_match_leaves_uncategorized(self, services):
        result = services.categorization.categorize(_tx("CAFETERIA"), [_rule()])

        assert result.category is None

    def test_manual_category_is_kept(self, services):
        tx = _tx("RECIBO ELECTRICIDAD", category="Oficina", is_manual_category=True)

        assert services.categorization.categorize(tx, [_rule()]).category == "Oficina"

    def test_rules_are_company_scoped(self, services):
        services.categorization.create_rule(_rule(company_id=2, category="Otra empresa"))

        assert services.categorization.rules_for_company(COMPANY_ID) == []

    def test_invalid_stored_rule_is_skipped(self, services):
        engine = services.categorization
        broken = _rule(id=99, pattern="(unclosed", is_regex=True, priority=1)

        result = engine.categorize(_tx("RECIBO ELECTRICIDAD"), [broken, _rule(id=100)])

        assert result.category == "Suministros"


class TestStoredTransactions:

    @pytest.fixture
    def account(self, make_connection, make_account):
        return make_account(make_connection())

    def test_manual_category_survives_rerun(self, services, account, add_transactions):
        engine = services.categorization
        stored = add_transactions(account, ("-60.00", "RECIBO ELECTRICIDAD", date(2025, 3, 1)))
        engine.categorize_manually(stored[0].id, "Oficina")
        engine.create_rule(_rule())

        result = engine.recategorize(COMPANY_ID, only_uncategorized=False)

        assert result.updated == 0
        tx = services.store.get_transaction(stored[0].id)
        assert tx.category == "Oficina"
        assert tx.is_manual_category

    def test_rerun_fills_uncategorized(self, services, account, add_transactions):
        engine = services.categorization
        add_transactions(
            account,
            ("-60.00", "RECIBO ELECTRICIDAD", date(2025, 3, 1)),
            ("-3.20", "CAFETERIA", date(2025, 3, 2)),
        )
        engine.create_rule(_rule())

        result = engine.recategorize(COMPANY_ID)

        assert result.evaluated == 2
        assert result.updated == 1
        categories = {tx.description: tx.category for tx in services.store.list_transactions(account.id)}
        assert categories == {"RECIBO ELECTRICIDAD": "Suministros", "CAFETERIA": None}

    def test_full_rerun_applies_changed_rules(self, services, account, add_transactions):
        engine = services.categorization
        add_transactions(account, ("-60.00", "RECIBO ELECTRICIDAD", date(2025, 3, 1)))
        rule = engine.create_rule(_rule())
        engine.recategorize(COMPANY_ID)

        engine.update_rule(COMPANY_ID, rule.id, category="Energia")

        assert engine.recategorize(COMPANY_ID, only_uncategorized=True).updated == 0
        assert engine.recategorize(COMPANY_ID, only_uncategorized=False).updated == 1
        assert services.store.list_transactions(account.id)[0].category == "Energia"

    def test_clearing_manual_category_hands_back_to_rules(self, services, account, add_transactions):
        engine = services.categorization
        stored = add_transactions(account, ("-60.00", "RECIBO ELECTRICIDAD", date(2025, 3, 1)))
        engine.categorize_manually(stored[0].id, "Oficina")
        engine.create_rule(_rule())

        engine.categorize_manually(stored[0].id, "")
        engine.recategorize(COMPANY_ID)

        tx = services.store.get_transaction(stored[0].id)
        assert tx.category == "Suministros"
        assert not tx.is_manual_category

    def test_categorize_unknown_transaction(self, services):
        with pytest.raises(NotFoundError):
            services.categorization.categorize_manually(12345, "Oficina")


class TestRuleManagement:

    def test_create_update_delete(self, services):
        engine = services.categorization
        rule = engine.create_rule(_rule())

        updated = engine.update_rule(COMPANY_ID, rule.id, priority=5, field="reference")
        assert updated.priority == 5
        assert updated.field == RuleField.REFERENCE

        engine.delete_rule(COMPANY_ID, rule.id)
        assert engine.list_rules(COMPANY_ID) == []

    def test_priority_is_unbounded_and_defaults_to_one(self, services):
        engine = services.categorization
        default = engine.create_rule(_rule(name="Default"))
        late = engine.create_rule(_rule(name="Late", priority=150))
        early = engine.create_rule(_rule(name="Early", priority=0))
        first = engine.create_rule(_rule(name="First", priority=-5))

        assert default.priority == 1
        assert [r.id for r in engine.rules_for_company(COMPANY_ID)] == [first.id, early.id, default.id, late.id]

    def test_update_rejects_invalid_pattern(self, services):
        engine = services.categorization
        rule = engine.create_rule(_rule())

        with pytest.raises(InvalidPatternError):
            engine.update_rule(COMPANY_ID, rule.id, pattern="(", is_regex=True)

    def test_rule_of_other_company_not_found(self, services):
        rule = services.categorization.create_rule(_rule())

        with pytest.raises(NotFoundError):
            services.categorization.delete_rule(2, rule.id)
