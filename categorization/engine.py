"""
Categorization Engine

Assigns a category to bank transactions:
1. Load the company's active rules, ordered by (priority, id)
2. Compile each pattern (literal alternatives or regex); skip invalid ones
3. First rule whose pattern matches the rule's field wins
4. No match leaves the category empty ("Sin categorizar")

Manually categorized transactions are never re-evaluated.
"""

from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from banking.db import BankingStore
from banking.models import Transaction
from core.errors import InvalidPatternError, rule_not_found, transaction_not_found
from core.observability.logging import get_logger

from .db import CategoryRuleStore
from .models import CategoryRule, Pattern, RecategorizeResult, RuleField
from .rules import compile_rules, validate_rule

logger = get_logger(__name__)


class CategorizationEngine:
    """
    Company-scoped, priority-ordered rule engine.

    Usage:
        engine = CategorizationEngine(store, CategoryRuleStore(store))
        categorized = engine.categorize(transaction)
        engine.categorize_manually(transaction_id=12, category="Suministros")
    """

    def __init__(self, store: BankingStore, rule_store: CategoryRuleStore):
        self._store = store
        self._rules = rule_store

    # =========================================================================
    # Categorization
    # =========================================================================

    def categorize(
        self,
        transaction: Transaction,
        rules: Optional[Sequence[CategoryRule]] = None,
    ) -> Transaction:
        """
        Return a categorized copy of the transaction.

        If rules is None the rules of the account's company are loaded.
        Manual categories are returned untouched.
        """
        if transaction.is_manual_category:
            return replace(transaction)

        if rules is None:
            rules = self._rules_for_account(transaction.account_id)

        compiled = compile_rules(rules, on_invalid=self._log_invalid_rule)
        return replace(transaction, category=self._first_match(compiled, transaction))

    def categorize_batch(
        self,
        transactions: Sequence[Transaction],
        rules: Sequence[CategoryRule],
    ) -> List[Transaction]:
        """Categorize many transactions of one company, compiling the rules once."""
        compiled = compile_rules(rules, on_invalid=self._log_invalid_rule)
        results = []
        for tx in transactions:
            if tx.is_manual_category:
                results.append(replace(tx))
            else:
                results.append(replace(tx, category=self._first_match(compiled, tx)))
        return results

    def categorize_manually(self, transaction_id: int, category: Optional[str]) -> Transaction:
        """
        Override a transaction's category by hand.

        An empty category clears the override and hands the transaction back
        to the rules on the next re-run.

        Raises:
            NotFoundError: Unknown transaction
        """
        if self._store.get_transaction(transaction_id) is None:
            raise transaction_not_found(transaction_id)

        category = category.strip() if category else None
        self._store.set_transaction_category(transaction_id, category, manual=category is not None)
        logger.info(
            "Transaction categorized manually",
            extra_fields={"transaction_id": transaction_id, "category": category},
        )
        return self._store.get_transaction(transaction_id)

    def recategorize(self, company_id: int, only_uncategorized: bool = True) -> RecategorizeResult:
        """
        Re-run the company's rules over stored transactions.

        Manual categories are never touched.
        """
        result = RecategorizeResult(company_id=company_id)

        def on_invalid(rule: CategoryRule, error: InvalidPatternError):
            result.skipped_rules.append(rule.id)
            self._log_invalid_rule(rule, error)

        compiled = compile_rules(self._rules.list_rules(company_id, active_only=True), on_invalid=on_invalid)
        transactions = self._store.list_company_transactions(
            company_id,
            uncategorized_only=only_uncategorized,
            exclude_manual=True,
        )

        updates = []
        for tx in transactions:
            category = self._first_match(compiled, tx)
            if category != tx.category:
                updates.append((tx.id, category))

        result.evaluated = len(transactions)
        result.updated = self._store.apply_rule_categories(updates) if updates else 0

        logger.info(
            "Category rules re-applied",
            extra_fields={
                "company_id": company_id,
                "evaluated": result.evaluated,
                "updated": result.updated,
                "only_uncategorized": only_uncategorized,
            },
        )
        return result

    def rules_for_company(self, company_id: int) -> List[CategoryRule]:
        return self._rules.list_rules(company_id, active_only=True)

    def _rules_for_account(self, account_id: int) -> List[CategoryRule]:
        account = self._store.get_account(account_id)
        if account is None:
            return []
        return self.rules_for_company(account.company_id)

    @staticmethod
    def _first_match(compiled: List[Tuple[CategoryRule, Pattern]], transaction: Transaction) -> Optional[str]:
        for rule, pattern in compiled:
            if pattern.matches(transaction.field_text(rule.field.value)):
                return rule.category
        return None

    @staticmethod
    def _log_invalid_rule(rule: CategoryRule, error: InvalidPatternError) -> None:
        logger.warning(
            "Skipping category rule with invalid pattern",
            extra_fields={"rule_id": rule.id, "company_id": rule.company_id, "error": error.message},
        )

    # =========================================================================
    # Rule Management
    # =========================================================================

    def list_rules(self, company_id: int) -> List[CategoryRule]:
        return self._rules.list_rules(company_id)

    def create_rule(self, rule: CategoryRule) -> CategoryRule:
        """
        Raises:
            InvalidPatternError: Pattern or category invalid
        """
        validate_rule(rule)
        created = self._rules.add_rule(rule)
        logger.info(
            "Category rule created",
            extra_fields={"rule_id": created.id, "company_id": created.company_id, "category": created.category},
        )
        return created

    def update_rule(self, company_id: int, rule_id: int, **changes) -> CategoryRule:
        """
        Apply field changes to a rule.

        Raises:
            NotFoundError: Unknown rule for this company
            InvalidPatternError: The updated rule is invalid
        """
        existing = self._rules.get_rule(company_id, rule_id)
        if existing is None:
            raise rule_not_found(rule_id)

        if "field" in changes and changes["field"] is not None:
            changes["field"] = RuleField(changes["field"])
        updated = replace(existing, **{k: v for k, v in changes.items() if v is not None})
        validate_rule(updated)
        return self._rules.update_rule(updated)

    def delete_rule(self, company_id: int, rule_id: int) -> None:
        """
        Raises:
            NotFoundError: Unknown rule for this company
        """
        if not self._rules.delete_rule(company_id, rule_id):
            raise rule_not_found(rule_id)
        logger.info("Category rule deleted", extra_fields={"rule_id": rule_id, "company_id": company_id})
