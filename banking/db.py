"""
Banking Database

Creates and manages the banking tables:
- consent_requests: locally recorded PSD2 consent requests
- bank_connections: connection lifecycle rows
- bank_accounts: accounts discovered under a connection
- bank_transactions: append-only transactions, unique per (account_id, dedup_key)
- connection_access_log: one row per sync access, for the daily frequency cap
- sync_leases: at most one in-flight sync per connection, across processes
- category_rules: company-scoped categorization rules
- invoices: minimal invoice directory consumed by the linker
"""

import json
import sqlite3
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import (
    AccessScope,
    BankAccount,
    BankConnection,
    ConnectionStatus,
    ConsentRequest,
    Transaction,
    TransactionStatus,
    TransactionType,
)


SCHEMA = """
CREATE TABLE IF NOT EXISTS consent_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    valid_until TEXT NOT NULL,
    recurring_indicator INTEGER NOT NULL DEFAULT 1,
    frequency_per_day INTEGER NOT NULL,
    combined_service_indicator INTEGER NOT NULL DEFAULT 0,
    access TEXT NOT NULL,
    revoked_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bank_connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    provider TEXT NOT NULL,
    consent_id TEXT NOT NULL,
    consent_request_id INTEGER NOT NULL REFERENCES consent_requests(id),
    status TEXT NOT NULL,
    valid_until TEXT NOT NULL,
    sca_redirect_url TEXT,
    created_at TEXT NOT NULL,
    last_updated TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_bank_connections_company ON bank_connections(company_id);
CREATE INDEX IF NOT EXISTS idx_bank_connections_status ON bank_connections(status);

CREATE TABLE IF NOT EXISTS bank_accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    connection_id INTEGER NOT NULL REFERENCES bank_connections(id),
    company_id INTEGER NOT NULL,
    resource_id TEXT NOT NULL,
    iban TEXT,
    currency TEXT NOT NULL DEFAULT 'EUR',
    name TEXT,
    balance TEXT,
    available_balance TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    last_sync_at TEXT,
    UNIQUE(connection_id, resource_id)
);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_company ON bank_accounts(company_id);

CREATE TABLE IF NOT EXISTS bank_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES bank_accounts(id),
    external_id TEXT,
    dedup_key TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    transaction_date TEXT NOT NULL,
    value_date TEXT,
    booking_date TEXT,
    description TEXT NOT NULL DEFAULT '',
    reference TEXT NOT NULL DEFAULT '',
    counterparty_name TEXT,
    counterparty_account TEXT,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    category TEXT,
    is_manual_category INTEGER NOT NULL DEFAULT 0,
    invoice_id INTEGER,
    created_at TEXT NOT NULL,
    UNIQUE(account_id, dedup_key)
);
CREATE INDEX IF NOT EXISTS idx_bank_transactions_date ON bank_transactions(account_id, transaction_date);

CREATE TABLE IF NOT EXISTS connection_access_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    connection_id INTEGER NOT NULL,
    access_date TEXT NOT NULL,
    accessed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_access_log_day ON connection_access_log(connection_id, access_date);

CREATE TABLE IF NOT EXISTS sync_leases (
    connection_id INTEGER PRIMARY KEY,
    holder TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS category_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    pattern TEXT NOT NULL,
    is_regex INTEGER NOT NULL DEFAULT 0,
    field TEXT NOT NULL DEFAULT 'description',
    category TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 1,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_category_rules_company ON category_rules(company_id, priority, id);

CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL,
    invoice_number TEXT NOT NULL,
    total TEXT,
    issue_date TEXT
);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class BankingStore:
    """
    SQLite persistence for the banking services.

    Every public method opens its own connection; multi-row writes that must
    land together (an account's sync) run inside one ``with conn:`` block.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self) -> None:
        conn = self.connect()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            return self._fetchone("SELECT 1") is not None
        except sqlite3.Error:
            return False

    def _fetchone(self, sql: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        conn = self.connect()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def _fetchall(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        conn = self.connect()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        conn = self.connect()
        try:
            with conn:
                return conn.execute(sql, params)
        finally:
            conn.close()

    # =========================================================================
    # Consent Requests
    # =========================================================================

    def insert_consent(self, request: ConsentRequest) -> ConsentRequest:
        request.created_at = request.created_at or utcnow()
        cursor = self._execute("""
            INSERT INTO consent_requests
            (company_id, valid_until, recurring_indicator, frequency_per_day,
             combined_service_indicator, access, revoked_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            request.company_id,
            request.valid_until.isoformat(),
            1 if request.recurring_indicator else 0,
            request.frequency_per_day,
            1 if request.combined_service_indicator else 0,
            json.dumps(request.access.to_dict()),
            _iso(request.revoked_at),
            _iso(request.created_at),
        ))
        request.id = cursor.lastrowid
        return request

    def get_consent(self, consent_request_id: int) -> Optional[ConsentRequest]:
        row = self._fetchone("SELECT * FROM consent_requests WHERE id = ?", (consent_request_id,))
        return _row_to_consent(row) if row else None

    def revoke_consent(self, consent_request_id: int, revoked_at: datetime) -> None:
        self._execute(
            "UPDATE consent_requests SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL",
            (_iso(revoked_at), consent_request_id),
        )

    # =========================================================================
    # Bank Connections
    # =========================================================================

    def insert_connection(self, connection: BankConnection) -> BankConnection:
        now = utcnow()
        connection.created_at = connection.created_at or now
        connection.last_updated = connection.last_updated or now
        cursor = self._execute("""
            INSERT INTO bank_connections
            (company_id, name, provider, consent_id, consent_request_id, status,
             valid_until, sca_redirect_url, created_at, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            connection.company_id,
            connection.name,
            connection.provider,
            connection.consent_id,
            connection.consent_request_id,
            connection.status.value,
            connection.valid_until.isoformat(),
            connection.sca_redirect_url,
            _iso(connection.created_at),
            _iso(connection.last_updated),
        ))
        connection.id = cursor.lastrowid
        return connection

    def get_connection(self, connection_id: int) -> Optional[BankConnection]:
        row = self._fetchone("SELECT * FROM bank_connections WHERE id = ?", (connection_id,))
        return _row_to_connection(row) if row else None

    def list_connections(self, company_id: int) -> List[BankConnection]:
        rows = self._fetchall(
            "SELECT * FROM bank_connections WHERE company_id = ? ORDER BY id",
            (company_id,),
        )
        return [_row_to_connection(row) for row in rows]

    def list_connections_by_status(self, statuses: Iterable[ConnectionStatus]) -> List[BankConnection]:
        values = [s.value for s in statuses]
        if not values:
            return []
        placeholders = ",".join("?" for _ in values)
        rows = self._fetchall(
            f"SELECT * FROM bank_connections WHERE status IN ({placeholders}) ORDER BY id",
            values,
        )
        return [_row_to_connection(row) for row in rows]

    def update_connection_status(
        self,
        connection_id: int,
        expected: ConnectionStatus,
        status: ConnectionStatus,
        updated_at: datetime,
        deactivate_accounts: bool = False,
    ) -> bool:
        """
        Compare-and-set a status change.

        Only applies when the stored status still equals ``expected``;
        optionally deactivates the connection's accounts in the same commit.

        Returns:
            True if the row was updated
        """
        conn = self.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE bank_connections SET status = ?, last_updated = ? WHERE id = ? AND status = ?",
                    (status.value, _iso(updated_at), connection_id, expected.value),
                )
                if cursor.rowcount == 0:
                    return False
                if deactivate_accounts:
                    conn.execute(
                        "UPDATE bank_accounts SET active = 0 WHERE connection_id = ?",
                        (connection_id,),
                    )
        finally:
            conn.close()
        return True

    # =========================================================================
    # Bank Accounts
    # =========================================================================

    def upsert_account(self, account: BankAccount) -> BankAccount:
        """Insert an account, or refresh iban/name/currency of the stored one (keyed by resource_id)."""
        conn = self.connect()
        try:
            with conn:
                conn.execute("""
                    INSERT INTO bank_accounts
                    (connection_id, company_id, resource_id, iban, currency, name, active)
                    VALUES (?, ?, ?, ?, ?, ?, 1)
                    ON CONFLICT(connection_id, resource_id) DO UPDATE SET
                        iban = excluded.iban,
                        currency = excluded.currency,
                        name = excluded.name
                """, (
                    account.connection_id,
                    account.company_id,
                    account.resource_id,
                    account.iban,
                    account.currency,
                    account.name,
                ))
                row = conn.execute(
                    "SELECT * FROM bank_accounts WHERE connection_id = ? AND resource_id = ?",
                    (account.connection_id, account.resource_id),
                ).fetchone()
        finally:
            conn.close()
        return _row_to_account(row)

    def get_account(self, account_id: int) -> Optional[BankAccount]:
        row = self._fetchone("SELECT * FROM bank_accounts WHERE id = ?", (account_id,))
        return _row_to_account(row) if row else None

    def list_accounts(self, connection_id: int, active_only: bool = False) -> List[BankAccount]:
        sql = "SELECT * FROM bank_accounts WHERE connection_id = ?"
        if active_only:
            sql += " AND active = 1"
        rows = self._fetchall(sql + " ORDER BY id", (connection_id,))
        return [_row_to_account(row) for row in rows]

    def list_reportable_accounts(self, company_id: int) -> List[BankAccount]:
        """Active accounts of active connections for a company."""
        rows = self._fetchall("""
            SELECT a.* FROM bank_accounts a
            JOIN bank_connections c ON c.id = a.connection_id
            WHERE a.company_id = ? AND a.active = 1 AND c.status = ?
            ORDER BY a.id
        """, (company_id, ConnectionStatus.ACTIVE.value))
        return [_row_to_account(row) for row in rows]

    # =========================================================================
    # Transactions
    # =========================================================================

    def commit_account_sync(
        self,
        account_id: int,
        transactions: List[Transaction],
        balance: Optional[Decimal],
        available_balance: Optional[Decimal],
        synced_at: datetime,
        advance_last_sync: bool = True,
    ) -> Tuple[int, int]:
        """
        Write one account's sync result atomically.

        New transactions, balances and last_sync_at commit together; any
        exception rolls all of it back. last_sync_at is left alone when
        advance_last_sync is False.

        Returns:
            (inserted, skipped_as_duplicate)
        """
        inserted = 0
        conn = self.connect()
        try:
            with conn:
                cursor = conn.cursor()
                for tx in transactions:
                    inserted += self._insert_transaction(cursor, tx, synced_at)

                assignments: List[str] = []
                params: List = []
                if advance_last_sync:
                    assignments.append("last_sync_at = ?")
                    params.append(_iso(synced_at))
                if balance is not None:
                    assignments.append("balance = ?")
                    params.append(str(balance))
                if available_balance is not None:
                    assignments.append("available_balance = ?")
                    params.append(str(available_balance))
                if assignments:
                    params.append(account_id)
                    cursor.execute(
                        f"UPDATE bank_accounts SET {', '.join(assignments)} WHERE id = ?",
                        params,
                    )
        finally:
            conn.close()
        return inserted, len(transactions) - inserted

    def _insert_transaction(self, cursor: sqlite3.Cursor, tx: Transaction, created_at: datetime) -> int:
        """INSERT OR IGNORE one row; returns 1 if inserted, 0 if the dedup key already exists."""
        cursor.execute("""
            INSERT OR IGNORE INTO bank_transactions
            (account_id, external_id, dedup_key, amount, currency, transaction_date,
             value_date, booking_date, description, reference, counterparty_name,
             counterparty_account, type, status, category, is_manual_category,
             invoice_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            tx.account_id,
            tx.external_id,
            tx.dedup_key,
            str(tx.amount),
            tx.currency,
            tx.transaction_date.isoformat(),
            _iso(tx.value_date),
            _iso(tx.booking_date),
            tx.description,
            tx.reference,
            tx.counterparty_name,
            tx.counterparty_account,
            tx.type.value,
            tx.status.value,
            tx.category,
            1 if tx.is_manual_category else 0,
            tx.invoice_id,
            _iso(created_at),
        ))
        return cursor.rowcount

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        row = self._fetchone("SELECT * FROM bank_transactions WHERE id = ?", (transaction_id,))
        return _row_to_transaction(row) if row else None

    def list_transactions(
        self,
        account_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Transaction]:
        sql = "SELECT * FROM bank_transactions WHERE account_id = ?"
        params: List = [account_id]
        if date_from:
            sql += " AND transaction_date >= ?"
            params.append(date_from.isoformat())
        if date_to:
            sql += " AND transaction_date <= ?"
            params.append(date_to.isoformat())
        rows = self._fetchall(sql + " ORDER BY transaction_date DESC, id DESC", params)
        return [_row_to_transaction(row) for row in rows]

    def list_company_transactions(
        self,
        company_id: int,
        since: Optional[date] = None,
        limit: Optional[int] = None,
        reportable_only: bool = False,
        uncategorized_only: bool = False,
        exclude_manual: bool = False,
    ) -> List[Transaction]:
        """Transactions across a company's accounts, newest first."""
        sql = """
            SELECT t.* FROM bank_transactions t
            JOIN bank_accounts a ON a.id = t.account_id
            JOIN bank_connections c ON c.id = a.connection_id
            WHERE a.company_id = ?
        """
        params: List = [company_id]
        if reportable_only:
            sql += " AND a.active = 1 AND c.status = ?"
            params.append(ConnectionStatus.ACTIVE.value)
        if since:
            sql += " AND t.transaction_date >= ?"
            params.append(since.isoformat())
        if uncategorized_only:
            sql += " AND t.category IS NULL"
        if exclude_manual:
            sql += " AND t.is_manual_category = 0"
        sql += " ORDER BY t.transaction_date DESC, t.id DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_transaction(row) for row in self._fetchall(sql, params)]

    def expense_by_category(self, company_id: int) -> List[Tuple[Optional[str], Decimal, int]]:
        """
        Debits of a company's reportable accounts, grouped by category.

        Amounts are stored as text, so SQL groups by (category, amount) and the
        exact Decimal totals are summed here.

        Returns:
            (category, total_debit_magnitude, count) per category, unordered
        """
        rows = self._fetchall("""
            SELECT t.category, t.amount, COUNT(*) AS n FROM bank_transactions t
            JOIN bank_accounts a ON a.id = t.account_id
            JOIN bank_connections c ON c.id = a.connection_id
            WHERE a.company_id = ? AND a.active = 1 AND c.status = ? AND t.amount LIKE '-%'
            GROUP BY t.category, t.amount
        """, (company_id, ConnectionStatus.ACTIVE.value))
        totals: dict = {}
        for row in rows:
            amount = Decimal(row["amount"])
            if amount >= 0:
                continue
            total, count = totals.get(row["category"], (Decimal("0"), 0))
            totals[row["category"]] = (total - amount * row["n"], count + row["n"])
        return [(category, total, count) for category, (total, count) in totals.items()]

    def get_transaction_company(self, transaction_id: int) -> Optional[int]:
        row = self._fetchone("""
            SELECT a.company_id FROM bank_transactions t
            JOIN bank_accounts a ON a.id = t.account_id
            WHERE t.id = ?
        """, (transaction_id,))
        return row["company_id"] if row else None

    def set_transaction_category(self, transaction_id: int, category: Optional[str], manual: bool) -> None:
        self._execute(
            "UPDATE bank_transactions SET category = ?, is_manual_category = ? WHERE id = ?",
            (category, 1 if manual else 0, transaction_id),
        )

    def apply_rule_categories(self, updates: List[Tuple[int, Optional[str]]]) -> int:
        """Set automatic categories in one commit; manual rows are never touched."""
        conn = self.connect()
        try:
            with conn:
                changed = 0
                for transaction_id, category in updates:
                    cursor = conn.execute(
                        "UPDATE bank_transactions SET category = ? WHERE id = ? AND is_manual_category = 0",
                        (category, transaction_id),
                    )
                    changed += cursor.rowcount
        finally:
            conn.close()
        return changed

    def set_transaction_invoice(self, transaction_id: int, invoice_id: Optional[int]) -> None:
        self._execute(
            "UPDATE bank_transactions SET invoice_id = ? WHERE id = ?",
            (invoice_id, transaction_id),
        )

    # =========================================================================
    # Access Log (frequency cap)
    # =========================================================================

    def try_record_access(self, connection_id: int, at: datetime, limit: int) -> Tuple[bool, int]:
        """
        Record one access unless the day already holds ``limit`` of them.

        Check and insert are a single statement, so concurrent processes
        cannot overshoot the limit.

        Returns:
            (recorded, accesses_used_today)
        """
        at = at.astimezone(timezone.utc)
        day = at.date().isoformat()
        conn = self.connect()
        try:
            with conn:
                cursor = conn.execute("""
                    INSERT INTO connection_access_log (connection_id, access_date, accessed_at)
                    SELECT ?, ?, ?
                    WHERE (SELECT COUNT(*) FROM connection_access_log
                           WHERE connection_id = ? AND access_date = ?) < ?
                """, (connection_id, day, _iso(at), connection_id, day, limit))
                recorded = cursor.rowcount == 1
                used = conn.execute(
                    "SELECT COUNT(*) FROM connection_access_log WHERE connection_id = ? AND access_date = ?",
                    (connection_id, day),
                ).fetchone()[0]
        finally:
            conn.close()
        return recorded, used

    # =========================================================================
    # Sync Leases
    # =========================================================================

    def acquire_sync_lease(self, connection_id: int, holder: str, now: datetime, ttl_seconds: float) -> bool:
        """
        Take the connection's sync lease, or take over an expired one.

        Returns:
            True if ``holder`` now owns the lease
        """
        now_ts = now.timestamp()
        conn = self.connect()
        try:
            with conn:
                cursor = conn.execute("""
                    INSERT INTO sync_leases (connection_id, holder, expires_at) VALUES (?, ?, ?)
                    ON CONFLICT(connection_id) DO UPDATE
                    SET holder = excluded.holder, expires_at = excluded.expires_at
                    WHERE sync_leases.expires_at <= ?
                """, (connection_id, holder, now_ts + ttl_seconds, now_ts))
                return cursor.rowcount == 1
        finally:
            conn.close()

    def release_sync_lease(self, connection_id: int, holder: str) -> None:
        self._execute(
            "DELETE FROM sync_leases WHERE connection_id = ? AND holder = ?",
            (connection_id, holder),
        )

    # =========================================================================
    # Invoices
    # =========================================================================

    def insert_invoice(self, company_id: int, invoice_number: str,
                       total: Optional[Decimal] = None, issue_date: Optional[date] = None) -> int:
        cursor = self._execute(
            "INSERT INTO invoices (company_id, invoice_number, total, issue_date) VALUES (?, ?, ?, ?)",
            (company_id, invoice_number, str(total) if total is not None else None, _iso(issue_date)),
        )
        return cursor.lastrowid

    def invoice_exists(self, invoice_id: int) -> bool:
        return self._fetchone("SELECT 1 FROM invoices WHERE id = ?", (invoice_id,)) is not None


# =============================================================================
# Row Mappers
# =============================================================================

def _row_to_consent(row: sqlite3.Row) -> ConsentRequest:
    return ConsentRequest(
        id=row["id"],
        company_id=row["company_id"],
        valid_until=_parse_date(row["valid_until"]),
        recurring_indicator=bool(row["recurring_indicator"]),
        frequency_per_day=row["frequency_per_day"],
        combined_service_indicator=bool(row["combined_service_indicator"]),
        access=AccessScope.from_dict(json.loads(row["access"])),
        revoked_at=_parse_datetime(row["revoked_at"]),
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_connection(row: sqlite3.Row) -> BankConnection:
    return BankConnection(
        id=row["id"],
        company_id=row["company_id"],
        name=row["name"],
        provider=row["provider"],
        consent_id=row["consent_id"],
        consent_request_id=row["consent_request_id"],
        status=ConnectionStatus(row["status"]),
        valid_until=_parse_date(row["valid_until"]),
        sca_redirect_url=row["sca_redirect_url"],
        created_at=_parse_datetime(row["created_at"]),
        last_updated=_parse_datetime(row["last_updated"]),
    )


def _row_to_account(row: sqlite3.Row) -> BankAccount:
    return BankAccount(
        id=row["id"],
        connection_id=row["connection_id"],
        company_id=row["company_id"],
        resource_id=row["resource_id"],
        iban=row["iban"],
        currency=row["currency"],
        name=row["name"],
        balance=_parse_decimal(row["balance"]),
        available_balance=_parse_decimal(row["available_balance"]),
        active=bool(row["active"]),
        last_sync_at=_parse_datetime(row["last_sync_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        account_id=row["account_id"],
        external_id=row["external_id"],
        dedup_key=row["dedup_key"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        transaction_date=_parse_date(row["transaction_date"]),
        value_date=_parse_date(row["value_date"]),
        booking_date=_parse_date(row["booking_date"]),
        description=row["description"],
        reference=row["reference"],
        counterparty_name=row["counterparty_name"],
        counterparty_account=row["counterparty_account"],
        type=TransactionType(row["type"]),
        status=TransactionStatus(row["status"]),
        category=row["category"],
        is_manual_category=bool(row["is_manual_category"]),
        invoice_id=row["invoice_id"],
        created_at=_parse_datetime(row["created_at"]),
    )
