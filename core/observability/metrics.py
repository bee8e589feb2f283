"""
Metrics Collection for Bank Synchronization

Collects and exposes metrics for:
- Sync lifecycle (started, completed, failed, rate-limited, consent-expired)
- Transactions inserted and categorized
- Bank API retries
- Sync durations (average, p95)

Metrics are in-memory. The collector is owned by the services container and
handed to the components that record into it.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class SyncCounters:
    """Counters for sync calls."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    rate_limited: int = 0
    consent_expired: int = 0

    # By connection ID
    by_connection: Dict[int, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0})
    )


@dataclass
class TransactionCounters:
    """Counters for persisted transactions."""
    inserted: int = 0
    duplicates_skipped: int = 0
    categorized: int = 0
    uncategorized: int = 0


@dataclass
class TimingMetrics:
    """Sync duration samples (keep last N for percentile calculations)."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    def add_sample(self, duration_ms: float):
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

    def get_average(self) -> float:
        return statistics.mean(self.samples) if self.samples else 0.0

    def get_p95(self) -> float:
        if not self.samples:
            return 0.0
        sorted_samples = sorted(self.samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Collector
# =============================================================================

class SyncMetrics:
    """
    Thread-safe metrics collector for bank synchronization.

    Usage:
        metrics = SyncMetrics()
        metrics.record_sync_started(connection_id=7)
        metrics.record_sync_completed(connection_id=7, duration_ms=840.0)
    """

    def __init__(self):
        self.syncs = SyncCounters()
        self.transactions = TransactionCounters()
        self.timings = TimingMetrics()
        self.bank_retries = 0
        self.last_sync_at: Optional[datetime] = None
        self._lock = Lock()

    def record_sync_started(self, connection_id: int):
        with self._lock:
            self.syncs.started += 1
            self.syncs.by_connection[connection_id]["started"] += 1

    def record_sync_completed(self, connection_id: int, duration_ms: Optional[float] = None):
        with self._lock:
            self.syncs.completed += 1
            self.syncs.by_connection[connection_id]["completed"] += 1
            self.last_sync_at = datetime.now(timezone.utc)
            if duration_ms is not None:
                self.timings.add_sample(duration_ms)

    def record_sync_failed(self, connection_id: int):
        with self._lock:
            self.syncs.failed += 1
            self.syncs.by_connection[connection_id]["failed"] += 1

    def record_rate_limited(self):
        with self._lock:
            self.syncs.rate_limited += 1

    def record_consent_expired(self):
        with self._lock:
            self.syncs.consent_expired += 1

    def record_transactions(self, inserted: int, skipped: int, categorized: int):
        with self._lock:
            self.transactions.inserted += inserted
            self.transactions.duplicates_skipped += skipped
            self.transactions.categorized += categorized
            self.transactions.uncategorized += inserted - categorized

    def record_bank_retry(self):
        with self._lock:
            self.bank_retries += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get a JSON-serializable snapshot."""
        with self._lock:
            return {
                "syncs": {
                    "started": self.syncs.started,
                    "completed": self.syncs.completed,
                    "failed": self.syncs.failed,
                    "rate_limited": self.syncs.rate_limited,
                    "consent_expired": self.syncs.consent_expired,
                    "by_connection": {str(k): dict(v) for k, v in self.syncs.by_connection.items()},
                },
                "transactions": {
                    "inserted": self.transactions.inserted,
                    "duplicates_skipped": self.transactions.duplicates_skipped,
                    "categorized": self.transactions.categorized,
                    "uncategorized": self.transactions.uncategorized,
                },
                "bank_retries": self.bank_retries,
                "timings": {
                    "avg_ms": round(self.timings.get_average(), 2),
                    "p95_ms": round(self.timings.get_p95(), 2),
                    "samples": len(self.timings.samples),
                },
                "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            }
