# app/services/usage_ledger.py
"""
In-memory usage ledger for proxied API calls.

Keeps the most recent proxy outcomes (newest first) in a bounded deque and
derives aggregate statistics from whatever is currently held. Nothing is
persisted: entries are lost when the process restarts.

Proxy handlers run the upstream call in the threadpool, so every read and
write goes through a single lock.
"""
import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from app.api.models.usage import EndpointUsage, HostUsage, UsageLogEntry, UsageStats
from app.core.catalog import parse_price

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_RECENT_LIMIT = 100
TOP_ENDPOINTS = 20


class UsageLedger:
    """
    Bounded, most-recent-first store of UsageLogEntry records.

    Thread-safe for concurrent access.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._max_entries = max_entries
        self._entries: Deque[UsageLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def record_entry(self, entry: UsageLogEntry) -> UsageLogEntry:
        """Prepend an entry, evicting the oldest one once the ledger is full."""
        with self._lock:
            # deque(maxlen) drops from the opposite end on appendleft
            self._entries.appendleft(entry)
        return entry

    def record(
        self,
        method: str,
        path: str,
        backend_host: str,
        backend_path: str,
        price: str,
        status_code: int,
        duration_ms: int,
        caller_agent: Optional[str] = None,
    ) -> UsageLogEntry:
        """Build a timestamped entry from the call outcome and record it."""
        entry = UsageLogEntry(
            method=method,
            path=path,
            backendHost=backend_host,
            backendPath=backend_path,
            price=price,
            statusCode=status_code,
            durationMs=duration_ms,
            callerAgent=caller_agent,
        )
        return self.record_entry(entry)

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[UsageLogEntry]:
        """Return up to `limit` entries, most recent first."""
        limit = max(limit, 0)
        with self._lock:
            return [entry for _, entry in zip(range(limit), self._entries)]

    def statistics(self) -> UsageStats:
        """
        Aggregate the held entries.

        Returns:
            UsageStats with:
            - totalRequests: number of held entries
            - totalCost: summed prices formatted to 4 decimals
            - byEndpoint: "<method> <path>" groups, count descending, top 20
            - byHost: backend host groups, count descending
        """
        with self._lock:
            entries = list(self._entries)

        by_endpoint: Dict[str, Dict[str, float]] = {}
        by_host: Dict[str, Dict[str, float]] = {}
        total_cost = 0.0

        for entry in entries:
            cost = parse_price(entry.price)
            total_cost += cost

            endpoint_key = f"{entry.method} {entry.path}"
            group = by_endpoint.setdefault(endpoint_key, {"count": 0, "totalCost": 0.0})
            group["count"] += 1
            group["totalCost"] += cost

            group = by_host.setdefault(entry.backendHost, {"count": 0, "totalCost": 0.0})
            group["count"] += 1
            group["totalCost"] += cost

        # sorted() is stable, so ties keep first-seen (most recent) order
        endpoints = sorted(by_endpoint.items(), key=lambda item: item[1]["count"], reverse=True)
        hosts = sorted(by_host.items(), key=lambda item: item[1]["count"], reverse=True)

        return UsageStats(
            totalRequests=len(entries),
            totalCost=f"{total_cost:.4f}",
            byEndpoint=[
                EndpointUsage(endpoint=key, count=int(val["count"]), totalCost=round(val["totalCost"], 6))
                for key, val in endpoints[:TOP_ENDPOINTS]
            ],
            byHost=[
                HostUsage(host=key, count=int(val["count"]), totalCost=round(val["totalCost"], 6))
                for key, val in hosts
            ],
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Usage ledger cleared")
