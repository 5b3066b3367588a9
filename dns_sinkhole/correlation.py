# dns_sinkhole/correlation.py
# Version: 1.0.0
# In-flight query tracking between the local listener and the upstream relay

"""
Query correlation

Every forwarded query is registered under its 16-bit transaction ID until
either the upstream answer arrives (resolve) or its deadline passes
(expire). Both consumers remove the entry with a single atomic pop, so
exactly one of them wins; the other sees nothing and does nothing.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from dns_sinkhole.constants import DNS_QUERY_TIMEOUT

logger = logging.getLogger(__name__)

ClientAddress = Tuple[str, int]


@dataclass(frozen=True, eq=False)
class PendingQuery:
    """A query forwarded upstream and waiting for its answer"""

    query_id: int
    client_address: ClientAddress
    host: str
    issued_at: float

    def __str__(self):
        return f"from {self.client_address[0]}:{self.client_address[1]} about {self.host}"


class TimeoutSweeper:
    """Schedules one deferred expiry check per forwarded query"""

    def __init__(self, timeout: float = DNS_QUERY_TIMEOUT, clock=None):
        """
        Args:
            timeout: Seconds a query may wait for its upstream answer
            clock: IReactorTime provider; the global reactor by default
        """
        if clock is None:
            from twisted.internet import reactor as clock
        self.timeout = timeout
        self.clock = clock
        self._calls: Dict[PendingQuery, object] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def seconds(self) -> float:
        return self.clock.seconds()

    def schedule(self, expire: Callable, query_id: int, pending: PendingQuery):
        """Call expire(query_id, pending) once the timeout has passed"""
        # Calls are never cancelled when the answer wins; they fire as no-ops
        self._calls[pending] = self.clock.callLater(
            self.timeout, self._fire, expire, query_id, pending
        )

    def _fire(self, expire: Callable, query_id: int, pending: PendingQuery):
        self._calls.pop(pending, None)
        expire(query_id, pending)

    def stop(self):
        """Cancel every expiry check that has not fired yet"""
        calls, self._calls = self._calls, {}
        for call in calls.values():
            if call.active():
                call.cancel()


class CorrelationTable:
    """Thread-safe map from transaction ID to the query waiting on it"""

    def __init__(
        self,
        sweeper: Optional[TimeoutSweeper] = None,
        on_timeout: Optional[Callable[[PendingQuery], None]] = None,
    ):
        self.sweeper = sweeper if sweeper is not None else TimeoutSweeper()
        self.on_timeout = on_timeout
        self._pending: Dict[int, PendingQuery] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, query_id: int) -> bool:
        with self._lock:
            return query_id in self._pending

    def register(self, query_id: int, client_address: ClientAddress, host: str) -> PendingQuery:
        """
        Track a forwarded query and schedule its expiry

        A still-pending query with the same ID is replaced; its client will
        not get an answer.
        """
        pending = PendingQuery(query_id, client_address, host, self.sweeper.seconds())
        with self._lock:
            replaced = self._pending.get(query_id)
            self._pending[query_id] = pending
        if replaced is not None:
            logger.debug(f"Query id {query_id} {replaced} replaced by {pending}")
        self.sweeper.schedule(self.expire, query_id, pending)
        return pending

    def resolve(self, query_id: int) -> Optional[PendingQuery]:
        """Remove and return the query waiting on query_id, or None if there is none"""
        with self._lock:
            return self._pending.pop(query_id, None)

    def discard(self, query_id: int, pending: Optional[PendingQuery] = None):
        """Forget a query without reporting a timeout"""
        self._take(query_id, pending)

    def expire(self, query_id: int, pending: Optional[PendingQuery] = None) -> Optional[PendingQuery]:
        """
        Drop a query whose deadline has passed

        Args:
            query_id: Transaction ID
            pending: When given, only this exact entry is dropped, so the
                deadline of a replaced query does not cut its successor short

        Returns:
            The expired query, or None when the answer already arrived
        """
        expired = self._take(query_id, pending)
        if expired is None:
            return None

        logger.warning(f"Query id {query_id} {expired} timed out")
        if self.on_timeout:
            self.on_timeout(expired)
        return expired

    def _take(self, query_id: int, pending: Optional[PendingQuery]) -> Optional[PendingQuery]:
        with self._lock:
            current = self._pending.get(query_id)
            if current is None or (pending is not None and current is not pending):
                return None
            return self._pending.pop(query_id)
