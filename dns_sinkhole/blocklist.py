# dns_sinkhole/blocklist.py
# Version: 1.0.0
# Block list state: the active block set, suffix matching and the blocking switch

import logging
import threading
from typing import Callable, FrozenSet, Iterable, Optional, Tuple

from twisted.internet import defer

from dns_sinkhole import sources
from dns_sinkhole.constants import MIN_MATCH_PARTS
from dns_sinkhole.errors import SourceUnavailable
from dns_sinkhole.metrics import ProxyMetrics

logger = logging.getLogger(__name__)

BlockSet = FrozenSet[str]

EMPTY_BLOCK_SET: BlockSet = frozenset()


def is_blocked(host: str, block_set: BlockSet) -> Tuple[bool, int]:
    """
    Check a host and its parent domains against a block set

    The leftmost label is stripped after every miss. The walk stops before a
    bare top-level domain is tried, so "com." only matches when it was the
    queried host itself.

    Args:
        host: Host name with a trailing dot
        block_set: Set of blocked names, each with a trailing dot

    Returns:
        (blocked, match_depth) where match_depth is 1 for an exact match,
        2 for the parent domain and so on; 0 when not blocked
    """
    candidate = host
    parts = host.split(".")
    depth = 1
    while True:
        if candidate in block_set:
            return True, depth
        parts = parts[1:]
        if len(parts) < MIN_MATCH_PARTS:
            return False, 0
        candidate = ".".join(parts)
        depth += 1


def build_block_set(lines: Iterable[str]) -> BlockSet:
    """Build a block set from one domain per line, skipping blanks and comments"""
    entries = set()
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        entries.add(line.rstrip(".") + ".")
    return frozenset(entries)


class BlockMatcher:
    """Owns the active block set and replaces it wholesale on reload"""

    def __init__(
        self,
        location: Optional[str] = None,
        metrics: Optional[ProxyMetrics] = None,
        loader: Callable[[str], defer.Deferred] = sources.load,
        block_set: BlockSet = EMPTY_BLOCK_SET,
    ):
        self.location = location
        self.metrics = metrics
        self.loader = loader
        self._lock = threading.Lock()
        self._block_set = block_set

    @property
    def current(self) -> BlockSet:
        with self._lock:
            return self._block_set

    def __len__(self) -> int:
        return len(self.current)

    def is_blocked(self, host: str) -> Tuple[bool, int]:
        return is_blocked(host, self.current)

    def swap(self, block_set: BlockSet) -> BlockSet:
        """Install a fully built block set, returning the one it replaced"""
        with self._lock:
            previous, self._block_set = self._block_set, block_set
        if self.metrics:
            self.metrics.set_rules(len(block_set))
        return previous

    def reload(self, location: Optional[str] = None) -> defer.Deferred:
        """
        Load the block list again and swap it in

        The previous block set stays active unless the whole list was read.

        Returns:
            Deferred firing with the new block set, or failing with SourceUnavailable
        """
        location = location or self.location
        if not location:
            return defer.fail(SourceUnavailable("(none)", "no block list location configured"))

        def _as_source_unavailable(failure):
            if failure.check(SourceUnavailable):
                return failure
            raise SourceUnavailable(location, failure.getErrorMessage())

        def _install(block_set):
            self.swap(block_set)
            logger.info(f"Parsed {len(block_set)} entries from {location}")
            return block_set

        d = self.loader(location)
        d.addCallback(build_block_set)
        d.addErrback(_as_source_unavailable)
        d.addCallback(_install)
        return d


class BlockingToggle:
    """Process-wide blocking switch, read on every query decision"""

    def __init__(self, enabled: bool = True, metrics: Optional[ProxyMetrics] = None):
        self._lock = threading.Lock()
        self._enabled = enabled
        self.metrics = metrics
        if self.metrics:
            self.metrics.set_blocking(enabled)

    def __str__(self):
        return "true" if self.value() else "false"

    def value(self) -> bool:
        with self._lock:
            return self._enabled

    def set(self, enabled: bool) -> bool:
        with self._lock:
            self._enabled = enabled
        if self.metrics:
            self.metrics.set_blocking(enabled)
        return enabled

    def toggle(self) -> bool:
        """Flip the switch and return the new value"""
        with self._lock:
            self._enabled = not self._enabled
            enabled = self._enabled
        if self.metrics:
            self.metrics.set_blocking(enabled)
        return enabled
