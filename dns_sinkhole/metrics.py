# dns_sinkhole/metrics.py
# Version: 1.0.0
# Counters for DNS sinkhole monitoring

"""
DNS Sinkhole Metrics Collection Module

Keeps the proxy counters as Prometheus metrics. The same values are
exposed in Prometheus text format on /metrics and as a flat JSON
snapshot on /debug/vars.
"""

import logging
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

logger = logging.getLogger(__name__)

# Constants for metrics
METRIC_NAMESPACE = "dns_sinkhole"

# Names used in the /debug/vars snapshot, mapped to the sample they read
SNAPSHOT_SAMPLES = {
    "statsQuestions": f"{METRIC_NAMESPACE}_questions_total",
    "statsRelayed": f"{METRIC_NAMESPACE}_relayed_total",
    "statsBlocked": f"{METRIC_NAMESPACE}_blocked_total",
    "statsTimedout": f"{METRIC_NAMESPACE}_timed_out_total",
    "statsServed": f"{METRIC_NAMESPACE}_pixels_served_total",
    "statsErrors": f"{METRIC_NAMESPACE}_errors_total",
    "statsParseErrors": f"{METRIC_NAMESPACE}_parse_errors_total",
    "statsUnmatched": f"{METRIC_NAMESPACE}_unmatched_answers_total",
    "statsRules": f"{METRIC_NAMESPACE}_rules",
}


class ProxyMetrics:
    """Counters shared by the listener, the relay and the control plane"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        self._init_query_metrics()
        self._init_error_metrics()
        self._init_state_metrics()

        logger.debug("Metrics collector initialized")

    def _init_query_metrics(self):
        """Initialize DNS query metrics"""
        self.questions = Counter(
            f"{METRIC_NAMESPACE}_questions",
            "Total number of DNS datagrams received from clients",
            registry=self.registry,
        )
        self.blocked = Counter(
            f"{METRIC_NAMESPACE}_blocked",
            "Total number of queries answered with a forged address",
            registry=self.registry,
        )
        self.relayed = Counter(
            f"{METRIC_NAMESPACE}_relayed",
            "Total number of upstream answers relayed to clients",
            registry=self.registry,
        )
        self.timed_out = Counter(
            f"{METRIC_NAMESPACE}_timed_out",
            "Total number of forwarded queries that got no upstream answer in time",
            registry=self.registry,
        )
        self.served = Counter(
            f"{METRIC_NAMESPACE}_pixels_served",
            "Total number of tracking pixels served over HTTP",
            registry=self.registry,
        )

    def _init_error_metrics(self):
        """Initialize error metrics"""
        self.errors = Counter(
            f"{METRIC_NAMESPACE}_errors",
            "Total number of socket errors",
            registry=self.registry,
        )
        self.parse_errors = Counter(
            f"{METRIC_NAMESPACE}_parse_errors",
            "Total number of dropped unparsable or multi-question queries",
            registry=self.registry,
        )
        self.unmatched = Counter(
            f"{METRIC_NAMESPACE}_unmatched_answers",
            "Total number of upstream answers with no pending query",
            registry=self.registry,
        )

    def _init_state_metrics(self):
        """Initialize state gauges"""
        self.rules = Gauge(
            f"{METRIC_NAMESPACE}_rules",
            "Number of entries in the active block list",
            registry=self.registry,
        )
        self.blocking_enabled = Gauge(
            f"{METRIC_NAMESPACE}_blocking_enabled",
            "1 when blocking is active, 0 when every query is relayed",
            registry=self.registry,
        )
        self.blocking_enabled.set(1)

    def record_question(self):
        self.questions.inc()

    def record_blocked(self):
        self.blocked.inc()

    def record_relayed(self):
        self.relayed.inc()

    def record_timeout(self):
        self.timed_out.inc()

    def record_served(self):
        self.served.inc()

    def record_error(self):
        self.errors.inc()

    def record_parse_error(self):
        self.parse_errors.inc()

    def record_unmatched(self):
        self.unmatched.inc()

    def set_rules(self, count: int):
        self.rules.set(count)

    def set_blocking(self, enabled: bool):
        self.blocking_enabled.set(1 if enabled else 0)

    def snapshot(self) -> Dict[str, int]:
        """Get the current counter values keyed by their /debug/vars names"""
        values = {}
        for name, sample in SNAPSHOT_SAMPLES.items():
            value = self.registry.get_sample_value(sample)
            values[name] = int(value or 0)
        return values
