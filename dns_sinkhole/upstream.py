# dns_sinkhole/upstream.py
# Version: 1.0.0
# Upstream-facing UDP protocol: forward queries, hand answers back to clients

import logging
from typing import Optional, Tuple

from twisted.internet import error, protocol

from dns_sinkhole.correlation import CorrelationTable
from dns_sinkhole.errors import MalformedQuestion, SendFailure
from dns_sinkhole.metrics import ProxyMetrics
from dns_sinkhole.wire import read_query_id

logger = logging.getLogger(__name__)


class UpstreamRelay(protocol.DatagramProtocol):
    """Single long-lived UDP association with the upstream resolver"""

    def __init__(self, server: Tuple[str, int], table: CorrelationTable, metrics: ProxyMetrics):
        self.server = server
        self.table = table
        self.metrics = metrics
        self.listener = None

    def attach(self, listener):
        """Set the listener that answers are relayed through"""
        self.listener = listener

    def startProtocol(self):
        host, port = self.server
        self.transport.connect(host, port)
        logger.info(f"Started upstream relay to {host}:{port}")

    def forward(self, data: bytes):
        """
        Send a client query to the upstream resolver unchanged

        Raises:
            SendFailure: If the datagram could not be written
        """
        if self.transport is None:
            raise SendFailure("Upstream relay is not running")
        try:
            self.transport.write(data)
        except (OSError, error.MessageLengthError) as e:
            raise SendFailure(f"Failed to forward {len(data)} bytes upstream: {e}")

    def datagramReceived(self, data: bytes, addr: Optional[Tuple[str, int]] = None):
        """Relay an upstream answer to the client that asked for it"""
        try:
            query_id = read_query_id(data)
        except MalformedQuestion as e:
            logger.warning(f"Dropped upstream datagram: {e}")
            self.metrics.record_error()
            return

        pending = self.table.resolve(query_id)
        if pending is None:
            logger.debug(f"No pending query for upstream answer id {query_id}")
            self.metrics.record_unmatched()
            return

        if self.listener.send(data, pending.client_address):
            logger.debug(f"Relayed answer to query id {query_id} {pending}")
            self.metrics.record_relayed()

    def connectionRefused(self):
        host, port = self.server
        logger.error(f"Upstream resolver {host}:{port} refused a query")
        self.metrics.record_error()
