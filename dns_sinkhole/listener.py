# dns_sinkhole/listener.py
# Version: 1.0.0
# Client-facing UDP protocol: answer blocked names, forward everything else

import logging
from typing import Tuple

from twisted.internet import error, protocol

from dns_sinkhole.blocklist import BlockingToggle, BlockMatcher
from dns_sinkhole.correlation import CorrelationTable
from dns_sinkhole.errors import ParseError, SendFailure
from dns_sinkhole.metrics import ProxyMetrics
from dns_sinkhole.wire import decode_question, forge_block_response

logger = logging.getLogger(__name__)


class LocalListener(protocol.DatagramProtocol):
    """UDP DNS sinkhole protocol"""

    def __init__(
        self,
        matcher: BlockMatcher,
        toggle: BlockingToggle,
        table: CorrelationTable,
        relay,
        answer_template: bytes,
        metrics: ProxyMetrics,
    ):
        self.matcher = matcher
        self.toggle = toggle
        self.table = table
        self.relay = relay
        self.answer_template = answer_template
        self.metrics = metrics

    def startProtocol(self):
        host = self.transport.getHost()
        logger.info(f"Started local DNS server at {host.host}:{host.port}")

    def datagramReceived(self, data: bytes, addr: Tuple[str, int]):
        """Handle one incoming DNS query"""
        self.metrics.record_question()

        try:
            question = decode_question(data)
        except ParseError as e:
            logger.warning(f"Dropped query from {addr[0]}:{addr[1]}: {e}")
            self.metrics.record_parse_error()
            return

        logger.debug(f"Query id {question.query_id} from {addr[0]}:{addr[1]} about {question.host}")

        if self.toggle.value():
            blocked, depth = self.matcher.is_blocked(question.host)
            if blocked:
                self._answer_blocked(data, question, addr, depth)
                return

        self._forward(data, question, addr)

    def _answer_blocked(self, data: bytes, question, addr: Tuple[str, int], depth: int):
        logger.debug(f"Blocking ({depth}) {question.host}")
        self.metrics.record_blocked()
        response = forge_block_response(data, question.qname_span, self.answer_template)
        if self.send(response, addr):
            logger.debug(f"Sent fake answer for query id {question.query_id}")

    def _forward(self, data: bytes, question, addr: Tuple[str, int]):
        logger.debug(f"Asking upstream about {question.host}")
        pending = self.table.register(question.query_id, addr, question.host)
        try:
            self.relay.forward(data)
        except SendFailure as e:
            logger.error(f"Query id {question.query_id} {pending}: {e}")
            self.metrics.record_error()
            self.table.discard(question.query_id, pending)

    def send(self, data: bytes, addr: Tuple[str, int]) -> bool:
        """Write a datagram to a client, returning False if the socket refused it"""
        try:
            self.transport.write(data, addr)
        except (OSError, error.MessageLengthError) as e:
            logger.error(f"Failed to send {len(data)} bytes to {addr[0]}:{addr[1]}: {e}")
            self.metrics.record_error()
            return False
        return True
