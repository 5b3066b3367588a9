# dns_sinkhole/wire.py
# Version: 1.0.0
# Minimal DNS wire codec: question decoding and forged A answers

"""
DNS Wire Codec

Works directly on raw UDP payloads. Only the pieces needed by the sinkhole
are handled: the transaction ID, the single question's QNAME, and the
construction of a forged A answer that echoes the query back.
"""

import ipaddress
import struct
from typing import NamedTuple

from dns_sinkhole.constants import (
    ANSWER_RR_PREFIX,
    DNS_HEADER_SIZE,
    DNS_QTYPE_QCLASS_SIZE,
    FORGED_ANSWER_COUNT,
    FORGED_FLAGS_HIGH,
    FORGED_FLAGS_LOW,
    MAX_DNS_LABEL_LENGTH,
)
from dns_sinkhole.errors import MalformedQuestion, UnsupportedQuestionCount

# Labels are decoded byte-for-byte so that a host maps back onto its wire form
LABEL_ENCODING = "latin-1"


class Question(NamedTuple):
    """Decoded question of a single-question DNS query"""

    query_id: int
    host: str
    qname_span: slice

    @property
    def qname_len(self) -> int:
        return self.qname_span.stop - self.qname_span.start


def read_query_id(msg: bytes) -> int:
    """Return the big-endian transaction ID from the first two bytes"""
    if len(msg) < 2:
        raise MalformedQuestion(f"Message too short for a transaction ID: {len(msg)} bytes")
    return struct.unpack("!H", msg[:2])[0]


def decode_question(msg: bytes) -> Question:
    """
    Decode the transaction ID and question name of a DNS query

    Args:
        msg: Raw UDP datagram payload

    Returns:
        Question with the host (trailing dot included) and the byte span of
        the QNAME inside msg

    Raises:
        UnsupportedQuestionCount: If the query does not carry exactly one question
        MalformedQuestion: If the question section is truncated or uses
            compression pointers
    """
    if len(msg) < DNS_HEADER_SIZE:
        raise MalformedQuestion(f"Message shorter than a DNS header: {len(msg)} bytes")

    query_id = read_query_id(msg)

    # Only the low byte of QDCOUNT is looked at
    count = msg[5]
    if count != 1:
        raise UnsupportedQuestionCount(count)

    labels = []
    offset = DNS_HEADER_SIZE
    while True:
        if offset >= len(msg):
            raise MalformedQuestion("Question name runs past the end of the message")
        length = msg[offset]
        if length == 0:
            break
        if length > MAX_DNS_LABEL_LENGTH:
            raise MalformedQuestion(f"Unsupported label length byte 0x{length:02x} at {offset}")
        offset += 1
        if offset + length > len(msg):
            raise MalformedQuestion("Question label runs past the end of the message")
        labels.append(msg[offset : offset + length].decode(LABEL_ENCODING))
        offset += length

    qname_end = offset + 1
    if qname_end + DNS_QTYPE_QCLASS_SIZE > len(msg):
        raise MalformedQuestion("Question is missing QTYPE/QCLASS")

    # The root name is "." rather than an empty string
    host = "".join(label + "." for label in labels) or "."
    return Question(query_id, host, slice(DNS_HEADER_SIZE, qname_end))


def encode_name(host: str) -> bytes:
    """Encode a dotted host name into its wire QNAME form"""
    qname = bytearray()
    for label in host.rstrip(".").split("."):
        if not label:
            continue
        raw = label.encode(LABEL_ENCODING)
        if len(raw) > MAX_DNS_LABEL_LENGTH:
            raise ValueError(f"Label too long: {label!r}")
        qname.append(len(raw))
        qname += raw
    qname.append(0)
    return bytes(qname)


def build_answer_template(address: str) -> bytes:
    """
    Build the fixed part of every forged answer record

    Args:
        address: IPv4 address the blocked names will resolve to

    Returns:
        TYPE, CLASS, TTL, RDLENGTH and RDATA bytes

    Raises:
        ValueError: If address is not an IPv4 address
    """
    ip = ipaddress.ip_address(address)
    if ip.version != 4:
        raise ValueError(f"IPv6 answers are not supported: {address}")
    return ANSWER_RR_PREFIX + ip.packed


def forge_block_response(msg: bytes, qname_span: slice, answer_template: bytes) -> bytes:
    """
    Build a forged answer to a blocked query

    The header and question are echoed back with the response flags set and
    one answer appended. The answer repeats the QNAME uncompressed and carries
    answer_template as the rest of the record. Any records the client placed
    after the question are not echoed.

    Args:
        msg: Raw query datagram
        qname_span: Span of the QNAME as returned by decode_question
        answer_template: Output of build_answer_template

    Returns:
        New response datagram; msg is left untouched
    """
    # QTYPE/QCLASS stay in the echoed question, so the response is
    # 2 * qname_len + 30 bytes: header, question, then NAME plus the template
    question_end = qname_span.stop + DNS_QTYPE_QCLASS_SIZE
    response = bytearray(msg[:question_end])
    response[2] = FORGED_FLAGS_HIGH
    response[3] = FORGED_FLAGS_LOW
    response[7] = FORGED_ANSWER_COUNT
    # Authority and additional sections are not carried over
    response[8:12] = b"\x00\x00\x00\x00"
    response += msg[qname_span]
    response += answer_template
    return bytes(response)
