# dns_sinkhole/constants.py
# Version: 1.0.0
# DNS sinkhole constants - all hardcoded values in one place for easy configuration

"""
DNS Sinkhole Constants

All hardcoded values are defined here at the top of the module for easy
visibility and modification.
"""

# =============================================================================
# DNS PROTOCOL CONSTANTS
# =============================================================================
DNS_DEFAULT_PORT = 53
DNS_HEADER_SIZE = 12  # ID, flags, QDCOUNT, ANCOUNT, NSCOUNT, ARCOUNT
DNS_QTYPE_QCLASS_SIZE = 4  # QTYPE(2) + QCLASS(2) after every QNAME
MAX_DNS_LABEL_LENGTH = 63  # Larger length bytes are compression pointers

# Header bytes rewritten on a forged answer
FORGED_FLAGS_HIGH = 0x81  # QR=1, opcode=0, RD=1
FORGED_FLAGS_LOW = 0x80  # RA=1, rcode=0
FORGED_ANSWER_COUNT = 1

# Answer RR fields after the NAME: TYPE=A, CLASS=IN, TTL, RDLENGTH=4
# TTL is the maximum 32-bit value
ANSWER_RR_PREFIX = b"\x00\x01\x00\x01\xff\xff\xff\xff\x00\x04"

# =============================================================================
# TIMEOUT SETTINGS
# =============================================================================
DNS_QUERY_TIMEOUT = 5.0  # Seconds to wait for an upstream answer
BLOCKLIST_FETCH_TIMEOUT = 30.0  # Seconds to wait when fetching a remote list

# =============================================================================
# BLOCK MATCHING
# =============================================================================
# The suffix walk stops once fewer than this many dot-separated parts are
# left (the trailing dot counts as an empty part), so "com." never matches
# unless it was the queried name itself.
MIN_MATCH_PARTS = 3

# =============================================================================
# HTTP CONTROL PLANE
# =============================================================================
HTTP_DEFAULT_PORT = 80
DEBUG_VARS_PATH = b"/debug/vars"

# 'Empty' 1x1 transparent GIF served for every request on the HTTP port
PIXEL_GIF = (
    b"\x47\x49\x46\x38\x39\x61\x01\x00\x01\x00\x80\x00\x00\xff\xff"
    b"\xff\x00\x00\x00\x21\xf9\x04\x01\x00\x00\x00\x00\x2c\x00\x00"
    b"\x00\x00\x01\x00\x01\x00\x00\x02\x02\x44\x01\x00\x3b"
)

# =============================================================================
# SERVER CONFIGURATION
# =============================================================================
DEFAULT_LISTEN_ADDRESS = "127.0.0.1"
DEFAULT_UPSTREAM_ADDRESS = "8.8.8.8"
DEFAULT_CONFIG_PATH = "/etc/dns-sinkhole/dns-sinkhole.cfg"

# Port range validation
MIN_PORT_NUMBER = 1  # Minimum valid port number
MAX_PORT_NUMBER = 65535  # Maximum valid port number

# Process exit codes
EXIT_USAGE = 1
EXIT_BAD_ADDRESS = 2
EXIT_IPV6_UNSUPPORTED = 3
