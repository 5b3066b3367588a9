"""Version information for dns-sinkhole"""

__version__ = "1.0.0"
__author__ = "DNS Sinkhole Team"
