"""
DNS Sinkhole
A DNS proxy that answers blocked names with a sinkhole address and relays
everything else to a real resolver
"""

from .version import __author__, __version__

__all__ = ["__author__", "__version__"]
