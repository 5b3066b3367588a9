# dns_sinkhole/sources.py
# Version: 1.0.0
# Block list ingestion from local files and remote lists

"""
Block list sources

A block list location is either a local path or an http(s) URL. Every
load re-reads the location, so a reload always sees the current content.
Remote lists published in other formats are described by a Source with an
extractor that pulls one domain out of each line.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

from twisted.internet import defer
from twisted.web.client import Agent, readBody
from twisted.web.http_headers import Headers

from dns_sinkhole.constants import BLOCKLIST_FETCH_TIMEOUT
from dns_sinkhole.errors import SourceUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = b"dns-sinkhole"

EASYLIST_RULE = re.compile(r"^\|\|((\w+\.)+[A-Za-z]+)[^A-Za-z]", re.ASCII)


def is_url(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


def iter_file_lines(path: str) -> Iterator[str]:
    """Yield the stripped lines of a local block list file"""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                yield line.strip()
    except OSError as e:
        raise SourceUnavailable(path, str(e))


@defer.inlineCallbacks
def fetch_lines(url: str, agent=None):
    """
    Fetch a remote list and return its lines

    Args:
        url: http or https URL
        agent: twisted.web IAgent to use; a fresh Agent on the global reactor by default

    Returns:
        Deferred firing with a list of stripped lines, or failing with
        SourceUnavailable
    """
    if agent is None:
        from twisted.internet import reactor

        agent = Agent(reactor, connectTimeout=BLOCKLIST_FETCH_TIMEOUT)

    logger.info(f"Fetching block list from {url}")
    try:
        response = yield agent.request(
            b"GET", url.encode("ascii"), Headers({b"User-Agent": [USER_AGENT]})
        )
        body = yield readBody(response)
    except Exception as e:
        raise SourceUnavailable(url, str(e))

    if response.code != 200:
        raise SourceUnavailable(url, f"HTTP status {response.code}")

    return [line.strip() for line in body.decode("utf-8", "replace").splitlines()]


def load(location: str, fetch: Optional[Callable] = None) -> defer.Deferred:
    """
    Read every line of a block list location

    Returns:
        Deferred firing with a list of lines, or failing with SourceUnavailable
    """
    if is_url(location):
        return defer.maybeDeferred(fetch or fetch_lines, location)
    return defer.maybeDeferred(lambda: list(iter_file_lines(location)))


def extract_plain(line: str) -> Optional[str]:
    """Lists that already carry one host per line"""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    return line


def extract_easylist(line: str) -> Optional[str]:
    """Adblock Plus '||domain.tld^' rules"""
    match = EASYLIST_RULE.match(line)
    if match is None:
        return None
    return match.group(1)


@dataclass(frozen=True)
class Source:
    """A remote list and the function that pulls a domain out of each of its lines"""

    name: str
    description: str
    url: str
    extractor: Callable[[str], Optional[str]]

    def extract(self, lines: Iterable[str]) -> List[str]:
        domains = []
        for line in lines:
            domain = self.extractor(line)
            if domain is not None:
                domains.append(domain)
        return domains


SOURCES = (
    Source(
        name="pgl",
        description="http://pgl.yoyo.org/adservers",
        url=(
            "http://pgl.yoyo.org/adservers/serverlist.php?hostformat=nohtml"
            "&showintro=0&mimetype=plaintext"
        ),
        extractor=extract_plain,
    ),
    Source(
        name="easylist",
        description="https://easylist.adblockplus.org",
        url="https://easylist-downloads.adblockplus.org/easylist.txt",
        extractor=extract_easylist,
    ),
)


def find_source(name: str) -> Optional[Source]:
    for source in SOURCES:
        if source.name == name:
            return source
    return None


def collect(sources: Sequence[Source], fetch: Optional[Callable] = None) -> defer.Deferred:
    """
    Fetch several sources concurrently and merge their domains

    A source that cannot be fetched is logged and left out.

    Returns:
        Deferred firing with a set of domain names
    """
    fetch = fetch or fetch_lines
    deferreds = []
    for source in sources:
        logger.info(f"Processing list for {source.name}")
        d = defer.maybeDeferred(fetch, source.url)
        d.addCallback(source.extract)
        deferreds.append(d)

    def _merge(results):
        domains = set()
        for source, (success, value) in zip(sources, results):
            if not success:
                logger.error(f"Skipping {source.name}: {value.getErrorMessage()}")
                continue
            logger.info(f"{source.name}: {len(value)} domains")
            domains.update(value)
        return domains

    return defer.DeferredList(deferreds, consumeErrors=True).addCallback(_merge)
