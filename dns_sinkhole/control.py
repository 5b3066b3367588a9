# dns_sinkhole/control.py
# Version: 1.0.0
# HTTP side of the sinkhole: tracking pixel, counters and admin actions

"""
HTTP control plane

The blocked names resolve to this server, so every path that is not a
control endpoint answers with an empty 1x1 GIF. The /debug actions are
protected by the admin key passed as the "key" query or form argument.
"""

import hmac
import json
import logging
from typing import Optional

from prometheus_client.twisted import MetricsResource
from twisted.web import http, resource, server

from dns_sinkhole.blocklist import BlockingToggle, BlockMatcher
from dns_sinkhole.constants import DEBUG_VARS_PATH, PIXEL_GIF
from dns_sinkhole.correlation import CorrelationTable
from dns_sinkhole.metrics import ProxyMetrics

logger = logging.getLogger(__name__)


def _client_host(request) -> str:
    address = request.getClientAddress()
    return getattr(address, "host", "unknown")


def _redirect_to_vars(request) -> bytes:
    request.setResponseCode(http.SEE_OTHER)
    request.setHeader(b"location", DEBUG_VARS_PATH)
    return b""


class PixelResource(resource.Resource):
    """Answers any method on any path with an empty GIF"""

    isLeaf = True

    def __init__(self, metrics: ProxyMetrics):
        super().__init__()
        self.metrics = metrics

    def render(self, request):
        logger.debug(
            f"Request {request.method.decode('ascii', 'replace')} "
            f"{request.uri.decode('ascii', 'replace')} from {_client_host(request)}"
        )
        self.metrics.record_served()
        request.setHeader(b"content-type", b"image/gif")
        return PIXEL_GIF


class FallthroughResource(resource.Resource):
    """Container whose unknown children and own path fall through to the pixel"""

    def __init__(self, pixel: PixelResource):
        super().__init__()
        self.pixel = pixel

    def getChild(self, path, request):
        return self.pixel

    def render(self, request):
        return self.pixel.render(request)


class VarsResource(resource.Resource):
    """Read-only JSON view of the counters"""

    isLeaf = True

    def __init__(self, metrics: ProxyMetrics, toggle: BlockingToggle, table: CorrelationTable):
        super().__init__()
        self.metrics = metrics
        self.toggle = toggle
        self.table = table

    def render_GET(self, request):
        values = self.metrics.snapshot()
        values["statsPending"] = len(self.table)
        values["stateIsRunning"] = self.toggle.value()
        request.setHeader(b"content-type", b"application/json; charset=utf-8")
        return json.dumps(values, indent=2, sort_keys=True).encode("utf-8")


class KeyProtectedResource(resource.Resource):
    """Admin action that only runs when the request carries the admin key"""

    isLeaf = True

    def __init__(self, key: Optional[str]):
        super().__init__()
        self.key = key.encode("utf-8") if key else b""

    def authorized(self, request) -> bool:
        supplied = request.args.get(b"key", [b""])[0]
        if self.key and hmac.compare_digest(supplied, self.key):
            return True
        logger.warning(
            f"Unauthorized access to {request.uri.decode('ascii', 'replace')} "
            f"from {_client_host(request)}"
        )
        return False

    def render_POST(self, request):
        return self.render_GET(request)


class ReloadResource(KeyProtectedResource):
    """Reloads the block list, then redirects to the counters"""

    def __init__(self, key: Optional[str], matcher: BlockMatcher):
        super().__init__(key)
        self.matcher = matcher

    def render_GET(self, request):
        if not self.authorized(request):
            return _redirect_to_vars(request)

        gone = []
        request.notifyFinish().addErrback(gone.append)

        def _reloaded(block_set):
            logger.info(f"Rules reloaded: {len(block_set)}")

        def _failed(failure):
            logger.error(f"Rules not reloaded, keeping {len(self.matcher)}: {failure.getErrorMessage()}")

        def _respond(_):
            if gone:
                return
            request.write(_redirect_to_vars(request))
            request.finish()

        d = self.matcher.reload()
        d.addCallbacks(_reloaded, _failed)
        d.addCallback(_respond)
        return server.NOT_DONE_YET


class ToggleResource(KeyProtectedResource):
    """Flips blocking on or off, then redirects to the counters"""

    def __init__(self, key: Optional[str], toggle: BlockingToggle):
        super().__init__(key)
        self.toggle = toggle

    def render_GET(self, request):
        if self.authorized(request):
            logger.info(f"Blocking toggled to: {self.toggle.toggle()}")
        return _redirect_to_vars(request)


def build_resource(
    metrics: ProxyMetrics,
    matcher: BlockMatcher,
    toggle: BlockingToggle,
    table: CorrelationTable,
    key: Optional[str],
) -> resource.Resource:
    """Build the resource tree served on the HTTP port"""
    pixel = PixelResource(metrics)

    debug = FallthroughResource(pixel)
    debug.putChild(b"vars", VarsResource(metrics, toggle, table))
    debug.putChild(b"reload", ReloadResource(key, matcher))
    debug.putChild(b"toggle", ToggleResource(key, toggle))

    root = FallthroughResource(pixel)
    root.putChild(b"debug", debug)
    root.putChild(b"metrics", MetricsResource(registry=metrics.registry))
    return root


def build_site(
    metrics: ProxyMetrics,
    matcher: BlockMatcher,
    toggle: BlockingToggle,
    table: CorrelationTable,
    key: Optional[str],
) -> server.Site:
    return server.Site(build_resource(metrics, matcher, toggle, table, key))
