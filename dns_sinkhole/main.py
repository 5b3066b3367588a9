#!/usr/bin/env python3
"""
Main entry point for the DNS sinkhole
Binds the DNS listener, the upstream relay and the HTTP control plane
"""

import argparse
import errno
import ipaddress
import logging
import logging.handlers
import os
import signal
import sys

from dns_sinkhole.constants import (
    DEFAULT_CONFIG_PATH,
    DNS_DEFAULT_PORT,
    DNS_QUERY_TIMEOUT,
    EXIT_BAD_ADDRESS,
    EXIT_IPV6_UNSUPPORTED,
    EXIT_USAGE,
    HTTP_DEFAULT_PORT,
    MAX_PORT_NUMBER,
    MIN_PORT_NUMBER,
)

logger = logging.getLogger("dns_sinkhole")


def setup_logging(log_file=None, log_level="INFO", syslog=False):
    """Setup logging configuration"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file and log_file.lower() != "none":
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, mode=0o755)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not setup file logging to {log_file}: {e}")

    if syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(address="/dev/log")
            syslog_formatter = logging.Formatter(
                "dns-sinkhole[%(process)d]: %(levelname)s - %(message)s"
            )
            syslog_handler.setFormatter(syslog_formatter)
            root_logger.addHandler(syslog_handler)
        except OSError as e:
            print(f"Warning: Could not setup syslog: {e}")

    # Route Twisted's own log events (HTTP access log, reactor errors) here too
    from twisted.python import log

    log.PythonLoggingObserver(loggerName="twisted").start()


def _setup_signal_handlers(reactor, matcher):
    """Stop on SIGINT/SIGTERM, reload the block list on SIGUSR1"""

    def stop_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        reactor.callFromThread(reactor.stop)

    def reload_handler(signum, frame):
        logger.info("SIGUSR1 received, reloading rules")
        reactor.callFromThread(_reload, matcher)

    signal.signal(signal.SIGTERM, stop_handler)
    signal.signal(signal.SIGINT, stop_handler)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, reload_handler)


def _reload(matcher):
    d = matcher.reload()
    d.addErrback(lambda failure: logger.error(f"Rules not reloaded: {failure.getErrorMessage()}"))
    return d


def _validate_port(value):
    """Validate port number is in valid range"""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")
    if port < MIN_PORT_NUMBER or port > MAX_PORT_NUMBER:
        raise argparse.ArgumentTypeError(
            f"Port must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}"
        )
    return port


def _validate_timeout(value):
    try:
        timeout = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid timeout: {value}")
    if timeout <= 0:
        raise argparse.ArgumentTypeError("Timeout must be positive")
    return timeout


def _parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="DNS sinkhole: answers blocked names with the sinkhole address "
        "and relays everything else to a real resolver.",
        epilog="Control actions: http://ADDRESS:HTTP_PORT/debug/reload?key=KEY and "
        "/debug/toggle?key=KEY; counters at /debug/vars and /metrics.",
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("-k", "--key", help="Password protecting the /debug actions")
    parser.add_argument(
        "-u", "--upstream", help="Upstream DNS server, IP[:port], e.g. 8.8.8.8 (overrides config)"
    )
    parser.add_argument(
        "-a", "--address", help="Bind address for the DNS and HTTP servers (overrides config)"
    )
    parser.add_argument(
        "-b",
        "--block-address",
        help="Address blocked names resolve to (defaults to the bind address)",
    )
    parser.add_argument("-l", "--list", dest="blocklist", help="Block list file path or URL")
    parser.add_argument("-p", "--dns-port", type=_validate_port, help="DNS server port")
    parser.add_argument("-H", "--http-port", type=_validate_port, help="HTTP server port")
    parser.add_argument(
        "-t", "--timeout", type=_validate_timeout, help="Upstream query timeout in seconds"
    )
    parser.add_argument("--logfile", help="Log file path (overrides config)")
    parser.add_argument(
        "-L", "--loglevel", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Be verbose (DEBUG log level)")
    parser.add_argument("-V", "--version", action="store_true", help="Show version")

    return parser.parse_args(argv)


def _handle_version_check(args):
    """Handle version check and exit if requested"""
    if args.version:
        from dns_sinkhole import __version__

        print(f"DNS Sinkhole version {__version__}")
        sys.exit(0)


def _load_configuration(config_path):
    """Load configuration from file"""
    from dns_sinkhole.config import SinkholeConfig

    return SinkholeConfig(config_path)


def _get_logging_config(config, args):
    """Get logging configuration from config and args"""
    log_file = args.logfile or config.get("log-file", "log-file")
    if args.verbose:
        log_level = "DEBUG"
    else:
        log_level = args.loglevel or config.get("log-file", "debug-level", "INFO")
    syslog = config.getboolean("log-file", "syslog", False)

    return log_file, log_level, syslog


def _parse_ipv4(value, name):
    """Parse an IPv4 address or exit; IPv6 addresses are rejected"""
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        print(f"ERROR: Can't parse {name} IP '{value}'", file=sys.stderr)
        sys.exit(EXIT_BAD_ADDRESS)
    if ip.version != 4:
        print("ERROR: IPv6 is not supported, sorry", file=sys.stderr)
        sys.exit(EXIT_IPV6_UNSUPPORTED)
    return str(ip)


def _get_sinkhole_config(config, args):
    """Get sinkhole configuration from config and args"""
    from dns_sinkhole.config import parse_server

    listen_address = args.address or config.get("dns-sinkhole", "listen-address")
    block_address = (
        args.block_address or config.get("dns-sinkhole", "block-address") or listen_address
    )

    if args.upstream:
        upstream = parse_server(args.upstream)
    else:
        upstream = config.get_upstream_server()

    return {
        "listen_address": _parse_ipv4(listen_address, "proxy"),
        "block_address": _parse_ipv4(block_address, "block"),
        "upstream": (_parse_ipv4(upstream[0], "upstream"), upstream[1]),
        "dns_port": args.dns_port or config.getint("dns-sinkhole", "dns-port", DNS_DEFAULT_PORT),
        "http_port": args.http_port
        or config.getint("dns-sinkhole", "http-port", HTTP_DEFAULT_PORT),
        "timeout": args.timeout or config.getfloat("upstream", "timeout", DNS_QUERY_TIMEOUT),
        "blocklist": args.blocklist or config.get("blocklist", "location"),
        "key": args.key or config.get("blocklist", "key"),
    }


def _validate_config(sinkhole_config):
    """Validate configuration and log settings"""
    if not sinkhole_config["blocklist"]:
        print("ERROR: No block list configured (use --list or [blocklist] location)", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    if not sinkhole_config["key"]:
        logger.warning("No admin key configured, /debug/reload and /debug/toggle are disabled")

    if sinkhole_config["block_address"] == "0.0.0.0":
        logger.warning("Blocked names will resolve to 0.0.0.0, set --block-address")

    host, port = sinkhole_config["upstream"]
    logger.info("Configuration loaded:")
    logger.info(f"  Listen: {sinkhole_config['listen_address']}")
    logger.info(f"  DNS port: {sinkhole_config['dns_port']}")
    logger.info(f"  HTTP port: {sinkhole_config['http_port']}")
    logger.info(f"  Upstream: {host}:{port}")
    logger.info(f"  Upstream timeout: {sinkhole_config['timeout']}s")
    logger.info(f"  Block list: {sinkhole_config['blocklist']}")
    logger.info(f"  Blocked names resolve to: {sinkhole_config['block_address']}")


class Sinkhole:
    """All sinkhole state objects and the protocols they are injected into"""

    def __init__(self, sinkhole_config, clock=None, registry=None):
        from dns_sinkhole.blocklist import BlockingToggle, BlockMatcher
        from dns_sinkhole.control import build_site
        from dns_sinkhole.correlation import CorrelationTable, TimeoutSweeper
        from dns_sinkhole.listener import LocalListener
        from dns_sinkhole.metrics import ProxyMetrics
        from dns_sinkhole.upstream import UpstreamRelay
        from dns_sinkhole.wire import build_answer_template

        self.config = sinkhole_config
        self.metrics = ProxyMetrics(registry)
        self.matcher = BlockMatcher(sinkhole_config["blocklist"], self.metrics)
        self.toggle = BlockingToggle(True, self.metrics)
        self.sweeper = TimeoutSweeper(sinkhole_config["timeout"], clock)
        self.table = CorrelationTable(
            self.sweeper, on_timeout=lambda pending: self.metrics.record_timeout()
        )
        self.relay = UpstreamRelay(sinkhole_config["upstream"], self.table, self.metrics)
        self.listener = LocalListener(
            self.matcher,
            self.toggle,
            self.table,
            self.relay,
            build_answer_template(sinkhole_config["block_address"]),
            self.metrics,
        )
        self.relay.attach(self.listener)
        self.site = build_site(
            self.metrics, self.matcher, self.toggle, self.table, sinkhole_config["key"]
        )


def _handle_bind_error(error, port, address):
    """Handle port binding errors with helpful messages and exit"""
    socket_error = getattr(error, "socketError", error)
    code = getattr(socket_error, "errno", None)

    if code == errno.EADDRINUSE:
        logger.error(f"Port {port} is already in use on {address}")
        logger.error("Please check if another instance is running or use a different port")
    elif code == errno.EACCES:
        logger.error(f"Permission denied to bind to port {port}")
        if port < 1024:
            logger.error("Ports below 1024 require root privileges")
    else:
        logger.error(f"Failed to bind to {address}:{port}: {error}")

    sys.exit(1)


def _bind_servers(reactor, sinkhole):
    """Bind the relay, the DNS listener and the HTTP site; any failure is fatal"""
    from twisted.internet.error import CannotListenError

    config = sinkhole.config
    address = config["listen_address"]

    try:
        reactor.listenUDP(0, sinkhole.relay)
    except CannotListenError as e:
        _handle_bind_error(e, 0, "0.0.0.0")

    try:
        dns_server = reactor.listenUDP(config["dns_port"], sinkhole.listener, interface=address)
    except CannotListenError as e:
        _handle_bind_error(e, config["dns_port"], address)

    try:
        http_server = reactor.listenTCP(config["http_port"], sinkhole.site, interface=address)
    except CannotListenError as e:
        _handle_bind_error(e, config["http_port"], address)

    logger.info(f"DNS server listening on {address}:{dns_server.getHost().port}")
    logger.info(f"HTTP server listening on {address}:{http_server.getHost().port}")


def start_sinkhole(sinkhole_config):
    """Start the sinkhole and run until stopped"""
    from twisted.internet import reactor

    sinkhole = Sinkhole(sinkhole_config)
    failed = []

    def load_initial_list():
        def _fatal(failure):
            logger.error(f"Cannot load block list: {failure.getErrorMessage()}")
            failed.append(failure)
            reactor.stop()

        sinkhole.matcher.reload().addErrback(_fatal)

    _bind_servers(reactor, sinkhole)

    reactor.callWhenRunning(load_initial_list)
    # Installed once running, replacing the reactor's own SIGINT/SIGTERM handlers
    reactor.callWhenRunning(_setup_signal_handlers, reactor, sinkhole.matcher)

    logger.info("DNS sinkhole started")
    reactor.run()

    sinkhole.sweeper.stop()
    logger.info("DNS sinkhole stopped")

    if failed:
        sys.exit(EXIT_BAD_ADDRESS)


def main(argv=None):
    """Main entry point"""
    args = _parse_arguments(argv)

    _handle_version_check(args)

    config = _load_configuration(args.config)

    log_file, log_level, syslog = _get_logging_config(config, args)
    setup_logging(log_file, log_level, syslog)

    logger.info("Starting DNS sinkhole")

    sinkhole_config = _get_sinkhole_config(config, args)
    _validate_config(sinkhole_config)

    start_sinkhole(sinkhole_config)


if __name__ == "__main__":
    main()
