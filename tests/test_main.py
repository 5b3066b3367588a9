#!/usr/bin/env python3
"""
Test the main.py startup helpers
"""

import errno
import signal
from unittest.mock import Mock, patch

import pytest
from twisted.internet.error import CannotListenError
from twisted.internet.task import Clock

from dns_sinkhole.config import SinkholeConfig
from dns_sinkhole.main import (
    Sinkhole,
    _bind_servers,
    _get_logging_config,
    _get_sinkhole_config,
    _handle_bind_error,
    _handle_version_check,
    _parse_arguments,
    _parse_ipv4,
    _reload,
    _setup_signal_handlers,
    _validate_config,
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dns-sinkhole.cfg"
    path.write_text(
        """[dns-sinkhole]
listen-address = 192.168.1.10
dns-port = 5353
http-port = 8080

[upstream]
server-address = 1.1.1.1
timeout = 2.5

[blocklist]
location = /etc/dns-sinkhole/blocklist.txt
key = s3cret

[log-file]
log-file = /var/log/dns-sinkhole.log
debug-level = WARNING
"""
    )
    return str(path)


class TestMainHelpers:
    """Test the helpers main() is built from"""

    def test_parse_arguments(self):
        """Test argument parsing"""
        args = _parse_arguments(
            ["-c", "/test/config.cfg", "-p", "5353", "-a", "127.0.0.1", "-l", "list.txt", "-k", "pw"]
        )
        assert args.config == "/test/config.cfg"
        assert args.dns_port == 5353
        assert args.address == "127.0.0.1"
        assert args.blocklist == "list.txt"
        assert args.key == "pw"
        assert args.http_port is None

    def test_parse_arguments_rejects_bad_port(self):
        """Test ports outside 1-65535 are refused"""
        with pytest.raises(SystemExit):
            _parse_arguments(["-p", "70000"])

    def test_parse_arguments_rejects_bad_timeout(self):
        with pytest.raises(SystemExit):
            _parse_arguments(["-t", "0"])

    def test_handle_version_check(self):
        """Test version check handling"""
        mock_args = Mock()
        mock_args.version = False

        # Should not exit if version is False
        _handle_version_check(mock_args)

        # Should exit if version is True
        mock_args.version = True
        with patch("sys.exit") as mock_exit:
            _handle_version_check(mock_args)
            mock_exit.assert_called_once_with(0)

    def test_parse_ipv4(self):
        assert _parse_ipv4("192.168.1.10", "proxy") == "192.168.1.10"

    def test_parse_ipv4_garbage_exits_2(self):
        with pytest.raises(SystemExit) as excinfo:
            _parse_ipv4("not-an-ip", "proxy")
        assert excinfo.value.code == 2

    def test_parse_ipv4_ipv6_exits_3(self):
        with pytest.raises(SystemExit) as excinfo:
            _parse_ipv4("::1", "proxy")
        assert excinfo.value.code == 3

    def test_sinkhole_config_from_file(self, config_file):
        """Test values come from the configuration file"""
        config = SinkholeConfig(config_file)
        sinkhole_config = _get_sinkhole_config(config, _parse_arguments([]))

        assert sinkhole_config["listen_address"] == "192.168.1.10"
        assert sinkhole_config["block_address"] == "192.168.1.10"
        assert sinkhole_config["upstream"] == ("1.1.1.1", 53)
        assert sinkhole_config["dns_port"] == 5353
        assert sinkhole_config["http_port"] == 8080
        assert sinkhole_config["timeout"] == 2.5
        assert sinkhole_config["blocklist"] == "/etc/dns-sinkhole/blocklist.txt"
        assert sinkhole_config["key"] == "s3cret"

    def test_arguments_override_file(self, config_file):
        """Test command line flags win over the configuration file"""
        config = SinkholeConfig(config_file)
        args = _parse_arguments(
            ["-u", "9.9.9.9:5300", "-b", "10.0.0.99", "-l", "https://lists.example/x", "-H", "81"]
        )
        sinkhole_config = _get_sinkhole_config(config, args)

        assert sinkhole_config["upstream"] == ("9.9.9.9", 5300)
        assert sinkhole_config["block_address"] == "10.0.0.99"
        assert sinkhole_config["blocklist"] == "https://lists.example/x"
        assert sinkhole_config["http_port"] == 81

    def test_ipv6_upstream_rejected(self, config_file):
        config = SinkholeConfig(config_file)
        with pytest.raises(SystemExit) as excinfo:
            _get_sinkhole_config(config, _parse_arguments(["-u", "2001:db8::1"]))
        assert excinfo.value.code in (2, 3)

    def test_logging_config(self, config_file):
        config = SinkholeConfig(config_file)
        assert _get_logging_config(config, _parse_arguments([])) == (
            "/var/log/dns-sinkhole.log",
            "WARNING",
            False,
        )
        log_file, log_level, syslog = _get_logging_config(config, _parse_arguments(["-v"]))
        assert log_level == "DEBUG"

    def test_validate_config_requires_blocklist(self):
        with pytest.raises(SystemExit) as excinfo:
            _validate_config({"blocklist": None})
        assert excinfo.value.code == 1

    def test_setup_signal_handlers(self):
        """Test SIGTERM/SIGINT stop the reactor and SIGUSR1 reloads"""
        reactor = Mock()
        matcher = Mock()
        with patch("signal.signal") as mock_signal:
            _setup_signal_handlers(reactor, matcher)

        handlers = {call[0][0]: call[0][1] for call in mock_signal.call_args_list}
        assert signal.SIGTERM in handlers
        assert signal.SIGINT in handlers

        handlers[signal.SIGTERM](signal.SIGTERM, None)
        reactor.callFromThread.assert_called_with(reactor.stop)

        handlers[signal.SIGUSR1](signal.SIGUSR1, None)
        reactor.callFromThread.assert_called_with(_reload, matcher)

    def test_handle_bind_error_exits(self):
        error = CannotListenError("127.0.0.1", 53, OSError(errno.EADDRINUSE, "in use"))
        with pytest.raises(SystemExit) as excinfo:
            _handle_bind_error(error, 53, "127.0.0.1")
        assert excinfo.value.code == 1

    def test_bind_servers(self, registry):
        """Test the relay, the listener and the site are bound"""
        sinkhole = Sinkhole(
            {
                "listen_address": "127.0.0.1",
                "block_address": "127.0.0.1",
                "upstream": ("8.8.8.8", 53),
                "dns_port": 5353,
                "http_port": 8080,
                "timeout": 5.0,
                "blocklist": "list.txt",
                "key": None,
            },
            clock=Clock(),
            registry=registry,
        )
        reactor = Mock()

        _bind_servers(reactor, sinkhole)

        reactor.listenUDP.assert_any_call(0, sinkhole.relay)
        reactor.listenUDP.assert_any_call(5353, sinkhole.listener, interface="127.0.0.1")
        reactor.listenTCP.assert_called_once_with(8080, sinkhole.site, interface="127.0.0.1")

    def test_bind_failure_is_fatal(self):
        sinkhole = Mock()
        sinkhole.config = {"listen_address": "127.0.0.1", "dns_port": 53, "http_port": 80}
        reactor = Mock()
        reactor.listenUDP.side_effect = CannotListenError(
            "127.0.0.1", 53, OSError(errno.EACCES, "denied")
        )

        with pytest.raises(SystemExit):
            _bind_servers(reactor, sinkhole)
