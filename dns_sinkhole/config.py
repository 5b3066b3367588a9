import configparser
import logging
import os
import sys
from typing import Any, Optional, Tuple

from dns_sinkhole.constants import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_LISTEN_ADDRESS,
    DEFAULT_UPSTREAM_ADDRESS,
    DNS_DEFAULT_PORT,
)


def parse_server(server: str, default_port: int = DNS_DEFAULT_PORT) -> Tuple[str, int]:
    """Split an "IP[:port]" server specification into (host, port)"""
    server = server.strip()
    if ":" in server:
        host, port_str = server.rsplit(":", 1)
        try:
            return host, int(port_str)
        except ValueError:
            logging.warning(f"Invalid port '{port_str}' for server '{host}', using default {default_port}")
            return host, default_port
    return server, default_port


class SinkholeConfig:
    """Configuration manager for the DNS sinkhole"""

    DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_PATH
    DEFAULT_CONFIG = {
        "dns-sinkhole": {
            "listen-address": DEFAULT_LISTEN_ADDRESS,
            "dns-port": str(DNS_DEFAULT_PORT),
            "http-port": "80",
        },
        "upstream": {
            "server-address": DEFAULT_UPSTREAM_ADDRESS,
            "server-port": str(DNS_DEFAULT_PORT),
            "timeout": "5.0",
        },
        "blocklist": {},
        "log-file": {
            "debug-level": "INFO",
            "syslog": "false",
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.config = configparser.ConfigParser()
        self._load_defaults()
        self._load_config()

    def _load_defaults(self):
        """Load default configuration"""
        for section, options in self.DEFAULT_CONFIG.items():
            self.config.add_section(section)
            for key, value in options.items():
                self.config.set(section, key, value)

    def _load_config(self):
        """Load configuration from file"""
        if os.path.exists(self.config_path):
            try:
                self.config.read(self.config_path)
            except configparser.Error as e:
                print(f"Error reading config file {self.config_path}: {e}", file=sys.stderr)
                sys.exit(1)
        else:
            print(f"Warning: Config file {self.config_path} not found, using defaults")

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """Get configuration value"""
        try:
            return self.config.get(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Get integer configuration value"""
        try:
            return self.config.getint(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getfloat(self, section: str, option: str, fallback: float = 0.0) -> float:
        """Get float configuration value"""
        try:
            return self.config.getfloat(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Get boolean configuration value"""
        try:
            return self.config.getboolean(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def get_upstream_server(self) -> Tuple[str, int]:
        """Get the upstream resolver as a (host, port) tuple

        server-address may carry its own port ("1.1.1.1:5353"); otherwise
        server-port is used.
        """
        default_port = self.getint("upstream", "server-port", DNS_DEFAULT_PORT)
        address = self.get("upstream", "server-address", DEFAULT_UPSTREAM_ADDRESS)
        return parse_server(address, default_port)
