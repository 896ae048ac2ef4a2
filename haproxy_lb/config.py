"""
Configuration and logging setup.

Loads all configuration from environment variables into typed dataclasses.
"""

import os
import logging
from dataclasses import dataclass, field

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True)
class HAProxyTunables:
    """Static HAProxy settings rendered into the global/defaults sections."""

    global_maxconn: int = 16000
    global_spread_checks: int = 4
    global_tune_maxrewrite: int = 1024
    global_tune_bufsize: int = 32768
    maxconn: int = 8000
    retries: int = 3
    timeout_http_request: str = "10s"
    timeout_queue: str = "1m"
    timeout_connect: str = "10s"
    timeout_client: str = "1m"
    timeout_server: str = "1m"
    timeout_http_keep_alive: str = "10s"
    timeout_check: str = "10s"

    @classmethod
    def from_env(cls) -> "HAProxyTunables":
        env = os.environ.get
        return cls(
            global_maxconn=int(env("HAPROXY_GLOBAL_MAX_CONN", "16000")),
            global_spread_checks=int(env("HAPROXY_GLOBAL_SPREAD_CHECKS", "4")),
            global_tune_maxrewrite=int(env("HAPROXY_GLOBAL_TUNE_MAX_REWRITE", "1024")),
            global_tune_bufsize=int(env("HAPROXY_GLOBAL_TUNE_BUFFER_SIZE", "32768")),
            maxconn=int(env("HAPROXY_MAX_CONN", "8000")),
            retries=int(env("HAPROXY_RETRIES", "3")),
            timeout_http_request=env("HAPROXY_TIMEOUT_HTTP_REQUEST", "10s"),
            timeout_queue=env("HAPROXY_TIMEOUT_QUEUE", "1m"),
            timeout_connect=env("HAPROXY_TIMEOUT_CONNECT", "10s"),
            timeout_client=env("HAPROXY_TIMEOUT_CLIENT", "1m"),
            timeout_server=env("HAPROXY_TIMEOUT_SERVER", "1m"),
            timeout_http_keep_alive=env("HAPROXY_TIMEOUT_HTTP_KEEP_ALIVE", "10s"),
            timeout_check=env("HAPROXY_TIMEOUT_CHECK", "10s"),
        )


@dataclass(frozen=True)
class Config:
    """Immutable configuration loaded from environment variables."""

    kube_server: str
    kube_token: str
    kube_ca: str = ""
    namespace: str = "default"
    update_interval: int = 60
    request_timeout: float = 5.0
    haproxy_config: str = "/var/lib/haproxy/haproxy.cfg"
    haproxy_bin: str = "haproxy"
    reload_grace: float = 0.1
    config_template: str = ""
    log_level: str = "warn"
    tunables: HAProxyTunables = field(default_factory=HAProxyTunables)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config from the current environment, with validation."""
        kube_server = os.environ.get("KUBE_SERVER", "").rstrip("/")
        kube_token = os.environ.get("KUBE_SERVICE_TOKEN", "").strip()

        if not kube_server or not kube_token:
            raise SystemExit(
                "KUBE_SERVER and KUBE_SERVICE_TOKEN are required "
                "(e.g. KUBE_SERVER=https://10.0.0.1:6443)"
            )

        config_template = os.environ.get("CONFIG_TEMPLATE", "").strip()
        if config_template and not os.path.isfile(config_template):
            raise SystemExit(f"CONFIG_TEMPLATE {config_template} does not exist")

        update_interval = int(os.environ.get("UPDATE_INTERVAL", "60"))
        if update_interval < 1:
            raise SystemExit(f"UPDATE_INTERVAL must be >= 1, got {update_interval}")

        return cls(
            kube_server=kube_server,
            kube_token=kube_token,
            kube_ca=os.environ.get("KUBE_SERVER_CA", "").strip(),
            namespace=os.environ.get("KUBE_NAMESPACE", "default").strip() or "default",
            update_interval=update_interval,
            request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "5")),
            haproxy_config=os.environ.get("HAPROXY_CONFIG", "/var/lib/haproxy/haproxy.cfg"),
            haproxy_bin=os.environ.get("HAPROXY_BIN", "haproxy"),
            reload_grace=float(os.environ.get("HAPROXY_RELOAD_GRACE", "0.1")),
            config_template=config_template,
            log_level=os.environ.get("LOG_LEVEL", "warn"),
            tunables=HAProxyTunables.from_env(),
        )


def parse_log_level(name: str) -> int:
    """Map a LOG_LEVEL string to a logging level (unknown names -> WARNING)."""
    return _LOG_LEVELS.get(name.strip().lower(), logging.WARNING)


def setup_logging(level: str = "warn") -> logging.Logger:
    """Configure and return the application logger."""
    logger = logging.getLogger("haproxy_lb")
    logger.setLevel(logging.DEBUG)

    # Console handler — LOG_LEVEL and above
    console = logging.StreamHandler()
    console.setLevel(parse_log_level(level))
    fmt = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    console.setFormatter(fmt)
    logger.addHandler(console)

    # File handler — DEBUG only
    if os.environ.get("DEBUG", "false").lower() in ("1", "true", "yes"):
        debug_file = logging.FileHandler("debug.log")
        debug_file.setLevel(logging.DEBUG)
        debug_file.addFilter(lambda record: record.levelno == logging.DEBUG)
        debug_file.setFormatter(fmt)
        logger.addHandler(debug_file)

    return logger
