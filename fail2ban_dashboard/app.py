import logging
import os
import signal
import sys
import threading
from typing import Optional

from fail2ban_dashboard.client import F2BClient
from fail2ban_dashboard.constants import (
    F2B_SOCKET_PATH as DEFAULT_SOCKET_PATH,
    F2B_SUPPORTED_VERSIONS,
    REFRESH_SECONDS_DEFAULT,
    REFRESH_SECONDS_MAX,
    REFRESH_SECONDS_MIN,
    TRACE,
    __version__,
)
from fail2ban_dashboard.exceptions import Fail2BanError
from fail2ban_dashboard.metrics import Metrics
from fail2ban_dashboard.store import DataStore

F2B_SOCKET_PATH = os.getenv("F2B_SOCKET_PATH", DEFAULT_SOCKET_PATH)
F2B_SOCKET_TIMEOUT = float(os.getenv("F2B_SOCKET_TIMEOUT", 30))
REFRESH_SECONDS = int(os.getenv("REFRESH_SECONDS", REFRESH_SECONDS_DEFAULT))
SKIP_VERSION_CHECK = os.getenv("SKIP_VERSION_CHECK", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() in ("1", "true", "yes")
METRICS_HOST = os.getenv("METRICS_HOST", "0.0.0.0")
METRICS_PORT = int(os.getenv("METRICS_PORT", 9100))

LOG_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

logging.addLevelName(TRACE, "TRACE")
logger = logging.getLogger()


def configure_logging(log_level: str):
    if not logger.handlers:
        formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s')
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    level = LOG_LEVELS.get(log_level.lower())
    if level is None:
        logger.setLevel(logging.INFO)
        logger.warning(f"Invalid log level '{log_level}', using 'info'")
        return

    logger.setLevel(level)
    logger.debug(f"Log level set to {log_level}")


def validate_refresh_seconds(refresh_seconds: int) -> int:
    if refresh_seconds < REFRESH_SECONDS_MIN or refresh_seconds > REFRESH_SECONDS_MAX:
        logger.warning(
            f"fail2ban data refresh must be between {REFRESH_SECONDS_MIN} and {REFRESH_SECONDS_MAX} seconds, "
            f"resetting to default of {REFRESH_SECONDS_DEFAULT} seconds"
        )
        return REFRESH_SECONDS_DEFAULT
    return refresh_seconds


def connect_to_fail2ban(socket_path: str, skip_version_check: bool, timeout: Optional[float] = None) -> tuple[Optional[F2BClient], str]:
    logger.info(f"Will use socket at {socket_path} for fail2ban connection")
    try:
        client = F2BClient(socket_path, timeout=timeout)
    except Fail2BanError as e:
        logger.error(f"Could not connect to fail2ban socket at {socket_path}", exc_info=e)
        return None, "unknown"

    try:
        version = client.get_version()
    except Fail2BanError as e:
        logger.error("Could not get fail2ban version", exc_info=e)
        client.close()
        raise SystemExit(1)

    logger.info(f"fail2ban version found: {version}")
    supported = version in F2B_SUPPORTED_VERSIONS

    if not supported and not skip_version_check:
        logger.error(f"fail2ban version {version} not supported")
        client.close()
        raise SystemExit(1)
    elif not supported:
        logger.info("Skipping version check (dashboard may not work as expected)")
    elif skip_version_check:
        logger.debug("Skipping version check but version is supported")

    return client, version


def block_until_signal_received() -> int:
    received = threading.Event()
    signals = []

    def handler(signum, frame):
        signals.append(signum)
        received.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handler)

    received.wait()
    logger.debug(f"Exited because of signal: {signal.Signals(signals[0]).name}")
    return signals[0]


def main():
    configure_logging(LOG_LEVEL)
    logger.info(f"fail2ban-dashboard {__version__}")

    refresh_seconds = validate_refresh_seconds(REFRESH_SECONDS)
    client, fail2ban_version = connect_to_fail2ban(F2B_SOCKET_PATH, SKIP_VERSION_CHECK, F2B_SOCKET_TIMEOUT or None)

    store = DataStore(client, refresh_seconds)
    if METRICS_ENABLED:
        metrics = Metrics(store, __version__, fail2ban_version)
        try:
            metrics.start_server(port=METRICS_PORT, host=METRICS_HOST)
        except OSError as e:
            logger.error("Could not start metrics server", exc_info=e)
            sys.exit(1)

    store.start()
    block_until_signal_received()

    store.stop(timeout=5)
    if client is not None:
        client.close()


if __name__ == "__main__":
    main()
