import logging
import threading
from typing import Optional

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from fail2ban_dashboard.store import DataStore

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, store: DataStore, version: str, fail2ban_version: str, registry: Optional[CollectorRegistry] = None):
        self._store = store
        self._registry = registry or CollectorRegistry()
        self._lock = threading.Lock()
        self._known_jails: set[str] = set()

        self._info = Gauge("fail2ban_dashboard_info", "The fail2ban Dashboard build information", labelnames=["version", "fail2ban_version"], registry=self._registry)
        self._jail_count = Gauge("f2b_jail_count", "The number of jails in fail2ban", registry=self._registry)
        self._banned_sum = Gauge("f2b_banned_total", "The total number of banned addresses", registry=self._registry)
        self._jail_banned_current = Gauge("f2b_jail_banned_current", "Amount of banned IPs currently in jail", labelnames=["jail"], registry=self._registry)
        self._jail_failed_current = Gauge("f2b_jail_failed_current", "Amount of failed IPs currently in jail", labelnames=["jail"], registry=self._registry)
        self._jail_banned_total = Gauge("f2b_jail_banned_total", "Amount of banned IPs total in jail", labelnames=["jail"], registry=self._registry)
        self._jail_failed_total = Gauge("f2b_jail_failed_total", "Amount of failed IPs total in jail", labelnames=["jail"], registry=self._registry)
        self._last_refresh = Gauge("f2b_last_refresh_timestamp_seconds", "Unix time of the last successful fail2ban data refresh", registry=self._registry)

        self._info.labels(version, fail2ban_version).set(1)
        store.register_update_handler(self.update)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def start_server(self, port: int, host: str = "0.0.0.0"):
        logger.info(f"Metrics available at {host}:{port}")
        return start_http_server(port, host, registry=self._registry)

    def update(self):
        with self._lock:
            logger.debug("Updating metrics")
            jails = self._store.get_jails()
            self._jail_count.set(len(jails))

            banned_sum = 0
            current_jails = set()
            for jail in jails:
                current_jails.add(jail.name)
                banned_sum += jail.currently_banned
                self._jail_banned_current.labels(jail.name).set(jail.currently_banned)
                self._jail_failed_current.labels(jail.name).set(jail.currently_failed)
                self._jail_banned_total.labels(jail.name).set(jail.total_banned)
                self._jail_failed_total.labels(jail.name).set(jail.total_failed)

            # jails removed from fail2ban since the last refresh
            for jail_name in self._known_jails - current_jails:
                for gauge in (self._jail_banned_current, self._jail_failed_current, self._jail_banned_total, self._jail_failed_total):
                    gauge.remove(jail_name)

            self._known_jails = current_jails
            self._banned_sum.set(banned_sum)

            last_updated = self._store.last_updated
            if last_updated is not None:
                self._last_refresh.set(last_updated.timestamp())
