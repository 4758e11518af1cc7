import datetime
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Self

from fail2ban_dashboard.constants import REFRESH_SECONDS_DEFAULT, REFRESH_START_DELAY
from fail2ban_dashboard.protocol import BanEntry, JailInfo

UpdateHandler = Callable[[], None]

logger = logging.getLogger(__name__)


class JailSource(Protocol):
    def get_jail_names(self) -> list[str]: ...

    def get_banned(self, jail_name: str) -> list[BanEntry]: ...

    def get_jail_info(self, jail_name: str) -> JailInfo: ...


class StoreState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Jail:
    """Read-only view of one jail handed out to consumers."""

    name: str = ""
    banned_entries: tuple[BanEntry, ...] = ()
    banned_count: int = 0
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0


def create_jail(name: str, entries: Optional[list[BanEntry]], info: Optional[JailInfo]) -> Jail:
    # banned_count and currently_banned come from two separate commands and may differ
    entries = tuple(entries or ())
    info = info or JailInfo()
    return Jail(
        name=name,
        banned_entries=entries,
        banned_count=len(entries),
        currently_failed=info.currently_failed,
        total_failed=info.total_failed,
        currently_banned=info.currently_banned,
        total_banned=info.total_banned,
    )


class DataStore:
    """Periodically fetched copy of the fail2ban jails.

    A single background thread owns every write: it fetches all jails, then swaps
    both maps in one lock acquisition, so readers always see the jails of exactly
    one completed pass. Any error during a pass stops the refresh loop for good;
    the last committed snapshot keeps being served.

    Update handlers run on their own thread after each committed pass. Their
    order, and whether they finish before the next pass, is not defined.
    """

    def __init__(
        self,
        client: Optional[JailSource],
        refresh_seconds: int = REFRESH_SECONDS_DEFAULT,
        start_delay: float = REFRESH_START_DELAY,
    ) -> Self:
        self._client = client
        self._refresh_seconds = refresh_seconds
        self._start_delay = start_delay
        self._lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = StoreState.IDLE
        self._banned: dict[str, list[BanEntry]] = {}
        self._infos: dict[str, JailInfo] = {}
        self._last_updated: Optional[datetime.datetime] = None
        self._update_handlers: list[UpdateHandler] = []

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def last_updated(self) -> Optional[datetime.datetime]:
        """Time of the last committed refresh, ``None`` before the first one."""
        with self._lock:
            return self._last_updated

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._client is None:
            logger.warning("No fail2ban client available, data will not be refreshed")
            return

        if self._thread is not None:
            return

        logger.info(f"Performing first update in {self._start_delay} seconds, then every {self._refresh_seconds} seconds")
        self._thread = threading.Thread(target=self.__run, name="fail2ban-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __run(self):
        try:
            if self._stop_event.wait(self._start_delay):
                return

            next_run = time.monotonic()
            while self.__scheduled_refresh():
                next_run += self._refresh_seconds
                now = time.monotonic()
                if next_run < now:
                    # a pass took longer than the interval, drop the missed ticks
                    next_run = now
                if self._stop_event.wait(next_run - now):
                    break
        finally:
            self._state = StoreState.STOPPED
            logger.info("Refresh loop stopped")

    def __scheduled_refresh(self) -> bool:
        # waits out a manual pass instead of skipping the tick
        with self._pass_lock:
            return self.__refresh()

    def refresh(self) -> bool:
        """Run one fetch pass and commit it.

        Returns ``False`` when the pass failed; in that case nothing was committed
        and the refresh loop will not schedule another pass. Also returns
        ``False``, without fetching anything, while another pass is in flight.
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Refresh already in progress, skipping")
            return False
        try:
            return self.__refresh()
        finally:
            self._pass_lock.release()

    def __refresh(self) -> bool:
        if self._client is None or self._state == StoreState.STOPPED:
            return False

        self._state = StoreState.REFRESHING
        logger.debug("Fetching fail2ban data")
        try:
            names = self._client.get_jail_names()
            banned = {}
            infos = {}
            for jail_name in names:
                banned[jail_name] = self._client.get_banned(jail_name)
                infos[jail_name] = self._client.get_jail_info(jail_name)
        except Exception as e:
            logger.error("Failed to fetch fail2ban data, refresh stopped", exc_info=e)
            self._state = StoreState.STOPPED
            self._stop_event.set()
            return False

        with self._lock:
            self._banned = banned
            self._infos = infos
            self._last_updated = datetime.datetime.now(datetime.UTC)
            handlers = list(self._update_handlers)

        self._state = StoreState.IDLE
        logger.info(f"Fetched {len(names)} jail(s), {sum(len(x) for x in banned.values())} banned address(es)")
        self.__notify(handlers)
        return True

    def __notify(self, handlers: list[UpdateHandler]):
        for handler in handlers:
            thread = threading.Thread(target=self.__call_handler, args=(handler,), daemon=True)
            thread.start()

    @staticmethod
    def __call_handler(handler: UpdateHandler):
        try:
            handler()
        except Exception as e:
            logger.error("Update handler failed", exc_info=e)

    def __snapshot(self) -> tuple[dict[str, list[BanEntry]], dict[str, JailInfo]]:
        # both maps are replaced, never mutated, so references taken together stay consistent
        with self._lock:
            return self._banned, self._infos

    def get_jails(self) -> list[Jail]:
        banned, infos = self.__snapshot()
        return [
            create_jail(name, banned[name], infos[name])
            for name in sorted(banned)
            if name in infos
        ]

    def get_jail_by_name(self, jail_name: str) -> tuple[Jail, bool]:
        banned, infos = self.__snapshot()
        if jail_name not in banned or jail_name not in infos:
            return Jail(), False
        return create_jail(jail_name, banned[jail_name], infos[jail_name]), True

    def register_update_handler(self, handler: UpdateHandler):
        with self._lock:
            self._update_handlers.append(handler)
