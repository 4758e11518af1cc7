import logging
import re
from datetime import datetime
from typing import Optional, Self

from fail2ban_dashboard.constants import DATE_FORMAT, F2B_SOCKET_PATH, TRACE
from fail2ban_dashboard.csocket import F2BSocket
from fail2ban_dashboard.exceptions import ProtocolError
from fail2ban_dashboard.protocol import (
    BanEntry,
    F2BResponse,
    JailInfo,
    WireValue,
    as_integer,
    as_sequence,
    as_string,
    item,
    pair,
)

VERSION_COMMAND = "version"
STATUS_COMMAND = "status"
GET_COMMAND = "get"

PROTOCOL_NUMBER_OF_JAIL = "Number of jail"
PROTOCOL_JAIL_LIST = "Jail list"

BAN_ENTRY_PATTERN = re.compile(
    r"^(\d{1,3}(?:\.\d{1,3}){3}) \t(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) \+ (\d+) = (\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})$"
)

logger = logging.getLogger(__name__)


def _labelled(entries: tuple[WireValue, ...], what: str) -> dict[str, WireValue]:
    result = {}
    for entry in entries:
        key, value = pair(entry, what)
        result[key] = value
    return result


def _count(values: dict[str, WireValue], label: str) -> int:
    if label not in values:
        return 0
    return as_integer(values[label], f"'{label}'")


def parse_ban_entry(line: str, jail_name: str) -> BanEntry:
    matches = BAN_ENTRY_PATTERN.match(line)
    if not matches:
        raise ProtocolError(f"Could not parse banned IPs entry: {line!r}")

    address, banned_at, penalty, ban_ends_at = matches.groups()
    try:
        return BanEntry(
            address=address,
            banned_at=datetime.strptime(banned_at, DATE_FORMAT),
            current_penalty=penalty,
            ban_ends_at=datetime.strptime(ban_ends_at, DATE_FORMAT),
            jail_name=jail_name,
        )
    except ValueError as e:
        raise ProtocolError(f"Invalid timestamp in banned IPs entry: {line!r}") from e


class F2BClient:
    """Typed access to the fail2ban server socket.

    Every call is a single request/response exchange; errors from the socket are
    propagated as they are and nothing is retried here.
    """

    def __init__(self, host: Optional[str] = None, timeout: Optional[float] = None, sock: Optional[F2BSocket] = None) -> Self:
        self._host = host or F2B_SOCKET_PATH
        logger.log(TRACE, "Attempting to connect to fail2ban socket at %s", self._host)
        self._socket = sock or F2BSocket(self._host, timeout=timeout)

    def __send(self, command: list[str]) -> WireValue:
        try:
            result = self._socket.send_command(command)
        except Exception as e:
            logger.debug(f"Command {command} failed: {e}")
            raise

        logger.log(TRACE, "Command %s completed: %s", command, result.kind)
        return result

    def __send_ok(self, command: list[str]) -> WireValue:
        response = F2BResponse.from_wire(self.__send(command))
        response.assert_ok()
        return response.data

    def get_version(self) -> str:
        version = as_string(self.__send_ok([VERSION_COMMAND]), "version")
        logger.debug(f"Fail2ban version: {version}")
        return version

    def get_jail_names(self) -> list[str]:
        data = self.__send_ok([STATUS_COMMAND])
        status = as_sequence(data, "status")

        key, number_of_jails = pair(item(status, 0, "status"), "status entry")
        if key != PROTOCOL_NUMBER_OF_JAIL:
            raise ProtocolError(f"Expected '{PROTOCOL_NUMBER_OF_JAIL}', got '{key}'")
        expected = as_integer(number_of_jails, "number of jails")

        key, jail_list = pair(item(status, 1, "status"), "status entry")
        if key != PROTOCOL_JAIL_LIST:
            raise ProtocolError(f"Expected '{PROTOCOL_JAIL_LIST}', got '{key}'")
        jail_list = as_string(jail_list, "jail list")

        jails = [x.strip() for x in jail_list.split(",")] if jail_list.strip() else []
        if len(jails) != expected:
            logger.error(f"Jail count mismatch - expected {expected}, got {len(jails)}")
            raise ProtocolError(f"Number of jails did not match: expected {expected}, got {len(jails)}")

        logger.debug(f"Retrieved {len(jails)} jails: {jails}")
        return jails

    def get_jail_info(self, jail_name: str) -> JailInfo:
        data = self.__send_ok([STATUS_COMMAND, jail_name])
        sections = _labelled(as_sequence(data, "jail status"), "jail status section")

        filter_data, action_data = {}, {}
        if "Filter" in sections:
            filter_data = _labelled(as_sequence(sections["Filter"], "filter section"), "filter entry")
        if "Actions" in sections:
            action_data = _labelled(as_sequence(sections["Actions"], "actions section"), "actions entry")

        info = JailInfo(
            currently_failed=_count(filter_data, "Currently failed"),
            total_failed=_count(filter_data, "Total failed"),
            currently_banned=_count(action_data, "Currently banned"),
            total_banned=_count(action_data, "Total banned"),
        )
        logger.debug(
            f"Jail '{jail_name}': failed={info.currently_failed}/{info.total_failed}, "
            f"banned={info.currently_banned}/{info.total_banned}"
        )
        return info

    def get_banned(self, jail_name: str) -> list[BanEntry]:
        data = self.__send_ok([GET_COMMAND, jail_name, "banip", "--with-time"])
        lines = as_sequence(data, "banned list")

        entries = []
        for index, line in enumerate(lines):
            line = as_string(line, f"banned entry {index}")
            logger.log(TRACE, "Parsing ban entry: %s", line)
            entries.append(parse_ban_entry(line, jail_name))

        logger.debug(f"Retrieved {len(entries)} banned IPs for jail '{jail_name}'")
        return entries

    def close(self):
        self._socket.close()
