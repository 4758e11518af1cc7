"""Tests for wire value projections and the response envelope."""

from datetime import datetime

import pytest

from fail2ban_dashboard.exceptions import ProtocolError
from fail2ban_dashboard.protocol import (
    BanEntry,
    F2BResponse,
    JailInfo,
    WireInteger,
    WireSequence,
    WireString,
    WireTuple,
    as_integer,
    as_sequence,
    as_string,
    as_tuple,
    item,
    pair,
)


class TestProjections:
    def test_as_string(self):
        assert as_string(WireString("sshd")) == "sshd"

    def test_as_string_wrong_kind(self):
        with pytest.raises(ProtocolError, match="jail list to be a string, got integer"):
            as_string(WireInteger(3), "jail list")

    def test_as_integer(self):
        assert as_integer(WireInteger(3)) == 3

    def test_as_integer_wrong_kind(self):
        with pytest.raises(ProtocolError):
            as_integer(WireString("3"))

    def test_as_sequence(self):
        items = (WireString("a"), WireInteger(1))
        assert as_sequence(WireSequence(items)) == items

    def test_as_sequence_rejects_tuple(self):
        with pytest.raises(ProtocolError, match="got tuple"):
            as_sequence(WireTuple(()))

    def test_as_tuple_arity(self):
        value = WireTuple((WireInteger(0), WireString("x")))
        assert as_tuple(value, arity=2) == value.items
        with pytest.raises(ProtocolError, match="3-tuple"):
            as_tuple(value, arity=3)

    def test_as_tuple_rejects_sequence(self):
        with pytest.raises(ProtocolError):
            as_tuple(WireSequence(()))

    def test_item_out_of_range(self):
        with pytest.raises(ProtocolError, match="position 2"):
            item((WireInteger(1),), 2, "status")

    def test_pair(self):
        assert pair(WireTuple((WireString("Total failed"), WireInteger(9)))) == ("Total failed", WireInteger(9))

    def test_pair_needs_string_label(self):
        with pytest.raises(ProtocolError):
            pair(WireTuple((WireInteger(1), WireInteger(9))))

    def test_value_semantics(self):
        assert WireSequence((WireString("a"),)) == WireSequence((WireString("a"),))
        assert WireSequence((WireString("a"),)) != WireTuple((WireString("a"),))
        assert hash(WireString("a")) == hash(WireString("a"))


class TestF2BResponse:
    def test_success(self):
        response = F2BResponse.from_wire(WireTuple((WireInteger(0), WireString("1.1.0"))))
        assert response.is_success
        assert response.data == WireString("1.1.0")
        response.assert_ok()

    def test_string_head_is_not_an_error(self):
        response = F2BResponse.from_wire(WireTuple((WireString("version"), WireString("1.1.0"))))
        assert response.status_code is None
        response.assert_ok()

    def test_error_with_message(self):
        response = F2BResponse.from_wire(WireTuple((WireInteger(1), WireString("Invalid command"))))
        assert not response.is_success
        with pytest.raises(ProtocolError, match="Invalid command"):
            response.assert_ok()

    def test_error_without_message(self):
        response = F2BResponse.from_wire(WireTuple((WireInteger(255), WireSequence(()))))
        with pytest.raises(ProtocolError, match="status code 255"):
            response.assert_ok()

    @pytest.mark.parametrize("value", [
        WireString("1.1.0"),
        WireTuple((WireInteger(0),)),
        WireTuple((WireInteger(0), WireString("a"), WireString("b"))),
    ])
    def test_bad_envelope(self, value):
        with pytest.raises(ProtocolError):
            F2BResponse.from_wire(value)


def test_ban_entry_country_code():
    entry = BanEntry("10.0.0.1", datetime(2023, 8, 29, 10, 30), "600", datetime(2023, 8, 29, 10, 40), "sshd")
    enriched = entry.with_country_code("DE")
    assert entry.country_code is None
    assert enriched.country_code == "DE"
    assert enriched.address == entry.address


def test_jail_info_defaults():
    assert JailInfo() == JailInfo(0, 0, 0, 0)
