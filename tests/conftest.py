"""Pytest fixtures: a fake fail2ban server and clients connected to it."""

import pytest

from fail2ban_dashboard.client import F2BClient
from fail2ban_dashboard.csocket import F2BSocket

from fakes import FakeFail2Ban


@pytest.fixture
def fake_server():
    server = FakeFail2Ban()
    yield server
    server.close()


@pytest.fixture
def f2b_socket(fake_server):
    sock = F2BSocket("unix:///fake/fail2ban.sock", sock=fake_server.client_sock)
    yield sock
    sock.close()


@pytest.fixture
def client(f2b_socket):
    return F2BClient(sock=f2b_socket)
