"""Tests for local port allocation."""

from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest

from intercept_agent.debugger import ports
from intercept_agent.errors import AgentError


@pytest.fixture
def held_port() -> Iterator[int]:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        yield sock.getsockname()[1]


def test_bound_port_is_not_free(held_port: int) -> None:
    assert not ports.is_port_free(held_port)


def test_find_free_port_skips_bound_port(held_port: int) -> None:
    assert ports.find_free_port(held_port) > held_port


def test_find_free_port_honours_exclude(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ports, "is_port_free", lambda port, host="127.0.0.1": True)

    assert ports.find_free_port(8000, exclude={8000}) == 8001
    assert ports.find_free_port(8000) == 8000


def test_find_free_port_never_returns_privileged(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ports, "is_port_free", lambda port, host="127.0.0.1": True)

    assert ports.find_free_port(80) == 1024


def test_find_free_port_exhausted(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ports, "is_port_free", lambda port, host="127.0.0.1": False)

    with pytest.raises(AgentError) as exc_info:
        ports.find_free_port(65000)

    assert exc_info.value.code == "ERR_NO_FREE_PORT"
