"""Tests for interceptor CLI commands."""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner


class DummyResponse:
    """Simple response stub for CLI handlers."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self._payload = payload

    def json(self) -> dict[str, Any]:
        return self._payload


class DummyClient:
    calls: list[tuple[str, str, dict[str, Any]]] = []
    payload: dict[str, Any] = {"status": "done"}

    def __init__(self, *_: Any, **__: Any) -> None:
        pass

    def request(self, method: str, path: str, json_body: Any = None, **kwargs: Any):
        self.__class__.calls.append((method, path, {"json_body": json_body, **kwargs}))
        return DummyResponse(self.__class__.payload)

    def close(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _reset_client() -> None:
    DummyClient.calls = []
    DummyClient.payload = {"status": "done"}


def test_activate_android_builds_payload(capsys: pytest.CaptureFixture[str]) -> None:
    from intercept_agent.cli.commands import interceptors

    DummyClient.payload = {
        "status": "done",
        "interceptor": "android-adb",
        "proxy_port": 8000,
        "result": {"device_id": "emulator-5554"},
    }
    with patch.object(interceptors, "DaemonClient", DummyClient):
        interceptors.interceptors_activate(
            "android-adb",
            port=8000,
            device="emulator-5554",
            application=None,
            json_output=False,
        )

    method, path, kwargs = DummyClient.calls[0]
    assert method == "POST"
    assert path == "/interceptors/android-adb/activate"
    assert kwargs["json_body"] == {"proxy_port": 8000, "options": {"device_id": "emulator-5554"}}
    out = capsys.readouterr().out
    assert "✓ Done [android-adb :8000]" in out
    assert "emulator-5554" in out


def test_activate_electron_builds_payload() -> None:
    from intercept_agent.cli.commands import interceptors

    with patch.object(interceptors, "DaemonClient", DummyClient):
        interceptors.interceptors_activate(
            "electron",
            port=8000,
            device=None,
            application="/opt/Slack/slack",
            json_output=True,
        )

    _, path, kwargs = DummyClient.calls[0]
    assert path == "/interceptors/electron/activate"
    assert kwargs["json_body"]["options"] == {"path_to_application": "/opt/Slack/slack"}


def test_activate_error_exits_nonzero(capsys: pytest.CaptureFixture[str]) -> None:
    from intercept_agent.cli.commands import interceptors

    DummyClient.payload = {
        "status": "error",
        "error": {
            "code": "ERR_DEVICE_OFFLINE",
            "message": "Device offline: emulator-5554",
            "remediation": "Check device connection",
        },
    }
    with (
        patch.object(interceptors, "DaemonClient", DummyClient),
        pytest.raises(typer.Exit) as exc_info,
    ):
        interceptors.interceptors_activate(
            "android-adb", port=8000, device="emulator-5554", application=None, json_output=False
        )

    assert exc_info.value.exit_code == 1
    out = capsys.readouterr().out
    assert "ERR_DEVICE_OFFLINE: Device offline: emulator-5554" in out
    assert "Hint: Check device connection" in out


def test_list_passes_port(capsys: pytest.CaptureFixture[str]) -> None:
    from intercept_agent.cli.commands import interceptors

    DummyClient.payload = {
        "interceptors": [
            {
                "id": "android-adb",
                "version": "1.0.0",
                "is_activable": True,
                "is_active": False,
                "metadata": None,
            }
        ]
    }
    with patch.object(interceptors, "DaemonClient", DummyClient):
        interceptors.interceptors_list(port=8000, json_output=False)

    method, path, kwargs = DummyClient.calls[0]
    assert (method, path) == ("GET", "/interceptors")
    assert kwargs["params"] == {"proxy_port": 8000}
    assert "android-adb  v1.0.0 activable=True active=False" in capsys.readouterr().out


def test_deactivate_commands() -> None:
    from intercept_agent.cli.commands import interceptors

    with patch.object(interceptors, "DaemonClient", DummyClient):
        interceptors.interceptors_deactivate("electron", port=8000, json_output=False)
        interceptors.interceptors_deactivate_all(json_output=False)

    assert DummyClient.calls[0][:2] == ("POST", "/interceptors/electron/deactivate")
    assert DummyClient.calls[0][2]["json_body"] == {"proxy_port": 8000}
    assert DummyClient.calls[1][:2] == ("POST", "/interceptors/deactivate-all")


def test_cli_wiring() -> None:
    from intercept_agent import __version__
    from intercept_agent.cli.commands import interceptors
    from intercept_agent.cli.main import app

    runner = CliRunner()
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"intercept-agent v{__version__}" in result.output

    with patch.object(interceptors, "DaemonClient", DummyClient):
        result = runner.invoke(
            app, ["interceptors", "activate", "electron", "--port", "8000", "--app", "/bin/app"]
        )

    assert result.exit_code == 0
    assert DummyClient.calls[0][2]["json_body"] == {
        "proxy_port": 8000,
        "options": {"path_to_application": "/bin/app"},
    }
