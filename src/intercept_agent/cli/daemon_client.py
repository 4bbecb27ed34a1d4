"""Daemon process control and the HTTP client CLI commands talk through."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

import httpx

STATE_DIR = Path(os.environ.get("INTERCEPT_AGENT_STATE_DIR", Path.home() / ".intercept-agent"))
SOCKET_PATH = Path("/tmp/intercept-agent.sock")
PID_FILE = STATE_DIR / "daemon.pid"
LOG_FILE = STATE_DIR / "daemon.log"
BASE_URL = "http://intercept-agent"

# Activation may download and install the companion APK before answering.
ACTIVATE_TIMEOUT = 180.0


def _uds_client(socket_path: Path, timeout: float) -> httpx.Client:
    return httpx.Client(
        transport=httpx.HTTPTransport(uds=str(socket_path)),
        base_url=BASE_URL,
        timeout=timeout,
    )


class DaemonController:
    """Spawn, stop and inspect the uvicorn daemon process."""

    def __init__(self, socket_path: Path = SOCKET_PATH) -> None:
        self.socket_path = socket_path
        STATE_DIR.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _pid_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except OSError:
            return False
        return True

    @staticmethod
    def _read_pid() -> int | None:
        try:
            return int(PID_FILE.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def health(self) -> bool:
        """Return True if the daemon socket answers /health."""
        if not self.socket_path.exists():
            return False
        with _uds_client(self.socket_path, timeout=1.0) as client:
            try:
                return client.get("/health").status_code == 200
            except httpx.HTTPError:
                return False

    def start(self) -> int:
        """Start the daemon; returns PID, or -1 if one is already serving the socket."""
        pid = self._read_pid()
        if pid and self._pid_running(pid):
            return pid
        PID_FILE.unlink(missing_ok=True)
        if self.health():
            return -1

        args = [
            sys.executable,
            "-m",
            "uvicorn",
            "intercept_agent.daemon.server:app",
            "--uds",
            str(self.socket_path),
            "--log-level",
            "info",
        ]
        with LOG_FILE.open("a", encoding="utf-8") as log_handle:
            proc = subprocess.Popen(
                args,
                stdout=log_handle,
                stderr=log_handle,
                start_new_session=True,
            )
        PID_FILE.write_text(str(proc.pid))
        return proc.pid

    def stop(self, grace_seconds: float = 5.0) -> bool:
        """SIGTERM the daemon so it can deactivate every interceptor before exiting."""
        pid = self._read_pid()
        if not pid or not self._pid_running(pid):
            PID_FILE.unlink(missing_ok=True)
            return False

        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + grace_seconds
        while time.monotonic() < deadline:
            if not self._pid_running(pid):
                PID_FILE.unlink(missing_ok=True)
                return True
            time.sleep(0.1)
        return False

    def status(self) -> dict[str, Any]:
        pid = self._read_pid()
        return {
            "pid": pid,
            "pid_running": self._pid_running(pid) if pid else False,
            "socket": str(self.socket_path),
            "socket_exists": self.socket_path.exists(),
            "log_file": str(LOG_FILE),
        }


class DaemonClient:
    """HTTP client over the daemon's Unix socket, starting the daemon on demand."""

    def __init__(
        self,
        socket_path: Path = SOCKET_PATH,
        *,
        auto_start: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.auto_start = auto_start
        self.controller = DaemonController(socket_path)
        self._client = _uds_client(socket_path, timeout)

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        if self.auto_start and not self.controller.health():
            self.controller.start()
            self._wait_for_health()

        kwargs: dict[str, Any] = {"json": json_body, "params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return self._client.request(method, path, **kwargs)

    def _wait_for_health(self, seconds: float = 10.0) -> None:
        # Startup loads the CA certificate, so allow a little longer than a bare ping.
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            if self.controller.health():
                return
            time.sleep(0.1)
        raise RuntimeError(f"Daemon did not become healthy in time; see {LOG_FILE}")


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=True)
