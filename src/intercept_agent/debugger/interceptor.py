"""Electron interceptor - launch under the inspector and inject proxy overrides."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from intercept_agent.debugger.cdp_client import DISCONNECT_EVENT, CdpClient, Subscription
from intercept_agent.debugger.env import proxy_env_vars
from intercept_agent.debugger.ports import find_free_port
from intercept_agent.errors import (
    AgentError,
    cdp_protocol_error,
    debug_attach_failed_error,
    executable_not_found_error,
)
from intercept_agent.interceptors.base import Interceptor
from intercept_agent.utils.retry import retry_async

if TYPE_CHECKING:
    from intercept_agent.certificates import TrustMaterial
    from intercept_agent.config import AgentConfig

logger = structlog.get_logger()

OVERRIDE_SCRIPT = "prepend_electron.js"
GRACEFUL_EXIT_EXPRESSION = 'process.kill(process.pid, "SIGTERM")'
FORCED_EXIT_EXPRESSION = "process.exit(0)"


class DebugState(Enum):
    """Lifecycle of one debug-channel handle."""

    LAUNCHED = "launched"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    PAUSED = "paused"
    RUNNING = "running"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    CLOSED = "closed"
    FORCE_KILLED = "force_killed"


@dataclass(eq=False)
class DebugHandle:
    """A launched target and the debug channel used to control it."""

    proxy_port: int
    debug_port: int
    process: asyncio.subprocess.Process
    state: DebugState = DebugState.LAUNCHED
    client: CdpClient | None = None
    subscription: Subscription | None = None


class ElectronActivationOptions(BaseModel):
    path_to_application: str


def _is_connection_refused(exc: Exception) -> bool:
    if isinstance(exc, AgentError):
        return exc.code == "ERR_CONNECTION_REFUSED"
    return isinstance(exc, ConnectionRefusedError)


class ElectronInjectionInterceptor(Interceptor):
    """Launches a Node/Electron app paused at startup and patches it to trust the proxy."""

    id = "electron"
    version = "1.0.0"

    def __init__(self, config: AgentConfig, trust: TrustMaterial) -> None:
        self._config = config
        self._settings = config.attach
        self._trust = trust
        self._handles: dict[int, list[DebugHandle]] = {}

    async def is_activable(self) -> bool:
        return True

    def is_active(self, proxy_port: int) -> bool:
        return bool(self._handles.get(proxy_port))

    def tracked_handles(self, proxy_port: int) -> list[DebugHandle]:
        return list(self._handles.get(proxy_port, []))

    async def activate(
        self, proxy_port: int, options: BaseModel | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        opts = self.parse_options(ElectronActivationOptions, options)
        debug_port = find_free_port(proxy_port, exclude={proxy_port})

        process = await self._launch(opts.path_to_application, proxy_port, debug_port)
        handle = DebugHandle(proxy_port=proxy_port, debug_port=debug_port, process=process)
        logger.info(
            "electron_launched",
            path=opts.path_to_application,
            pid=process.pid,
            debug_port=debug_port,
        )

        try:
            handle.state = DebugState.ATTACHING
            client = await self._attach(debug_port)
            handle.client = client
            handle.state = DebugState.ATTACHED
        except Exception:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            raise

        try:
            await self._inject_overrides(handle, client)
        except Exception as exc:
            await client.close()
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            if isinstance(exc, AgentError):
                raise
            raise cdp_protocol_error("inject", str(exc) or type(exc).__name__) from exc

        self._handles.setdefault(proxy_port, []).append(handle)
        handle.subscription = client.on(DISCONNECT_EVENT, lambda _: self._untrack(handle))
        logger.info("electron_activation_done", pid=process.pid, proxy_port=proxy_port)
        return {"pid": process.pid, "debug_port": debug_port, "proxy_port": proxy_port}

    async def deactivate(self, proxy_port: int) -> None:
        handles = self.tracked_handles(proxy_port)
        if not handles:
            return
        await asyncio.gather(*(self._shut_down(handle) for handle in handles))

    async def deactivate_all(self) -> None:
        await asyncio.gather(*(self.deactivate(port) for port in list(self._handles)))

    async def _launch(
        self, path: str, proxy_port: int, debug_port: int
    ) -> asyncio.subprocess.Process:
        env = {**os.environ, **proxy_env_vars(proxy_port, self._trust.path)}
        try:
            # stdio is inherited so the app's own output stays visible.
            return await asyncio.create_subprocess_exec(
                path, f"--inspect-brk={debug_port}", env=env
            )
        except OSError as exc:
            raise executable_not_found_error(path) from exc

    async def _attach(self, debug_port: int) -> CdpClient:
        attempts = self._settings.retries + 1
        try:
            return await retry_async(
                lambda: CdpClient.connect(debug_port),
                attempts=attempts,
                delay=self._settings.retry_delay,
                retry_on=_is_connection_refused,
                label="debug attach",
            )
        except Exception as exc:
            if not isinstance(exc, AgentError):
                raise cdp_protocol_error("attach", str(exc) or type(exc).__name__) from exc
            if exc.code == "ERR_RETRIES_EXHAUSTED":
                raise debug_attach_failed_error(debug_port, attempts) from exc
            raise

    async def _inject_overrides(self, handle: DebugHandle, client: CdpClient) -> None:
        # Subscribe before anything can resume the target, or the first pause could be missed.
        paused = client.wait_for_event("Debugger.paused")

        try:
            # --inspect-brk may already be waiting before our domains are enabled.
            await client.run_if_waiting_for_debugger()
            await client.enable_runtime()
            await client.enable_debugger()
            pause = await asyncio.wait_for(paused, timeout=self._settings.pause_timeout)
        except TimeoutError:
            raise cdp_protocol_error("Debugger.paused", "target never paused") from None
        finally:
            if not paused.done():
                paused.cancel()
            elif not paused.cancelled():
                # Consume a disconnect failure so asyncio does not report it as unretrieved.
                paused.exception()

        try:
            call_frame_id = pause["callFrames"][0]["callFrameId"]
        except (KeyError, IndexError, TypeError):
            raise cdp_protocol_error("Debugger.paused", "pause has no call frame") from None
        handle.state = DebugState.PAUSED

        result = await client.evaluate_on_call_frame(self._override_expression(), call_frame_id)
        details = result.get("exceptionDetails")
        if details:
            logger.warning(
                "electron_override_injection_failed",
                pid=handle.process.pid,
                error=details.get("text") if isinstance(details, dict) else str(details),
                details=details,
            )
        await client.resume()
        handle.state = DebugState.RUNNING

    def _override_expression(self) -> str:
        script_path = self._config.overrides_dir / OVERRIDE_SCRIPT
        return (
            f"require({json.dumps(str(script_path))})({{"
            f'newlineEncodedCertData: "{self._trust.newline_encoded_pem}", '
            f'spkiFingerprint: "{self._trust.spki_fingerprint}"'
            f"}})"
        )

    async def _shut_down(self, handle: DebugHandle) -> None:
        client = handle.client
        if client is None:
            return
        handle.state = DebugState.SHUTDOWN_REQUESTED

        async def _request_exit() -> None:
            with contextlib.suppress(Exception):
                await client.evaluate(GRACEFUL_EXIT_EXPRESSION)
            await client.wait_closed()

        try:
            await asyncio.wait_for(_request_exit(), timeout=self._settings.shutdown_timeout)
            logger.info("electron_exited", pid=handle.process.pid)
        except TimeoutError:
            logger.warning("electron_exit_timeout", pid=handle.process.pid)
            handle.state = DebugState.FORCE_KILLED
            # The target may be disconnecting right now, so a failed send is expected.
            with contextlib.suppress(Exception):
                await client.evaluate(FORCED_EXIT_EXPRESSION)
        except Exception as exc:
            logger.warning("electron_shutdown_failed", pid=handle.process.pid, error=str(exc))

    def _untrack(self, handle: DebugHandle) -> None:
        handles = self._handles.get(handle.proxy_port)
        if handles and handle in handles:
            handles.remove(handle)
            if not handles:
                del self._handles[handle.proxy_port]
        if handle.state is not DebugState.FORCE_KILLED:
            handle.state = DebugState.CLOSED
        if handle.subscription is not None:
            handle.subscription.unsubscribe()
            handle.subscription = None
        logger.info("electron_debug_channel_closed", pid=handle.process.pid)
