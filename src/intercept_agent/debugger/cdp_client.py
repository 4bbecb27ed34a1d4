"""Chrome DevTools Protocol client for Node/Electron inspector ports."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from typing import Any

import httpx
import structlog
import websockets

from intercept_agent.errors import cdp_protocol_error, debug_channel_refused_error

logger = structlog.get_logger()

# Pseudo-event delivered once when the websocket closes.
DISCONNECT_EVENT = "disconnect"

EventHandler = Callable[[dict[str, Any]], None]


class Subscription:
    """Handle returned by :meth:`CdpClient.on`; call ``unsubscribe`` to stop delivery."""

    def __init__(self, client: CdpClient, event: str, handler: EventHandler) -> None:
        self._client = client
        self.event = event
        self.handler = handler

    def unsubscribe(self) -> None:
        self._client._remove_handler(self.event, self.handler)


class CdpClient:
    """One websocket session to an inspector target, speaking CDP JSON messages."""

    def __init__(self, websocket: Any, port: int) -> None:
        self._ws = websocket
        self.port = port
        self._request_id = 0
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._handlers: dict[str, list[EventHandler]] = {}
        self._disconnected = asyncio.Event()
        self._reader_task: asyncio.Task[None] | None = None

    @classmethod
    async def connect(
        cls, port: int, host: str = "127.0.0.1", timeout: float = 5.0
    ) -> CdpClient:
        """Discover the target's websocket URL and open it.

        Raises ERR_CONNECTION_REFUSED while nothing listens on the port yet and
        ERR_CDP_PROTOCOL for any other discovery or handshake failure.
        """
        url = await cls._discover_websocket_url(host, port, timeout)
        try:
            websocket = await websockets.connect(url, max_size=None, ping_interval=None)
        except ConnectionRefusedError as exc:
            raise debug_channel_refused_error(port) from exc
        except (OSError, websockets.WebSocketException) as exc:
            raise cdp_protocol_error("connect", str(exc)) from exc

        client = cls(websocket, port)
        client._reader_task = asyncio.create_task(client._read_loop())
        logger.info("cdp_connected", port=port, url=url)
        return client

    @staticmethod
    async def _discover_websocket_url(host: str, port: int, timeout: float) -> str:
        try:
            async with httpx.AsyncClient(timeout=timeout) as http:
                resp = await http.get(f"http://{host}:{port}/json/list")
            resp.raise_for_status()
            targets = resp.json()
        except httpx.ConnectError as exc:
            raise debug_channel_refused_error(port) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise cdp_protocol_error("discover", str(exc)) from exc

        for target in targets if isinstance(targets, list) else []:
            url = target.get("webSocketDebuggerUrl") if isinstance(target, dict) else None
            if url:
                return str(url)
        raise cdp_protocol_error("discover", f"no debuggable target on port {port}")

    @property
    def is_connected(self) -> bool:
        return not self._disconnected.is_set()

    def on(self, event: str, handler: EventHandler) -> Subscription:
        """Subscribe to a protocol notification (or ``DISCONNECT_EVENT``)."""
        if event == DISCONNECT_EVENT and self._disconnected.is_set():
            asyncio.get_running_loop().call_soon(handler, {})
            return Subscription(self, event, handler)
        self._handlers.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def wait_for_event(self, event: str) -> asyncio.Future[dict[str, Any]]:
        """One-shot future resolved with the params of the next ``event``.

        Subscribes immediately, so call it before doing anything that could
        trigger the event. Fails with ERR_CDP_PROTOCOL if the channel closes
        first.
        """
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        subscriptions: list[Subscription] = []

        def _settle() -> None:
            for subscription in subscriptions:
                subscription.unsubscribe()

        def _resolve(params: dict[str, Any]) -> None:
            if not future.done():
                future.set_result(params)
            _settle()

        def _fail(_: dict[str, Any]) -> None:
            if not future.done():
                future.set_exception(cdp_protocol_error(event, "debug channel closed"))
            _settle()

        subscriptions.append(self.on(event, _resolve))
        subscriptions.append(self.on(DISCONNECT_EVENT, _fail))
        return future

    async def wait_closed(self) -> None:
        await self._disconnected.wait()

    async def send(
        self, method: str, params: dict[str, Any] | None = None, timeout: float = 30.0
    ) -> dict[str, Any]:
        """Send a command and wait for its result."""
        if self._disconnected.is_set():
            raise cdp_protocol_error(method, "debug channel closed")

        self._request_id += 1
        req_id = self._request_id
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future

        message = {"id": req_id, "method": method, "params": params or {}}
        try:
            await self._ws.send(json.dumps(message))
            response = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise cdp_protocol_error(method, "request timed out") from None
        except websockets.ConnectionClosed:
            raise cdp_protocol_error(method, "debug channel closed") from None
        finally:
            self._pending.pop(req_id, None)

        error = response.get("error")
        if error:
            reason = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise cdp_protocol_error(method, reason)
        result = response.get("result")
        return result if isinstance(result, dict) else {}

    async def run_if_waiting_for_debugger(self) -> None:
        await self.send("Runtime.runIfWaitingForDebugger")

    async def enable_runtime(self) -> None:
        await self.send("Runtime.enable")

    async def enable_debugger(self) -> None:
        await self.send("Debugger.enable")

    async def evaluate(self, expression: str) -> dict[str, Any]:
        return await self.send("Runtime.evaluate", {"expression": expression})

    async def evaluate_on_call_frame(self, expression: str, call_frame_id: str) -> dict[str, Any]:
        return await self.send(
            "Debugger.evaluateOnCallFrame",
            {"expression": expression, "callFrameId": call_frame_id},
        )

    async def resume(self) -> None:
        await self.send("Debugger.resume")

    async def close(self) -> None:
        """Close the websocket and wait for the reader to finish."""
        with contextlib.suppress(Exception):
            await self._ws.close()
        if self._reader_task and not self._reader_task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._mark_disconnected()

    async def _read_loop(self) -> None:
        """Route responses to pending futures and notifications to subscribers."""
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("cdp_invalid_json", port=self.port, message=str(raw)[:200])
                    continue

                msg_id = data.get("id")
                if msg_id is not None:
                    future = self._pending.get(msg_id)
                    if future is not None and not future.done():
                        future.set_result(data)
                    continue

                method = data.get("method")
                if isinstance(method, str):
                    params = data.get("params")
                    self._dispatch(method, params if isinstance(params, dict) else {})
        except websockets.ConnectionClosed:
            pass
        except Exception:
            logger.exception("cdp_read_loop_error", port=self.port)
        finally:
            self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        if self._disconnected.is_set():
            return
        self._disconnected.set()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(cdp_protocol_error("request", "debug channel closed"))
        self._pending.clear()
        logger.info("cdp_disconnected", port=self.port)
        self._dispatch(DISCONNECT_EVENT, {})
        self._handlers.clear()

    def _dispatch(self, event: str, params: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(params)
            except Exception:
                logger.exception("cdp_event_handler_error", event=event)

    def _remove_handler(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
