"""Android interceptor - companion app, system CA injection and a self-healing ADB tunnel."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from intercept_agent.device.adb_commands import (
    ANDROID_TEMP,
    bring_to_front,
    get_connected_devices,
    get_root_command,
    has_cert_installed,
    inject_system_certificate,
    install_apk,
    is_package_installed,
    push_file,
    reverse_tunnel,
    set_chrome_flags,
    start_activity,
)
from intercept_agent.device.apk import CompanionApkCache
from intercept_agent.device.network import candidate_addresses
from intercept_agent.errors import app_install_failed_error, device_offline_error
from intercept_agent.interceptors.base import Interceptor, best_effort

if TYPE_CHECKING:
    from adbutils import AdbDevice

    from intercept_agent.certificates import TrustMaterial
    from intercept_agent.config import AgentConfig

logger = structlog.get_logger()

APP_PACKAGE = "tech.httptoolkit.android.v1"
MAIN_ACTIVITY = f"{APP_PACKAGE}/tech.httptoolkit.android.MainActivity"
ACTIVATE_ACTION = "tech.httptoolkit.android.ACTIVATE"
DEACTIVATE_ACTION = "tech.httptoolkit.android.DEACTIVATE"
CONNECT_URL = "https://android.httptoolkit.tech/connect/"


class TunnelState(Enum):
    """Lifecycle of one (proxy port, device) pairing."""

    UNKNOWN = "unknown"
    INSTALLING = "installing"
    TUNNEL_UP = "tunnel_up"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    TORN_DOWN = "torn_down"


@dataclass(eq=False)
class TunnelSession:
    """A device tracked under a proxy port, plus its health-check task."""

    serial: str
    proxy_port: int
    state: TunnelState = TunnelState.UNKNOWN
    failures: int = 0
    task: asyncio.Task[None] | None = None


class AndroidActivationOptions(BaseModel):
    device_id: str


def url_safe_base64(content: str) -> str:
    return base64.urlsafe_b64encode(content.encode("utf-8")).decode("ascii")


def build_setup_payload(proxy_port: int, addresses: list[str], cert_fingerprint: str) -> str:
    """Encode the connection details the companion app needs, for use in a URL."""
    params = {
        "addresses": addresses,
        "port": proxy_port,
        "localTunnelPort": proxy_port,
        "certFingerprint": cert_fingerprint,
    }
    return url_safe_base64(json.dumps(params))


class AndroidTunnelInterceptor(Interceptor):
    """Routes an ADB-connected device through the proxy via the companion VPN app."""

    id = "android-adb"
    version = "1.0.0"
    activable_timeout = 3.0

    def __init__(
        self,
        config: AgentConfig,
        trust: TrustMaterial,
        apk_cache: CompanionApkCache | None = None,
    ) -> None:
        self._config = config
        self._settings = config.tunnel
        self._trust = trust
        self._apk_cache = apk_cache or CompanionApkCache(config.apk_cache_dir, config.apk_url)
        self._sessions: dict[int, dict[str, TunnelSession]] = {}

    async def is_activable(self) -> bool:
        return len(await get_connected_devices()) > 0

    def is_active(self, proxy_port: int) -> bool:
        return bool(self._sessions.get(proxy_port))

    async def get_metadata(self) -> dict[str, Any]:
        return {"device_ids": await get_connected_devices()}

    def tracked_devices(self, proxy_port: int) -> list[str]:
        """Serials currently tracked for a proxy port."""
        return list(self._sessions.get(proxy_port, {}))

    async def get_adb_device(self, serial: str) -> AdbDevice:
        """Open an adbutils handle for a connected device."""
        if serial not in await get_connected_devices():
            raise device_offline_error(serial)

        from adbutils import adb

        def _connect() -> AdbDevice:
            return adb.device(serial)

        try:
            return await asyncio.to_thread(_connect)
        except Exception as exc:
            raise device_offline_error(serial) from exc

    async def activate(
        self, proxy_port: int, options: BaseModel | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        opts = self.parse_options(AndroidActivationOptions, options)
        serial = opts.device_id
        device = await self.get_adb_device(serial)
        logger.info("android_activation_starting", serial=serial, proxy_port=proxy_port)

        await best_effort(
            "inject_system_cert", self._inject_system_cert_if_possible(device), serial=serial
        )

        await self._ensure_app_installed(device)

        # The VPN service can't be started while the app is backgrounded on some devices.
        await best_effort("bring_to_front", bring_to_front(device, MAIN_ACTIVITY), serial=serial)

        payload = build_setup_payload(
            proxy_port, candidate_addresses(), self._trust.spki_fingerprint
        )

        # The health check below keeps retrying this, so a failure here isn't fatal.
        await best_effort("reverse_tunnel", reverse_tunnel(device, proxy_port), serial=serial)

        await start_activity(
            device,
            ACTIVATE_ACTION,
            data=f"{CONNECT_URL}?data={payload}",
            retries=self._settings.intent_retries,
            retry_delay=self._settings.intent_retry_delay,
        )

        self._track(proxy_port, serial, device)
        logger.info("android_activation_done", serial=serial, proxy_port=proxy_port)
        return {"device_id": serial, "proxy_port": proxy_port}

    async def deactivate(self, proxy_port: int) -> None:
        sessions = list(self._sessions.pop(proxy_port, {}).values())
        for session in sessions:
            self._tear_down(session)

        await asyncio.gather(*(self._deactivate_device(session.serial) for session in sessions))

    async def deactivate_all(self) -> None:
        await asyncio.gather(*(self.deactivate(port) for port in list(self._sessions)))

    async def _deactivate_device(self, serial: str) -> None:
        try:
            device = await self.get_adb_device(serial)
            # Intents to stop the VPN service only run with the app in the foreground.
            await best_effort(
                "bring_to_front", bring_to_front(device, MAIN_ACTIVITY), serial=serial
            )
            await start_activity(device, DEACTIVATE_ACTION, wait=True)
            logger.info("android_deactivated", serial=serial)
        except Exception as exc:
            logger.warning("android_deactivate_failed", serial=serial, error=str(exc))

    async def _inject_system_cert_if_possible(self, device: AdbDevice) -> None:
        root_cmd = await get_root_command(device)
        if not root_cmd:
            logger.info("root_unavailable_skipping_cert_injection", serial=device.serial)
            return

        trust = self._trust
        if await has_cert_installed(device, trust.subject_hash, trust.fingerprint):
            logger.info("cert_already_installed", serial=device.serial)
        else:
            cert_path = f"{ANDROID_TEMP}/{trust.subject_hash}.0"
            logger.info("cert_pushing", serial=device.serial, path=cert_path)
            await push_file(device, trust.pem.replace("\r\n", "\n").encode(), cert_path, 0o444)
            # System proxying can still work for apps that trust user CAs.
            await best_effort(
                "inject_system_certificate",
                inject_system_certificate(device, root_cmd, cert_path),
                serial=device.serial,
            )

        # Chrome demands certificate transparency for system CAs, unless the SPKI is whitelisted.
        await set_chrome_flags(
            device, root_cmd, [f"--ignore-certificate-errors-spki-list={trust.spki_fingerprint}"]
        )
        logger.info("chrome_flags_set", serial=device.serial)

    async def _ensure_app_installed(self, device: AdbDevice) -> None:
        if await is_package_installed(device, APP_PACKAGE):
            return

        logger.info(
            "companion_app_installing", serial=device.serial, state=TunnelState.INSTALLING.value
        )
        try:
            await self._install_companion_app(device)
        except Exception as exc:
            # Flaky connections can leave a truncated APK behind, so start again from scratch.
            logger.warning("companion_app_install_retrying", serial=device.serial, error=str(exc))
            await asyncio.to_thread(self._apk_cache.clear)
            try:
                await self._install_companion_app(device)
            except Exception as retry_exc:
                raise app_install_failed_error(APP_PACKAGE, str(retry_exc)) from retry_exc

        logger.info("companion_app_installed", serial=device.serial)
        # Give the package manager time to register the app's intent filters.
        await asyncio.sleep(self._settings.install_settle_delay)

    async def _install_companion_app(self, device: AdbDevice) -> None:
        apk_path = await asyncio.to_thread(self._apk_cache.resolve)
        await install_apk(device, str(apk_path))

    def _track(self, proxy_port: int, serial: str, device: AdbDevice) -> None:
        port_sessions = self._sessions.setdefault(proxy_port, {})
        if serial in port_sessions:
            logger.debug("tunnel_already_tracked", serial=serial, proxy_port=proxy_port)
            return

        session = TunnelSession(serial=serial, proxy_port=proxy_port, state=TunnelState.TUNNEL_UP)
        port_sessions[serial] = session
        session.task = asyncio.create_task(self._tunnel_health_loop(session, device))

    def _is_tracked(self, session: TunnelSession) -> bool:
        return self._sessions.get(session.proxy_port, {}).get(session.serial) is session

    def _untrack(self, session: TunnelSession) -> None:
        port_sessions = self._sessions.get(session.proxy_port)
        if port_sessions is None or port_sessions.get(session.serial) is not session:
            return
        del port_sessions[session.serial]
        if not port_sessions:
            del self._sessions[session.proxy_port]
        self._tear_down(session)

    @staticmethod
    def _tear_down(session: TunnelSession) -> None:
        session.state = TunnelState.TORN_DOWN
        task = session.task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _tunnel_health_loop(self, session: TunnelSession, device: AdbDevice) -> None:
        """Keep re-asserting the reverse tunnel; drop the device after repeated failures.

        The tunnel breaks whenever the VPN reconnects or the adb server restarts.
        """
        while self._is_tracked(session):
            await asyncio.sleep(self._settings.check_interval)
            if not self._is_tracked(session):
                break
            try:
                await reverse_tunnel(device, session.proxy_port)
            except Exception as exc:
                session.failures += 1
                session.state = TunnelState.DEGRADED
                logger.warning(
                    "tunnel_check_failed",
                    serial=session.serial,
                    proxy_port=session.proxy_port,
                    failures=session.failures,
                    error=str(exc),
                )
                if session.failures >= self._settings.give_up_after:
                    logger.warning(
                        "tunnel_dropped", serial=session.serial, proxy_port=session.proxy_port
                    )
                    self._untrack(session)
                    return
            else:
                session.failures = 0
                session.state = TunnelState.HEALTHY
