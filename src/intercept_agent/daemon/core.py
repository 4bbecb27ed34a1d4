"""Daemon core - owns trust material and interceptors for the life of the process."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from intercept_agent.certificates import TrustMaterial
from intercept_agent.config import AgentConfig
from intercept_agent.errors import interceptor_not_found_error
from intercept_agent.interceptors.base import Interceptor
from intercept_agent.interceptors.registry import build_interceptors

logger = structlog.get_logger()


class DaemonCore:
    """Central daemon coordinator: the proxy-management side of the interceptors."""

    def __init__(self, config: AgentConfig | None = None) -> None:
        self.config = config or AgentConfig.from_env()
        self.trust: TrustMaterial | None = None
        self.interceptors: dict[str, Interceptor] = {}
        self._running = False

    async def start(self) -> None:
        """Load trust material and build interceptors."""
        logger.info("daemon_core_starting", cert_path=str(self.config.cert_path))
        self.trust = await asyncio.to_thread(TrustMaterial.load, self.config.cert_path)
        self.interceptors = build_interceptors(self.config, self.trust)
        self._running = True
        logger.info("daemon_core_started", interceptors=sorted(self.interceptors))

    async def stop(self) -> None:
        """Deactivate everything still intercepted."""
        logger.info("daemon_core_stopping")
        self._running = False
        await self.deactivate_all()
        logger.info("daemon_core_stopped")

    async def deactivate_all(self) -> None:
        """Deactivate every interceptor concurrently."""
        await asyncio.gather(
            *(interceptor.deactivate_all() for interceptor in self.interceptors.values())
        )

    @property
    def is_running(self) -> bool:
        """Check if daemon is running."""
        return self._running

    def get_interceptor(self, interceptor_id: str) -> Interceptor:
        interceptor = self.interceptors.get(interceptor_id)
        if interceptor is None:
            raise interceptor_not_found_error(interceptor_id)
        return interceptor

    async def describe(self, interceptor: Interceptor, proxy_port: int | None) -> dict[str, Any]:
        """Summarise one interceptor; a slow or failing activable probe reads as False."""
        try:
            activable = await asyncio.wait_for(
                interceptor.is_activable(), timeout=interceptor.activable_timeout
            )
        except TimeoutError:
            logger.warning("interceptor_activable_timeout", interceptor=interceptor.id)
            activable = False
        except Exception as exc:
            logger.warning(
                "interceptor_activable_failed", interceptor=interceptor.id, error=str(exc)
            )
            activable = False

        metadata = await interceptor.get_metadata() if activable else None
        return {
            "id": interceptor.id,
            "version": interceptor.version,
            "is_activable": activable,
            "is_active": interceptor.is_active(proxy_port) if proxy_port is not None else False,
            "metadata": metadata,
        }
