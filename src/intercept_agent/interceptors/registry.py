"""Interceptor registry - one instance per target kind."""

from __future__ import annotations

from typing import TYPE_CHECKING

from intercept_agent.debugger.interceptor import ElectronInjectionInterceptor
from intercept_agent.device.interceptor import AndroidTunnelInterceptor
from intercept_agent.interceptors.base import Interceptor

if TYPE_CHECKING:
    from intercept_agent.certificates import TrustMaterial
    from intercept_agent.config import AgentConfig


def build_interceptors(config: AgentConfig, trust: TrustMaterial) -> dict[str, Interceptor]:
    """One instance per target kind, keyed by interceptor id, sharing the trust material."""
    interceptors: list[Interceptor] = [
        AndroidTunnelInterceptor(config, trust),
        ElectronInjectionInterceptor(config, trust),
    ]
    return {interceptor.id: interceptor for interceptor in interceptors}
