"""Tests for DaemonCore."""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from intercept_agent.config import AgentConfig
from intercept_agent.daemon.core import DaemonCore
from intercept_agent.errors import AgentError


def _interceptor(**kwargs: Any) -> MagicMock:
    interceptor = MagicMock()
    interceptor.id = kwargs.get("id", "electron")
    interceptor.version = "1.0.0"
    interceptor.activable_timeout = kwargs.get("activable_timeout", 1.0)
    interceptor.is_activable = kwargs.get("is_activable", AsyncMock(return_value=True))
    interceptor.get_metadata = AsyncMock(return_value={"k": "v"})
    interceptor.is_active.return_value = False
    interceptor.deactivate_all = AsyncMock()
    return interceptor


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_builds_interceptors(self, config: AgentConfig) -> None:
        core = DaemonCore(config)

        await core.start()

        assert core.is_running
        assert core.trust is not None
        assert set(core.interceptors) == {"android-adb", "electron"}
        assert core.get_interceptor("electron").id == "electron"

    @pytest.mark.asyncio
    async def test_start_fails_without_certificate(
        self, config: AgentConfig, tmp_path: Path
    ) -> None:
        core = DaemonCore(dataclasses.replace(config, cert_path=tmp_path / "nope.pem"))

        with pytest.raises(AgentError) as exc_info:
            await core.start()

        assert exc_info.value.code == "ERR_CERT_NOT_FOUND"
        assert not core.is_running

    @pytest.mark.asyncio
    async def test_deactivate_all_runs_interceptors_concurrently(
        self, config: AgentConfig
    ) -> None:
        second_started = asyncio.Event()

        async def _wait_for_second() -> None:
            await second_started.wait()

        async def _second() -> None:
            second_started.set()

        first, second = _interceptor(id="android-adb"), _interceptor(id="electron")
        first.deactivate_all = AsyncMock(side_effect=_wait_for_second)
        second.deactivate_all = AsyncMock(side_effect=_second)
        core = DaemonCore(config)
        core.interceptors = {"android-adb": first, "electron": second}

        await asyncio.wait_for(core.deactivate_all(), timeout=1)

        first.deactivate_all.assert_awaited_once()
        second.deactivate_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_deactivates_everything(self, config: AgentConfig) -> None:
        core = DaemonCore(config)
        first, second = _interceptor(id="android-adb"), _interceptor(id="electron")
        core.interceptors = {"android-adb": first, "electron": second}

        await core.stop()

        first.deactivate_all.assert_awaited_once()
        second.deactivate_all.assert_awaited_once()
        assert not core.is_running

    def test_unknown_interceptor(self, config: AgentConfig) -> None:
        with pytest.raises(AgentError) as exc_info:
            DaemonCore(config).get_interceptor("ios")
        assert exc_info.value.code == "ERR_INTERCEPTOR_NOT_FOUND"


class TestDescribe:
    @pytest.mark.asyncio
    async def test_activable_includes_metadata(self, config: AgentConfig) -> None:
        interceptor = _interceptor()
        interceptor.is_active.return_value = True

        described = await DaemonCore(config).describe(interceptor, 8000)

        assert described == {
            "id": "electron",
            "version": "1.0.0",
            "is_activable": True,
            "is_active": True,
            "metadata": {"k": "v"},
        }
        interceptor.is_active.assert_called_once_with(8000)

    @pytest.mark.asyncio
    async def test_slow_probe_reads_as_not_activable(self, config: AgentConfig) -> None:
        async def _slow() -> bool:
            await asyncio.sleep(1)
            return True

        interceptor = _interceptor(is_activable=_slow, activable_timeout=0.01)

        described = await DaemonCore(config).describe(interceptor, None)

        assert described["is_activable"] is False
        assert described["metadata"] is None
        assert described["is_active"] is False
        interceptor.get_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_probe_reads_as_not_activable(self, config: AgentConfig) -> None:
        interceptor = _interceptor(is_activable=AsyncMock(side_effect=RuntimeError("adb")))

        described = await DaemonCore(config).describe(interceptor, 8000)

        assert described["is_activable"] is False
