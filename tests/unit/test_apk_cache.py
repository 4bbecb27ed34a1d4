"""Tests for CompanionApkCache."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from intercept_agent.device.apk import CompanionApkCache
from intercept_agent.errors import AgentError

APK_BYTES = b"PK\x03\x04companion-app"


def test_resolve_uses_cached_apk(tmp_path: Path) -> None:
    (tmp_path / "companion.apk").write_bytes(APK_BYTES)
    cache = CompanionApkCache(tmp_path, "https://example.invalid/app.apk")

    with patch.object(cache, "_download_bytes") as download:
        resolved = cache.resolve()

    assert resolved == tmp_path / "companion.apk"
    download.assert_not_called()


def test_resolve_downloads_when_missing(tmp_path: Path) -> None:
    cache = CompanionApkCache(tmp_path / "apks", "https://example.invalid/app.apk")

    with patch.object(cache, "_download_bytes", return_value=APK_BYTES):
        resolved = cache.resolve()

    assert resolved.is_file()
    assert resolved.read_bytes() == APK_BYTES


def test_resolve_replaces_corrupt_cached_file(tmp_path: Path) -> None:
    (tmp_path / "companion.apk").write_bytes(b"<html>rate limited</html>")
    cache = CompanionApkCache(tmp_path, "https://example.invalid/app.apk")

    with patch.object(cache, "_download_bytes", return_value=APK_BYTES):
        resolved = cache.resolve()

    assert resolved.read_bytes() == APK_BYTES


def test_resolve_rejects_non_apk_download(tmp_path: Path) -> None:
    cache = CompanionApkCache(tmp_path, "https://example.invalid/app.apk")

    with (
        patch.object(cache, "_download_bytes", return_value=b"not a zip"),
        pytest.raises(AgentError) as exc_info,
    ):
        cache.resolve()

    assert exc_info.value.code == "ERR_APK_DOWNLOAD"
    assert not (tmp_path / "companion.apk").exists()
    assert not (tmp_path / "companion.apk.tmp").exists()


def test_clear_removes_cache_dir(tmp_path: Path) -> None:
    cache_dir = tmp_path / "apks"
    cache_dir.mkdir()
    (cache_dir / "companion.apk").write_bytes(APK_BYTES)
    cache = CompanionApkCache(cache_dir, "https://example.invalid/app.apk")

    cache.clear()
    cache.clear()

    assert not cache_dir.exists()
