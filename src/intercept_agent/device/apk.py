"""Companion APK resolver/downloader with a local cache."""

from __future__ import annotations

import shutil
from pathlib import Path
from urllib import request
from urllib.error import HTTPError, URLError

import structlog

from intercept_agent.errors import apk_download_error

logger = structlog.get_logger()

_DEFAULT_TIMEOUT_SECS = 60
_APK_NAME = "companion.apk"
# APKs are ZIP archives.
_ZIP_MAGIC = b"PK\x03\x04"


class CompanionApkCache:
    """Resolves a cached companion APK and downloads it if missing."""

    def __init__(self, cache_dir: Path, url: str) -> None:
        self._cache_dir = cache_dir
        self._url = url

    @property
    def apk_path(self) -> Path:
        return self._cache_dir / _APK_NAME

    def resolve(self) -> Path:
        """Return a local APK path, downloading if needed."""
        self._cache_dir.mkdir(parents=True, exist_ok=True)

        if self.apk_path.is_file() and self._looks_like_apk(self.apk_path):
            return self.apk_path

        self._download_apk(self.apk_path)
        logger.info("companion_apk_downloaded", path=str(self.apk_path), url=self._url)
        return self.apk_path

    def clear(self) -> None:
        """Drop every cached artifact, e.g. after an install hit a corrupt APK."""
        if self._cache_dir.exists():
            shutil.rmtree(self._cache_dir)
            logger.info("companion_apk_cache_cleared", path=str(self._cache_dir))

    def _download_apk(self, apk_path: Path) -> None:
        tmp_path = apk_path.with_suffix(".apk.tmp")
        apk_bytes = self._download_bytes(self._url)
        tmp_path.write_bytes(apk_bytes)

        if not self._looks_like_apk(tmp_path):
            tmp_path.unlink(missing_ok=True)
            raise apk_download_error(self._url, "downloaded file is not an APK")

        tmp_path.replace(apk_path)

    def _download_bytes(self, url: str) -> bytes:
        try:
            with request.urlopen(url, timeout=_DEFAULT_TIMEOUT_SECS) as response:
                data = response.read()
                if isinstance(data, bytes):
                    return data
                return bytes(data)
        except (HTTPError, URLError, OSError) as exc:
            raise apk_download_error(url, str(exc)) from None

    @staticmethod
    def _looks_like_apk(path: Path) -> bool:
        with path.open("rb") as handle:
            return handle.read(len(_ZIP_MAGIC)) == _ZIP_MAGIC
