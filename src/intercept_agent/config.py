"""Agent configuration - paths and timing knobs, overridable from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_DEFAULT_STATE_DIR = Path.home() / ".intercept-agent"
_DEFAULT_APK_URL = (
    "https://github.com/httptoolkit/httptoolkit-android/releases/latest/download/"
    "httptoolkit.apk"
)
_PACKAGE_OVERRIDES_DIR = Path(__file__).parent / "overrides"


@dataclass(frozen=True)
class TunnelSettings:
    """Timing for the ADB reverse-tunnel flow."""

    # 5 failures x 2s: a device gone for ~10s is treated as disconnected.
    check_interval: float = 2.0
    give_up_after: int = 5
    intent_retries: int = 10
    intent_retry_delay: float = 0.5
    install_settle_delay: float = 0.2


@dataclass(frozen=True)
class AttachSettings:
    """Timing for the debug-channel attach and shutdown."""

    retries: int = 10
    retry_delay: float = 0.5
    pause_timeout: float = 10.0
    shutdown_timeout: float = 1.0


@dataclass(frozen=True)
class AgentConfig:
    """Resolved configuration shared by every interceptor."""

    cert_path: Path
    state_dir: Path = _DEFAULT_STATE_DIR
    apk_url: str = _DEFAULT_APK_URL
    overrides_dir: Path = _PACKAGE_OVERRIDES_DIR
    tunnel: TunnelSettings = field(default_factory=TunnelSettings)
    attach: AttachSettings = field(default_factory=AttachSettings)

    @property
    def apk_cache_dir(self) -> Path:
        return self.state_dir / "apks"

    @classmethod
    def from_env(cls) -> AgentConfig:
        """Build config from INTERCEPT_AGENT_* variables, falling back to defaults."""
        state_dir = Path(os.environ.get("INTERCEPT_AGENT_STATE_DIR", str(_DEFAULT_STATE_DIR)))
        cert_path = Path(
            os.environ.get("INTERCEPT_AGENT_CERT_PATH", str(state_dir / "ca.pem"))
        )
        return cls(
            cert_path=cert_path,
            state_dir=state_dir,
            apk_url=os.environ.get("INTERCEPT_AGENT_APK_URL", _DEFAULT_APK_URL),
            overrides_dir=Path(
                os.environ.get("INTERCEPT_AGENT_OVERRIDES_DIR", str(_PACKAGE_OVERRIDES_DIR))
            ),
        )
