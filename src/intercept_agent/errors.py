"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class AgentError(Exception):
    """
    Base error with context and remediation guidance.

    All errors should be actionable - tell the caller which activation step
    went wrong and what they can do about it.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


# Specific error constructors for common cases


def device_offline_error(serial: str) -> AgentError:
    """Create error for offline device."""
    return AgentError(
        code="ERR_DEVICE_OFFLINE",
        message=f"Device offline: {serial}",
        context={"serial": serial},
        remediation="Check device connection with 'adb devices' and reconnect",
    )


def adb_command_error(command: str, reason: str) -> AgentError:
    """Create error for adb command failure."""
    return AgentError(
        code="ERR_ADB_COMMAND",
        message=f"adb command failed: {command}",
        context={"command": command, "reason": reason},
        remediation="Check adb connection and command arguments, then retry.",
    )


def app_install_failed_error(package: str, reason: str) -> AgentError:
    """Create error for companion app install failure."""
    return AgentError(
        code="ERR_APP_INSTALL_FAILED",
        message=f"Failed to install {package}: {reason}",
        context={"package": package, "reason": reason},
        remediation="Unlock the device, allow installs over USB, then activate again.",
    )


def apk_download_error(url: str, reason: str) -> AgentError:
    """Create error for companion APK download failure."""
    return AgentError(
        code="ERR_APK_DOWNLOAD",
        message=f"Failed to download companion app: {url}",
        context={"url": url, "reason": reason},
        remediation="Check network access or set INTERCEPT_AGENT_APK_URL to a reachable APK.",
    )


def cert_injection_failed_error(serial: str, output: str) -> AgentError:
    """Create error for system CA injection failure."""
    return AgentError(
        code="ERR_CERT_INJECTION",
        message=f"System certificate injection failed on {serial}",
        context={"serial": serial, "output": output},
        remediation="Check the device is rooted and 'su' is allowed for the shell user.",
    )


def cert_not_found_error(path: str) -> AgentError:
    """Create error for missing CA certificate."""
    return AgentError(
        code="ERR_CERT_NOT_FOUND",
        message=f"CA certificate not found: {path}",
        context={"path": path},
        remediation="Set INTERCEPT_AGENT_CERT_PATH to the proxy's PEM CA certificate.",
    )


def retries_exhausted_error(operation: str, attempts: int) -> AgentError:
    """Create error for a retried operation that never succeeded."""
    return AgentError(
        code="ERR_RETRIES_EXHAUSTED",
        message=f"{operation} failed after {attempts} attempts",
        context={"operation": operation, "attempts": attempts},
        remediation="Check the target is reachable, then retry.",
    )


def debug_channel_refused_error(port: int) -> AgentError:
    """Create error for a debug port that is not listening (yet)."""
    return AgentError(
        code="ERR_CONNECTION_REFUSED",
        message=f"Debug channel refused connection on port {port}",
        context={"port": port},
        remediation="Wait for the target process to open its inspector port.",
    )


def debug_attach_failed_error(port: int, attempts: int) -> AgentError:
    """Create error for a debug channel that never came up."""
    return AgentError(
        code="ERR_DEBUG_ATTACH_FAILED",
        message="Could not initialize debug client",
        context={"port": port, "attempts": attempts},
        remediation="Check the application supports --inspect-brk and starts successfully.",
    )


def cdp_protocol_error(method: str, reason: str) -> AgentError:
    """Create error for a failed DevTools protocol call."""
    return AgentError(
        code="ERR_CDP_PROTOCOL",
        message=f"{method} failed: {reason}",
        context={"method": method, "reason": reason},
        remediation="The target may have exited. Relaunch it and activate again.",
    )


def no_free_port_error(preferred: int) -> AgentError:
    """Create error when no local port can be bound."""
    return AgentError(
        code="ERR_NO_FREE_PORT",
        message=f"No free local port at or above {preferred}",
        context={"preferred": preferred},
        remediation="Close processes holding local ports and retry.",
    )


def executable_not_found_error(path: str) -> AgentError:
    """Create error for an application path that cannot be launched."""
    return AgentError(
        code="ERR_EXECUTABLE_NOT_FOUND",
        message=f"Cannot launch application: {path}",
        context={"path": path},
        remediation="Pass the full path to the application executable.",
    )


def invalid_options_error(interceptor_id: str, reason: str) -> AgentError:
    """Create error for malformed activation options."""
    return AgentError(
        code="ERR_INVALID_OPTIONS",
        message=f"Invalid options for {interceptor_id}: {reason}",
        context={"interceptor": interceptor_id, "reason": reason},
        remediation="Check the option names accepted by this interceptor.",
    )


def interceptor_not_found_error(interceptor_id: str) -> AgentError:
    """Create error for an unknown interceptor id."""
    return AgentError(
        code="ERR_INTERCEPTOR_NOT_FOUND",
        message=f"Unknown interceptor: {interceptor_id}",
        context={"interceptor": interceptor_id},
        remediation="List available interceptors with 'interceptors list'.",
    )
