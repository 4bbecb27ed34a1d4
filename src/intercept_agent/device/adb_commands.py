"""ADB command helpers - root detection, CA injection, intents, reverse tunnels."""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

from intercept_agent.certificates import content_fingerprint, parse_cert
from intercept_agent.errors import adb_command_error, cert_injection_failed_error
from intercept_agent.utils.retry import retry_async

if TYPE_CHECKING:
    from adbutils import AdbDevice

logger = structlog.get_logger()

T = TypeVar("T")

ANDROID_TEMP = "/data/local/tmp"
SYSTEM_CA_PATH = "/system/etc/security/cacerts"

# Shell wrappers that may give us root, tried in order. Each wraps a quoted script.
_ROOT_WRAPPERS = (
    "sh -c {}",  # adbd already running as root (emulator images, `adb root`)
    "su root sh -c {}",  # Magisk / SuperSU style
    "su 0 sh -c {}",
    "su -c {}",  # Older su binaries taking a single command string
)

_INJECTED_MARKER = "System cert successfully injected"

# Chrome and WebView read extra switches from these files on rooted devices.
_CHROME_FLAG_FILES = (
    "/data/local/chrome-command-line",
    "/data/local/android-webview-command-line",
    "/data/local/webview-command-line",
    "/data/local/content-shell-command-line",
    "/data/local/tmp/chrome-command-line",
    "/data/local/tmp/android-webview-command-line",
    "/data/local/tmp/webview-command-line",
    "/data/local/tmp/content-shell-command-line",
)
_CHROME_PACKAGES = (
    "com.android.chrome",
    "com.chrome.beta",
    "com.chrome.dev",
    "com.chrome.canary",
    "com.google.android.webview",
)


async def get_connected_devices() -> list[str]:
    """Return serials of devices in the ready 'device' state.

    Returns an empty list if the adb server cannot be reached.
    """
    from adbutils import adb

    def _list() -> list[str]:
        return [info.serial for info in adb.list() if info.state == "device"]

    try:
        return await asyncio.to_thread(_list)
    except Exception as exc:
        logger.warning("adb_device_list_failed", error=str(exc))
        return []


async def _run_adb(command: str, func: Callable[[], T]) -> T:
    """Run a blocking adbutils call off the event loop, raising ERR_ADB_COMMAND on failure."""
    try:
        return await asyncio.to_thread(func)
    except Exception as exc:
        raise adb_command_error(command, str(exc) or type(exc).__name__) from exc


async def shell(device: AdbDevice, command: str, timeout: float | None = None) -> str:
    """Run a shell command off the event loop and return its output."""

    def _run() -> str:
        return str(device.shell(command, timeout=timeout))

    return await _run_adb(command, _run)


async def get_root_command(device: AdbDevice) -> str | None:
    """Find a wrapper that runs scripts as uid 0, or None if the device isn't rooted."""
    for wrapper in _ROOT_WRAPPERS:
        try:
            output = await shell(device, wrapper.format(shlex.quote("id -u")), timeout=10)
        except Exception:
            continue
        if output.strip() == "0":
            logger.debug("root_command_found", serial=device.serial, wrapper=wrapper)
            return wrapper
    return None


async def run_as_root(device: AdbDevice, root_cmd: str, script: str) -> str:
    return await shell(device, root_cmd.format(shlex.quote(script)))


async def push_file(device: AdbDevice, content: bytes, path: str, mode: int) -> None:
    """Write ``content`` to ``path`` on the device with the given mode bits."""

    def _push() -> None:
        device.sync.push(content, path, mode=mode)

    await _run_adb(f"push {path}", _push)


async def has_cert_installed(device: AdbDevice, subject_hash: str, fingerprint: str) -> bool:
    """Check whether the system store already holds this exact certificate."""
    cert_path = f"{SYSTEM_CA_PATH}/{subject_hash}.0"
    try:
        output = await shell(device, f"cat {cert_path}")
    except Exception:
        return False
    if "BEGIN CERTIFICATE" not in output:
        return False
    try:
        return content_fingerprint(parse_cert(output)) == fingerprint
    except ValueError:
        return False


async def inject_system_certificate(device: AdbDevice, root_cmd: str, cert_path: str) -> None:
    """Overlay the system CA directory with a tmpfs copy that includes our cert.

    Changes vanish on reboot, so activation re-injects each time it's needed.
    """
    backup_dir = f"{ANDROID_TEMP}/intercept-ca-copy"
    script = "\n".join(
        [
            "set -e",
            f"rm -rf {backup_dir}",
            f"mkdir -p -m 700 {backup_dir}",
            f"cp {SYSTEM_CA_PATH}/* {backup_dir}/",
            f"mount -t tmpfs tmpfs {SYSTEM_CA_PATH}",
            f"mv {backup_dir}/* {SYSTEM_CA_PATH}/",
            f"mv {cert_path} {SYSTEM_CA_PATH}/",
            f"chown root:root {SYSTEM_CA_PATH}/*",
            f"chmod 644 {SYSTEM_CA_PATH}/*",
            f"chcon u:object_r:system_file:s0 {SYSTEM_CA_PATH}/*",
            f"rm -r {backup_dir}",
            f'echo "{_INJECTED_MARKER}"',
        ]
    )
    output = await run_as_root(device, root_cmd, script)
    if _INJECTED_MARKER not in output:
        raise cert_injection_failed_error(str(device.serial), output.strip())


async def set_chrome_flags(device: AdbDevice, root_cmd: str, flags: list[str]) -> None:
    """Write Chrome/WebView command-line files and restart Chrome to apply them."""
    # The first token of the file is ignored by Chrome, conventionally "_".
    content = shlex.quote("_ " + " ".join(flags))
    commands = []
    for flag_file in _CHROME_FLAG_FILES:
        commands.append(f"echo {content} > {flag_file}")
        commands.append(f"chmod 555 {flag_file}")
    for package in _CHROME_PACKAGES:
        commands.append(f"am force-stop {package}")
    await run_as_root(device, root_cmd, "; ".join(commands))


async def is_package_installed(device: AdbDevice, package: str) -> bool:
    output = await shell(device, f"pm list packages {package}")
    return any(line.strip() == f"package:{package}" for line in output.splitlines())


async def install_apk(device: AdbDevice, apk_path: str) -> None:
    def _install() -> None:
        device.install(apk_path, nolaunch=True, silent=True)

    await _run_adb(f"install {apk_path}", _install)


async def reverse_tunnel(device: AdbDevice, port: int) -> None:
    """Map device-side tcp:port to host-side tcp:port."""

    def _reverse() -> None:
        device.reverse(f"tcp:{port}", f"tcp:{port}")

    await _run_adb(f"reverse tcp:{port} tcp:{port}", _reverse)


async def bring_to_front(device: AdbDevice, activity: str) -> None:
    """Resume an activity without creating a second instance."""
    await _am_start(device, f"--activity-single-top -n {activity}")


async def start_activity(
    device: AdbDevice,
    action: str,
    *,
    data: str | None = None,
    wait: bool = False,
    retries: int = 0,
    retry_delay: float = 0.5,
) -> None:
    """Fire an intent via ``am start``, retrying when the activity manager rejects it."""
    args = []
    if wait:
        args.append("-W")
    args.extend(["-a", shlex.quote(action)])
    if data is not None:
        args.extend(["-d", shlex.quote(data)])

    await retry_async(
        lambda: _am_start(device, " ".join(args)),
        attempts=retries + 1,
        delay=retry_delay,
        label=f"am start {action}",
    )


async def _am_start(device: AdbDevice, args: str) -> str:
    command = f"am start {args}"
    output = await shell(device, command)
    # am reports failures on stdout with exit status 0.
    if "Error:" in output or "Exception" in output:
        raise adb_command_error(command, output.strip())
    return output
