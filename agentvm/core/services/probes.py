"""
Live-state probes — read-only checks against the running system.

Shared by the idempotency checker, the health verifier and the parity
probes. A target that does not exist yet (VM still booting, service
not installed) is a normal answer, not an error; StateInspectionError
is reserved for "could not look" (missing systemctl/pacman, permission
denied).
"""

from __future__ import annotations

import logging
import shutil
import socket
import stat
import subprocess
import urllib.error
import urllib.request
from pathlib import Path

from agentvm.core.errors import StateInspectionError

logger = logging.getLogger(__name__)

_USER_AGENT = "agentvm/0.1"


def http_status(url: str, timeout: float = 5.0) -> int | None:
    """GET ``url`` and return the status code, or None if unreachable."""
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status
    except urllib.error.HTTPError as e:
        return e.code
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.debug("HTTP probe %s: %s", url, e)
        return None


def split_host_port(target: str) -> tuple[str, int]:
    host, _, port = target.rpartition(":")
    if not host or not port.isdigit():
        raise StateInspectionError(f"Expected host:port, got {target!r}")
    return host, int(port)


def tcp_reachable(target: str, timeout: float = 2.0) -> bool:
    """Whether a TCP connection to ``host:port`` can be opened."""
    host, port = split_host_port(target)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def service_state(unit: str, timeout: float = 5.0) -> str:
    """Return the systemd ActiveState of ``unit`` (e.g. 'active', 'inactive')."""
    if shutil.which("systemctl") is None:
        raise StateInspectionError("systemctl not available — cannot inspect services")
    try:
        r = subprocess.run(
            ["systemctl", "show", unit, "--property=ActiveState"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise StateInspectionError(f"systemctl show {unit} failed: {e}") from e
    _, _, value = r.stdout.strip().partition("=")
    return value or "unknown"


def command_path(name: str) -> str | None:
    """Location of an executable on PATH (or an absolute executable path)."""
    return shutil.which(name)


def missing_packages(packages: list[str], timeout: float = 30.0) -> list[str]:
    """Packages from ``packages`` that pacman does not report as installed."""
    if not packages:
        return []
    if shutil.which("pacman") is None:
        raise StateInspectionError("pacman not available — cannot inspect installed packages")
    try:
        r = subprocess.run(
            ["pacman", "-Qq", *packages],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise StateInspectionError(f"pacman -Q failed: {e}") from e
    installed = set(r.stdout.split())
    return [p for p in packages if p not in installed]


def read_text(path: Path) -> str | None:
    """File contents, or None when the file does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except IsADirectoryError:
        return None
    except OSError as e:
        raise StateInspectionError(f"Cannot read {path}: {e}") from e


def path_kind(path: Path) -> str | None:
    """'file', 'dir', 'other', or None when the path does not exist."""
    try:
        st = path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return None
    except OSError as e:
        raise StateInspectionError(f"Cannot stat {path}: {e}") from e
    if stat.S_ISDIR(st.st_mode):
        return "dir"
    if stat.S_ISREG(st.st_mode):
        return "file"
    return "other"
