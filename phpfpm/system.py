"""Host collaborators: OS detection, user lookup, shell commands, supervisor."""

import grp
import logging
import os
import pwd
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import ReloadError
from .interface import OSFamily, SystemUser

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────
# OS family detection
# ─────────────────────────────────────────────────────────────────

_RHEL_DISTROS = ("redhat", "centos", "rocky", "alma", "fedora")
_DEBIAN_DISTROS = ("debian", "ubuntu")


def detect_os_family(etc: Path = Path("/etc")) -> OSFamily:
    """Detect the host OS family. Defaults to RHEL when uncertain."""
    if (etc / "redhat-release").exists():
        return OSFamily.RHEL
    if (etc / "debian_version").exists():
        return OSFamily.DEBIAN

    if shutil.which("lsb_release"):
        try:
            result = subprocess.run(
                ["lsb_release", "-is"], capture_output=True, text=True, timeout=5
            )
            distro = result.stdout.strip().lower()
            if any(d in distro for d in _RHEL_DISTROS):
                return OSFamily.RHEL
            if any(d in distro for d in _DEBIAN_DISTROS):
                return OSFamily.DEBIAN
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"lsb_release failed: {e}")

    logger.debug("Could not determine OS family, assuming rhel")
    return OSFamily.RHEL


# ─────────────────────────────────────────────────────────────────
# User lookup
# ─────────────────────────────────────────────────────────────────


def lookup_user(username: str) -> SystemUser | None:
    """Look up an OS account. Returns None if it does not exist."""
    try:
        entry = pwd.getpwnam(username)
    except KeyError:
        return None

    try:
        group = grp.getgrgid(entry.pw_gid).gr_name
    except KeyError:
        group = username

    return SystemUser(
        name=entry.pw_name,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        group=group,
    )


# ─────────────────────────────────────────────────────────────────
# Shell commands
# ─────────────────────────────────────────────────────────────────


@dataclass
class CommandResult:
    """Outcome of a shell command."""
    success: bool
    message: str = ""
    stdout: str = ""


class CommandRunner:
    """Runs package manager commands and reports structured results."""

    def __init__(self, timeout: int = 1800):
        self.timeout = timeout

    def has_command(self, name: str) -> bool:
        return shutil.which(name) is not None

    def run(self, cmd: list[str]) -> CommandResult:
        """Run a command. Never raises for command failures."""
        display = " ".join(cmd)
        logger.debug(f"Running: {display}")
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {self.timeout}s: {display}")
            return CommandResult(False, f"timed out after {self.timeout}s")
        except OSError as e:
            logger.warning(f"Command could not be started: {display}: {e}")
            return CommandResult(False, str(e))

        if proc.returncode != 0:
            message = proc.stderr.strip() or f"exit status {proc.returncode}"
            logger.debug(f"Command failed ({proc.returncode}): {display}")
            return CommandResult(False, message, proc.stdout)
        return CommandResult(True, "", proc.stdout)

    def run_script(self, script: str) -> CommandResult:
        """Run a shell snippet through sh -c."""
        return self.run(["sh", "-c", script])


# ─────────────────────────────────────────────────────────────────
# Supervisor
# ─────────────────────────────────────────────────────────────────


class Supervisor:
    """Reloads PHP-FPM units through systemctl."""

    def __init__(self, timeout: float = 10.0, systemctl: str = "systemctl"):
        self.timeout = timeout
        self.systemctl = systemctl

    def _call(self, action: str, service: str) -> tuple[bool, str]:
        try:
            proc = subprocess.run(
                [self.systemctl, action, service],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"{action} of {service} timed out after {self.timeout}s"
        except OSError as e:
            return False, f"{action} of {service} failed: {e}"
        if proc.returncode != 0:
            return False, proc.stderr.strip() or f"{action} of {service} exited {proc.returncode}"
        return True, ""

    def reload(self, service: str):
        """Reload a unit, falling back to reload-or-restart. Raises ReloadError."""
        logger.info(f"Reloading {service}")
        ok, msg = self._call("reload", service)
        if ok:
            return

        logger.debug(f"reload of {service} failed ({msg}), trying reload-or-restart")
        ok, msg = self._call("reload-or-restart", service)
        if not ok:
            raise ReloadError(f"Failed to reload {service}: {msg}")


def ensure_dir(path: Path, mode: int = 0o755):
    """Create a directory (and parents) if missing."""
    os.makedirs(path, mode=mode, exist_ok=True)
