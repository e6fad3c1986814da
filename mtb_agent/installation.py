"""
Install-directory housekeeping: deferred handoff/teardown scripts, user PATH
registration, finishing an update and uninstalling.

Anything that replaces or deletes the live installation runs from a deferred
script, after this process has exited and released its files.
"""

import logging
import os
import shlex
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from .config import AgentContext

logger = logging.getLogger(__name__)

PATH_MARKER = "# added by mtb-agent"
IS_WINDOWS = os.name == "nt"


# Scripts
def script_suffix() -> str:
    return ".bat" if IS_WINDOWS else ".sh"


def handoff_script_path(ctx: AgentContext) -> Path:
    return ctx.install_dir / f"update{script_suffix()}"


def program_executable(ctx: AgentContext) -> Path:
    name = ctx.config.PROGRAM_NAME
    if IS_WINDOWS and not name.lower().endswith(".exe"):
        name += ".exe"
    return ctx.live_dir / name


def render_handoff_script(extract_dir: Path, live_dir: Path, executable: Path,
                          args: List[str], delay: int, windows: Optional[bool] = None) -> str:
    if windows is None:
        windows = IS_WINDOWS
    if windows:
        return "\r\n".join([
            "@echo off",
            f"timeout /t {delay} > nul",
            "echo Copying files; finishing update...",
            f"xcopy /s /y /i \"{extract_dir}\" \"{live_dir}\"",
            f"start \"\" \"{executable}\" {subprocess.list2cmdline(args)}",
            "",
        ])
    return "\n".join([
        "#!/bin/sh",
        f"sleep {delay}",
        "echo 'Copying files; finishing update...'",
        f"mkdir -p {shlex.quote(str(live_dir))}",
        f"cp -R {shlex.quote(str(extract_dir))}/. {shlex.quote(str(live_dir))}/",
        f"chmod +x {shlex.quote(str(executable))} 2>/dev/null",
        f"nohup {shlex.quote(str(executable))} {' '.join(shlex.quote(a) for a in args)} >/dev/null 2>&1 &",
        "",
    ])


def render_teardown_script(program_dir: Path, delay: int, windows: Optional[bool] = None) -> str:
    if windows is None:
        windows = IS_WINDOWS
    if windows:
        return "\r\n".join([
            "@echo off",
            "echo Uninstalling program...",
            f"timeout /t {delay} > nul",
            f"rmdir /s /q \"{program_dir}\"",
            "echo Uninstallation complete",
            "start \"\" cmd.exe /C \"timeout /T 3 > nul && del /Q /F \"%~f0\"\"",
            "exit",
            "",
        ])
    return "\n".join([
        "#!/bin/sh",
        "echo 'Uninstalling program...'",
        f"sleep {delay}",
        f"rm -rf {shlex.quote(str(program_dir))}",
        "echo 'Uninstallation complete'",
        'rm -f "$0"',
        "",
    ])


def write_script(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if not IS_WINDOWS:
        os.chmod(path, 0o700)
    return path


def launch_detached(script: Path) -> subprocess.Popen:
    """Start `script` so that it outlives this process."""
    if IS_WINDOWS:
        flags = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        return subprocess.Popen(["cmd.exe", "/c", str(script)], creationflags=flags, close_fds=True)
    return subprocess.Popen(
        ["/bin/sh", str(script)],
        start_new_session=True,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
    )


# User PATH
def _profile_path() -> Path:
    return Path(os.path.expanduser("~")) / ".profile"


def _read_user_path_windows() -> str:
    import winreg
    with winreg.OpenKey(winreg.HKEY_CURRENT_USER, "Environment", 0, winreg.KEY_READ) as key:
        try:
            value, _ = winreg.QueryValueEx(key, "Path")
            return value
        except FileNotFoundError:
            return ""


def _write_user_path_windows(value: str) -> None:
    import winreg
    with winreg.OpenKey(winreg.HKEY_CURRENT_USER, "Environment", 0, winreg.KEY_SET_VALUE) as key:
        winreg.SetValueEx(key, "Path", 0, winreg.REG_EXPAND_SZ, value)


def ensure_on_path(directory: Path, profile: Optional[Path] = None) -> bool:
    """Add `directory` to the user's PATH. Returns False if it was already there."""
    directory = str(directory)
    if IS_WINDOWS:
        current = _read_user_path_windows()
        if directory in current.split(";"):
            return False
        _write_user_path_windows(f"{current};{directory}" if current else directory)
        return True

    profile = profile or _profile_path()
    existing = profile.read_text(encoding="utf-8") if profile.exists() else ""
    line = f"export PATH=\"$PATH:{directory}\"  {PATH_MARKER}"
    if line in existing.splitlines():
        return False
    with open(profile, "a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(line + "\n")
    return True


def remove_from_path(directory: Path, profile: Optional[Path] = None) -> bool:
    directory = str(directory)
    if IS_WINDOWS:
        parts = _read_user_path_windows().split(";")
        kept = [p for p in parts if p and not p.startswith(directory)]
        if len(kept) == len([p for p in parts if p]):
            return False
        _write_user_path_windows(";".join(kept))
        return True

    profile = profile or _profile_path()
    if not profile.exists():
        return False
    lines = profile.read_text(encoding="utf-8").splitlines()
    kept = [l for l in lines if not (PATH_MARKER in l and directory in l)]
    if len(kept) == len(lines):
        return False
    profile.write_text("\n".join(kept) + ("\n" if kept else ""), encoding="utf-8")
    return True


# Finish update / uninstall
def finish_update(ctx: AgentContext) -> None:
    """Second phase of an update, run by the relaunched program."""
    script = handoff_script_path(ctx)
    if script.exists():
        script.unlink()
        logger.debug("Deleted update script %s", script)

    if ctx.install_dir.exists():
        shutil.rmtree(ctx.install_dir, ignore_errors=True)
        logger.debug("Deleted install directory %s", ctx.install_dir)

    try:
        if ensure_on_path(ctx.live_dir):
            logger.debug("Added program directory to PATH")
        else:
            logger.debug("Program directory already in PATH")
    except OSError as e:
        logger.warning(f"Could not update PATH: {e}")


def uninstall(ctx: AgentContext, exit_fn: Callable[[int], None] = sys.exit) -> Path:
    """Remove PATH references, schedule deletion of the program dir, and exit."""
    try:
        if remove_from_path(ctx.live_dir):
            logger.debug("Removed program directory from PATH")
        else:
            logger.debug("Program directory not in PATH")
    except OSError as e:
        logger.warning(f"Could not update PATH: {e}")

    script = Path(tempfile.gettempdir()) / f"mtb_agent_uninstall{script_suffix()}"
    write_script(script, render_teardown_script(ctx.program_dir, ctx.config.HANDOFF_DELAY_SECONDS))
    launch_detached(script)
    logger.info("Uninstall scheduled; exiting.")
    # release log file handles inside the program dir before it is deleted
    for handler in list(logging.getLogger().handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
    exit_fn(0)
    return script
