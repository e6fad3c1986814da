"""
Local actions the dispatcher can trigger: dialogs, screen capture, process
control and session/power commands.

SystemActions is the only place that touches the desktop or the OS; tests swap
it for a recording double.
"""

import getpass
import logging
import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import Dict, List

import psutil
from PIL import ImageGrab

from .errors import ActionError

logger = logging.getLogger(__name__)

MB_ICONINFORMATION = 0x40
MB_SYSTEMMODAL = 0x1000

SCREENSHOT_SAVED_PREFIX = "Screenshot saved to"


def _platform_key() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


# Power & session commands per platform
POWER_COMMANDS: Dict[str, Dict[str, List[str]]] = {
    "windows": {
        "shutdown": ["shutdown", "/s", "/t", "0"],
        "restart": ["shutdown", "/r", "/t", "0"],
        "logoff": ["shutdown", "/l"],
    },
    "darwin": {
        "shutdown": ["osascript", "-e", 'tell app "System Events" to shut down'],
        "restart": ["osascript", "-e", 'tell app "System Events" to restart'],
        "logoff": ["osascript", "-e", 'tell app "System Events" to log out'],
        "lock": ["pmset", "displaysleepnow"],
    },
    "linux": {
        "shutdown": ["systemctl", "poweroff"],
        "restart": ["systemctl", "reboot"],
        "logoff": ["loginctl", "terminate-user", "{user}"],
        "lock": ["loginctl", "lock-session"],
    },
}


def _normalize_process_name(name: str) -> str:
    name = name.strip().lower()
    return name[:-4] if name.endswith(".exe") else name


class SystemActions:
    def __init__(self, platform_key: str = ""):
        self.platform = platform_key or _platform_key()

    # Dialogs
    def show_message_box(self, text: str = "Something went wrong.", caption: str = "Error", style: int = 0) -> int:
        """Show a blocking message box; returns the button id (0 where unknown)."""
        if self.platform == "windows":
            import ctypes
            return ctypes.windll.user32.MessageBoxW(0, text, caption, style | MB_SYSTEMMODAL)
        try:
            import tkinter
            from tkinter import messagebox
        except ImportError as e:
            raise ActionError(f"No dialog support on this host: {e}") from e
        try:
            root = tkinter.Tk()
        except tkinter.TclError as e:
            raise ActionError(f"No display available for message box: {e}") from e
        root.withdraw()
        root.attributes("-topmost", True)
        try:
            messagebox.showinfo(caption, text, parent=root)
        finally:
            root.destroy()
        return 0

    def show_notification(self, text: str, caption: str = "Notification") -> None:
        """Show a non-blocking notification."""
        if self.platform == "windows":
            threading.Thread(
                target=self.show_message_box,
                args=(text, caption, MB_ICONINFORMATION),
                daemon=True,
            ).start()
            return
        if self.platform == "darwin":
            script = f'display notification {_applescript_quote(text)} with title {_applescript_quote(caption)}'
            self._run(["osascript", "-e", script])
            return
        self._run(["notify-send", caption, text])

    # Screen
    def capture_screen(self, screenshot_dir: Path, screenshot_name: str) -> str:
        """Capture every monitor to a PNG. Returns a status text instead of raising."""
        try:
            screenshot_dir.mkdir(parents=True, exist_ok=True)
            path = screenshot_dir / screenshot_name
            image = ImageGrab.grab(all_screens=True)
            image.save(path, format="PNG")
            return f"{SCREENSHOT_SAVED_PREFIX} {path}"
        except Exception as e:
            logger.error(f"Failed to take screenshot: {e}")
            return f"Failed to take screenshot: {e}"

    # Processes
    def launch_process(self, program: str) -> None:
        try:
            if self.platform == "windows":
                os.startfile(program)
            else:
                subprocess.Popen([program], start_new_session=True,
                                 stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            raise ActionError(f"Failed to start {program}: {e}") from e

    def kill_processes_by_name(self, name: str) -> int:
        """Kill every process called `name` (".exe" optional). Returns how many were killed."""
        target = _normalize_process_name(name)
        if not target:
            return 0
        own_pid = os.getpid()
        killed = 0
        for proc in psutil.process_iter(["name"]):
            try:
                proc_name = proc.info.get("name") or ""
                if proc.pid == own_pid or _normalize_process_name(proc_name) != target:
                    continue
                proc.kill()
                killed += 1
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                logger.warning(f"Access denied killing {name} (pid {proc.pid})")
        return killed

    # Power & session
    def _run(self, cmd: List[str]) -> None:
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ActionError(f"{' '.join(cmd)} failed: {e}") from e

    def _power(self, action: str) -> None:
        cmd = POWER_COMMANDS.get(self.platform, {}).get(action)
        if cmd is None:
            raise ActionError(f"{action} is not supported on {self.platform}")
        self._run([part.replace("{user}", getpass.getuser()) for part in cmd])

    def shutdown(self) -> None:
        self._power("shutdown")

    def restart(self) -> None:
        self._power("restart")

    def logoff(self) -> None:
        self._power("logoff")

    def lock_screen(self) -> None:
        if self.platform == "windows":
            import ctypes
            if not ctypes.windll.user32.LockWorkStation():
                raise ActionError("LockWorkStation failed")
            return
        self._power("lock")


def _applescript_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
