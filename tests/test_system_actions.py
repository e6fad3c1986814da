import os
import subprocess
from types import SimpleNamespace

import psutil
import pytest

from mtb_agent import system_actions
from mtb_agent.errors import ActionError
from mtb_agent.system_actions import SCREENSHOT_SAVED_PREFIX, SystemActions


class _Proc:
    def __init__(self, pid, name, deny=False, gone=False):
        self.pid = pid
        self.info = {"name": name}
        self.deny = deny
        self.gone = gone
        self.killed = False

    def kill(self):
        if self.gone:
            raise psutil.NoSuchProcess(self.pid)
        if self.deny:
            raise psutil.AccessDenied(self.pid)
        self.killed = True


def test_kill_matches_names_with_or_without_exe(monkeypatch):
    procs = [
        _Proc(10, "Notepad.exe"),
        _Proc(11, "notepad"),
        _Proc(12, "calc.exe"),
        _Proc(13, "notepad.exe", gone=True),
        _Proc(14, "notepad.exe", deny=True),
        _Proc(os.getpid(), "notepad.exe"),
    ]
    monkeypatch.setattr(system_actions.psutil, "process_iter", lambda attrs=None: iter(procs))

    assert SystemActions("linux").kill_processes_by_name("NOTEPAD.EXE") == 2
    assert [p.pid for p in procs if p.killed] == [10, 11]


def test_kill_without_match_returns_zero(monkeypatch):
    monkeypatch.setattr(system_actions.psutil, "process_iter", lambda attrs=None: iter([_Proc(1, "init")]))
    assert SystemActions("linux").kill_processes_by_name("ghost") == 0
    assert SystemActions("linux").kill_processes_by_name("  ") == 0


def test_capture_screen_saves_png(tmp_path, monkeypatch):
    saved = []
    image = SimpleNamespace(save=lambda path, format=None: saved.append((path, format)))
    monkeypatch.setattr(system_actions.ImageGrab, "grab", lambda all_screens=False: image)

    result = SystemActions("linux").capture_screen(tmp_path / "screens", "shot.png")

    assert result == f"{SCREENSHOT_SAVED_PREFIX} {tmp_path / 'screens' / 'shot.png'}"
    assert saved == [(tmp_path / "screens" / "shot.png", "PNG")]


def test_capture_screen_reports_failure_as_text(tmp_path, monkeypatch):
    def no_display(all_screens=False):
        raise OSError("X connection failed")
    monkeypatch.setattr(system_actions.ImageGrab, "grab", no_display)

    result = SystemActions("linux").capture_screen(tmp_path, "shot.png")

    assert result.startswith("Failed to take screenshot:")
    assert "X connection failed" in result


def test_power_commands_run_per_platform(monkeypatch):
    ran = []
    monkeypatch.setattr(system_actions.subprocess, "run", lambda cmd, **kw: ran.append(cmd))

    SystemActions("linux").restart()
    SystemActions("darwin").lock_screen()

    assert ran == [["systemctl", "reboot"], ["pmset", "displaysleepnow"]]


def test_failing_os_command_raises_action_error(monkeypatch):
    def failing(cmd, **kw):
        raise subprocess.CalledProcessError(1, cmd)
    monkeypatch.setattr(system_actions.subprocess, "run", failing)

    with pytest.raises(ActionError):
        SystemActions("linux").shutdown()


def test_launch_failure_raises_action_error(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("no such program")
    monkeypatch.setattr(system_actions.subprocess, "Popen", missing)

    with pytest.raises(ActionError):
        SystemActions("linux").launch_process("/nope/app")
