"""Relaunches the agent in the background unless a UI flag was given."""

import logging
import os
import subprocess
import sys
from typing import Callable, List, Sequence

from .arguments import UI_FLAGS

logger = logging.getLogger(__name__)

ENABLE_UI_FLAG = "--enableui"


def has_ui_flag(args: Sequence[str]) -> bool:
    return any(a.strip().lower() in UI_FLAGS for a in args)


def self_command(args: Sequence[str]) -> List[str]:
    """Command line that starts this program again with `args`."""
    if getattr(sys, "frozen", False):
        return [sys.executable] + list(args)
    return [sys.executable, "-m", "mtb_agent"] + list(args)


def _spawn_background(cmd: List[str]) -> subprocess.Popen:
    kwargs = dict(stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                  stderr=subprocess.DEVNULL, close_fds=True)
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True
    return subprocess.Popen(cmd, **kwargs)


def ensure_foreground(args: Sequence[str],
                      spawn: Callable[[List[str]], subprocess.Popen] = _spawn_background,
                      exit_fn: Callable[[int], None] = sys.exit) -> bool:
    """
    Without a UI flag, start a detached copy of this program with ``--enableui``
    appended and exit. If the relaunch fails we keep running in this process.

    Returns True when the current process should carry on.
    """
    if has_ui_flag(args):
        return True

    cmd = self_command(list(args) + [ENABLE_UI_FLAG])
    try:
        proc = spawn(cmd)
    except OSError as e:
        logger.error(f"Failed to start background process: {e}; continuing in foreground")
        return True
    if proc is not None and proc.poll() is not None:
        logger.error("Background process exited immediately (code %s); continuing in foreground", proc.returncode)
        return True

    logger.debug("Started background process: %s", " ".join(cmd))
    exit_fn(0)
    return False
