"""
Agent entry point: logging setup, single-instance lock and the poll loop.

Each poll iteration fetches the queued commands for this computer, runs them
one at a time and, every UPDATE_EVERY_N_POLLS iterations, checks for an
update. The loop only ends through the exit calls in the update handoff and
uninstall paths.
"""

import logging
import os
import sys
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Callable, List, Optional
from urllib.parse import urlencode

import schedule
from filelock import FileLock, Timeout

from . import __version__
from .arguments import HELP_TEXT, ParsedArgs, parse_arguments
from .bootstrap import ensure_foreground
from .config import AgentContext
from .decoder import decode_poll_response
from .dispatcher import Dispatcher
from .errors import DecodeError, NetworkError
from .installation import finish_update
from .models import PollResult
from .reporter import ResponseReporter
from .transport import Transport
from .updater import UpdateEngine

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "mtb_agent.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_FORMAT_LINES = "%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


# Logging
def setup_logging(ctx: AgentContext, debug: bool = False, line_numbers: bool = False) -> None:
    """Attach a rotating file handler and a console handler to the root logger."""
    log_path = ctx.logs_dir / LOG_FILE_NAME
    os.makedirs(ctx.logs_dir, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT_LINES if line_numbers else LOG_FORMAT)

    file_handler = TimedRotatingFileHandler(log_path, when='D', interval=2, backupCount=2, encoding="utf-8")
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(stream_handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    # chatty third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)


# Single instance
def acquire_instance_lock(ctx: AgentContext) -> Optional[FileLock]:
    """Return the held lock, or None if another agent already holds it."""
    os.makedirs(ctx.program_dir, exist_ok=True)
    lock = FileLock(str(ctx.lock_path))
    try:
        lock.acquire(timeout=0)
    except Timeout:
        return None
    return lock


class Agent:
    def __init__(
        self,
        ctx: AgentContext,
        transport: Optional[Transport] = None,
        dispatcher: Optional[Dispatcher] = None,
        updater: Optional[UpdateEngine] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.transport = transport or Transport(ctx)
        self.updater = updater or UpdateEngine(ctx, self.transport)
        self.dispatcher = dispatcher or Dispatcher(
            ctx, ResponseReporter(self.transport), self.transport, self.updater
        )
        self.sleep = sleep
        self.iteration = 0

    @property
    def config(self):
        return self.ctx.config

    def poll_url(self) -> str:
        query = urlencode({"computerId": self.ctx.computer_id})
        return f"{self.transport.url('commands/getCommands.php')}?{query}"

    def poll_once(self) -> PollResult:
        """Fetch and decode this computer's pending commands. Raises NetworkError."""
        text = self.transport.fetch(self.poll_url())
        result = decode_poll_response(text, self.ctx.computer_id)
        if not result.success:
            logger.error(result.error_message)
        return result

    def dispatch_all(self, result: PollResult) -> None:
        for index, command in enumerate(result.commands):
            if index:
                self.sleep(self.config.COMMAND_DELAY_SECONDS)
            self.dispatcher.dispatch(command)

    def update_due(self) -> bool:
        if self.config.DISABLE_UPDATES:
            return False
        return self.iteration % self.config.UPDATE_EVERY_N_POLLS == 0

    def run_iteration(self) -> None:
        self.iteration += 1
        try:
            self.config.load()  # hot-reload
        except RuntimeError as e:
            logger.error(f"Invalid configuration, keeping previous settings: {e}")

        try:
            result = self.poll_once()
        except (NetworkError, DecodeError) as e:
            logger.error(f"Error when getting commands: {e}")
            result = None

        if result is not None and result.commands:
            logger.info(f"Received {len(result.commands)} command(s)")
            self.dispatch_all(result)

        if self.update_due():
            logger.debug("Checking for updates (iteration %d)", self.iteration)
            self.updater.run()

    def _safe_iteration(self) -> None:
        try:
            self.run_iteration()
        except Exception:
            logger.exception("Unhandled exception in poll iteration")

    def run_forever(self) -> None:
        scheduler = schedule.Scheduler()
        interval = self.config.POLL_INTERVAL_SECONDS
        scheduler.every(interval).seconds.do(self._safe_iteration)
        logger.info(f"Polling {self.transport.base_url} every {interval}s as {self.ctx.computer_id}")

        self._safe_iteration()
        while True:
            try:
                scheduler.run_pending()
            except Exception as e:
                logger.error(f"Unexpected error in scheduler loop: {e}")
            if interval != self.config.POLL_INTERVAL_SECONDS:
                interval = self.config.POLL_INTERVAL_SECONDS
                scheduler.clear()
                scheduler.every(interval).seconds.do(self._safe_iteration)
                logger.info(f"Poll interval changed to {interval}s")
            self.sleep(0.5)


def _startup(ctx: AgentContext, parsed: ParsedArgs) -> None:
    logger.info(f"Starting mtb-agent {__version__} (computer id: {ctx.computer_id}, program dir: {ctx.program_dir})")
    if parsed.debug:
        logger.debug("Debug logging enabled (source: arguments)")
    if parsed.priority:
        logger.info("Process priority arguments are accepted but have no effect")
    logger.debug("Settings: %s", ctx.config.to_dict())


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parsed = parse_arguments(argv)

    if parsed.help:
        print(HELP_TEXT)
        return 0
    if parsed.version:
        print(f"mtb-agent {__version__}")
        return 0

    try:
        ctx = AgentContext.build(argv)
    except RuntimeError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error("Fatal configuration error: %s", e)
        return 1

    setup_logging(ctx, debug=parsed.debug, line_numbers=parsed.line_numbers)
    ensure_foreground(argv)
    _startup(ctx, parsed)

    lock = acquire_instance_lock(ctx)
    if lock is None:
        logger.info(f"Another instance is already running (lock: {ctx.lock_path}); exiting")
        return 0

    try:
        if parsed.finish_update:
            logger.info("Finishing update")
            finish_update(ctx)

        agent = Agent(ctx)
        if parsed.update:
            logger.info("Update forced (source: arguments)")
            agent.updater.run(force=True)
        elif not ctx.config.DISABLE_UPDATES:
            agent.updater.run()

        agent.run_forever()
    finally:
        lock.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())
