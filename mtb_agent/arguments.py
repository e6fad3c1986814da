"""
Command-line flags. All flags are case-folded; there are no positional
arguments, and unknown flags only produce a warning.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)


class ArgAction(Enum):
    HELP = "help"
    VERSION = "version"
    DEBUG = "debug"
    UPDATE = "update"
    FINISH_UPDATE = "finish_update"
    PRIORITY = "priority"
    LINE_NUMBERS = "line_numbers"
    ENABLE_UI = "enable_ui"


_ALIASES = {
    ArgAction.HELP: ("-h", "--help"),
    ArgAction.VERSION: ("-v", "--version"),
    ArgAction.DEBUG: ("-d", "--debug"),
    ArgAction.UPDATE: ("--forceupdate", "--forceinstall", "--update", "--install", "-u"),
    ArgAction.FINISH_UPDATE: ("--finishupdate", "--finishinstall"),
    ArgAction.PRIORITY: ("--setpriority", "--normalpriority", "--priority",
                         "--setprocesspriority", "--normalprocesspriority", "--processpriority"),
    ArgAction.LINE_NUMBERS: ("--loglinenumbers", "--linenumbers", "--lognumbers",
                             "--debugloglines", "--loglines", "-ln"),
    ArgAction.ENABLE_UI: ("--enableui", "--enableconsoleui", "--ui"),
}

FLAG_TABLE: Dict[str, ArgAction] = {alias: action for action, aliases in _ALIASES.items() for alias in aliases}

UPDATE_FLAGS = frozenset(_ALIASES[ArgAction.UPDATE])
UI_FLAGS = frozenset(_ALIASES[ArgAction.ENABLE_UI])
FINISH_UPDATE_FLAG = "--finishupdate"

HELP_TEXT = """
---------- Help ----------

Arguments:

-h, --help:
\tShow help information

-v, --version:
\tShow version information

-d, --debug:
\tEnable debug logging

--forceupdate, --forceinstall, --update, --install, -u:
\tForce an update now

--finishupdate, --finishinstall:
\tFinish an update (used by the update script)

--setpriority, --normalpriority, --priority, --setprocesspriority, --normalprocesspriority, --processpriority:
\tAccepted for compatibility; process priority is left unchanged

--loglinenumbers, --linenumbers, --lognumbers, --debugloglines, --loglines, -ln:
\tInclude file and line number in log lines

--enableui, --enableconsoleui, --ui:
\tRun in the foreground instead of relaunching in the background

---------- End of help ----------
"""


@dataclass
class ParsedArgs:
    help: bool = False
    version: bool = False
    debug: bool = False
    update: bool = False
    finish_update: bool = False
    line_numbers: bool = False
    enable_ui: bool = False
    priority: bool = False


def parse_arguments(args: Iterable[str]) -> ParsedArgs:
    parsed = ParsedArgs()
    for raw in args:
        arg = raw.strip().lower()
        action = FLAG_TABLE.get(arg)
        if action is None:
            logger.warning(f"Unknown argument provided: {raw}")
            continue
        setattr(parsed, action.value, True)
    return parsed


def handoff_arguments(args: Iterable[str]) -> List[str]:
    """Arguments for the relaunched program: update flags removed, finish flag added."""
    kept = [a for a in args if a.strip().lower() not in UPDATE_FLAGS
            and FLAG_TABLE.get(a.strip().lower()) is not ArgAction.FINISH_UPDATE]
    return kept + [FINISH_UPDATE_FLAG]
