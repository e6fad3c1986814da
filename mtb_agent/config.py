"""
Agent configuration and the per-process context.

Settings come from an auto-created ``mtb_agent.env`` file in the program
directory and from environment variables (environment wins). The file is
hot-reloaded: ``Config.load()`` is cheap to call every poll cycle and only
re-reads the file when its mtime changes.
"""

import getpass
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import __version__
from .models import VersionInfo

logger = logging.getLogger(__name__)


# Paths
def default_program_dir() -> Path:
    override = os.getenv("MTB_PROGRAM_DIR")
    if override:
        return Path(os.path.expanduser(override))
    if os.name == "nt":
        base = os.getenv("APPDATA") or os.path.expanduser("~")
        return Path(base) / "MTB2" / "files"
    return Path(os.path.expanduser("~")) / ".mtb2" / "files"


ENV_FILE_NAME = "mtb_agent.env"

# DEFAULT ENV (auto-create if missing)
DEFAULT_ENV_CONTENT = """# mtb-agent defaults (auto-generated)
# You can edit this file; the agent hot-reloads it each poll cycle.

# Command server (must end with a slash)
SERVER_BASE_URL=http://localhost:8080/v2/
# Leave empty to use the OS user name
COMPUTER_ID=

# Loop timing
POLL_INTERVAL_SECONDS=10
COMMAND_DELAY_SECONDS=0.5
UPDATE_EVERY_N_POLLS=10
DISABLE_UPDATES=false

# Update download (FTP)
FTP_HOST=
FTP_USER=
FTP_PASSWORD=
FTP_REMOTE_DIR=/htdocs/v2/data/files
ARCHIVER_PATH=7za
PROGRAM_NAME=mtb-agent
"""


def ensure_default_env(env_file: Path) -> None:
    try:
        if not env_file.exists():
            env_file.parent.mkdir(parents=True, exist_ok=True)
            env_file.write_text(DEFAULT_ENV_CONTENT, encoding="utf-8")
            os.chmod(env_file, 0o600)
            logger.info("Created default env at %s", env_file)
    except Exception as e:
        logger.warning("Could not create default env at %s: %s", env_file, e)


def _parse_bool(v: Optional[str], default=False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


# CONFIG (hot-reloaded)
class Config:
    SERVER_BASE_URL: str = "http://localhost:8080/v2/"
    COMPUTER_ID: str = ""

    POLL_INTERVAL_SECONDS: int = 10
    COMMAND_DELAY_SECONDS: float = 0.5
    UPDATE_EVERY_N_POLLS: int = 10
    DISABLE_UPDATES: bool = False

    CONNECT_TIMEOUT_SECONDS: int = 10
    READ_TIMEOUT_SECONDS: int = 30
    HTTP_RETRIES: int = 0

    FTP_HOST: str = ""
    FTP_USER: str = ""
    FTP_PASSWORD: str = ""
    FTP_REMOTE_DIR: str = "/htdocs/v2/data/files"
    ARCHIVER_PATH: str = "7za"
    PROGRAM_NAME: str = "mtb-agent"
    HANDOFF_DELAY_SECONDS: int = 5

    MAX_SCREENSHOT_BYTES: int = 10 * 1024 * 1024

    # name -> caster applied to raw text from the env file or environment
    _FIELDS: Tuple[Tuple[str, Callable], ...] = (
        ("SERVER_BASE_URL", str),
        ("COMPUTER_ID", str),
        ("POLL_INTERVAL_SECONDS", int),
        ("COMMAND_DELAY_SECONDS", float),
        ("UPDATE_EVERY_N_POLLS", int),
        ("DISABLE_UPDATES", _parse_bool),
        ("CONNECT_TIMEOUT_SECONDS", int),
        ("READ_TIMEOUT_SECONDS", int),
        ("HTTP_RETRIES", int),
        ("FTP_HOST", str),
        ("FTP_USER", str),
        ("FTP_PASSWORD", str),
        ("FTP_REMOTE_DIR", str),
        ("ARCHIVER_PATH", str),
        ("PROGRAM_NAME", str),
        ("HANDOFF_DELAY_SECONDS", int),
        ("MAX_SCREENSHOT_BYTES", int),
    )

    def __init__(self, env_file: Optional[Path] = None):
        self.env_file = env_file
        self._env_mtime: Optional[float] = None
        self.TOTAL_TIMEOUT = (self.CONNECT_TIMEOUT_SECONDS, self.READ_TIMEOUT_SECONDS)

    def _apply(self, kv: Dict[str, str]):
        for name, caster in self._FIELDS:
            if name not in kv:
                continue
            raw = kv[name].strip()
            if raw == "" and caster is not str:
                continue
            try:
                setattr(self, name, caster(raw))
            except ValueError:
                logger.warning("Ignoring invalid value for %s: %r", name, raw)

    def _from_env_vars(self):
        self._apply({name: os.environ[name] for name, _ in self._FIELDS if name in os.environ})

    def _from_env_file(self):
        if self.env_file is None or not self.env_file.exists():
            return
        try:
            text = self.env_file.read_text(encoding="utf-8")
        except Exception as e:
            logger.warning("Failed to read %s: %s", self.env_file, e)
            return

        kv: Dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            kv[k.strip()] = v.strip()
        self._apply(kv)

    def validate(self):
        url = self.SERVER_BASE_URL.strip()
        if not url.lower().startswith(("http://", "https://")):
            raise RuntimeError(f"SERVER_BASE_URL must be an http(s) URL: {url}")
        if not url.endswith("/"):
            url += "/"
        self.SERVER_BASE_URL = url
        if self.POLL_INTERVAL_SECONDS <= 0:
            raise RuntimeError("POLL_INTERVAL_SECONDS must be positive")
        if self.UPDATE_EVERY_N_POLLS <= 0:
            raise RuntimeError("UPDATE_EVERY_N_POLLS must be positive")
        if self.COMMAND_DELAY_SECONDS < 0:
            raise RuntimeError("COMMAND_DELAY_SECONDS must not be negative")

    def _snapshot(self) -> Dict[str, object]:
        return {name: getattr(self, name) for name, _ in self._FIELDS}

    def _restore(self, values: Dict[str, object]):
        for name, value in values.items():
            setattr(self, name, value)
        self.TOTAL_TIMEOUT = (self.CONNECT_TIMEOUT_SECONDS, self.READ_TIMEOUT_SECONDS)

    def load(self, first_load=False) -> bool:
        """Re-read settings. A rejected reload keeps the last good values and raises RuntimeError."""
        before = self.to_dict()
        last_good = self._snapshot()
        try:
            mtime = self.env_file.stat().st_mtime if self.env_file and self.env_file.exists() else None
        except Exception:
            mtime = None

        if first_load or (mtime != self._env_mtime):
            if not first_load:
                logger.info("Config file change detected; reloading settings from %s", self.env_file)
            self._from_env_file()
            self._env_mtime = mtime

        self._from_env_vars()
        self.TOTAL_TIMEOUT = (self.CONNECT_TIMEOUT_SECONDS, self.READ_TIMEOUT_SECONDS)
        try:
            self.validate()
        except RuntimeError:
            self._restore(last_good)
            raise

        after = self.to_dict()
        changed = (before != after)
        if changed and not first_load:
            logger.info("Active settings updated: %s", json.dumps(after))
        return changed

    def to_dict(self) -> dict:
        data = {name: getattr(self, name) for name, _ in self._FIELDS}
        data.pop("FTP_PASSWORD")
        data["FTP_PASSWORD_SET"] = bool(self.FTP_PASSWORD)
        return data


def resolve_computer_id(config: Config) -> str:
    computer_id = (config.COMPUTER_ID or "").strip()
    if not computer_id:
        computer_id = getpass.getuser()
        logger.warning("Computer ID is empty, using the OS user name (%s)", computer_id)
    return computer_id


# Context
@dataclass
class AgentContext:
    """Process-wide state, built once at startup and handed to every component."""

    config: Config
    version: VersionInfo
    computer_id: str
    program_dir: Path
    args: List[str] = field(default_factory=list)

    @property
    def live_dir(self) -> Path:
        return self.program_dir / "program"

    @property
    def install_dir(self) -> Path:
        return self.program_dir / "install"

    @property
    def download_dir(self) -> Path:
        return self.install_dir / "download"

    @property
    def combine_dir(self) -> Path:
        return self.install_dir / "combine"

    @property
    def extract_dir(self) -> Path:
        return self.install_dir / "extract"

    @property
    def screens_dir(self) -> Path:
        return self.program_dir / "data" / "screens"

    @property
    def logs_dir(self) -> Path:
        return self.program_dir / "logs"

    @property
    def lock_path(self) -> Path:
        return self.program_dir / "mtb_agent.lock"

    @classmethod
    def build(cls, args: List[str], program_dir: Optional[Path] = None,
              config: Optional[Config] = None) -> "AgentContext":
        program_dir = program_dir or default_program_dir()
        if config is None:
            env_file = program_dir / ENV_FILE_NAME
            ensure_default_env(env_file)
            config = Config(env_file)
            config.load(first_load=True)
        version = VersionInfo(version_string=__version__, version_url=config.SERVER_BASE_URL)
        return cls(
            config=config,
            version=version,
            computer_id=resolve_computer_id(config),
            program_dir=program_dir,
            args=list(args),
        )
