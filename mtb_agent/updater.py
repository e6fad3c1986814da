"""
Self-update: version check, FTP download of the split archive, 7za combine and
extract, then handoff to a deferred script that swaps the installation and
relaunches the new build.

The handoff is two-phase. This process stages everything under
``<program_dir>/install``, starts the script and exits; the relaunched process
sees ``--finishupdate`` and runs ``installation.finish_update``.

State machine::

    IDLE -> CHECK_VERSION -> NO_UPDATE_NEEDED
                          -> DOWNLOADING -> COMBINING -> EXTRACTING -> HANDOFF -> EXITED

Any exception sends the engine back to CHECK_VERSION; after UPDATE_ATTEMPTS
failed attempts the update is abandoned until the next scheduled check.
"""

import json
import logging
import re
import shutil
import sys
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .archiver import Archiver
from .arguments import handoff_arguments
from .config import AgentContext
from .errors import UpdateError
from .file_transfer import FileTransfer
from .installation import (
    handoff_script_path,
    launch_detached,
    program_executable,
    render_handoff_script,
    write_script,
)
from .models import UpdateManifest
from .transport import Transport

logger = logging.getLogger(__name__)

UPDATE_ATTEMPTS = 3
FIRST_PART_NAME = "updateParts.zip.001"
_VERSION_RE = re.compile(r"^\d+(\.\d+){1,3}$")


class UpdateState(Enum):
    IDLE = "idle"
    CHECK_VERSION = "check_version"
    NO_UPDATE_NEEDED = "no_update_needed"
    DOWNLOADING = "downloading"
    COMBINING = "combining"
    EXTRACTING = "extracting"
    HANDOFF = "handoff"
    EXITED = "exited"
    ABANDONED = "abandoned"


# Version helpers
def normalize_version_tag(tag: Optional[str]) -> str:
    if not tag:
        return "0.0.0"
    value = str(tag).strip()
    if value.startswith("v") or value.startswith("V"):
        value = value[1:]
    return value or "0.0.0"


def parse_version(value: str) -> str:
    """Validate a dotted numeric version (major.minor[.build[.revision]])."""
    normalized = normalize_version_tag(value)
    if not _VERSION_RE.match(normalized):
        raise UpdateError(f"Invalid version string from server: {value!r}")
    return normalized


def _version_key(value: str) -> Tuple[int, ...]:
    parts: List[int] = []
    for part in normalize_version_tag(value).split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    while len(parts) < 4:
        parts.append(0)
    return tuple(parts)


def is_remote_version_newer(remote: str, local: str) -> bool:
    return _version_key(remote) > _version_key(local)


class UpdateEngine:
    def __init__(
        self,
        ctx: AgentContext,
        transport: Transport,
        file_transfer: Optional[FileTransfer] = None,
        archiver: Optional[Archiver] = None,
        launcher: Callable[[Path], object] = launch_detached,
        exit_fn: Callable[[int], None] = sys.exit,
    ):
        self.ctx = ctx
        self.transport = transport
        self.file_transfer = file_transfer or FileTransfer(ctx.config)
        self.archiver = archiver or Archiver(ctx.config.ARCHIVER_PATH)
        self.launcher = launcher
        self.exit_fn = exit_fn
        self.state = UpdateState.IDLE

    def _set_state(self, state: UpdateState) -> None:
        logger.debug("Update state: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, force: bool = False) -> bool:
        """Check for and apply an update. Returns False when nothing was applied.

        On success the process exits inside this call.
        """
        for attempt in range(1, UPDATE_ATTEMPTS + 1):
            try:
                return self._run_once(force)
            except Exception as e:
                logger.error(f"Error during update (attempt {attempt}/{UPDATE_ATTEMPTS}): {e}")
                if attempt < UPDATE_ATTEMPTS:
                    logger.info("Retrying update...")
        self._set_state(UpdateState.ABANDONED)
        logger.error("Update abandoned after %d attempts; staying on %s",
                     UPDATE_ATTEMPTS, self.ctx.version.version_string)
        return False

    def _run_once(self, force: bool) -> bool:
        self.pre_clean()
        self._set_state(UpdateState.CHECK_VERSION)
        latest = self.fetch_latest_version()
        current = self.ctx.version.version_string

        logger.debug(f"Current version: {current}")
        logger.debug(f"Latest version: {latest}")
        if is_remote_version_newer(latest, current):
            logger.info("Update available")
        else:
            logger.info("No update available")
            if not force:
                self._set_state(UpdateState.NO_UPDATE_NEEDED)
                return False
            logger.info("Installing anyway (forced)")

        logger.info("Initiating update")
        manifest = self.fetch_manifest(latest)

        self._set_state(UpdateState.DOWNLOADING)
        self.download(manifest)

        self._set_state(UpdateState.COMBINING)
        logger.info("Download complete, updating...")
        archives = self.archiver.combine_parts(self.ctx.download_dir / FIRST_PART_NAME, self.ctx.combine_dir)

        self._set_state(UpdateState.EXTRACTING)
        logger.debug("Files combined successfully, extracting...")
        for archive in archives:
            self.archiver.extract(archive, self.ctx.extract_dir)

        self._set_state(UpdateState.HANDOFF)
        logger.debug("Files extracted successfully, starting update script...")
        script = self.handoff()

        self._set_state(UpdateState.EXITED)
        logger.info(f"Exiting program to finish update (script: {script})")
        self.exit_fn(0)
        return True

    # Steps
    def pre_clean(self) -> None:
        """Remove leftovers of an aborted update."""
        if self.ctx.install_dir.exists():
            shutil.rmtree(self.ctx.install_dir)
            logger.debug("Removed stale install directory %s", self.ctx.install_dir)

    def fetch_latest_version(self) -> str:
        text = self.transport.fetch(self.transport.url("version.txt"))
        return parse_version(text)

    def fetch_manifest(self, latest_version: str) -> UpdateManifest:
        text = self.transport.fetch(self.transport.url("data/getFiles.php"))
        try:
            files = json.loads(text)
        except ValueError as e:
            raise UpdateError(f"Error deserialising file list: {e}") from e
        if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
            raise UpdateError(f"File list is not a JSON array of names: {text.strip()[:200]}")
        if not files:
            raise UpdateError("Server lists no update files")
        return UpdateManifest(latest_version=latest_version, file_list=files)

    def download(self, manifest: UpdateManifest) -> List[Path]:
        return self.file_transfer.download_files(manifest.file_list, self.ctx.download_dir)

    def handoff(self) -> Path:
        script = handoff_script_path(self.ctx)
        content = render_handoff_script(
            extract_dir=self.ctx.extract_dir,
            live_dir=self.ctx.live_dir,
            executable=program_executable(self.ctx),
            args=handoff_arguments(self.ctx.args),
            delay=self.ctx.config.HANDOFF_DELAY_SECONDS,
        )
        write_script(script, content)
        self.launcher(script)
        return script
