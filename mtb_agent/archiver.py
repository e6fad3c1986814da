"""7-Zip (7za) wrapper used to rebuild and unpack multi-part update archives."""

import logging
import subprocess
from pathlib import Path
from typing import List

from .errors import UpdateError

logger = logging.getLogger(__name__)


class Archiver:
    def __init__(self, executable: str = "7za"):
        self.executable = executable

    def _run(self, args: List[str]) -> None:
        cmd = [self.executable] + args
        logger.debug("Running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError as e:
            raise UpdateError(f"Archiver not found: {self.executable}") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", "replace").strip()
            raise UpdateError(f"{' '.join(cmd)} exited with {e.returncode}: {stderr}") from e

    def combine_parts(self, first_part: Path, dest_dir: Path) -> List[Path]:
        """Rebuild a split archive (name.zip.001, .002, ...) into dest_dir; returns the archives produced."""
        if not first_part.exists():
            raise UpdateError(f"First archive part missing: {first_part}")
        dest_dir.mkdir(parents=True, exist_ok=True)
        self._run(["e", str(first_part), f"-o{dest_dir}", "-y"])
        archives = sorted(dest_dir.glob("*.zip"))
        if not archives:
            raise UpdateError(f"Combining {first_part.name} produced no archive")
        return archives

    def extract(self, archive: Path, dest_dir: Path) -> None:
        dest_dir.mkdir(parents=True, exist_ok=True)
        self._run(["x", str(archive), f"-o{dest_dir}", "-y"])
