"""FTP downloads of update archive parts."""

import ftplib
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from tqdm import tqdm

from .config import Config
from .errors import NetworkError

logger = logging.getLogger(__name__)

# (files_done, file_count, bytes_done_in_file, file_size) -> None
ProgressCallback = Callable[[int, int, int, Optional[int]], None]


def overall_progress(file_index: int, file_count: int, file_fraction: float) -> float:
    """Fraction of the whole transfer: finished files plus the current file's share."""
    if file_count <= 0:
        return 1.0
    file_fraction = min(max(file_fraction, 0.0), 1.0)
    return (file_index + file_fraction) / file_count


class FileTransfer:
    def __init__(self, config: Config, ftp_factory: Callable[..., ftplib.FTP] = ftplib.FTP):
        self.config = config
        self.ftp_factory = ftp_factory

    def _connect(self) -> ftplib.FTP:
        if not self.config.FTP_HOST:
            raise NetworkError("FTP_HOST is not configured")
        ftp = self.ftp_factory(self.config.FTP_HOST, timeout=self.config.READ_TIMEOUT_SECONDS)
        ftp.login(self.config.FTP_USER, self.config.FTP_PASSWORD)
        return ftp

    def download_files(self, names: List[str], dest_dir: Path,
                       progress: Optional[ProgressCallback] = None) -> List[Path]:
        """Download every name from FTP_REMOTE_DIR into dest_dir; returns the local paths."""
        dest_dir.mkdir(parents=True, exist_ok=True)
        remote_dir = self.config.FTP_REMOTE_DIR.rstrip("/")
        downloaded: List[Path] = []
        try:
            ftp = self._connect()
        except ftplib.all_errors as e:
            raise NetworkError(f"FTP connect to {self.config.FTP_HOST} failed: {e}") from e

        bar = tqdm(total=len(names), desc="Downloading files", unit="file", leave=False)
        try:
            for index, name in enumerate(names):
                # names come from the server; keep them inside dest_dir
                local_path = dest_dir / os.path.basename(name)
                remote_path = f"{remote_dir}/{name}"
                try:
                    size = ftp.size(remote_path)
                except ftplib.all_errors:
                    size = None

                done = 0
                with open(local_path, "wb") as handle:
                    def on_chunk(chunk: bytes):
                        nonlocal done
                        handle.write(chunk)
                        done += len(chunk)
                        if size:
                            bar.n = overall_progress(index, len(names), done / size) * len(names)
                            bar.refresh()
                        if progress is not None:
                            progress(index, len(names), done, size)

                    ftp.retrbinary(f"RETR {remote_path}", on_chunk)

                bar.n = index + 1
                bar.refresh()
                logger.debug("Downloaded %s -> %s (%d bytes)", remote_path, local_path, done)
                downloaded.append(local_path)
        except ftplib.all_errors as e:
            raise NetworkError(f"FTP download failed: {e}") from e
        finally:
            bar.close()
            try:
                ftp.quit()
            except ftplib.all_errors:
                ftp.close()
        return downloaded
