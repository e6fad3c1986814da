import ftplib

import pytest

from mtb_agent.config import Config
from mtb_agent.errors import NetworkError
from mtb_agent.file_transfer import FileTransfer, overall_progress


class _FakeFTP:
    """ftplib.FTP double serving files from a dict."""

    instances = []

    def __init__(self, host, timeout=None, files=None, fail_on=None):
        self.host = host
        self.timeout = timeout
        self.files = files or {}
        self.fail_on = fail_on
        self.logins = []
        self.quit_called = False
        _FakeFTP.instances.append(self)

    def login(self, user, password):
        self.logins.append((user, password))

    def size(self, path):
        if path not in self.files:
            raise ftplib.error_perm("550 SIZE not allowed")
        return len(self.files[path])

    def retrbinary(self, cmd, callback, blocksize=8192):
        path = cmd[len("RETR "):]
        if path == self.fail_on or path not in self.files:
            raise ftplib.error_perm(f"550 {path}: No such file")
        data = self.files[path]
        for i in range(0, len(data), 4):
            callback(data[i:i + 4])

    def quit(self):
        self.quit_called = True

    def close(self):
        pass


@pytest.fixture
def config():
    cfg = Config()
    cfg.FTP_HOST = "ftp.test"
    cfg.FTP_USER = "mtb"
    cfg.FTP_PASSWORD = "secret"
    cfg.FTP_REMOTE_DIR = "/htdocs/v2/data/files/"
    _FakeFTP.instances = []
    return cfg


def _factory(**kwargs):
    return lambda host, timeout=None: _FakeFTP(host, timeout=timeout, **kwargs)


def test_downloads_every_part(config, tmp_path):
    files = {
        "/htdocs/v2/data/files/updateParts.zip.001": b"first part",
        "/htdocs/v2/data/files/updateParts.zip.002": b"second",
    }
    progress = []
    transfer = FileTransfer(config, ftp_factory=_factory(files=files))

    paths = transfer.download_files(
        ["updateParts.zip.001", "updateParts.zip.002"], tmp_path / "download",
        progress=lambda *args: progress.append(args),
    )

    assert [p.read_bytes() for p in paths] == [b"first part", b"second"]
    ftp = _FakeFTP.instances[0]
    assert ftp.logins == [("mtb", "secret")]
    assert ftp.quit_called
    assert progress[-1] == (1, 2, 6, 6)


def test_missing_remote_file_raises_network_error(config, tmp_path):
    files = {"/htdocs/v2/data/files/a": b"a"}
    transfer = FileTransfer(config, ftp_factory=_factory(files=files, fail_on="/htdocs/v2/data/files/a"))

    with pytest.raises(NetworkError):
        transfer.download_files(["a"], tmp_path)
    assert _FakeFTP.instances[0].quit_called


def test_unconfigured_host(config, tmp_path):
    config.FTP_HOST = ""
    with pytest.raises(NetworkError):
        FileTransfer(config, ftp_factory=_factory()).download_files(["a"], tmp_path)


def test_connection_failure(config, tmp_path):
    def refuse(host, timeout=None):
        raise ConnectionRefusedError("refused")

    with pytest.raises(NetworkError):
        FileTransfer(config, ftp_factory=refuse).download_files(["a"], tmp_path)


def test_server_paths_stay_inside_destination(config, tmp_path):
    files = {"/htdocs/v2/data/files/../evil.bin": b"x"}
    transfer = FileTransfer(config, ftp_factory=_factory(files=files))

    paths = transfer.download_files(["../evil.bin"], tmp_path / "download")

    assert paths == [tmp_path / "download" / "evil.bin"]


def test_overall_progress():
    assert overall_progress(0, 4, 0.5) == 0.125
    assert overall_progress(3, 4, 1.0) == 1.0
    assert overall_progress(0, 0, 0.0) == 1.0
