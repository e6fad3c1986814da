import subprocess

import pytest

from mtb_agent import archiver as archiver_module
from mtb_agent.archiver import Archiver
from mtb_agent.errors import UpdateError


@pytest.fixture
def runs(monkeypatch):
    calls = []

    def fake_run(cmd, check=False, capture_output=False):
        calls.append(cmd)
        if cmd[1] == "e":
            dest = cmd[3][2:]
            with open(f"{dest}/update.zip", "wb") as f:
                f.write(b"zip")
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(archiver_module.subprocess, "run", fake_run)
    return calls


def test_combine_runs_7za_e_and_returns_archives(tmp_path, runs):
    first = tmp_path / "download" / "updateParts.zip.001"
    first.parent.mkdir()
    first.write_bytes(b"part")

    archives = Archiver("7za").combine_parts(first, tmp_path / "combine")

    assert runs == [["7za", "e", str(first), f"-o{tmp_path / 'combine'}", "-y"]]
    assert archives == [tmp_path / "combine" / "update.zip"]


def test_extract_runs_7za_x(tmp_path, runs):
    archive = tmp_path / "update.zip"
    Archiver("/usr/bin/7za").extract(archive, tmp_path / "extract")

    assert runs == [["/usr/bin/7za", "x", str(archive), f"-o{tmp_path / 'extract'}", "-y"]]
    assert (tmp_path / "extract").is_dir()


def test_missing_first_part(tmp_path, runs):
    with pytest.raises(UpdateError):
        Archiver().combine_parts(tmp_path / "updateParts.zip.001", tmp_path / "combine")
    assert runs == []


def test_missing_executable(tmp_path, monkeypatch):
    def not_found(cmd, check=False, capture_output=False):
        raise FileNotFoundError(cmd[0])
    monkeypatch.setattr(archiver_module.subprocess, "run", not_found)

    with pytest.raises(UpdateError, match="Archiver not found"):
        Archiver("7za").extract(tmp_path / "a.zip", tmp_path / "out")


def test_nonzero_exit(tmp_path, monkeypatch):
    def failing(cmd, check=False, capture_output=False):
        raise subprocess.CalledProcessError(2, cmd, output=b"", stderr=b"ERROR: Data Error")
    monkeypatch.setattr(archiver_module.subprocess, "run", failing)

    with pytest.raises(UpdateError, match="Data Error"):
        Archiver("7za").extract(tmp_path / "a.zip", tmp_path / "out")
