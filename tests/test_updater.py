import json

import pytest

from mtb_agent.errors import NetworkError, UpdateError
from mtb_agent.installation import handoff_script_path
from mtb_agent.updater import (
    FIRST_PART_NAME,
    UPDATE_ATTEMPTS,
    UpdateEngine,
    UpdateState,
    is_remote_version_newer,
    parse_version,
)

from fakes import FakeTransport

PARTS = ["updateParts.zip.001", "updateParts.zip.002"]


class _FakeFileTransfer:
    def __init__(self):
        self.calls = []

    def download_files(self, names, dest_dir, progress=None):
        self.calls.append((list(names), dest_dir))
        dest_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for name in names:
            (dest_dir / name).write_bytes(b"part")
            paths.append(dest_dir / name)
        return paths


class _FakeArchiver:
    def __init__(self):
        self.calls = []

    def combine_parts(self, first_part, dest_dir):
        self.calls.append(("combine", first_part, dest_dir))
        dest_dir.mkdir(parents=True, exist_ok=True)
        archive = dest_dir / "update.zip"
        archive.write_bytes(b"zip")
        return [archive]

    def extract(self, archive, dest_dir):
        self.calls.append(("extract", archive, dest_dir))


def _engine(ctx, responses):
    transport = FakeTransport(responses=responses)
    file_transfer = _FakeFileTransfer()
    archiver = _FakeArchiver()
    launched = []
    exits = []
    engine = UpdateEngine(
        ctx,
        transport,
        file_transfer=file_transfer,
        archiver=archiver,
        launcher=launched.append,
        exit_fn=exits.append,
    )
    return engine, transport, file_transfer, archiver, launched, exits


def test_same_version_without_force_does_nothing(ctx):
    engine, transport, file_transfer, archiver, launched, exits = _engine(ctx, {"version.txt": "0.1.2\n"})

    assert engine.run(force=False) is False

    assert engine.state is UpdateState.NO_UPDATE_NEEDED
    assert file_transfer.calls == []
    assert archiver.calls == []
    assert launched == [] and exits == []
    assert transport.fetched == ["http://server.test/v2/version.txt"]


def test_newer_version_runs_full_pipeline(ctx):
    ctx.args = ["--forceupdate", "--debug"]
    engine, _, file_transfer, archiver, launched, exits = _engine(
        ctx, {"version.txt": "0.2.0", "data/getFiles.php": json.dumps(PARTS)}
    )

    assert engine.run() is True

    assert engine.state is UpdateState.EXITED
    assert file_transfer.calls == [(PARTS, ctx.download_dir)]
    assert archiver.calls[0] == ("combine", ctx.download_dir / FIRST_PART_NAME, ctx.combine_dir)
    assert archiver.calls[1] == ("extract", ctx.combine_dir / "update.zip", ctx.extract_dir)

    script = handoff_script_path(ctx)
    assert launched == [script]
    assert exits == [0]
    content = script.read_text(encoding="utf-8")
    assert "--finishupdate" in content
    assert "--debug" in content
    assert "--forceupdate" not in content


def test_forced_update_reinstalls_same_version(ctx):
    engine, _, file_transfer, _, _, exits = _engine(
        ctx, {"version.txt": "0.1.2", "data/getFiles.php": json.dumps(PARTS)}
    )

    assert engine.run(force=True) is True
    assert len(file_transfer.calls) == 1
    assert exits == [0]


def test_invalid_version_is_retried_then_abandoned(ctx):
    engine, transport, file_transfer, _, _, exits = _engine(ctx, {"version.txt": "<html>404</html>"})

    assert engine.run(force=True) is False

    assert engine.state is UpdateState.ABANDONED
    assert len(transport.fetched) == UPDATE_ATTEMPTS == 3
    assert file_transfer.calls == []
    assert exits == []


def test_network_failure_then_recovery(ctx):
    answers = iter([NetworkError("timeout"), "0.1.2"])
    engine, transport, _, _, _, _ = _engine(ctx, {"version.txt": lambda: next(answers)})

    assert engine.run() is False
    assert engine.state is UpdateState.NO_UPDATE_NEEDED
    assert len(transport.fetched) == 2


@pytest.mark.parametrize("manifest", ["[]", '{"files": []}', "not json", "[1, 2]"])
def test_bad_manifest_abandons_update(ctx, manifest):
    engine, _, file_transfer, _, _, exits = _engine(
        ctx, {"version.txt": "9.9.9", "data/getFiles.php": manifest}
    )

    assert engine.run() is False
    assert engine.state is UpdateState.ABANDONED
    assert file_transfer.calls == []
    assert exits == []


def test_stale_install_dir_is_removed(ctx):
    leftover = ctx.install_dir / "extract" / "old.bin"
    leftover.parent.mkdir(parents=True)
    leftover.write_bytes(b"old")
    engine, _, _, _, _, _ = _engine(ctx, {"version.txt": "0.1.2"})

    engine.run()

    assert not ctx.install_dir.exists()


def test_version_comparison():
    assert is_remote_version_newer("0.1.10", "0.1.9")
    assert is_remote_version_newer("1.0.0.1", "1.0")
    assert not is_remote_version_newer("v1.0", "1.0.0")
    assert not is_remote_version_newer("0.1.2", "0.1.3")


def test_parse_version():
    assert parse_version(" 1.2.3\n") == "1.2.3"
    assert parse_version("v2.0") == "2.0"
    with pytest.raises(UpdateError):
        parse_version("latest")
