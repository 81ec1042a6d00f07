import io
import os
import tarfile

import pytest

from phaseci.runtime.archive import pack_dir, unpack_dir


def fill(root):
    (root / "nested").mkdir(parents=True)
    (root / "score.json").write_text('{"quality_score": 0.5}')
    (root / "nested" / "notes.txt").write_text("iteration 1")
    (root / ".phaseci-iteration").write_text("1\n")


def test_unpack_restores_files(tmp_path):
    src = tmp_path / "src"
    fill(src)
    dest = unpack_dir(pack_dir(src), tmp_path / "dest")
    assert (dest / "score.json").read_text() == '{"quality_score": 0.5}'
    assert (dest / "nested" / "notes.txt").read_text() == "iteration 1"
    assert (dest / ".phaseci-iteration").read_text() == "1\n"


def test_pack_is_deterministic(tmp_path):
    a, b = tmp_path / "a", tmp_path / "b"
    fill(a)
    fill(b)
    os.utime(b / "score.json", (1, 1))
    assert pack_dir(a) == pack_dir(b)


def test_empty_blob_is_empty_state(tmp_path):
    dest = unpack_dir(b"", tmp_path / "empty")
    assert dest.is_dir()
    assert list(dest.iterdir()) == []


def test_pack_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        pack_dir(tmp_path / "nope")


def test_garbage_is_rejected(tmp_path):
    with pytest.raises((tarfile.TarError, OSError, EOFError)):
        unpack_dir(b"not a tarball", tmp_path / "dest")


def test_path_escape_is_rejected(tmp_path):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo("../evil")
        info.size = 1
        tar.addfile(info, io.BytesIO(b"x"))
    with pytest.raises(tarfile.TarError):
        unpack_dir(buf.getvalue(), tmp_path / "dest")
    assert not (tmp_path / "evil").exists()
