# archive.py
from __future__ import annotations

import gzip
import io
import tarfile
from pathlib import Path
from typing import Iterable

# The state directory is shipped as one tar.gz blob. Packing is deterministic
# (sorted entries, fixed mtimes and owners) so identical state gives identical
# bytes and therefore the same digest in the store.


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def pack_dir(path: str | Path) -> bytes:
    """Pack every file under `path` into a tar.gz blob (paths relative to `path`)."""
    root = Path(path)
    if not root.is_dir():
        raise FileNotFoundError(f"State directory not found: {root}")

    raw = io.BytesIO()
    with gzip.GzipFile(fileobj=raw, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for f in _iter_files_under(root):
                data = f.read_bytes()
                info = tarfile.TarInfo(name=f.relative_to(root).as_posix())
                info.size = len(data)
                info.mtime = 0
                info.mode = 0o644
                tar.addfile(info, fileobj=io.BytesIO(data))
    return raw.getvalue()


def unpack_dir(blob: bytes, dest: str | Path) -> Path:
    """
    Extract a blob made by `pack_dir` into `dest`.

    An empty blob is valid and means "empty state". Anything that is not a
    readable tar.gz raises tarfile.TarError / OSError for the caller to report.
    """
    target = Path(dest)
    target.mkdir(parents=True, exist_ok=True)
    if not blob:
        return target

    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        for member in tar.getmembers():
            name = Path(member.name)
            if name.is_absolute() or ".." in name.parts or not member.isfile():
                raise tarfile.TarError(f"unexpected entry in state archive: {member.name}")
        tar.extractall(path=str(target), filter="data")
    return target
