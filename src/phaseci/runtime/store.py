# store.py
"""
External iteration-state store.

One blob per (concurrency key, invocation id). Blobs are content addressed:
the bytes live under their sha256 digest and (key, invocation) only points
at a digest, so a retried upload of the same state is a no-op and a damaged
blob is detected on download.

    store = open_store(settings)
    store.upload(key, run_id, pack_dir(".phaseci/state"))
    blob = store.download(key, previous_run_id)   # StateNotFound if absent
"""
from __future__ import annotations

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import redis
import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from ..config import Settings
from ..errors import StateCorrupted, StateNotFound

log = logging.getLogger(__name__)


def digest_of(blob: bytes) -> str:
    return hashlib.sha256(blob).hexdigest()


def _key_hash(key: str) -> str:
    # keys may hold any text (scheduler expressions resolve to refs, slashes...)
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class StateStore(ABC):
    """upload/download contract shared by every backend."""

    def upload(self, key: str, invocation_id: str, blob: bytes) -> str:
        """Store `blob` for (key, invocation_id). Returns its digest."""
        digest = digest_of(blob)
        self._put_object(digest, blob)
        self._put_ref(key, invocation_id, digest)
        log.debug("stored state key=%s invocation=%s digest=%s (%d bytes)", key, invocation_id, digest[:12], len(blob))
        return digest

    def download(self, key: str, invocation_id: str) -> bytes:
        """
        Fetch the blob for (key, invocation_id).

        Raises StateNotFound when nothing was stored, StateCorrupted when the
        stored bytes do not match their digest. An empty blob is returned as-is.
        """
        digest = self._get_ref(key, invocation_id)
        if digest is None:
            raise StateNotFound(key=key, invocation_id=invocation_id)

        blob = self._get_object(digest)
        if blob is None:
            raise StateCorrupted(key=key, invocation_id=invocation_id, reason=f"object {digest[:12]} is missing")
        if digest_of(blob) != digest:
            raise StateCorrupted(key=key, invocation_id=invocation_id, reason="digest mismatch")
        return blob

    @abstractmethod
    def _put_object(self, digest: str, blob: bytes) -> None: ...

    @abstractmethod
    def _get_object(self, digest: str) -> Optional[bytes]: ...

    @abstractmethod
    def _put_ref(self, key: str, invocation_id: str, digest: str) -> None: ...

    @abstractmethod
    def _get_ref(self, key: str, invocation_id: str) -> Optional[str]: ...


# ---------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------

class FileStateStore(StateStore):
    """
    Directory store (e.g. on a shared volume):
      root/
        objects/<digest[:2]>/<digest>
        refs/<sha256(key)>/<invocation_id>
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        (self.root / "objects").mkdir(parents=True, exist_ok=True)
        (self.root / "refs").mkdir(parents=True, exist_ok=True)

    def object_path(self, digest: str) -> Path:
        return self.root / "objects" / digest[:2] / digest

    def ref_path(self, key: str, invocation_id: str) -> Path:
        return self.root / "refs" / _key_hash(key) / quote(invocation_id, safe="")

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        try:
            tmp.write_bytes(data)
            tmp.replace(path)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def _put_object(self, digest: str, blob: bytes) -> None:
        path = self.object_path(digest)
        if not path.exists():
            self._write_atomic(path, blob)

    def _get_object(self, digest: str) -> Optional[bytes]:
        path = self.object_path(digest)
        return path.read_bytes() if path.exists() else None

    def _put_ref(self, key: str, invocation_id: str, digest: str) -> None:
        self._write_atomic(self.ref_path(key, invocation_id), digest.encode("ascii"))

    def _get_ref(self, key: str, invocation_id: str) -> Optional[str]:
        path = self.ref_path(key, invocation_id)
        if not path.exists():
            return None
        return path.read_text(encoding="ascii").strip()


# ---------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------

def object_key(digest: str) -> str:
    return f"phaseci:state:obj:{digest}"


def ref_key(key: str, invocation_id: str) -> str:
    return f"phaseci:state:ref:{_key_hash(key)}:{invocation_id}"


class RedisStateStore(StateStore):
    def __init__(self, url: str | None = None, *, client=None, ttl_seconds: int | None = None):
        if client is None:
            if not url:
                raise ValueError("RedisStateStore needs a url or a client")
            client = redis.Redis.from_url(url)
        self.r = client
        self.ttl_seconds = ttl_seconds

    def _put_object(self, digest: str, blob: bytes) -> None:
        self.r.set(object_key(digest), blob, ex=self.ttl_seconds)

    def _get_object(self, digest: str) -> Optional[bytes]:
        return self.r.get(object_key(digest))

    def _put_ref(self, key: str, invocation_id: str, digest: str) -> None:
        self.r.set(ref_key(key, invocation_id), digest, ex=self.ttl_seconds)

    def _get_ref(self, key: str, invocation_id: str) -> Optional[str]:
        value = self.r.get(ref_key(key, invocation_id))
        if value is None:
            return None
        return value.decode("ascii") if isinstance(value, bytes) else str(value)


# ---------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class StateObject(Base):
    __tablename__ = "phaseci_state_objects"
    digest: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    blob: Mapped[bytes] = mapped_column(sa.LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)


class StateRef(Base):
    __tablename__ = "phaseci_state_refs"
    key_hash: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    invocation_id: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    key: Mapped[str] = mapped_column(sa.Text, nullable=False)
    digest: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey("phaseci_state_objects.digest"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)


class SqlStateStore(StateStore):
    def __init__(self, url: str | None = None, *, engine: sa.Engine | None = None):
        if engine is None:
            if not url:
                raise ValueError("SqlStateStore needs a url or an engine")
            engine = sa.create_engine(url, pool_pre_ping=True)
        self.engine = engine
        Base.metadata.create_all(self.engine)

    def _put_object(self, digest: str, blob: bytes) -> None:
        with Session(self.engine) as s, s.begin():
            if s.get(StateObject, digest) is None:
                s.add(StateObject(digest=digest, blob=blob))

    def _get_object(self, digest: str) -> Optional[bytes]:
        with Session(self.engine) as s:
            obj = s.get(StateObject, digest)
            return None if obj is None else bytes(obj.blob)

    def _put_ref(self, key: str, invocation_id: str, digest: str) -> None:
        with Session(self.engine) as s, s.begin():
            s.merge(StateRef(key_hash=_key_hash(key), invocation_id=invocation_id, key=key, digest=digest))

    def _get_ref(self, key: str, invocation_id: str) -> Optional[str]:
        with Session(self.engine) as s:
            ref = s.get(StateRef, (_key_hash(key), invocation_id))
            return None if ref is None else ref.digest


def open_store(settings: Settings) -> StateStore:
    if settings.state_backend == "redis":
        return RedisStateStore(settings.state_url)
    if settings.state_backend == "sql":
        return SqlStateStore(settings.state_url)
    return FileStateStore(settings.state_url)
