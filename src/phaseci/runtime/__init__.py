"""Helpers that run inside the synthesized jobs (`phaseci state ...`, `phaseci decide`)."""
from .archive import pack_dir, unpack_dir
from .decide import Decision, decide, run_guard
from .store import FileStateStore, RedisStateStore, SqlStateStore, StateStore, open_store

__all__ = [
    "pack_dir",
    "unpack_dir",
    "Decision",
    "decide",
    "run_guard",
    "FileStateStore",
    "RedisStateStore",
    "SqlStateStore",
    "StateStore",
    "open_store",
]
