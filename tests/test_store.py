import pytest
import sqlalchemy as sa
from sqlalchemy.orm import Session

from phaseci.config import Settings
from phaseci.errors import StateCorrupted, StateNotFound
from phaseci.runtime.store import (
    FileStateStore,
    RedisStateStore,
    SqlStateStore,
    StateObject,
    digest_of,
    object_key,
    open_store,
)


@pytest.fixture(params=["file", "redis", "sql"])
def store(request, tmp_path, fake_redis):
    if request.param == "file":
        return FileStateStore(tmp_path / "store")
    if request.param == "redis":
        return RedisStateStore(client=fake_redis)
    return SqlStateStore(f"sqlite:///{tmp_path / 'state.db'}")


def test_download_returns_uploaded_blob(store):
    digest = store.upload("refine-main", "101", b"state-bytes")
    assert digest == digest_of(b"state-bytes")
    assert store.download("refine-main", "101") == b"state-bytes"


def test_missing_state_is_not_empty_state(store):
    with pytest.raises(StateNotFound):
        store.download("refine-main", "404")
    store.upload("refine-main", "1", b"")
    assert store.download("refine-main", "1") == b""


def test_invocations_and_keys_are_isolated(store):
    store.upload("k", "1", b"one")
    store.upload("k", "2", b"two")
    store.upload("other", "1", b"three")
    assert store.download("k", "1") == b"one"
    assert store.download("k", "2") == b"two"
    assert store.download("other", "1") == b"three"


def test_reupload_overwrites_ref(store):
    store.upload("k", "1", b"first")
    store.upload("k", "1", b"second")
    assert store.download("k", "1") == b"second"


def test_keys_with_expressions_and_slashes(store):
    key = "refine-refs/heads/feature/x"
    store.upload(key, "run/7", b"x")
    assert store.download(key, "run/7") == b"x"


def test_file_store_detects_corruption(tmp_path):
    s = FileStateStore(tmp_path)
    digest = s.upload("k", "1", b"good")
    s.object_path(digest).write_bytes(b"evil")
    with pytest.raises(StateCorrupted) as exc:
        s.download("k", "1")
    assert "digest mismatch" in str(exc.value)


def test_file_store_detects_missing_object(tmp_path):
    s = FileStateStore(tmp_path)
    digest = s.upload("k", "1", b"good")
    s.object_path(digest).unlink()
    with pytest.raises(StateCorrupted):
        s.download("k", "1")


def test_file_store_dedups_objects(tmp_path):
    s = FileStateStore(tmp_path)
    s.upload("a", "1", b"same")
    s.upload("b", "2", b"same")
    assert len([p for p in (tmp_path / "objects").rglob("*") if p.is_file()]) == 1


def test_redis_store_detects_corruption(fake_redis):
    s = RedisStateStore(client=fake_redis, ttl_seconds=3600)
    digest = s.upload("k", "1", b"good")
    assert fake_redis.expiry[object_key(digest)] == 3600
    fake_redis.data[object_key(digest)] = b"evil"
    with pytest.raises(StateCorrupted):
        s.download("k", "1")


def test_sql_store_detects_corruption(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'state.db'}")
    s = SqlStateStore(engine=engine)
    digest = s.upload("k", "1", b"good")
    with Session(engine) as session, session.begin():
        session.get(StateObject, digest).blob = b"evil"
    with pytest.raises(StateCorrupted):
        s.download("k", "1")


def test_stores_need_a_location():
    with pytest.raises(ValueError):
        RedisStateStore()
    with pytest.raises(ValueError):
        SqlStateStore()


def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store(Settings(state_url=str(tmp_path / "s"))), FileStateStore)
    sql = open_store(Settings(state_backend="sql", state_url=f"sqlite:///{tmp_path / 'db.sqlite'}"))
    assert isinstance(sql, SqlStateStore)
