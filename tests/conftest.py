import os

import pytest

from phaseci import job, sh


@pytest.fixture(autouse=True)
def _clean_phaseci_env(monkeypatch):
    # settings are read from PHASECI_*; keep the developer's shell out of the tests
    for name in list(os.environ):
        if name.startswith("PHASECI_"):
            monkeypatch.delenv(name, raising=False)


def mk(name, needs=None, consumes=None):
    """One-step job, enough for graph tests."""
    return job(name, sh(f"run {name}", f"echo {name}"), needs=needs, consumes=consumes)


class FakeRedis:
    """The slice of redis.Redis the state store uses."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    def set(self, name, value, ex=None):
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.data[name] = value
        self.expiry[name] = ex
        return True

    def get(self, name):
        return self.data.get(name)


@pytest.fixture
def fake_redis():
    return FakeRedis()
