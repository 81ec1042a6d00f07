from phaseci import cycle
from phaseci.concurrency import QUEUE_POLICY, bind, default_key
from phaseci.diagnostics import CYCLE_NO_KEY, Severity

from conftest import mk


def test_explicit_key_is_used_verbatim():
    c = cycle("refine", mk("a"), max_iters=3, key="refine-${{ github.ref }}")
    binding = bind(c, "ci")
    assert binding.key == "refine-${{ github.ref }}"
    assert binding.config.group == binding.key
    assert binding.config.queue_policy == QUEUE_POLICY == "serialize-no-cancel"
    assert binding.diagnostics == []
    assert not binding.defaulted


def test_missing_key_is_derived_with_warning():
    binding = bind(cycle("refine", mk("a"), max_iters=3), "ci")
    assert binding.key == default_key("ci", "refine") == "ci-refine"
    assert binding.defaulted
    assert [(d.code, d.severity) for d in binding.diagnostics] == [(CYCLE_NO_KEY, Severity.WARNING)]


def test_default_keys_differ_per_cycle():
    a = bind(cycle("a", mk("x"), max_iters=1), "ci")
    b = bind(cycle("b", mk("y"), max_iters=1), "ci")
    assert a.key != b.key
