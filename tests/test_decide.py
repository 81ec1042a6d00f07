import pytest

from phaseci.errors import GuardError
from phaseci.runtime.decide import Decision, decide, run_guard, write_outputs


def test_cap_of_three_stops_after_third_iteration():
    assert decide(False, 0, 3) == Decision(True, "continue")
    assert decide(False, 1, 3) == Decision(True, "continue")
    assert decide(False, 2, 3) == Decision(False, "max_iterations")


def test_always_false_guard_runs_exactly_max_iters_times():
    iterations = 0
    i = 0
    while True:
        iterations += 1
        d = decide(False, i, 3)
        if not d.should_continue:
            break
        i += 1
    assert iterations == 3
    assert d.reason == "max_iterations"


def test_satisfied_guard_wins_over_cap():
    assert decide(True, 2, 3) == Decision(False, "guard_satisfied")
    assert decide(True, 0, None).reason == "guard_satisfied"


def test_no_cap_keeps_going():
    assert decide(False, 1000, None).should_continue


def test_negative_iteration_rejected():
    with pytest.raises(ValueError):
        decide(False, -1, 3)


def test_outputs_are_scheduler_strings():
    assert Decision(True, "continue").outputs() == {"continue": "true", "reason": "continue"}
    assert Decision(False, "max_iterations").outputs() == {"continue": "false", "reason": "max_iterations"}


def test_guard_exit_codes(tmp_path):
    assert run_guard("exit 0", iteration=0, state_dir=tmp_path) is True
    assert run_guard("exit 1", iteration=0, state_dir=tmp_path) is False


def test_broken_guard_fails_closed(tmp_path):
    with pytest.raises(GuardError) as exc:
        run_guard("echo boom >&2; exit 2", iteration=0, state_dir=tmp_path)
    assert exc.value.exit_code == 2
    assert "boom" in str(exc.value)


def test_guard_sees_iteration_and_state_dir(tmp_path):
    (tmp_path / "score").write_text("0.97\n")
    code = 'test "$PHASECI_ITERATION" = "2" && test -f "$PHASECI_STATE_DIR/score"'
    assert run_guard(code, iteration=2, state_dir=tmp_path) is True
    assert run_guard(code, iteration=1, state_dir=tmp_path) is False


def test_write_outputs_appends(tmp_path):
    out = tmp_path / "github_output"
    out.write_text("earlier=1\n")
    write_outputs(Decision(False, "guard_satisfied"), out)
    assert out.read_text() == "earlier=1\ncontinue=false\nreason=guard_satisfied\n"
