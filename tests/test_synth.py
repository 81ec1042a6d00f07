import pytest

from phaseci import Settings, cycle, guard, job, sh
from phaseci.concurrency import bind
from phaseci.synth import (
    REASONS,
    TARGET_INPUT,
    dispatch_condition,
    state_artifact,
    synthesize,
)

from conftest import mk

GUARD = "jq -e '.quality_score > 0.95' .phaseci/state/score.json"


@pytest.fixture
def refine():
    return cycle(
        "refine",
        job("analyze", sh("Analyze", "python analyze.py")),
        max_iters=5,
        until=guard(GUARD),
        key="refine-key",
    )


def lower(c, settings=None):
    return synthesize(c, binding=bind(c, "ci"), settings=settings)


def test_phase_set_has_four_roles_in_order(refine):
    ps = lower(refine)
    assert list(ps.jobs) == ["refine_hydrate", "refine_body_analyze", "refine_decide", "refine_dispatch"]
    assert list(ps.body_jobs) == ["refine_body_analyze"]
    assert ps.key == "refine-key"
    assert not ps.unsafe


def test_roles_are_chained_by_needs(refine):
    ps = lower(refine)
    assert ps.hydrate.needs == ()
    assert ps.jobs["refine_body_analyze"].needs == ("refine_hydrate",)
    assert ps.decide.needs == ("refine_hydrate", "refine_body_analyze")
    assert ps.dispatch.needs == ("refine_decide", "refine_hydrate")


def test_hydrate_only_runs_for_its_own_cycle(refine):
    cond = lower(refine).hydrate.if_
    assert f"!inputs.{TARGET_INPUT}" in cond
    assert f"inputs.{TARGET_INPUT} == 'refine'" in cond


def test_hydrate_restores_only_after_first_iteration(refine):
    steps = {s.name: s for s in lower(refine).hydrate.steps}
    pull = steps["Restore iteration state"]
    assert pull.if_ == "steps.ctx.outputs.iteration != '0'"
    assert "state pull" in pull.run
    assert "inputs.refine_prev_run" in pull.run
    assert steps["Bootstrap iteration state"].if_ == "steps.ctx.outputs.iteration == '0'"


def test_body_wraps_user_steps_with_state_transfer(refine):
    body = lower(refine).jobs["refine_body_analyze"]
    names = [s.name for s in body.steps]
    assert names == ["Load iteration state", "Analyze", "Hand state to decide"]
    assert body.steps[1].run == "python analyze.py"
    assert body.steps[-1].with_["name"] == state_artifact("refine", "analyze") == "refine-state-analyze"
    assert body.env["PHASECI_ITERATION"] == "${{ needs.refine_hydrate.outputs.iteration }}"


def test_guard_is_forwarded_verbatim(refine):
    evaluate = next(s for s in lower(refine).decide.steps if s.id == "decide")
    assert evaluate.env["PHASECI_GUARD"] == GUARD
    assert "--max-iters 5" in evaluate.run


def test_decide_persists_state_and_exposes_decision(refine):
    decide = lower(refine).decide
    assert set(decide.outputs) == {"continue", "reason"}
    persist = decide.steps[-1]
    assert "state push" in persist.run
    assert persist.env["PHASECI_INVOCATION"] == "${{ github.run_id }}"


def test_dispatch_needs_continue_and_room_under_the_cap():
    c = cycle("loop", mk("a"), max_iters=3, key="k")
    cond = dispatch_condition(c)
    assert cond == (
        "needs.loop_decide.outputs.continue == 'true'"
        " && fromJSON(needs.loop_hydrate.outputs.iteration) < 2"
    )
    assert lower(c).dispatch.if_ == cond


def test_dispatch_without_cap_only_checks_decision():
    c = cycle("loop", mk("a"), until="true", key="k")
    assert dispatch_condition(c) == "needs.loop_decide.outputs.continue == 'true'"


def test_dispatch_passes_next_iteration_inputs(refine):
    step = lower(refine).dispatch.steps[0]
    assert "NEXT=$(( PHASECI_ITERATION + 1 ))" in step.run
    assert f"-f {TARGET_INPUT}=refine" in step.run
    assert '-f refine_iteration="$NEXT"' in step.run
    assert '-f refine_prev_run="$PHASECI_INVOCATION"' in step.run
    assert step.env["GH_TOKEN"] == "${{ secrets.GITHUB_TOKEN }}"


def test_in_body_dependencies_follow_declaration_order():
    c = cycle("loop", mk("fetch"), mk("score", needs=["fetch"]), max_iters=3, key="k")
    ps = lower(c)
    assert ps.jobs["loop_body_fetch"].needs == ("loop_hydrate",)
    assert ps.jobs["loop_body_score"].needs == ("loop_hydrate", "loop_body_fetch")


def test_body_keeps_dependency_on_ordinary_job():
    c = cycle("loop", mk("work", needs=["setup"]), max_iters=3, key="k")
    assert lower(c).jobs["loop_body_work"].needs == ("loop_hydrate", "setup")


def test_trigger_inputs(refine):
    inputs = {i.name: i for i in lower(refine).inputs}
    assert list(inputs) == [TARGET_INPUT, "refine_iteration", "refine_key", "refine_prev_run"]
    assert inputs["refine_iteration"].default == "0"


def test_concurrency_block_covers_all_phase_jobs(refine):
    ps = lower(refine)
    assert ps.concurrency.group == "refine-key"
    assert ps.concurrency.queue_policy == "serialize-no-cancel"
    assert ps.concurrency.jobs == tuple(ps.jobs)


def test_settings_flow_into_jobs(refine):
    ps = lower(refine, Settings(runs_on="self-hosted", timeout_minutes=15, runtime_command="python -m phaseci.cli"))
    assert all(j.runs_on == "self-hosted" for j in ps.jobs.values())
    assert all(j.timeout_minutes == 15 for j in ps.jobs.values())
    evaluate = next(s for s in ps.decide.steps if s.id == "decide")
    assert evaluate.run.startswith("python -m phaseci.cli decide")


def test_reason_vocabulary():
    assert REASONS == ("guard_satisfied", "max_iterations", "continue")


def test_runtime_is_installed_before_it_is_called(refine):
    ps = lower(refine)
    for lowered in (ps.hydrate, ps.decide):
        names = [s.name for s in lowered.steps]
        runs = [s.run or "" for s in lowered.steps]
        setup = names.index("Install phaseci runtime")
        assert lowered.steps[setup].run == "pip install phaseci"
        first_call = next(i for i, r in enumerate(runs) if r.startswith("phaseci "))
        assert setup < first_call


def test_runtime_setup_is_configurable(refine):
    ps = lower(refine, Settings(runtime_setup="pipx install phaseci==0.1.0"))
    assert any(s.run == "pipx install phaseci==0.1.0" for s in ps.decide.steps)
    bare = lower(refine, Settings(runtime_setup=""))
    assert not any(s.name == "Install phaseci runtime" for s in bare.hydrate.steps + bare.decide.steps)
