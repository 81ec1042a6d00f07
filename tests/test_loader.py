import pytest

from phaseci.loader import find_workflow_files, load_workflow, resolve_workflow_file


def test_load_workflow_function(tmp_path):
    path = tmp_path / "phaseci_workflow.py"
    path.write_text(
        "from phaseci import wf, job, sh\n"
        "def workflow():\n"
        "    return wf('ci', job('lint', sh('x', 'true')))\n"
    )
    w = load_workflow(path)
    assert w.name == "ci"
    assert [j.name for j in w.jobs] == ["lint"]


def test_load_workflow_constant(tmp_path):
    path = tmp_path / "x_workflow.py"
    path.write_text("from phaseci import wf\nWORKFLOW = wf('empty')\n")
    assert load_workflow(path).name == "empty"


def test_load_workflow_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "missing.py")
    (tmp_path / "wf.txt").write_text("")
    with pytest.raises(ValueError):
        load_workflow(tmp_path / "wf.txt")
    (tmp_path / "bad.py").write_text("WORKFLOW = 42\n")
    with pytest.raises(TypeError):
        load_workflow(tmp_path / "bad.py")


def test_find_workflow_files_prefers_default(tmp_path):
    for name in ["b_workflow.py", "phaseci_workflow.py", "a_workflow.py", "other.py"]:
        (tmp_path / name).write_text("")
    assert [p.name for p in find_workflow_files(tmp_path)] == [
        "phaseci_workflow.py", "a_workflow.py", "b_workflow.py",
    ]


def test_resolve_explicit_path(tmp_path):
    (tmp_path / "nightly.py").write_text("")
    assert resolve_workflow_file(tmp_path / "nightly") == tmp_path / "nightly.py"
    with pytest.raises(FileNotFoundError, match="Workflow file not found"):
        resolve_workflow_file(tmp_path / "missing.py")


def test_resolve_picks_default_over_others(tmp_path):
    for name in ["phaseci_workflow.py", "a_workflow.py", "b_workflow.py"]:
        (tmp_path / name).write_text("")
    assert resolve_workflow_file(directory=tmp_path).name == "phaseci_workflow.py"


def test_resolve_single_named_workflow(tmp_path):
    (tmp_path / "deploy_workflow.py").write_text("")
    assert resolve_workflow_file(directory=tmp_path).name == "deploy_workflow.py"


def test_resolve_without_a_unique_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="No workflow file found"):
        resolve_workflow_file(directory=tmp_path)
    (tmp_path / "a_workflow.py").write_text("")
    (tmp_path / "b_workflow.py").write_text("")
    with pytest.raises(ValueError, match="a_workflow.py, b_workflow.py"):
        resolve_workflow_file(directory=tmp_path)
