# loader.py
from __future__ import annotations

import runpy
from pathlib import Path

from .model import Workflow


DEFAULT_WORKFLOW_FILE = "phaseci_workflow.py"


def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"phaseci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            result = globals_dict["workflow"]()
        except TypeError as e:
            if "missing 1 required positional argument" in str(e):
                raise TypeError(
                    "Your workflow() clashes with the 'workflow' helper. "
                    "Use `from phaseci import wf` and `def workflow(): return wf(...)`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        result = globals_dict["WORKFLOW"]

    if not isinstance(result, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow. "
            "Define workflow() -> Workflow or WORKFLOW = wf(...)."
        )

    return result


def find_workflow_files(directory: str | Path = ".") -> list[Path]:
    """Workflow files in `directory`: phaseci_workflow.py first, then *_workflow.py."""
    current_dir = Path(directory)
    workflow_files = []

    default_workflow = current_dir / DEFAULT_WORKFLOW_FILE
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)

    return workflow_files


def resolve_workflow_file(path: str | Path | None = None, directory: str | Path = ".") -> Path:
    """
    The workflow file to compile: `path` if given (".py" may be left off),
    else phaseci_workflow.py, else the only *_workflow.py in `directory`.
    """
    if path:
        wf_path = Path(path)
        if not wf_path.exists() and wf_path.suffix != ".py":
            wf_path = wf_path.with_name(wf_path.name + ".py")
        if not wf_path.exists():
            raise FileNotFoundError(f"Workflow file not found: {path}")
        return wf_path

    found = find_workflow_files(directory)
    if not found:
        raise FileNotFoundError(f"No workflow file found (looked for {DEFAULT_WORKFLOW_FILE} and *_workflow.py)")
    if found[0].name == DEFAULT_WORKFLOW_FILE:
        return found[0]
    if len(found) > 1:
        names = ", ".join(p.name for p in found)
        raise ValueError(f"Multiple workflow files found ({names}); pick one with --workflow")
    return found[0]
