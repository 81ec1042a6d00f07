# decide.py
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..errors import GuardError
from ..synth import REASON_CONTINUE, REASON_GUARD_SATISFIED, REASON_MAX_ITERATIONS


@dataclass(frozen=True)
class Decision:
    should_continue: bool
    reason: str

    def outputs(self) -> Dict[str, str]:
        return {"continue": "true" if self.should_continue else "false", "reason": self.reason}


def decide(guard_satisfied: bool, iteration: int, max_iters: Optional[int]) -> Decision:
    """
    Decide whether the loop runs another iteration.

    `iteration` is 0-based and refers to the iteration that just finished, so
    after it `iteration + 1` iterations have run. A satisfied guard wins over
    the cap.
    """
    if iteration < 0:
        raise ValueError(f"iteration must be >= 0, got {iteration}")
    if guard_satisfied:
        return Decision(False, REASON_GUARD_SATISFIED)
    if max_iters is not None and iteration + 1 >= max_iters:
        return Decision(False, REASON_MAX_ITERATIONS)
    return Decision(True, REASON_CONTINUE)


def run_guard(code: str, *, iteration: int, state_dir: str | Path, cwd: str | Path = ".") -> bool:
    """
    Run the guard command. Exit 0 means satisfied, exit 1 means not yet.

    Any other exit code raises GuardError: a broken guard must fail the job,
    not be read as "keep going".
    """
    env = os.environ.copy()
    env["PHASECI_ITERATION"] = str(iteration)
    env["PHASECI_STATE_DIR"] = str(state_dir)

    proc = subprocess.run(
        code,
        shell=True,
        cwd=str(cwd),
        env=env,
        text=True,
        capture_output=True,
    )
    if proc.returncode == 0:
        return True
    if proc.returncode == 1:
        return False
    raise GuardError(code=code, exit_code=proc.returncode, stderr=proc.stderr[-4000:])


def write_outputs(decision: Decision, path: str | Path) -> None:
    """Append `name=value` lines to the scheduler's step output file."""
    with open(path, "a", encoding="utf-8") as f:
        for k, v in decision.outputs().items():
            f.write(f"{k}={v}\n")
