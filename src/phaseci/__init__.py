from .dsl import job, sh, consume, guard, cycle, wf, workflow, JobBuilder, CycleBuilder, build
from .model import Job, Step, Cycle, Guard, Workflow
from .compiler import compile_workflow, CompileResult
from .config import Settings, load_settings
from .ir import render_json

__all__ = [
    "job", "sh", "consume", "guard", "cycle", "wf", "workflow", "JobBuilder", "CycleBuilder", "build",
    "Job", "Step", "Cycle", "Guard", "Workflow",
    "compile_workflow", "CompileResult",
    "Settings", "load_settings",
    "render_json",
]
