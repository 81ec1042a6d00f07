# config.py
from __future__ import annotations

import json
import os
from typing import Dict, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


ENV_PREFIX = "PHASECI_"


class ConfigError(Exception):
    """Raised when settings cannot be loaded or are invalid."""


class Settings(BaseModel):
    """
    Knobs for the generated job graph and the runtime helpers.

    Values containing `${{ ... }}` are scheduler expressions and are copied
    into the output as-is.
    """
    runs_on: str = "ubuntu-latest"
    timeout_minutes: Optional[int] = Field(default=None, gt=0)

    # runtime side (used inside the synthesized jobs)
    runtime_command: str = "phaseci"
    # run before the first runtime command in hydrate and decide; empty to skip
    runtime_setup: str = "pip install phaseci"
    state_dir: str = ".phaseci/state"
    state_backend: Literal["file", "redis", "sql"] = "file"
    state_url: str = ".phaseci/store"

    # scheduler wiring
    invocation_id_expr: str = "${{ github.run_id }}"
    dispatch_command: str = 'gh workflow run "${{ github.workflow }}" --ref "${{ github.ref }}"'
    dispatch_env: Dict[str, str] = Field(
        default_factory=lambda: {"GH_TOKEN": "${{ secrets.GITHUB_TOKEN }}"}
    )

    @field_validator("runs_on", "runtime_command", "state_dir", "state_url", "invocation_id_expr", "dispatch_command")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v


def load_settings(environ: Mapping[str, str] | None = None, **overrides) -> Settings:
    """
    Build settings from PHASECI_* environment variables, then explicit overrides.

    PHASECI_DISPATCH_ENV is read as a JSON object.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, object] = {}

    for name in Settings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        if name == "dispatch_env":
            try:
                values[name] = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigError(f"{ENV_PREFIX}DISPATCH_ENV is not valid JSON: {e}") from e
        else:
            values[name] = raw

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
