# config.py
# Runtime settings read from the environment (and a local .env file).
#
# Command-line flags in run.py take precedence over anything set here.

import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from state_review.steps import DEFAULT_UNEXPECTED_STEP, StepId

load_dotenv()

ENV_VARS = {
    "log_level": "STATE_REVIEW_LOG_LEVEL",
    "unexpected_step": "STATE_REVIEW_UNEXPECTED_STEP",
    "scoped": "STATE_REVIEW_SCOPED",
    "tasks_dir": "STATE_REVIEW_TASKS_DIR",
}


class Settings(BaseModel):
    log_level: str = "WARNING"
    unexpected_step: StepId = DEFAULT_UNEXPECTED_STEP
    scoped: bool = False
    tasks_dir: Path = Path("validations")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    values = {field: env[var] for field, var in ENV_VARS.items() if env.get(var)}
    return Settings.model_validate(values)
