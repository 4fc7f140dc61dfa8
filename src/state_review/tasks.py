# tasks.py
# Task config catalog: list the expected-state documents in a directory and
# load one by name.
#
# Listing is best-effort (a broken file still shows up, on ledger 0).
# Loading is strict: a missing or invalid document raises.

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from state_review.models import TaskSpec
from state_review.parser import DEFAULT_LEDGER_ID, LedgerLookup, parse, read_ledger_id

logger = logging.getLogger(__name__)

CONFIG_SUFFIX = ".json"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TaskConfigNotFoundError(Exception):
    """Raised when a named task config file does not exist."""


class PathTraversalError(Exception):
    """Raised when a task config name resolves outside its directory."""


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TaskConfigOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_name: str
    display_name: str
    config_file: str
    ledger: LedgerLookup


def display_name(base_name: str) -> str:
    """'base-sc' -> 'Base Sc'."""
    return " ".join(word[:1].upper() + word[1:] for word in base_name.split("-"))


def list_task_configs(directory: str | Path) -> list[TaskConfigOption]:
    path = Path(directory)
    if not path.is_dir():
        logger.warning("Task config directory does not exist: %s", path)
        return []

    options: list[TaskConfigOption] = []
    for config_path in sorted(path.glob(f"*{CONFIG_SUFFIX}")):
        try:
            ledger = read_ledger_id(config_path.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.warning("Could not read %s (%s); using default ledger id", config_path.name, exc)
            ledger = LedgerLookup(ledger_id=DEFAULT_LEDGER_ID, from_valid_document=False)

        options.append(
            TaskConfigOption(
                file_name=config_path.stem,
                display_name=display_name(config_path.stem),
                config_file=config_path.name,
                ledger=ledger,
            )
        )
    return options


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def assert_within_dir(target: Path, directory: Path) -> Path:
    """Resolve target and refuse it if it escapes directory."""
    resolved = target.resolve()
    base = directory.resolve()
    if resolved != base and base not in resolved.parents:
        raise PathTraversalError(f"Path traversal detected: {resolved} is outside {base}")
    return resolved


def load_task_spec(directory: str | Path, name: str) -> TaskSpec:
    """
    Load and fully parse <name>.json from directory.

    Raises TaskConfigNotFoundError, PathTraversalError or ConfigParseError.
    Never returns a default spec.
    """
    base = Path(directory)
    file_name = name if name.endswith(CONFIG_SUFFIX) else name + CONFIG_SUFFIX
    config_path = assert_within_dir(base / file_name, base)
    if not config_path.is_file():
        raise TaskConfigNotFoundError(f"Task config not found: {config_path}")

    spec = parse(config_path.read_text(encoding="utf-8")).unwrap(source=str(config_path))
    logger.info("Loaded task config %s (%d expected entries)", config_path.name, len(spec.entries))
    return spec
