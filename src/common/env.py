from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, MutableMapping, Optional

from dotenv import dotenv_values


logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Required configuration is missing or invalid."""


def getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def require(v: Optional[str], what: str) -> str:
    if not v:
        raise ConfigError(f"Missing required configuration: {what}")
    return v


def env_flag(name: str, default: bool = False) -> bool:
    """True only for the literal ``true`` (any case), as the shell gates test it."""
    val = getenv(name)
    if val is None:
        return default
    return val.strip().lower() == "true"


def _plain_values(raw: Mapping[str, Optional[str]]) -> Dict[str, str]:
    # Bare words (`fi`, `done`) parse as valueless keys; command substitutions
    # cannot be evaluated here.
    return {
        key: value
        for key, value in raw.items()
        if value is not None and "$(" not in value and "`" not in value
    }


def parse_assignments(text: str) -> Dict[str, str]:
    """Parse shell-style ``KEY=value`` / ``export KEY="value"`` lines.

    Comments, blank lines and statements that are not plain assignments
    (functions, conditionals, command substitutions) are ignored.
    """
    return _plain_values(dotenv_values(stream=io.StringIO(text)))


def _read_assignments(path: Path) -> Dict[str, str]:
    return _plain_values(dotenv_values(path, encoding="utf-8"))


def _apply(values: Mapping[str, str], environ: MutableMapping[str, str], *, override: bool) -> Dict[str, str]:
    applied: Dict[str, str] = {}
    for key, value in values.items():
        if not override and environ.get(key):
            continue
        environ[key] = value
        applied[key] = value
    return applied


def load_dotenv_file(
    path: os.PathLike[str] | str,
    *,
    environ: Optional[MutableMapping[str, str]] = None,
    override: bool = False,
) -> Optional[Dict[str, str]]:
    """Load a ``.env`` file into the environment.

    Returns the applied variables, or None when the file does not exist.
    Values already present in the environment win unless ``override``.
    """
    target = os.environ if environ is None else environ
    p = Path(path)
    if not p.is_file():
        logger.warning(".env file not found at %s", p)
        return None
    applied = _apply(_read_assignments(p), target, override=override)
    logger.debug("Loaded %d variable(s) from %s", len(applied), p)
    return applied


def load_project_config(
    path: os.PathLike[str] | str,
    *,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Optional[Dict[str, str]]:
    """Load the exports of a ``project-config.sh`` into the environment.

    A missing file is not an error; the caller falls back to the environment.
    """
    target = os.environ if environ is None else environ
    p = Path(path)
    if not p.is_file():
        return None
    return _apply(_read_assignments(p), target, override=False)


__all__ = [
    "ConfigError",
    "getenv",
    "require",
    "env_flag",
    "parse_assignments",
    "load_dotenv_file",
    "load_project_config",
]
