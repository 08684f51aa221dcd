"""
Configuration and project layout for etch.

A project is any directory containing .etch/. Optional settings live in
.etch/config.yaml:

    defaults:
      complexity_guide: "small = ..., medium = ..., large = ..."

The complexity guide is quoted in context prompts next to a task's
complexity label.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from etch.lib.errors import EtchError

logger = logging.getLogger(__name__)

ETCH_DIR = ".etch"
CONFIG_FILE = "config.yaml"

DEFAULT_COMPLEXITY_GUIDE = (
    "small = single focused session, medium = may need iteration, "
    "large = multiple sessions likely"
)


@dataclass
class EtchConfig:
    """Settings from .etch/config.yaml with defaults applied."""
    complexity_guide: str = DEFAULT_COMPLEXITY_GUIDE


def plans_dir(root: Path) -> Path:
    return Path(root) / ETCH_DIR / "plans"


def progress_dir(root: Path) -> Path:
    return Path(root) / ETCH_DIR / "progress"


def context_dir(root: Path) -> Path:
    return Path(root) / ETCH_DIR / "context"


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from start (default: cwd) to the directory containing .etch/."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ETCH_DIR).is_dir():
            return candidate
    raise EtchError.project("not an etch project").with_hint(
        "create a .etch/plans/ directory at the project root"
    )


def load_config(root: Path) -> EtchConfig:
    """Load .etch/config.yaml, falling back to defaults.

    Raises:
        EtchError: (config) if the file exists but cannot be read as YAML
    """
    config = EtchConfig()
    config_path = Path(root) / ETCH_DIR / CONFIG_FILE

    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise EtchError.config("reading config file", cause=e).with_hint(
                f"check the syntax of {config_path}"
            ) from e
        if not isinstance(data, dict):
            raise EtchError.config(f"{config_path} must contain a mapping").with_hint(
                "expected a top-level 'defaults:' key"
            )

        defaults = data.get("defaults") or {}
        config.complexity_guide = defaults.get("complexity_guide") or DEFAULT_COMPLEXITY_GUIDE

        unknown = set(data) - {"defaults"}
        if unknown:
            logger.warning(f"Ignoring unknown config sections in {config_path}: {', '.join(sorted(unknown))}")

    return config
