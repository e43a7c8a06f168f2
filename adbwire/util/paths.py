"""Utility functions for path operations."""

import os
from pathlib import Path
from typing import Union


def expand_path(path: Union[str, Path]) -> Path:
    """Expand ``~`` and environment variables and make the path absolute."""
    return Path(os.path.expandvars(os.path.expanduser(str(path)))).resolve()


def ensure_directory(path: Path) -> Path:
    """Ensure directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path
