"""Configuration for amber."""

import os
from pathlib import Path
from typing import Optional

# Environment variable holding the hex encoded secret key
SECRET_KEY_ENV = "AMBER_SECRET"

# Environment variable overriding the secrets file location
SECRETS_FILE_ENV = "AMBER_YAML"

DEFAULT_FILE_NAME = "amber.yaml"

# Replacement written in place of secret values in exec output
DEFAULT_PLACEHOLDER = "******"


def find_secrets_file(start: Optional[Path] = None) -> Optional[Path]:
    """Search ``start`` and its ancestors for amber.yaml, returning None if absent."""
    start = Path(start or Path.cwd()).resolve()
    for directory in [start, *start.parents]:
        candidate = directory / DEFAULT_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def get_default_secrets_file(environ=None, cwd: Optional[Path] = None) -> Path:
    """Get default secrets file path."""
    environ = os.environ if environ is None else environ

    # Check environment variable first
    env_file = environ.get(SECRETS_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()

    found = find_secrets_file(cwd)
    if found:
        return found

    # Nothing found, init creates it in the working directory
    return Path(cwd or Path.cwd()) / DEFAULT_FILE_NAME
