"""Runtime settings.

Precedence, lowest first: built-in defaults, an ``iamrecon.yaml`` settings
file, ``IAMRECON_*`` environment variables, then explicit overrides (CLI
options).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from iamrecon.backends import BACKENDS
from iamrecon.errors import IamReconError
from iamrecon.utils.log import LOG_LEVELS

SETTINGS_FILE = "iamrecon.yaml"
ENV_PREFIX = "IAMRECON_"


@dataclass
class Settings:
    """Where state lives and which control plane to talk to."""

    state_dir: str = ".iamrecon"
    backend: str = "aws"
    profile: str | None = None
    region: str | None = None
    log_level: str = "WARNING"

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    @property
    def local_backend_path(self) -> Path:
        return self.state_path / "local_iam.json"


def load_settings(config_file: str | Path | None = None, **overrides) -> Settings:
    """Build Settings from file, environment and overrides.

    Args:
        config_file: Explicit settings file. When omitted, ``iamrecon.yaml``
            in the working directory is used if it exists.
        **overrides: Values that win over everything else; ``None`` values
            are ignored so unset CLI options fall through.
    """
    values: dict = {}
    names = {f.name for f in fields(Settings)}

    path = Path(config_file) if config_file else Path(SETTINGS_FILE)
    if config_file and not path.exists():
        raise IamReconError(f"Settings file not found: {path}")
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise IamReconError(f"Settings file must contain a mapping: {path}")
        unknown = sorted(set(data) - names)
        if unknown:
            raise IamReconError(f"Unknown setting(s) in {path}: {', '.join(unknown)}")
        values.update(data)

    for name in names:
        env = os.environ.get(ENV_PREFIX + name.upper())
        if env:
            values[name] = env

    values.update({k: v for k, v in overrides.items() if v is not None})

    settings = Settings(**values)
    settings.log_level = str(settings.log_level).upper()
    if settings.log_level not in LOG_LEVELS:
        raise IamReconError(
            f"Invalid log_level '{settings.log_level}'. Choose one of: {', '.join(LOG_LEVELS)}"
        )
    if settings.backend not in BACKENDS:
        raise IamReconError(f"Invalid backend '{settings.backend}'. Choose one of: {', '.join(BACKENDS)}")
    return settings
