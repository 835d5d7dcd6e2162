"""Declaration files shipped with iamrecon."""

from __future__ import annotations

from pathlib import Path

DECLARATIONS_DIR = Path(__file__).parent


def available() -> list[str]:
    return sorted(p.stem for p in DECLARATIONS_DIR.glob("*.yaml"))


def bundled_path(name: str = "nexus") -> Path:
    """Path of a bundled declaration file by name."""
    path = DECLARATIONS_DIR / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(
            f"No bundled declaration '{name}'. Available: {', '.join(available())}"
        )
    return path
