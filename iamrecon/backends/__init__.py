"""Control planes the reconciler can target."""

from __future__ import annotations

from iamrecon.backends.base import ControlPlane
from iamrecon.backends.local import LocalControlPlane

BACKENDS = ("aws", "local")


def get_backend(name: str, settings=None) -> ControlPlane:
    """Instantiate a control plane by name using ``settings`` for its options."""
    if name == "local":
        path = settings.local_backend_path if settings else None
        return LocalControlPlane(path)
    if name == "aws":
        from iamrecon.backends.aws import AwsControlPlane

        return AwsControlPlane(
            profile=settings.profile if settings else None,
            region=settings.region if settings else None,
        )
    raise ValueError(f"Unknown backend '{name}'. Choose one of: {', '.join(BACKENDS)}")
