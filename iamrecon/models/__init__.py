"""Data models for declared IAM resources."""

from iamrecon.models.resources import (
    Attachment,
    InstanceProfile,
    Policy,
    PolicyDocument,
    PolicyStatement,
    ResourceKind,
    Role,
)

__all__ = [
    "Attachment",
    "InstanceProfile",
    "Policy",
    "PolicyDocument",
    "PolicyStatement",
    "ResourceKind",
    "Role",
]
