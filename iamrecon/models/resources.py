"""Core data models for IAM resource declarations.

Covers the four resource kinds iamrecon reconciles: roles, managed
policies, role-to-policy attachments, and instance profiles. Each resource
knows its address, how to locate its remote counterpart (``identity``),
what it should look like remotely (``desired``), and which other
resources it references (``depends_on``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

POLICY_VERSION = "2012-10-17"
DEFAULT_TRUST_ACTION = "sts:AssumeRole"
DEFAULT_SESSION_DURATION = 3600
MIN_SESSION_DURATION = 3600
MAX_SESSION_DURATION = 43200


class ResourceKind(Enum):
    """The resource types a declaration file can contain."""

    ROLE = "role"
    POLICY = "policy"
    ATTACHMENT = "attachment"
    INSTANCE_PROFILE = "instance_profile"

    @property
    def section(self) -> str:
        """Name of the declaration-file section holding this kind."""
        return {
            ResourceKind.ROLE: "roles",
            ResourceKind.POLICY: "policies",
            ResourceKind.ATTACHMENT: "attachments",
            ResourceKind.INSTANCE_PROFILE: "instance_profiles",
        }[self]


# Deletion runs attachments first and roles last.
DELETE_RANK = {
    ResourceKind.ATTACHMENT: 0,
    ResourceKind.INSTANCE_PROFILE: 1,
    ResourceKind.POLICY: 2,
    ResourceKind.ROLE: 3,
}


def make_address(kind: ResourceKind, logical_name: str) -> str:
    return f"{kind.value}.{logical_name}"


def split_address(address: str) -> tuple[ResourceKind, str]:
    """Split ``kind.logical_name`` into its parts."""
    kind, _, name = address.partition(".")
    return ResourceKind(kind), name


def as_list(value) -> list:
    """Normalise an IAM 'string or list' field to a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


# --- Policy documents ---


@dataclass
class PolicyStatement:
    """A single statement in an IAM policy document."""

    effect: str
    actions: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    sid: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> PolicyStatement:
        return cls(
            effect=data.get("Effect", "Allow"),
            actions=as_list(data.get("Action")),
            resources=as_list(data.get("Resource")),
            sid=data.get("Sid", ""),
        )

    def to_dict(self) -> dict:
        out: dict = {}
        if self.sid:
            out["Sid"] = self.sid
        out["Effect"] = self.effect
        out["Action"] = list(self.actions)
        out["Resource"] = list(self.resources)
        return out


@dataclass
class PolicyDocument:
    """An IAM policy document (Version + Statement list)."""

    statements: list[PolicyStatement] = field(default_factory=list)
    version: str = POLICY_VERSION

    @classmethod
    def from_dict(cls, data: dict | str) -> PolicyDocument:
        """Build a document from a mapping or a raw JSON string."""
        if isinstance(data, str):
            data = json.loads(data)
        statements = data.get("Statement", [])
        if isinstance(statements, dict):
            statements = [statements]
        return cls(
            statements=[PolicyStatement.from_dict(s) for s in statements],
            version=data.get("Version", POLICY_VERSION),
        )

    def to_dict(self) -> dict:
        return {
            "Version": self.version,
            "Statement": [s.to_dict() for s in self.statements],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def normalize_document(data: dict | str | None) -> dict:
    """Canonical form of any policy-shaped document, for comparison.

    Single strings become one-element lists, list values are sorted, and
    statements are sorted by their canonical JSON. AWS returns documents
    with these details reshuffled, so raw equality is not meaningful.
    """
    if data is None:
        return {}
    if isinstance(data, str):
        data = json.loads(data)

    statements = data.get("Statement", [])
    if isinstance(statements, dict):
        statements = [statements]

    canonical = []
    for statement in statements:
        entry = {}
        for key, value in statement.items():
            if key in ("Action", "NotAction", "Resource", "NotResource"):
                entry[key] = sorted(as_list(value))
            elif key == "Principal" and isinstance(value, dict):
                entry[key] = {k: sorted(as_list(v)) for k, v in value.items()}
            else:
                entry[key] = value
        canonical.append(entry)

    canonical.sort(key=lambda s: json.dumps(s, sort_keys=True))
    return {"Version": data.get("Version", POLICY_VERSION), "Statement": canonical}


# --- Resources ---


@dataclass
class Role:
    """An IAM role assumable by one or more AWS services."""

    kind: ClassVar[ResourceKind] = ResourceKind.ROLE
    immutable: ClassVar[tuple[str, ...]] = ("name", "path")

    logical_name: str
    name: str
    trust_services: list[str] = field(default_factory=list)
    trust_action: str = DEFAULT_TRUST_ACTION
    max_session_duration: int = DEFAULT_SESSION_DURATION
    description: str = ""
    path: str = "/"
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return make_address(self.kind, self.logical_name)

    def trust_policy(self) -> dict:
        services = self.trust_services[0] if len(self.trust_services) == 1 else list(self.trust_services)
        return {
            "Version": POLICY_VERSION,
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": services},
                    "Action": self.trust_action,
                }
            ],
        }

    def identity(self) -> dict:
        return {"name": self.name}

    def desired(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "description": self.description,
            "max_session_duration": self.max_session_duration,
            "trust_policy": normalize_document(self.trust_policy()),
            "tags": dict(self.tags),
        }

    def depends_on(self) -> list[str]:
        return []


@dataclass
class Policy:
    """A customer-managed IAM policy."""

    kind: ClassVar[ResourceKind] = ResourceKind.POLICY
    # IAM cannot change a managed policy's description after creation.
    immutable: ClassVar[tuple[str, ...]] = ("name", "path", "description")

    logical_name: str
    name: str
    document: PolicyDocument
    description: str = ""
    path: str = "/"
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return make_address(self.kind, self.logical_name)

    def identity(self) -> dict:
        return {"name": self.name, "path": self.path}

    def desired(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "description": self.description,
            "document": normalize_document(self.document.to_dict()),
            "tags": dict(self.tags),
        }

    def depends_on(self) -> list[str]:
        return []


@dataclass
class Attachment:
    """Binding of a managed policy to a role.

    ``policy`` is either the logical name of a declared policy or the ARN
    of an externally managed policy. The builder fills in the resolved
    physical names.
    """

    kind: ClassVar[ResourceKind] = ResourceKind.ATTACHMENT
    immutable: ClassVar[tuple[str, ...]] = ("role_name", "policy_name", "policy_path", "policy_arn")

    logical_name: str
    role: str
    policy: str
    role_name: str = ""
    policy_name: str = ""
    policy_path: str = "/"
    policy_arn: str = ""

    @property
    def address(self) -> str:
        return make_address(self.kind, self.logical_name)

    @property
    def is_external(self) -> bool:
        return self.policy.startswith("arn:")

    def identity(self) -> dict:
        return {
            "role_name": self.role_name,
            "policy_name": self.policy_name,
            "policy_path": self.policy_path,
            "policy_arn": self.policy_arn,
        }

    def desired(self) -> dict:
        return self.identity()

    def depends_on(self) -> list[str]:
        deps = [make_address(ResourceKind.ROLE, self.role)]
        if not self.is_external:
            deps.append(make_address(ResourceKind.POLICY, self.policy))
        return deps


@dataclass
class InstanceProfile:
    """An EC2 instance profile wrapping a single role."""

    kind: ClassVar[ResourceKind] = ResourceKind.INSTANCE_PROFILE
    immutable: ClassVar[tuple[str, ...]] = ("name", "path")

    logical_name: str
    name: str
    role: str
    role_name: str = ""
    path: str = "/"

    @property
    def address(self) -> str:
        return make_address(self.kind, self.logical_name)

    def identity(self) -> dict:
        return {"name": self.name}

    def desired(self) -> dict:
        return {"name": self.name, "path": self.path, "role_name": self.role_name}

    def depends_on(self) -> list[str]:
        return [make_address(ResourceKind.ROLE, self.role)]


Resource = Role | Policy | Attachment | InstanceProfile
