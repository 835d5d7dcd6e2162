"""Resource Graph Builder — turn declarations into a typed dependency graph.

Parsing runs in this order: schema gate, variable resolution and
interpolation, semantic gate, then resource construction. Any error-level
issue stops the build with a ``DeclarationError`` listing every issue, so a
broken file is reported in one pass rather than one problem at a time.
"""

from __future__ import annotations

import logging
from pathlib import Path

import networkx as nx
import yaml

from iamrecon.errors import DeclarationError
from iamrecon.models.resources import (
    DEFAULT_SESSION_DURATION,
    DEFAULT_TRUST_ACTION,
    Attachment,
    InstanceProfile,
    Policy,
    PolicyDocument,
    Resource,
    ResourceKind,
    Role,
)
from iamrecon.spec.schema_validator import validate_schema
from iamrecon.spec.semantic_validator import SemanticValidationResult, validate_semantics
from iamrecon.spec.variables import interpolate, resolve_variables

logger = logging.getLogger(__name__)


class ResourceGraph:
    """Directed graph of declared resources.

    Nodes are resource addresses carrying the resource object under the
    ``resource`` attribute. Edges run from a dependency to its dependent,
    so ``role.nexus -> attachment.nexus_s3`` means the role must exist
    before the attachment.
    """

    def __init__(self, graph: nx.DiGraph | None = None, variables: dict | None = None):
        self.graph = graph if graph is not None else nx.DiGraph()
        self.variables = variables or {}
        self.lint: SemanticValidationResult | None = None

    def add(self, resource: Resource) -> None:
        self.graph.add_node(resource.address, resource=resource, kind=resource.kind.value)

    def link(self, dependency: str, dependent: str) -> None:
        self.graph.add_edge(dependency, dependent)

    def resource(self, address: str) -> Resource:
        if address not in self.graph:
            raise KeyError(f"Unknown resource address: {address}")
        return self.graph.nodes[address]["resource"]

    def resources(self, kind: ResourceKind | None = None) -> list[Resource]:
        """All resources sorted by address, optionally filtered by kind."""
        found = [self.graph.nodes[a]["resource"] for a in sorted(self.graph.nodes)]
        if kind is not None:
            found = [r for r in found if r.kind == kind]
        return found

    def dependencies(self, address: str) -> list[str]:
        return sorted(self.graph.predecessors(address))

    def dependents(self, address: str) -> list[str]:
        return sorted(self.graph.successors(address))

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def __contains__(self, address: str) -> bool:
        return address in self.graph


def load_declarations(path: str | Path) -> dict:
    """Read a declaration YAML file."""
    path = Path(path)
    if not path.exists():
        raise DeclarationError(f"Declaration file not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise DeclarationError(f"{path} does not contain a mapping")
    return data


def render(data: dict, variables: dict | None = None) -> dict:
    """Schema-check ``data`` and return it with variables interpolated.

    The returned dict keeps the top-level ``iam_declarations`` key but drops
    the ``variables`` section; resolved values are stored under
    ``resolved_variables``.
    """
    schema_issues = validate_schema(data)
    if schema_issues:
        raise DeclarationError("Schema validation failed", schema_issues)

    decl = dict(data["iam_declarations"])
    values = resolve_variables(decl.pop("variables", {}) or {}, variables)
    rendered = interpolate(decl, values)
    return {"iam_declarations": rendered, "resolved_variables": values}


def build_graph(data: dict, variables: dict | None = None) -> ResourceGraph:
    """Validate, interpolate and build the resource graph for ``data``.

    Raises:
        DeclarationError: schema or semantic validation found errors.
        VariableError: variables could not be resolved.
    """
    rendered = render(data, variables)
    result = validate_semantics(rendered)
    if not result.passed:
        raise DeclarationError("Semantic validation failed", result.errors)

    decl = rendered["iam_declarations"]
    graph = ResourceGraph(variables=rendered["resolved_variables"])
    graph.lint = result

    roles = {name: _build_role(name, spec) for name, spec in decl.get("roles", {}).items()}
    policies = {name: _build_policy(name, spec) for name, spec in decl.get("policies", {}).items()}

    for resource in list(roles.values()) + list(policies.values()):
        graph.add(resource)

    for name, spec in decl.get("attachments", {}).items():
        attachment = Attachment(logical_name=name, role=spec["role"], policy=spec["policy"])
        attachment.role_name = roles[attachment.role].name
        if attachment.is_external:
            attachment.policy_arn = attachment.policy
            attachment.policy_name = attachment.policy.rsplit("/", 1)[-1]
        else:
            target = policies[attachment.policy]
            attachment.policy_name = target.name
            attachment.policy_path = target.path
        graph.add(attachment)

    for name, spec in decl.get("instance_profiles", {}).items():
        profile = InstanceProfile(
            logical_name=name,
            name=spec["name"],
            role=spec["role"],
            role_name=roles[spec["role"]].name,
            path=spec.get("path", "/"),
        )
        graph.add(profile)

    for resource in graph.resources():
        for dependency in resource.depends_on():
            graph.link(dependency, resource.address)

    logger.info(
        "Built resource graph: %d resource(s), %d reference(s)",
        len(graph),
        graph.graph.number_of_edges(),
    )
    return graph


def build_graph_from_file(path: str | Path, variables: dict | None = None) -> ResourceGraph:
    return build_graph(load_declarations(path), variables)


def _build_role(name: str, spec: dict) -> Role:
    trust = spec.get("trust", {})
    return Role(
        logical_name=name,
        name=spec["name"],
        trust_services=list(trust.get("services", [])),
        trust_action=trust.get("action", DEFAULT_TRUST_ACTION),
        max_session_duration=spec.get("max_session_duration", DEFAULT_SESSION_DURATION),
        description=spec.get("description", ""),
        path=spec.get("path", "/"),
        tags=dict(spec.get("tags") or {}),
    )


def _build_policy(name: str, spec: dict) -> Policy:
    return Policy(
        logical_name=name,
        name=spec["name"],
        document=PolicyDocument.from_dict(spec["document"]),
        description=spec.get("description", ""),
        path=spec.get("path", "/"),
        tags=dict(spec.get("tags") or {}),
    )
