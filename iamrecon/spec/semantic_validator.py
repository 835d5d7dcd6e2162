"""Semantic validator for IAM declarations.

Goes beyond JSON Schema structural validation to check the rules a
provisioning engine would otherwise reject at apply time:
- Interpolated fields keep the types the schema asked for
- Physical names are valid IAM names
- Attachments and instance profiles reference declared roles and policies
- Trust policies name a valid AWS service principal
- Resource ARNs and actions are well-formed
- Physical names and statement Sids are unique
- Raw policy JSON parses

It also lints for least privilege (wildcard actions, unscoped resources,
policies nothing attaches).

This is gate 2 of 2 and runs on the interpolated declarations.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from iamrecon.models.resources import (
    MAX_SESSION_DURATION,
    MIN_SESSION_DURATION,
    as_list,
)

ARN_PATTERN = re.compile(
    r"^arn:(aws|aws-cn|aws-us-gov):[a-z0-9-]+:[a-z0-9*-]*:(\d{12}|aws|\*)?:\S+$"
)
ACTION_PATTERN = re.compile(r"^(\*|[a-z0-9-]+:[A-Za-z0-9*?]+)$")
PRINCIPAL_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*\.amazonaws\.com(\.cn)?$")
NAME_PATTERN = re.compile(r"^[\w+=,.@-]+$", re.ASCII)

# Maximum physical name length per section.
NAME_LIMITS = {"roles": 64, "policies": 128, "instance_profiles": 128}

# Actions that do not support resource-level permissions; "*" is the only
# valid Resource for them.
UNSCOPED_ACTIONS = {
    "cloudwatch:PutMetricData",
    "cloudwatch:GetMetricData",
    "cloudwatch:GetMetricStatistics",
    "route53:ListHostedZones",
    "route53:ListHostedZonesByName",
    "route53:GetChange",
    "s3:ListAllMyBuckets",
    "secretsmanager:ListSecrets",
    "secretsmanager:GetRandomPassword",
    "sns:ListTopics",
}
UNSCOPED_VERB_PREFIXES = ("Describe", "List")


class Severity(Enum):
    ERROR = "error"  # Blocks planning
    WARNING = "warning"  # Least-privilege smell
    INFO = "info"  # Suggestion


@dataclass
class ValidationIssue:
    """A single issue found during semantic validation."""

    severity: Severity
    code: str  # Machine-readable issue code
    message: str
    path: str = ""  # Dotted location (e.g., "policies.s3.document.Statement[0]")

    def __str__(self) -> str:
        where = f" ({self.path})" if self.path else ""
        return f"[{self.code}] {self.message}{where}"


@dataclass
class SemanticValidationResult:
    """Result of semantic validation on a declaration file."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(i.severity == Severity.ERROR for i in self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def infos(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.INFO]

    def add(self, severity: Severity, code: str, message: str, path: str = ""):
        self.issues.append(ValidationIssue(severity=severity, code=code, message=message, path=path))

    def summary(self) -> str:
        e = len(self.errors)
        w = len(self.warnings)
        status = "PASS" if self.passed else "FAIL"
        return f"[{status}] {e} error(s), {w} warning(s)"


def validate_semantics(data: dict) -> SemanticValidationResult:
    """Run semantic validation on an interpolated declaration dict.

    Args:
        data: The full dict (with top-level 'iam_declarations' key), after
            variable interpolation.

    Returns:
        SemanticValidationResult with all issues found.
    """
    result = SemanticValidationResult()
    decl = data.get("iam_declarations", {})

    # A whole-value variable can change a field's type; the remaining
    # checks assume strings where the schema asked for them.
    _check_field_types(decl, result)
    if not result.passed:
        return result

    _check_names(decl, result)
    _check_roles(decl, result)
    _check_policies(decl, result)
    _check_references(decl, result)
    _check_duplicate_names(decl, result)
    _check_unattached_policies(decl, result)

    return result


_STRING_FIELDS = {
    "roles": ("name", "description", "path"),
    "policies": ("name", "description", "path"),
    "attachments": ("role", "policy"),
    "instance_profiles": ("name", "role", "path"),
}


def _check_field_types(decl: dict, result: SemanticValidationResult):
    """Fields the schema declares as strings must still be strings after interpolation."""
    for section, keys in _STRING_FIELDS.items():
        for logical, spec in decl.get(section, {}).items():
            for key in keys:
                if key in spec and not isinstance(spec[key], str):
                    _type_error(f"{section}.{logical}.{key}", spec[key], result)

    for logical, role in decl.get("roles", {}).items():
        trust = role.get("trust", {})
        base = f"roles.{logical}.trust"
        if "action" in trust and not isinstance(trust["action"], str):
            _type_error(f"{base}.action", trust["action"], result)
        for i, service in enumerate(trust.get("services", [])):
            if not isinstance(service, str):
                _type_error(f"{base}.services[{i}]", service, result)


def _type_error(path: str, value, result: SemanticValidationResult):
    result.add(
        Severity.ERROR,
        "INVALID_TYPE",
        f"'{path}' must be a string after variable interpolation, got {type(value).__name__}.",
        path,
    )


def _check_names(decl: dict, result: SemanticValidationResult):
    """Interpolated physical names must be valid IAM names."""
    for section, limit in NAME_LIMITS.items():
        for logical, spec in decl.get(section, {}).items():
            name = spec.get("name", "")
            if not NAME_PATTERN.match(name) or len(name) > limit:
                result.add(
                    Severity.ERROR,
                    "INVALID_NAME",
                    f"'{name}' is not a valid IAM name (letters, digits and '+=,.@_-', "
                    f"at most {limit} characters).",
                    f"{section}.{logical}.name",
                )


def _check_roles(decl: dict, result: SemanticValidationResult):
    """Trust principals and session duration."""
    for logical, role in decl.get("roles", {}).items():
        base = f"roles.{logical}"
        for service in role.get("trust", {}).get("services", []):
            if not PRINCIPAL_PATTERN.match(str(service)):
                result.add(
                    Severity.ERROR,
                    "INVALID_PRINCIPAL",
                    f"Role '{logical}' trusts '{service}', which is not an AWS service principal "
                    f"(expected '<service>.amazonaws.com').",
                    f"{base}.trust.services",
                )

        action = role.get("trust", {}).get("action", "sts:AssumeRole")
        if not ACTION_PATTERN.match(action):
            result.add(
                Severity.ERROR,
                "INVALID_ACTION",
                f"Role '{logical}' trust action '{action}' is not a valid IAM action.",
                f"{base}.trust.action",
            )

        duration = role.get("max_session_duration")
        if duration is not None and not MIN_SESSION_DURATION <= duration <= MAX_SESSION_DURATION:
            result.add(
                Severity.ERROR,
                "SESSION_DURATION",
                f"Role '{logical}' max_session_duration {duration} is outside "
                f"{MIN_SESSION_DURATION}..{MAX_SESSION_DURATION} seconds.",
                f"{base}.max_session_duration",
            )

        _check_tags(role, f"Role '{logical}'", base, result)

        if not role.get("description"):
            result.add(
                Severity.INFO,
                "MISSING_DESCRIPTION",
                f"Role '{logical}' has no description.",
                f"{base}.description",
            )


def _check_policies(decl: dict, result: SemanticValidationResult):
    """Document JSON, statement shape, ARNs, actions and wildcard lint."""
    for logical, policy in decl.get("policies", {}).items():
        base = f"policies.{logical}"
        document = policy.get("document", {})

        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                result.add(
                    Severity.ERROR,
                    "INVALID_POLICY_JSON",
                    f"Policy '{logical}' document is not valid JSON: {e}",
                    f"{base}.document",
                )
                continue
        if not isinstance(document, dict):
            result.add(
                Severity.ERROR,
                "INVALID_POLICY_JSON",
                f"Policy '{logical}' document must be a JSON object.",
                f"{base}.document",
            )
            continue

        statements = document.get("Statement", [])
        if isinstance(statements, dict):
            statements = [statements]
        if not isinstance(statements, list) or not all(isinstance(s, dict) for s in statements):
            result.add(
                Severity.ERROR,
                "INVALID_POLICY_JSON",
                f"Policy '{logical}' Statement must be an object or a list of objects.",
                f"{base}.document.Statement",
            )
            continue

        bad_sids = [s["Sid"] for s in statements if "Sid" in s and not isinstance(s["Sid"], str)]
        if bad_sids:
            _type_error(f"{base}.document.Statement.Sid", bad_sids[0], result)
            continue

        sids = Counter(s.get("Sid") for s in statements if s.get("Sid"))
        for sid, count in sids.items():
            if count > 1:
                result.add(
                    Severity.ERROR,
                    "DUPLICATE_SID",
                    f"Policy '{logical}' uses Sid '{sid}' {count} times.",
                    f"{base}.document.Statement",
                )

        for i, statement in enumerate(statements):
            _check_statement(logical, statement, f"{base}.document.Statement[{i}]", result)

        _check_tags(policy, f"Policy '{logical}'", base, result)

        if not policy.get("description"):
            result.add(
                Severity.INFO,
                "MISSING_DESCRIPTION",
                f"Policy '{logical}' has no description.",
                f"{base}.description",
            )


def _check_tags(spec: dict, label: str, base: str, result: SemanticValidationResult):
    tags = spec.get("tags", {})
    if not isinstance(tags, dict):
        result.add(
            Severity.ERROR,
            "INVALID_TAGS",
            f"{label} tags must be a mapping, got {type(tags).__name__}.",
            f"{base}.tags",
        )
        return
    for key, value in tags.items():
        if not isinstance(key, str) or not isinstance(value, str):
            result.add(
                Severity.ERROR,
                "INVALID_TAGS",
                f"{label} tags must map strings to strings; '{key}' has a {type(value).__name__} value.",
                f"{base}.tags.{key}",
            )


def _check_statement(logical: str, statement: dict, path: str, result: SemanticValidationResult):
    actions = as_list(statement.get("Action"))
    resources = as_list(statement.get("Resource"))

    if not actions or not resources:
        result.add(
            Severity.ERROR,
            "EMPTY_STATEMENT",
            f"Policy '{logical}' has a statement with no actions or no resources "
            f"(an empty variable list?).",
            path,
        )
        return

    for action in actions:
        if not isinstance(action, str) or not ACTION_PATTERN.match(action):
            result.add(
                Severity.ERROR,
                "INVALID_ACTION",
                f"Policy '{logical}' action '{action}' is not '<service>:<Action>' or '*'.",
                f"{path}.Action",
            )
        elif action == "*" or action.endswith(":*"):
            result.add(
                Severity.WARNING,
                "WILDCARD_ACTION",
                f"Policy '{logical}' grants '{action}'; list the actions the workload needs.",
                f"{path}.Action",
            )

    for resource in resources:
        if resource == "*":
            continue
        if not isinstance(resource, str) or not ARN_PATTERN.match(resource):
            result.add(
                Severity.ERROR,
                "MALFORMED_ARN",
                f"Policy '{logical}' resource '{resource}' is not a well-formed ARN.",
                f"{path}.Resource",
            )

    if "*" in resources and statement.get("Effect", "Allow") == "Allow":
        scoped = [a for a in actions if isinstance(a, str) and not _is_unscoped(a)]
        if scoped:
            result.add(
                Severity.WARNING,
                "WILDCARD_RESOURCE",
                f"Policy '{logical}' allows {', '.join(scoped)} on every resource; "
                f"these actions support resource-level scoping.",
                f"{path}.Resource",
            )


def _is_unscoped(action: str) -> bool:
    if action in UNSCOPED_ACTIONS:
        return True
    _, _, verb = action.partition(":")
    return verb.startswith(UNSCOPED_VERB_PREFIXES)


def _check_references(decl: dict, result: SemanticValidationResult):
    """Every attachment and instance profile must point at declared resources."""
    roles = set(decl.get("roles", {}))
    policies = set(decl.get("policies", {}))

    pairs = Counter()
    for logical, attachment in decl.get("attachments", {}).items():
        base = f"attachments.{logical}"
        role = attachment.get("role", "")
        policy = attachment.get("policy", "")
        if role not in roles:
            result.add(
                Severity.ERROR,
                "DANGLING_ROLE_REF",
                f"Attachment '{logical}' references undeclared role '{role}'.",
                f"{base}.role",
            )
        if policy.startswith("arn:"):
            if not ARN_PATTERN.match(policy) or ":policy/" not in policy:
                result.add(
                    Severity.ERROR,
                    "MALFORMED_ARN",
                    f"Attachment '{logical}' policy '{policy}' is not a managed-policy ARN.",
                    f"{base}.policy",
                )
        elif policy not in policies:
            result.add(
                Severity.ERROR,
                "DANGLING_POLICY_REF",
                f"Attachment '{logical}' references undeclared policy '{policy}'.",
                f"{base}.policy",
            )
        pairs[(role, policy)] += 1

    for (role, policy), count in pairs.items():
        if count > 1:
            result.add(
                Severity.ERROR,
                "DUPLICATE_ATTACHMENT",
                f"Policy '{policy}' is attached to role '{role}' by {count} attachments.",
                "attachments",
            )

    for logical, profile in decl.get("instance_profiles", {}).items():
        role = profile.get("role", "")
        if role not in roles:
            result.add(
                Severity.ERROR,
                "DANGLING_ROLE_REF",
                f"Instance profile '{logical}' references undeclared role '{role}'.",
                f"instance_profiles.{logical}.role",
            )


def _check_duplicate_names(decl: dict, result: SemanticValidationResult):
    """Physical names must be unique per resource kind."""
    for section in ("roles", "policies", "instance_profiles"):
        names = Counter(item.get("name") for item in decl.get(section, {}).values())
        for name, count in names.items():
            if count > 1:
                result.add(
                    Severity.ERROR,
                    "DUPLICATE_NAME",
                    f"{count} entries in '{section}' resolve to the name '{name}'.",
                    section,
                )


def _check_unattached_policies(decl: dict, result: SemanticValidationResult):
    attached = {a.get("policy") for a in decl.get("attachments", {}).values()}
    for logical in decl.get("policies", {}):
        if logical not in attached:
            result.add(
                Severity.WARNING,
                "UNATTACHED_POLICY",
                f"Policy '{logical}' is declared but never attached to a role.",
                f"policies.{logical}",
            )
