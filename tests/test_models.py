"""Tests for the resource data models."""

import json

from iamrecon.models.resources import (
    Attachment,
    InstanceProfile,
    Policy,
    PolicyDocument,
    PolicyStatement,
    ResourceKind,
    Role,
    as_list,
    normalize_document,
    split_address,
)


def _role(**overrides) -> Role:
    values = {
        "logical_name": "nexus",
        "name": "acme-nexus",
        "trust_services": ["ec2.amazonaws.com"],
        "description": "Nexus instances",
        "tags": {"team": "platform"},
    }
    values.update(overrides)
    return Role(**values)


# --- Addresses ---


def test_addresses():
    assert _role().address == "role.nexus"
    assert InstanceProfile("nexus", "acme-nexus", role="nexus").address == "instance_profile.nexus"
    assert split_address("attachment.nexus_s3") == (ResourceKind.ATTACHMENT, "nexus_s3")


def test_kind_sections():
    assert ResourceKind.ROLE.section == "roles"
    assert ResourceKind.INSTANCE_PROFILE.section == "instance_profiles"


def test_as_list():
    assert as_list("s3:GetObject") == ["s3:GetObject"]
    assert as_list(["a", "b"]) == ["a", "b"]
    assert as_list(None) == []


# --- Policy documents ---


def test_statement_from_dict_normalizes_strings():
    statement = PolicyStatement.from_dict(
        {"Sid": "Read", "Effect": "Allow", "Action": "s3:GetObject", "Resource": "arn:aws:s3:::b/*"}
    )
    assert statement.actions == ["s3:GetObject"]
    assert statement.resources == ["arn:aws:s3:::b/*"]
    assert statement.to_dict()["Sid"] == "Read"


def test_document_from_json_string():
    raw = json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": {"Effect": "Allow", "Action": "sns:Publish", "Resource": "*"},
        }
    )
    document = PolicyDocument.from_dict(raw)
    assert len(document.statements) == 1
    assert document.to_dict()["Statement"][0]["Action"] == ["sns:Publish"]


def test_normalize_document_ignores_ordering():
    a = {
        "Version": "2012-10-17",
        "Statement": [
            {"Effect": "Allow", "Action": ["s3:PutObject", "s3:GetObject"], "Resource": "arn:aws:s3:::b/*"},
            {"Effect": "Allow", "Action": "sns:Publish", "Resource": "*"},
        ],
    }
    b = {
        "Version": "2012-10-17",
        "Statement": [
            {"Effect": "Allow", "Action": ["sns:Publish"], "Resource": ["*"]},
            {"Effect": "Allow", "Action": ["s3:GetObject", "s3:PutObject"], "Resource": ["arn:aws:s3:::b/*"]},
        ],
    }
    assert normalize_document(a) == normalize_document(b)


def test_normalize_document_principal():
    doc = {"Statement": [{"Effect": "Allow", "Principal": {"Service": "ec2.amazonaws.com"}, "Action": "sts:AssumeRole"}]}
    normalized = normalize_document(doc)
    assert normalized["Statement"][0]["Principal"] == {"Service": ["ec2.amazonaws.com"]}


# --- Resources ---


def test_role_trust_policy_single_service():
    trust = _role().trust_policy()
    statement = trust["Statement"][0]
    assert statement["Principal"] == {"Service": "ec2.amazonaws.com"}
    assert statement["Action"] == "sts:AssumeRole"


def test_role_desired_contains_comparable_attributes():
    desired = _role().desired()
    assert desired["name"] == "acme-nexus"
    assert desired["max_session_duration"] == 3600
    assert desired["tags"] == {"team": "platform"}
    assert desired["trust_policy"]["Statement"][0]["Action"] == ["sts:AssumeRole"]
    assert _role().depends_on() == []


def test_policy_identity_and_desired():
    policy = Policy(
        logical_name="sns",
        name="acme-nexus-sns",
        document=PolicyDocument([PolicyStatement("Allow", ["sns:Publish"], ["*"], sid="Publish")]),
        description="Publish notifications",
    )
    assert policy.identity() == {"name": "acme-nexus-sns", "path": "/"}
    assert policy.desired()["document"]["Statement"][0]["Sid"] == "Publish"
    assert "description" in Policy.immutable


def test_attachment_dependencies():
    declared = Attachment("nexus_sns", role="nexus", policy="sns")
    assert declared.depends_on() == ["role.nexus", "policy.sns"]
    assert not declared.is_external

    external = Attachment("nexus_ssm", role="nexus", policy="arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore")
    assert external.is_external
    assert external.depends_on() == ["role.nexus"]


def test_instance_profile_depends_on_role():
    profile = InstanceProfile("nexus", "acme-nexus", role="nexus", role_name="acme-nexus")
    assert profile.depends_on() == ["role.nexus"]
    assert profile.desired() == {"name": "acme-nexus", "path": "/", "role_name": "acme-nexus"}
