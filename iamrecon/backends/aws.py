"""AWS IAM control plane (boto3).

Read calls use list/get APIs with paginators; write calls are the minimal
set needed to converge a role, managed policy, attachment or instance
profile. Deleting a role or policy first removes whatever still references
it, so replacements never block on leftover attachments.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import unquote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from iamrecon.backends.base import ControlPlane, tag_changes
from iamrecon.errors import BackendError
from iamrecon.models.resources import (
    Attachment,
    InstanceProfile,
    Policy,
    Role,
    normalize_document,
)

logger = logging.getLogger(__name__)

# IAM keeps at most five versions of a managed policy.
MAX_POLICY_VERSIONS = 5


def _decode_document(document) -> dict:
    """IAM returns URL-encoded JSON unless botocore already decoded it."""
    if isinstance(document, str):
        return json.loads(unquote(document))
    return document or {}


def _tags_to_dict(tags: list[dict] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or []}


def _tags_to_list(tags: dict[str, str]) -> list[dict]:
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


class AwsControlPlane(ControlPlane):
    """IAM control plane backed by a boto3 session."""

    name = "aws"

    def __init__(
        self,
        profile: str | None = None,
        region: str | None = None,
        session: boto3.Session | None = None,
        account_id: str | None = None,
        partition: str = "aws",
    ):
        session = session or boto3.Session(profile_name=profile, region_name=region)
        cfg = BotoConfig(retries={"max_attempts": 10, "mode": "standard"})
        self.iam = session.client("iam", config=cfg)
        self._sts = session.client("sts", config=cfg)
        self._account_id = account_id
        self.partition = partition

    @property
    def account_id(self) -> str:
        if self._account_id is None:
            self._account_id = self._call_sts()
        return self._account_id

    def policy_arn(self, name: str, path: str = "/") -> str:
        return f"arn:{self.partition}:iam::{self.account_id}:policy{path}{name}"

    def _attachment_arn(self, identity: dict) -> str:
        return identity.get("policy_arn") or self.policy_arn(
            identity["policy_name"], identity.get("policy_path", "/")
        )

    # --- Roles ---

    def read_role(self, identity: dict) -> dict | None:
        resp = self._call("get_role", missing_ok=True, RoleName=identity["name"])
        if resp is None:
            return None
        role = resp["Role"]
        return {
            "name": role["RoleName"],
            "path": role.get("Path", "/"),
            "description": role.get("Description") or "",
            "max_session_duration": role.get("MaxSessionDuration", 3600),
            "trust_policy": normalize_document(_decode_document(role.get("AssumeRolePolicyDocument"))),
            "tags": _tags_to_dict(role.get("Tags")),
        }

    def create_role(self, role: Role) -> dict:
        kwargs = {
            "RoleName": role.name,
            "Path": role.path,
            "AssumeRolePolicyDocument": json.dumps(role.trust_policy()),
            "Description": role.description,
            "MaxSessionDuration": role.max_session_duration,
        }
        if role.tags:
            kwargs["Tags"] = _tags_to_list(role.tags)
        self._call("create_role", **kwargs)
        logger.info("Created role %s", role.name)
        return role.desired()

    def update_role(self, role: Role, observed: dict) -> dict:
        desired = role.desired()
        if (
            desired["description"] != observed.get("description")
            or desired["max_session_duration"] != observed.get("max_session_duration")
        ):
            self._call(
                "update_role",
                RoleName=role.name,
                Description=role.description,
                MaxSessionDuration=role.max_session_duration,
            )
        if desired["trust_policy"] != observed.get("trust_policy"):
            self._call(
                "update_assume_role_policy",
                RoleName=role.name,
                PolicyDocument=json.dumps(role.trust_policy()),
            )
        to_set, to_remove = tag_changes(desired["tags"], observed.get("tags", {}))
        if to_remove:
            self._call("untag_role", RoleName=role.name, TagKeys=to_remove)
        if to_set:
            self._call("tag_role", RoleName=role.name, Tags=_tags_to_list(to_set))
        logger.info("Updated role %s", role.name)
        return desired

    def delete_role(self, identity: dict) -> None:
        name = identity["name"]
        if self._call("get_role", missing_ok=True, RoleName=name) is None:
            logger.debug("Role %s already gone", name)
            return

        for profile in self._paginate("list_instance_profiles_for_role", "InstanceProfiles", RoleName=name):
            self._call(
                "remove_role_from_instance_profile",
                missing_ok=True,
                InstanceProfileName=profile["InstanceProfileName"],
                RoleName=name,
            )
        for attached in self._paginate("list_attached_role_policies", "AttachedPolicies", RoleName=name):
            self._call("detach_role_policy", missing_ok=True, RoleName=name, PolicyArn=attached["PolicyArn"])
        for inline in self._paginate("list_role_policies", "PolicyNames", RoleName=name):
            self._call("delete_role_policy", missing_ok=True, RoleName=name, PolicyName=inline)

        self._call("delete_role", missing_ok=True, RoleName=name)
        logger.info("Deleted role %s", name)

    # --- Policies ---

    def read_policy(self, identity: dict) -> dict | None:
        arn = self.policy_arn(identity["name"], identity.get("path", "/"))
        resp = self._call("get_policy", missing_ok=True, PolicyArn=arn)
        if resp is None:
            return None
        meta = resp["Policy"]
        version = self._call("get_policy_version", PolicyArn=arn, VersionId=meta["DefaultVersionId"])
        tags = self._call("list_policy_tags", PolicyArn=arn).get("Tags", [])
        return {
            "name": meta["PolicyName"],
            "path": meta.get("Path", "/"),
            "description": meta.get("Description") or "",
            "document": normalize_document(_decode_document(version["PolicyVersion"]["Document"])),
            "tags": _tags_to_dict(tags),
        }

    def create_policy(self, policy: Policy) -> dict:
        kwargs = {
            "PolicyName": policy.name,
            "Path": policy.path,
            "PolicyDocument": json.dumps(policy.document.to_dict()),
            "Description": policy.description,
        }
        if policy.tags:
            kwargs["Tags"] = _tags_to_list(policy.tags)
        self._call("create_policy", **kwargs)
        logger.info("Created policy %s", policy.name)
        return policy.desired()

    def update_policy(self, policy: Policy, observed: dict) -> dict:
        desired = policy.desired()
        arn = self.policy_arn(policy.name, policy.path)

        if desired["document"] != observed.get("document"):
            versions = self._paginate("list_policy_versions", "Versions", PolicyArn=arn)
            if len(versions) >= MAX_POLICY_VERSIONS:
                oldest = sorted(
                    (v for v in versions if not v["IsDefaultVersion"]),
                    key=lambda v: v["CreateDate"],
                )[0]
                logger.debug("Rotating out policy version %s of %s", oldest["VersionId"], policy.name)
                self._call("delete_policy_version", PolicyArn=arn, VersionId=oldest["VersionId"])
            self._call(
                "create_policy_version",
                PolicyArn=arn,
                PolicyDocument=json.dumps(policy.document.to_dict()),
                SetAsDefault=True,
            )

        to_set, to_remove = tag_changes(desired["tags"], observed.get("tags", {}))
        if to_remove:
            self._call("untag_policy", PolicyArn=arn, TagKeys=to_remove)
        if to_set:
            self._call("tag_policy", PolicyArn=arn, Tags=_tags_to_list(to_set))
        logger.info("Updated policy %s", policy.name)
        return desired

    def delete_policy(self, identity: dict) -> None:
        arn = self.policy_arn(identity["name"], identity.get("path", "/"))
        if self._call("get_policy", missing_ok=True, PolicyArn=arn) is None:
            logger.debug("Policy %s already gone", identity["name"])
            return

        for page in self._pages("list_entities_for_policy", PolicyArn=arn):
            for role in page.get("PolicyRoles", []):
                self._call("detach_role_policy", missing_ok=True, RoleName=role["RoleName"], PolicyArn=arn)
            for user in page.get("PolicyUsers", []):
                self._call("detach_user_policy", missing_ok=True, UserName=user["UserName"], PolicyArn=arn)
            for group in page.get("PolicyGroups", []):
                self._call("detach_group_policy", missing_ok=True, GroupName=group["GroupName"], PolicyArn=arn)
        for version in self._paginate("list_policy_versions", "Versions", PolicyArn=arn):
            if not version["IsDefaultVersion"]:
                self._call("delete_policy_version", PolicyArn=arn, VersionId=version["VersionId"])

        self._call("delete_policy", missing_ok=True, PolicyArn=arn)
        logger.info("Deleted policy %s", identity["name"])

    # --- Attachments ---

    def read_attachment(self, identity: dict) -> dict | None:
        arn = self._attachment_arn(identity)
        try:
            attached = self._paginate(
                "list_attached_role_policies", "AttachedPolicies", RoleName=identity["role_name"]
            )
        except BackendError as e:
            if e.code == "NoSuchEntity":
                return None
            raise
        if any(p["PolicyArn"] == arn for p in attached):
            return dict(identity)
        return None

    def create_attachment(self, attachment: Attachment) -> dict:
        arn = self._attachment_arn(attachment.identity())
        self._call("attach_role_policy", RoleName=attachment.role_name, PolicyArn=arn)
        logger.info("Attached %s to role %s", arn, attachment.role_name)
        return attachment.desired()

    def delete_attachment(self, identity: dict) -> None:
        arn = self._attachment_arn(identity)
        self._call("detach_role_policy", missing_ok=True, RoleName=identity["role_name"], PolicyArn=arn)
        logger.info("Detached %s from role %s", arn, identity["role_name"])

    # --- Instance profiles ---

    def read_instance_profile(self, identity: dict) -> dict | None:
        resp = self._call("get_instance_profile", missing_ok=True, InstanceProfileName=identity["name"])
        if resp is None:
            return None
        profile = resp["InstanceProfile"]
        roles = profile.get("Roles", [])
        return {
            "name": profile["InstanceProfileName"],
            "path": profile.get("Path", "/"),
            "role_name": roles[0]["RoleName"] if roles else "",
        }

    def create_instance_profile(self, profile: InstanceProfile) -> dict:
        self._call("create_instance_profile", InstanceProfileName=profile.name, Path=profile.path)
        self._call("add_role_to_instance_profile", InstanceProfileName=profile.name, RoleName=profile.role_name)
        logger.info("Created instance profile %s for role %s", profile.name, profile.role_name)
        return profile.desired()

    def update_instance_profile(self, profile: InstanceProfile, observed: dict) -> dict:
        current = observed.get("role_name", "")
        if current != profile.role_name:
            if current:
                self._call(
                    "remove_role_from_instance_profile",
                    missing_ok=True,
                    InstanceProfileName=profile.name,
                    RoleName=current,
                )
            self._call("add_role_to_instance_profile", InstanceProfileName=profile.name, RoleName=profile.role_name)
            logger.info("Instance profile %s now wraps role %s", profile.name, profile.role_name)
        return profile.desired()

    def delete_instance_profile(self, identity: dict) -> None:
        observed = self.read_instance_profile(identity)
        if observed is None:
            logger.debug("Instance profile %s already gone", identity["name"])
            return
        if observed["role_name"]:
            self._call(
                "remove_role_from_instance_profile",
                missing_ok=True,
                InstanceProfileName=identity["name"],
                RoleName=observed["role_name"],
            )
        self._call("delete_instance_profile", missing_ok=True, InstanceProfileName=identity["name"])
        logger.info("Deleted instance profile %s", identity["name"])

    # --- API helpers ---

    def _call(self, operation: str, missing_ok: bool = False, **kwargs):
        """Invoke an IAM operation, mapping ClientError to BackendError.

        With ``missing_ok`` a NoSuchEntity error returns ``None``.
        """
        logger.debug("iam.%s(%s)", operation, ", ".join(f"{k}={v!r}" for k, v in kwargs.items() if k != "PolicyDocument"))
        try:
            return getattr(self.iam, operation)(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if missing_ok and code == "NoSuchEntity":
                return None
            message = e.response.get("Error", {}).get("Message", str(e))
            raise BackendError(f"iam.{operation} failed: {code}: {message}", code=code) from e
        except BotoCoreError as e:
            raise BackendError(f"iam.{operation} failed: {e}") from e

    def _pages(self, operation: str, **kwargs):
        try:
            yield from self.iam.get_paginator(operation).paginate(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise BackendError(f"iam.{operation} failed: {code}", code=code) from e

    def _paginate(self, operation: str, key: str, **kwargs) -> list:
        items: list = []
        for page in self._pages(operation, **kwargs):
            items.extend(page.get(key, []))
        return items

    def _call_sts(self) -> str:
        try:
            return self._sts.get_caller_identity()["Account"]
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise BackendError(f"sts.get_caller_identity failed: {code}", code=code) from e
        except BotoCoreError as e:
            raise BackendError(f"sts.get_caller_identity failed: {e}") from e
