"""AWS action executor: Lambda rollback, restart and scale via boto3."""

from __future__ import annotations

import logging
from datetime import datetime

from oodasre.config import get_settings
from oodasre.models import (
    ActionResult,
    ActionTarget,
    RestartRequest,
    RevisionInfo,
    RollbackRequest,
    ScaleRequest,
    utcnow,
)

logger = logging.getLogger(__name__)

RESTART_MARKER_ENV = "OODASRE_RESTARTED_AT"


def _published_versions(client, function_name: str) -> list[dict]:
    """Published versions (no $LATEST), newest first."""
    versions: list[dict] = []
    paginator = client.get_paginator("list_versions_by_function")
    for page in paginator.paginate(FunctionName=function_name):
        versions.extend(v for v in (page.get("Versions") or []) if v.get("Version") != "$LATEST")
    versions.sort(key=lambda v: int(v.get("Version", "0")), reverse=True)
    return versions


def _parse_last_modified(value: str | None) -> datetime | None:
    # Lambda returns e.g. 2025-02-11T10:00:00.000+0000
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return None


class LambdaExecutor:
    """
    Executes remediation requests against a Lambda function behind an alias.

    The target deployment is the function name. Rollback points the alias at
    the previous published version, restart touches the function configuration
    so new execution environments are created, and scale sets provisioned
    concurrency on the alias to the requested replica count. Code fixes are not
    handled here; they go to the fix cycle.
    """

    def __init__(self, alias_name: str | None = None, region: str | None = None) -> None:
        settings = get_settings()
        self._alias = (alias_name or settings.lambda_alias_name or "live").strip()
        self._region = region or settings.aws_region

    def _client(self):
        import boto3

        return boto3.client("lambda", region_name=self._region)

    def execute(self, request) -> ActionResult:
        function_name = request.target.deployment
        try:
            client = self._client()
            if isinstance(request, RollbackRequest):
                return self._rollback(client, function_name, request.to_revision)
            if isinstance(request, RestartRequest):
                return self._restart(client, function_name)
            if isinstance(request, ScaleRequest):
                return self._scale(client, function_name, request.replicas)
            return ActionResult(success=False, message=f"Unsupported action type: {request.type}")
        except Exception as e:
            logger.warning("Lambda %s failed: %s", request.type, e, exc_info=True)
            return ActionResult(success=False, message=f"{request.type} failed: {e}")

    def get_revision_info(self, target: ActionTarget) -> RevisionInfo | None:
        """Published version count and age of the version the alias points to."""
        try:
            client = self._client()
            versions = _published_versions(client, target.deployment)
            alias = client.get_alias(FunctionName=target.deployment, Name=self._alias)
        except Exception as e:
            logger.warning("Lambda revision lookup failed: %s", e, exc_info=True)
            return None
        current = alias.get("FunctionVersion")
        age: float | None = None
        for v in versions:
            if v.get("Version") == current:
                modified = _parse_last_modified(v.get("LastModified"))
                if modified is not None:
                    age = (utcnow() - modified).total_seconds()
                break
        return RevisionInfo(revision_count=len(versions), current_revision_age_seconds=age)

    def _rollback(self, client, function_name: str, to_revision: int | None) -> ActionResult:
        alias = client.get_alias(FunctionName=function_name, Name=self._alias)
        current_version = alias.get("FunctionVersion")
        if not current_version:
            return ActionResult(success=False, message="Alias has no FunctionVersion")
        published = _published_versions(client, function_name)

        previous_version: str | None = None
        if to_revision is not None:
            if any(v.get("Version") == str(to_revision) for v in published):
                previous_version = str(to_revision)
        elif current_version == "$LATEST":
            # Alias tracks $LATEST; the newest published version is what ran before
            if len(published) >= 2:
                previous_version = published[1].get("Version")
        else:
            try:
                current_num = int(current_version)
            except (ValueError, TypeError):
                return ActionResult(success=False, message=f"Cannot parse version {current_version}")
            for v in published:
                if int(v.get("Version", 0)) < current_num:
                    previous_version = v.get("Version")
                    break
        if not previous_version:
            return ActionResult(success=False, message="No previous version to roll back to")

        client.update_alias(
            FunctionName=function_name,
            Name=self._alias,
            FunctionVersion=previous_version,
        )
        logger.info(
            "Lambda rollback: %s alias %s -> version %s",
            function_name,
            self._alias,
            previous_version,
        )
        return ActionResult(
            success=True,
            message=f"Rolled back {function_name} alias {self._alias} from {current_version} to {previous_version}",
        )

    def _restart(self, client, function_name: str) -> ActionResult:
        config = client.get_function_configuration(FunctionName=function_name)
        variables = dict((config.get("Environment") or {}).get("Variables") or {})
        variables[RESTART_MARKER_ENV] = utcnow().isoformat()
        client.update_function_configuration(
            FunctionName=function_name,
            Environment={"Variables": variables},
        )
        logger.info("Lambda restart: %s configuration touched", function_name)
        return ActionResult(success=True, message=f"Recycled execution environments for {function_name}")

    def _scale(self, client, function_name: str, replicas: int) -> ActionResult:
        client.put_provisioned_concurrency_config(
            FunctionName=function_name,
            Qualifier=self._alias,
            ProvisionedConcurrentExecutions=replicas,
        )
        logger.info("Lambda scale: %s:%s provisioned concurrency %s", function_name, self._alias, replicas)
        return ActionResult(
            success=True,
            message=f"Set provisioned concurrency of {function_name}:{self._alias} to {replicas}",
        )
