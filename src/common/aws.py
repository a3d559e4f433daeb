from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .env import getenv


ENV_PROFILE = "AWS_PROFILE"
ENV_REGION = "AWS_REGION"


def make_session(*, profile: Optional[str] = None, region_name: Optional[str] = None) -> boto3.Session:
    """Build a boto3 session, using ``AWS_PROFILE`` when no profile is given."""
    kwargs: Dict[str, Any] = {}
    profile = profile or getenv(ENV_PROFILE)
    if profile:
        kwargs["profile_name"] = profile
    if region_name:
        kwargs["region_name"] = region_name
    return boto3.Session(**kwargs)


def error_code(exc: Exception) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def caller_identity(sts: Any) -> Dict[str, Any]:
    """Return the STS caller identity; raises on missing/expired credentials."""
    resp = sts.get_caller_identity()
    return {
        "Account": resp.get("Account"),
        "Arn": resp.get("Arn"),
        "UserId": resp.get("UserId"),
    }


def has_credentials(sts: Any) -> bool:
    try:
        caller_identity(sts)
    except (ClientError, BotoCoreError):
        return False
    return True


def create_invalidation(
    cloudfront: Any,
    distribution_id: str,
    paths: List[str],
    *,
    caller_reference: Optional[str] = None,
) -> str:
    """Request a CloudFront invalidation for `paths` and return its id."""
    ref = caller_reference or f"pipeline-{uuid4().hex}"
    resp = cloudfront.create_invalidation(
        DistributionId=distribution_id,
        InvalidationBatch={
            "Paths": {"Quantity": len(paths), "Items": list(paths)},
            "CallerReference": ref,
        },
    )
    return str(resp.get("Invalidation", {}).get("Id"))


__all__ = [
    "make_session",
    "error_code",
    "caller_identity",
    "has_credentials",
    "create_invalidation",
]
