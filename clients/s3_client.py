"""
S3 client for source blobs (uploaded documents, audio).
Deletion and lifecycle tagging for the deletion protocol; blocking boto3
calls run in worker threads.
"""

import os
import logging
import asyncio
from datetime import datetime, timezone
from typing import Dict, List

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Config from environment
S3_BUCKET = os.getenv("S3_BUCKET", "studyforge-source-files")
S3_REGION = os.getenv("AWS_REGION", "eu-west-1")

SOFT_DELETE_TAG = "soft-deleted"

_s3_client = None


def _get_s3_client():
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3", region_name=S3_REGION)
    return _s3_client


def soft_delete_tags(user_id: str, deleted_at: datetime = None) -> Dict[str, str]:
    deleted_at = deleted_at or datetime.now(timezone.utc)
    return {
        SOFT_DELETE_TAG: "true",
        f"deleted-{deleted_at.strftime('%Y-%m-%d')}": "true",
        f"user-{user_id}": "true",
    }


def delete_object(key: str) -> None:
    """Delete a blob. Deleting a missing key succeeds."""
    try:
        _get_s3_client().delete_object(Bucket=S3_BUCKET, Key=key)
    except ClientError as e:
        logger.error(f"S3 delete failed for {key}: {e.response.get('Error', {}).get('Code')}")
        raise
    logger.info(f"S3 delete success: {key}")


def _get_tags(key: str) -> Dict[str, str]:
    response = _get_s3_client().get_object_tagging(Bucket=S3_BUCKET, Key=key)
    return {tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])}


def _put_tags(key: str, tags: Dict[str, str]) -> None:
    _get_s3_client().put_object_tagging(
        Bucket=S3_BUCKET,
        Key=key,
        Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
    )


def tag_object(key: str, tags: Dict[str, str]) -> None:
    """Merge tags into the object's existing tag set."""
    current = _get_tags(key)
    current.update(tags)
    _put_tags(key, current)
    logger.info(f"S3 tagged {key}: {sorted(tags)}")


def untag_object(key: str, tag_keys: List[str]) -> None:
    current = _get_tags(key)
    remaining = {k: v for k, v in current.items() if k not in tag_keys}
    _put_tags(key, remaining)
    logger.info(f"S3 untagged {key}: {sorted(tag_keys)}")


def soft_delete_tag_keys(key: str) -> List[str]:
    """Soft-delete tag keys currently on the object."""
    return [
        k for k in _get_tags(key)
        if k == SOFT_DELETE_TAG or k.startswith("deleted-") or k.startswith("user-")
    ]


class S3BlobStore:
    """Async facade used by the deletion services."""

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(delete_object, key)

    async def tag_soft_deleted(self, key: str, user_id: str) -> None:
        await asyncio.to_thread(tag_object, key, soft_delete_tags(user_id))

    async def untag_soft_deleted(self, key: str) -> None:
        tag_keys = await asyncio.to_thread(soft_delete_tag_keys, key)
        if tag_keys:
            await asyncio.to_thread(untag_object, key, tag_keys)
