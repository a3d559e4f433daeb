from __future__ import annotations

import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple


logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "max-age=31536000, immutable"

# DeleteObjects accepts at most 1000 keys per request
_DELETE_BATCH = 1000


class SyncError(RuntimeError):
    """The remote store rejected part of a mirror sync."""


@dataclass(frozen=True)
class S3Location:
    bucket: str
    prefix: str = ""

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}" if self.prefix else f"s3://{self.bucket}"

    def child(self, name: str) -> "S3Location":
        name = name.strip("/")
        prefix = f"{self.prefix}/{name}" if self.prefix else name
        return S3Location(bucket=self.bucket, prefix=prefix)

    def key_for(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path


def parse_s3_uri(uri: str) -> S3Location:
    """Split ``s3://bucket/some/prefix`` into bucket and prefix (no slashes at the ends)."""
    if not uri.startswith("s3://"):
        raise ValueError(f"Not an S3 URI: {uri!r}")
    rest = uri[len("s3://"):].strip("/")
    if not rest:
        raise ValueError(f"S3 URI has no bucket: {uri!r}")
    bucket, _, prefix = rest.partition("/")
    return S3Location(bucket=bucket, prefix=prefix.strip("/"))


@dataclass
class SyncResult:
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def total_local(self) -> int:
        return len(self.uploaded) + len(self.skipped)


def iter_local_files(root: Path) -> Iterator[Tuple[str, Path]]:
    """Yield ``(relative posix path, absolute path)`` for every file below `root`, sorted."""
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        yield path.relative_to(root).as_posix(), path


def count_local_files(root: Path) -> int:
    return sum(1 for _ in iter_local_files(root))


def _md5_hex(path: Path) -> str:
    digest = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _is_unchanged(path: Path, remote: Dict[str, Any]) -> bool:
    if remote.get("Size") != path.stat().st_size:
        return False
    etag = str(remote.get("ETag", "")).strip('"')
    # Multipart ETags ("<hash>-<parts>") are not content MD5s; re-upload those
    if not etag or "-" in etag:
        return False
    return etag == _md5_hex(path)


def _content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


class S3MirrorSync:
    """
    One-way mirror of a local directory into an S3 prefix.

    - Every local file ends up at ``<prefix>/<relative path>``; files whose
      size and MD5 already match the remote object are skipped.
    - Remote objects under the prefix that have no local counterpart are
      deleted, so re-running with the same local tree reproduces the same
      remote state.
    - Failures propagate; there is no rollback of objects already written.
    """

    def __init__(self, *, s3: Any, cache_control: str = IMMUTABLE_CACHE_CONTROL) -> None:
        self._s3 = s3
        self._cache_control = cache_control

    def list_remote(self, dest: S3Location) -> Dict[str, Dict[str, Any]]:
        list_prefix = f"{dest.prefix}/" if dest.prefix else ""
        out: Dict[str, Dict[str, Any]] = {}
        paginator = self._s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=dest.bucket, Prefix=list_prefix):
            for obj in page.get("Contents", []) or []:
                out[obj["Key"]] = obj
        return out

    def sync(self, source: Path, dest: S3Location, *, delete: bool = True) -> SyncResult:
        result = SyncResult()
        remote = self.list_remote(dest)
        local_keys = set()

        for rel, path in iter_local_files(source):
            key = dest.key_for(rel)
            local_keys.add(key)
            existing = remote.get(key)
            if existing is not None and _is_unchanged(path, existing):
                result.skipped.append(key)
                continue
            logger.debug("upload: %s -> s3://%s/%s", rel, dest.bucket, key)
            self._s3.upload_file(
                str(path),
                dest.bucket,
                key,
                ExtraArgs={
                    "CacheControl": self._cache_control,
                    "ContentType": _content_type(path),
                },
            )
            result.uploaded.append(key)

        if delete:
            stale = sorted(k for k in remote if k not in local_keys)
            self._delete(dest.bucket, stale)
            result.deleted.extend(stale)

        return result

    def _delete(self, bucket: str, keys: List[str]) -> None:
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start:start + _DELETE_BATCH]
            for key in batch:
                logger.debug("delete: s3://%s/%s", bucket, key)
            resp = self._s3.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
            errors = resp.get("Errors") or []
            if errors:
                first = errors[0]
                raise SyncError(
                    f"Failed to delete {len(errors)} object(s) from s3://{bucket}, "
                    f"first: {first.get('Key')} ({first.get('Code')})"
                )


def invalidation_path(location: S3Location) -> str:
    """CloudFront path pattern covering every object under `location`."""
    return f"/{location.prefix}/*" if location.prefix else "/*"


__all__ = [
    "IMMUTABLE_CACHE_CONTROL",
    "S3Location",
    "S3MirrorSync",
    "SyncError",
    "SyncResult",
    "parse_s3_uri",
    "iter_local_files",
    "count_local_files",
    "invalidation_path",
]
