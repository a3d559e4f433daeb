from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from addressables.s3_sync import (
    S3MirrorSync,
    SyncError,
    count_local_files,
    invalidation_path,
    parse_s3_uri,
)
from common.aws import create_invalidation, make_session
from common.console import setup_logging, success
from common.env import ConfigError, env_flag, getenv, load_dotenv_file, load_project_config, require


logger = logging.getLogger(__name__)

# Environment variable names (same names project-config.sh exports)
ENV_ENABLED = "REMOTE_ADDRESSABLES_ENABLED"
ENV_S3_PATH = "ADDRESSABLES_S3_PATH"
ENV_DISTRIBUTION_ID = "ADDRESSABLES_CLOUDFRONT_DISTRIBUTION_ID"
ENV_BUILD_DIR = "ADDRESSABLES_BUILD_DIR"
ENV_PROFILE = "AWS_PROFILE"

PLATFORMS = {"android": "Android", "ios": "iOS"}


class PublishError(RuntimeError):
    """The Addressables output could not be published."""


def resolve_platform(value: str) -> str:
    """Map a case-insensitive platform argument to Unity's build target name."""
    target = PLATFORMS.get((value or "").strip().lower())
    if target is None:
        raise ValueError(f"Unknown platform '{value}'. Use 'android' or 'ios'.")
    return target


@dataclass
class PublishConfig:
    platform: str
    enabled: bool
    s3_path: Optional[str]
    distribution_id: Optional[str]
    profile: Optional[str]
    build_dir: Path

    @classmethod
    def from_env(cls, platform: str, *, project_path: Path) -> "PublishConfig":
        target = resolve_platform(platform)
        build_dir = getenv(ENV_BUILD_DIR)
        return cls(
            platform=target,
            enabled=env_flag(ENV_ENABLED),
            s3_path=getenv(ENV_S3_PATH),
            distribution_id=getenv(ENV_DISTRIBUTION_ID),
            profile=getenv(ENV_PROFILE),
            build_dir=Path(build_dir) if build_dir else project_path / "ServerData" / target,
        )


def _summary(cfg: PublishConfig, **fields: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "ok": True,
        "platform": cfg.platform,
        "files": 0,
        "uploaded": 0,
        "skipped": 0,
        "deleted": 0,
        "invalidation_id": None,
        "note": None,
    }
    out.update(fields)
    return out


def publish(
    platform: str = "android",
    *,
    project_path: Optional[Path] = None,
    s3: Optional[Any] = None,
    cloudfront: Optional[Any] = None,
) -> Dict[str, Any]:
    """Mirror the built Addressables for `platform` to S3 and invalidate the CDN.

    Configuration comes from the environment (see ENV_* names). Returns a
    summary dict. Raises ConfigError/PublishError before any remote call when
    configuration or the local build output is missing; AWS errors propagate.
    """
    project = (project_path or Path.cwd()).resolve()
    cfg = PublishConfig.from_env(platform, project_path=project)

    if not cfg.enabled:
        logger.info("%s is not true, skipping Addressables upload", ENV_ENABLED)
        return _summary(cfg, note=f"{ENV_ENABLED} not set; skipped")

    s3_path = require(cfg.s3_path, ENV_S3_PATH)
    try:
        base = parse_s3_uri(s3_path)
    except ValueError as ex:
        raise ConfigError(f"{ENV_S3_PATH} is not a valid S3 URI: {s3_path}") from ex

    if not cfg.build_dir.is_dir():
        raise PublishError(
            f"Addressables build directory not found: {cfg.build_dir}. "
            "Build Addressables in Unity before publishing."
        )

    file_count = count_local_files(cfg.build_dir)
    if file_count == 0:
        logger.warning("No files found in %s, nothing to upload", cfg.build_dir)
        return _summary(cfg, note="build directory is empty")

    dest = base.child(cfg.platform)
    logger.info("=== Uploading Addressables to CDN ===")
    logger.info("Platform  : %s", cfg.platform)
    logger.info("Source    : %s (%d files)", cfg.build_dir, file_count)
    logger.info("S3 dest   : %s", dest.uri)

    session = None
    if s3 is None or (cloudfront is None and cfg.distribution_id):
        session = make_session(profile=cfg.profile)
    s3_client = s3 or session.client("s3")

    result = S3MirrorSync(s3=s3_client).sync(cfg.build_dir, dest, delete=True)
    success(
        logger,
        "Addressables uploaded to S3 (%d files: %d uploaded, %d unchanged, %d deleted)",
        file_count,
        len(result.uploaded),
        len(result.skipped),
        len(result.deleted),
    )

    invalidation_id: Optional[str] = None
    if cfg.distribution_id:
        path = invalidation_path(dest)
        logger.info("Invalidating CloudFront path: %s", path)
        cf_client = cloudfront or session.client("cloudfront")
        invalidation_id = create_invalidation(cf_client, cfg.distribution_id, [path])
        success(logger, "CloudFront invalidation created: %s", invalidation_id)
    else:
        logger.warning("%s not set, skipping CloudFront invalidation", ENV_DISTRIBUTION_ID)

    logger.info("=== Addressables upload complete ===")
    return _summary(
        cfg,
        files=file_count,
        uploaded=len(result.uploaded),
        skipped=len(result.skipped),
        deleted=len(result.deleted),
        invalidation_id=invalidation_id,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="upload-addressables",
        description="Upload built Addressables to S3 and invalidate CloudFront",
    )
    parser.add_argument("platform", nargs="?", default="android", help="android | ios (default: android)")
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    project = (args.project_path or Path.cwd()).resolve()
    load_project_config(project / "project-config.sh")
    load_dotenv_file(project / "Scripts" / ".env")

    try:
        publish(args.platform, project_path=project)
    except ValueError as ex:
        logger.error("%s", ex)
        return 1
    except ConfigError as ex:
        logger.error("%s", ex)
        logger.error('Example: export %s="s3://my-cdn-bucket/addressables_test"', ENV_S3_PATH)
        return 1
    except (PublishError, SyncError) as ex:
        logger.error("%s", ex)
        return 1
    except (ClientError, BotoCoreError, S3UploadFailedError) as ex:
        logger.error("AWS request failed: %s", ex)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
