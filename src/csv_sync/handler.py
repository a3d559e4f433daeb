from __future__ import annotations

import argparse
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from common.aws import create_invalidation, has_credentials, make_session
from common.console import banner, setup_logging, success
from common.downloads import Downloader, DownloadError, count_lines
from common.env import ConfigError, getenv
from csv_sync.models import CDN_INFO_RELPATH, CONFIG_RELPATH, URL_FIELDS, CdnInfo, ProjectConfig, set_existing


logger = logging.getLogger(__name__)

ENV_BUILD_ENV = "BUILD_ENV"
ENV_BUCKET = "CSV_S3_BUCKET"
ENV_REGION = "AWS_REGION"

DEFAULT_BUCKET = "boardible-app"
DEFAULT_REGION = "us-east-1"
ENVIRONMENTS = ("dev", "prod")

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"
CSV_CACHE_CONTROL = "max-age=3600"
TEMP_DIRNAME = ".csv-temp"


def resolve_environment(value: Optional[str]) -> str:
    env = value or getenv(ENV_BUILD_ENV, "dev") or "dev"
    if env not in ENVIRONMENTS:
        raise ConfigError(f"Invalid environment '{env}'. Must be 'dev' or 'prod'")
    return env


def _upload_csv(s3: Any, path: Path, bucket: str, key: str) -> None:
    s3.upload_file(
        str(path),
        bucket,
        key,
        ExtraArgs={"ContentType": CSV_CONTENT_TYPE, "CacheControl": CSV_CACHE_CONTROL},
    )


def _cache_to_resources(source: Path, project: Path, cache_path: str) -> None:
    target = project / cache_path
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)


def update_config_urls(config_file: Path, *, domain: str, prefix: str) -> List[str]:
    """Point the CSV URL fields of the project config at CloudFront.

    A ``.backup`` copy is written next to the config first. Returns the
    dotted names of the fields that were rewritten.
    """
    backup = config_file.with_name(config_file.name + ".backup")
    shutil.copyfile(config_file, backup)
    logger.info("Created backup: %s", backup)

    doc = json.loads(config_file.read_text(encoding="utf-8"))
    base = f"https://{domain}/{prefix}"
    updated: List[str] = []
    for path, csv_name in URL_FIELDS:
        url = f"{base}/{csv_name}.csv"
        if set_existing(doc, path, url):
            updated.append(".".join(path))
            logger.info("Updated %s -> %s", path[-1], url)

    config_file.write_text(json.dumps(doc, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return updated


def run_once(
    environment: Optional[str] = None,
    *,
    project_path: Optional[Path] = None,
    update_config: bool = False,
    s3: Optional[Any] = None,
    cloudfront: Optional[Any] = None,
    sts: Optional[Any] = None,
    downloader: Optional[Downloader] = None,
) -> Dict[str, Any]:
    """Download every configured CSV, publish it to S3 and refresh the CDN.

    Prerequisite failures (credentials, config file, no sources) raise
    ConfigError. Per-CSV download/upload failures are collected in the
    summary rather than aborting the run.
    """
    project = (project_path or Path.cwd()).resolve()
    env = resolve_environment(environment)
    bucket = getenv(ENV_BUCKET, DEFAULT_BUCKET) or DEFAULT_BUCKET
    region = getenv(ENV_REGION, DEFAULT_REGION) or DEFAULT_REGION

    if s3 is None or cloudfront is None or sts is None:
        # an unknown AWS_PROFILE surfaces here as ProfileNotFound
        try:
            session = make_session(region_name=region)
            s3 = s3 or session.client("s3")
            cloudfront = cloudfront or session.client("cloudfront")
            sts = sts or session.client("sts")
        except BotoCoreError as ex:
            raise ConfigError(f"AWS credentials not configured: {ex}") from ex

    if getenv("AWS_PROFILE"):
        logger.info("Using AWS profile: %s", getenv("AWS_PROFILE"))
    if not has_credentials(sts):
        hint = f"aws sso login --profile {getenv('AWS_PROFILE')}" if getenv("AWS_PROFILE") else "aws configure sso"
        raise ConfigError(f"AWS credentials not configured or expired. Try: {hint}")

    config_file = project / CONFIG_RELPATH
    if not config_file.is_file():
        raise ConfigError(f"boardibleConfigs.json not found at: {config_file}")
    config = ProjectConfig.load(config_file)
    prefix = config.configs_prefix(env)

    logger.info("Environment: %s", env)
    logger.info("S3 Path: s3://%s/%s/", bucket, prefix)

    cdn = CdnInfo.load(project / CDN_INFO_RELPATH)
    if cdn is None:
        logger.warning("AWSDevInfos.asset not found - CloudFront invalidation will be skipped")
        cdn = CdnInfo()
    else:
        if cdn.distribution_id:
            logger.info("CloudFront Distribution ID: %s", cdn.distribution_id)
        else:
            logger.warning("CloudFront Distribution ID not found in AWSDevInfos.asset")
        if cdn.domain_name:
            logger.info("CloudFront Domain: %s", cdn.domain_name)
        else:
            logger.warning("CloudFront Domain not found in AWSDevInfos.asset")

    if not config.csv_sources:
        raise ConfigError("No CSV sources found in boardibleConfigs.json ('csvSources' section)")
    success(logger, "Loaded %d CSV sources from config", len(config.csv_sources))

    temp_dir = project / TEMP_DIRNAME
    temp_dir.mkdir(parents=True, exist_ok=True)

    uploaded: List[str] = []
    cached: List[str] = []
    failed: List[str] = []
    owns_downloader = downloader is None
    dl = downloader or Downloader(retries=3, retry_delay=2.0)
    try:
        for name, url in config.csv_sources.items():
            local = temp_dir / f"{name}.csv"
            logger.info("Downloading %s...", name)
            try:
                dl.download_to(url, local)
            except DownloadError as ex:
                logger.error("Failed to download %s: %s", name, ex)
                failed.append(f"{name} (download failed)")
                continue
            success(logger, "Downloaded %s (%d lines)", name, count_lines(local.read_bytes()))

            key = f"{prefix}/{name}.csv"
            logger.info("Uploading %s to s3://%s/%s...", name, bucket, key)
            upload_ok = True
            try:
                _upload_csv(s3, local, bucket, key)
            except (ClientError, BotoCoreError, S3UploadFailedError) as ex:
                logger.error("Failed to upload %s to S3: %s", name, ex)
                failed.append(f"{name} (upload failed)")
                upload_ok = False
            else:
                success(logger, "Uploaded %s to S3", name)
                uploaded.append(name)

            cache_path = config.csv_cache.get(name)
            if cache_path:
                logger.info("Caching %s to %s...", name, cache_path)
                try:
                    _cache_to_resources(local, project, cache_path)
                except OSError as ex:
                    logger.error("Failed to cache %s: %s", name, ex)
                    if upload_ok:
                        logger.warning("CSV uploaded but cache failed for %s", name)
                else:
                    success(logger, "Cached %s for offline use", name)
                    cached.append(name)
    finally:
        if owns_downloader:
            dl.close()
        shutil.rmtree(temp_dir, ignore_errors=True)

    invalidation_id: Optional[str] = None
    if uploaded:
        if cdn.distribution_id:
            path = f"/{prefix}/*"
            logger.info("Invalidating CloudFront cache for %s...", path)
            try:
                invalidation_id = create_invalidation(cloudfront, cdn.distribution_id, [path])
            except (ClientError, BotoCoreError) as ex:
                logger.warning("CloudFront invalidation failed (non-critical): %s", ex)
            else:
                success(logger, "CloudFront cache invalidated")
        else:
            logger.warning("Skipping CloudFront invalidation (no distribution ID)")

    updated_fields: List[str] = []
    if update_config and uploaded:
        if cdn.domain_name:
            updated_fields = update_config_urls(config_file, domain=cdn.domain_name, prefix=prefix)
            success(logger, "Updated %d config URLs to CloudFront", len(updated_fields))
        else:
            logger.warning("Cannot update config - CloudFront domain not found")

    total = len(config.csv_sources)
    return {
        "ok": len(uploaded) == total,
        "environment": env,
        "prefix": prefix,
        "total": total,
        "uploaded": len(uploaded),
        "cached": len(cached),
        "failed": failed,
        "invalidation_id": invalidation_id,
        "updated_fields": updated_fields,
    }


def _print_summary(summary: Dict[str, Any], *, update_config: bool) -> None:
    banner(logger, "Migration Complete")
    logger.info("Total CSVs: %d", summary["total"])
    success(logger, "Successful uploads: %d", summary["uploaded"])
    if summary["cached"]:
        success(logger, "Cached for offline: %d", summary["cached"])
    if summary["failed"]:
        logger.error("Failed: %d", len(summary["failed"]))
        for item in summary["failed"]:
            logger.error("  - %s", item)

    if summary["ok"]:
        success(logger, "All CSVs migrated successfully!")
        if not update_config:
            logger.info("To update config URLs automatically, run with: --update-config")
    elif summary["uploaded"]:
        logger.warning("Partial migration completed")
    else:
        logger.error("Migration failed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sync-csv",
        description="Download CSVs from published spreadsheets and publish them to S3 + CloudFront",
    )
    parser.add_argument("environment", nargs="?", choices=ENVIRONMENTS, default=None, help="dev | prod (default: $BUILD_ENV or dev)")
    parser.add_argument("--update-config", action="store_true", help="Rewrite config CSV URLs to the CloudFront domain")
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    banner(logger, "CSV to S3 Migration")
    try:
        summary = run_once(args.environment, project_path=args.project_path, update_config=args.update_config)
    except ConfigError as ex:
        logger.error("%s", ex)
        return 1
    _print_summary(summary, update_config=args.update_config)
    return 0 if summary["ok"] else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
