from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from common.aws import caller_identity, make_session
from common.checks import CheckReport
from common.console import banner, setup_logging
from common.downloads import Downloader, DownloadError, count_lines
from common.env import ConfigError, getenv
from csv_sync.handler import DEFAULT_BUCKET, DEFAULT_REGION, ENV_BUCKET, ENV_REGION
from csv_sync.models import CDN_INFO_RELPATH, CONFIG_RELPATH, DEFAULT_S3_PREFIX, CdnInfo, ProjectConfig


logger = logging.getLogger(__name__)


def _first_source_url(project: Path) -> Optional[str]:
    config_file = project / CONFIG_RELPATH
    if not config_file.is_file():
        return None
    config = ProjectConfig.load(config_file)
    for url in config.csv_sources.values():
        return url
    return None


def run_checks(
    *,
    project_path: Optional[Path] = None,
    url: Optional[str] = None,
    bucket: Optional[str] = None,
    prefix: str = DEFAULT_S3_PREFIX,
    s3: Optional[Any] = None,
    sts: Optional[Any] = None,
    downloader: Optional[Downloader] = None,
) -> CheckReport:
    """Verify the prerequisites of a CSV sync, stopping at the first failure."""
    project = (project_path or Path.cwd()).resolve()
    bucket = bucket or getenv(ENV_BUCKET, DEFAULT_BUCKET) or DEFAULT_BUCKET
    report = CheckReport(title="CSV Migration Test", logger=logger)

    logger.info("[TEST 1] Checking AWS credentials...")
    try:
        # an unknown AWS_PROFILE fails here, so it is reported as this check
        if s3 is None or sts is None:
            session = make_session(region_name=getenv(ENV_REGION, DEFAULT_REGION))
            s3 = s3 or session.client("s3")
            sts = sts or session.client("sts")
        ident = caller_identity(sts)
    except (ClientError, BotoCoreError) as ex:
        report.fail("AWS credentials not configured", f"{ex}. Configure with: aws configure")
        return report
    report.passed("AWS credentials configured", f"{ident.get('Arn')} (account {ident.get('Account')})")

    logger.info("[TEST 2] Checking S3 bucket access...")
    try:
        resp = s3.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=5)
    except (ClientError, BotoCoreError) as ex:
        report.fail("Cannot access S3 bucket", f"s3://{bucket}/{prefix}: {ex}. Verify bucket permissions")
        return report
    report.passed("S3 bucket is accessible", f"s3://{bucket}/{prefix}")
    for obj in resp.get("Contents", []) or []:
        logger.info("   %s", obj.get("Key"))

    logger.info("[TEST 3] Testing spreadsheet CSV download...")
    try:
        test_url = url or _first_source_url(project)
    except ConfigError as ex:
        report.fail("Cannot read boardibleConfigs.json", str(ex))
        return report
    if not test_url:
        report.fail("No test CSV URL", "pass --url or add csvSources to boardibleConfigs.json")
        return report
    owns = downloader is None
    dl = downloader or Downloader(retries=0)
    try:
        data = dl.fetch(test_url)
    except DownloadError as ex:
        report.fail("Failed to download CSV", f"{ex}. Check if spreadsheet is published")
        return report
    finally:
        if owns:
            dl.close()
    report.passed("Successfully downloaded test CSV", f"{count_lines(data)} lines")
    for line in data.decode("utf-8", errors="replace").splitlines()[:3]:
        logger.info("   %s", line)

    logger.info("[TEST 4] Checking CloudFront configuration...")
    cdn = CdnInfo.load(project / CDN_INFO_RELPATH)
    if cdn is None:
        report.warn("AWSDevInfos.asset not found", f"expected: {project / CDN_INFO_RELPATH}")
    elif cdn.distribution_id:
        report.passed("CloudFront distribution configured", cdn.distribution_id)
    else:
        report.warn("CloudFront distribution ID not found", "cache invalidation will be skipped")

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="test-csv-sync", description="Smoke-test CSV sync prerequisites")
    parser.add_argument("--url", default=None, help="CSV export URL to test (default: first csvSources entry)")
    parser.add_argument("--bucket", default=None, help=f"S3 bucket (default: ${ENV_BUCKET} or {DEFAULT_BUCKET})")
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    banner(logger, "CSV Migration Test")
    report = run_checks(project_path=args.project_path, url=args.url, bucket=args.bucket)
    if not report.ok:
        return 1
    logger.info("All critical tests passed!")
    logger.info("Next steps:")
    logger.info("1. Run full sync: sync-csv dev")
    logger.info("2. Test in Unity with dev CSVs")
    logger.info("3. Sync to prod when ready: sync-csv prod")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
