from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from common.checks import CheckReport
from common.console import setup_logging, success
from common.proc import run, which
from ios_deps.fix_pod_path import STANDARD_POD_LINK, tool_version
from ios_deps.resolver_settings import read_settings, settings_path


logger = logging.getLogger(__name__)

POD_SEARCH_TIMEOUT = 5.0


def verify_cocoapods(
    project: Path,
    *,
    pod: Optional[str] = None,
    pod_link: Path = STANDARD_POD_LINK,
) -> CheckReport:
    """Check that CocoaPods is reachable the way the Unity iOS Resolver looks for it."""
    report = CheckReport(title="CocoaPods Accessibility Check", logger=logger)

    pod_path = pod or which("pod")
    if not pod_path:
        report.fail("pod not found in PATH")
        return report
    report.passed("pod found", pod_path)

    version = run([pod_path, "--version"])
    if version.ok:
        report.passed("CocoaPods version", version.stdout.strip())
    else:
        report.fail("pod command failed", version.output.strip())

    if pod_link.is_symlink():
        report.passed("Symlink exists", f"{pod_link} -> {pod_link.readlink()}")
    elif pod_link.is_file():
        report.passed("pod exists (direct install)", str(pod_link))
    else:
        report.warn(f"No pod at {pod_link}", "may be OK if Unity finds it elsewhere")

    path = settings_path(project.resolve())
    try:
        settings = read_settings(path)
    except ValueError as ex:
        report.fail("iOS Resolver settings unreadable", str(ex))
        settings = None
    else:
        if settings is None:
            report.warn("iOS Resolver settings file not found", "will use defaults")
    if settings is not None:
        configured = settings.cocoapods_tool_path
        if not configured:
            report.fail("Settings file has no cocoapodsToolPath", str(path))
        elif Path(configured).is_file():
            report.passed("Pod executable exists at configured path", configured)
        else:
            report.fail("Pod executable NOT found at configured path", configured)

    ruby = tool_version(["ruby", "--version"], field=1)
    if ruby == "unknown":
        report.warn("Ruby version unavailable")
    else:
        report.passed("Ruby", ruby)

    if run([pod_path, "search", "Firebase", "--limit=1"], timeout=POD_SEARCH_TIMEOUT).ok:
        report.passed("Pod search works", "CocoaPods fully functional")
    elif run([pod_path, "--help"]).ok:
        report.passed("Pod help works", "CocoaPods functional, repo may need update")
    else:
        report.fail("Pod command not working properly")

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="verify-cocoapods", description="Verify CocoaPods is accessible for Unity")
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    logger.info("=== CocoaPods Accessibility Check ===")
    report = verify_cocoapods(args.project_path or Path.cwd())
    if report.ok:
        success(logger, "=== All Checks Passed ===")
        logger.info("Next: Restart Unity and test iOS Resolver")
    else:
        logger.error("%d check(s) failed", len(report.failures))
    return report.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
