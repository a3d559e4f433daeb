from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from common.checks import CheckReport
from common.console import setup_logging, success
from ios_deps.resolver_settings import INTEGRATION_NONE, read_settings, settings_path


logger = logging.getLogger(__name__)

EDM_PACKAGE = "com.google.external-dependency-manager"
ASSETS_EDM_VERSION = "1.2.182"
PODFILE_RELPATH = Path("build") / "iOS" / "Podfile"


def podfile_sources(podfile: Path) -> List[str]:
    return [line.strip() for line in podfile.read_text(encoding="utf-8").splitlines() if line.startswith("source")]


def manifest_dependencies(manifest: Path) -> dict:
    doc = json.loads(manifest.read_text(encoding="utf-8"))
    deps = doc.get("dependencies") if isinstance(doc, dict) else None
    return deps if isinstance(deps, dict) else {}


def verify_edm4u(project: Path, *, assets_edm_version: str = ASSETS_EDM_VERSION) -> CheckReport:
    """Check the project for the EDM4U states known to break iOS builds."""
    project = project.resolve()
    report = CheckReport(title="EDM4U Status Check", logger=logger)

    logger.info("=== 1. Package Manager (may exist - required by Firebase) ===")
    cache_dir = project / "Library" / "PackageCache"
    cached = sorted(cache_dir.glob(f"{EDM_PACKAGE}@*")) if cache_dir.is_dir() else []
    if cached:
        report.warn("EDM4U in Package Cache", f"{cached[0].name} (required by Firebase packages, OK)")
    else:
        report.passed("EDM4U not in Package Cache")

    logger.info("=== 2. Packages Manifest (EDM4U may be transitive dependency) ===")
    manifest = project / "Packages" / "manifest.json"
    if not manifest.is_file():
        report.warn("Packages/manifest.json not found")
    else:
        try:
            deps = manifest_dependencies(manifest)
        except json.JSONDecodeError as ex:
            report.fail("Packages/manifest.json is not valid JSON", str(ex))
        else:
            if EDM_PACKAGE in deps:
                report.warn(
                    "EDM4U explicitly in manifest",
                    f"{deps[EDM_PACKAGE]} (consider removing - Firebase will restore it)",
                )
            else:
                report.passed("EDM4U not explicitly in manifest", "will be restored by Firebase")

    logger.info("=== 3. Assets Folder (should be disabled) ===")
    dll = project / "Assets" / "ExternalDependencyManager" / "Editor" / assets_edm_version / "Google.IOSResolver.dll"
    if dll.is_file():
        report.fail("Assets version is ENABLED", str(dll.relative_to(project)))
    elif dll.with_name(dll.name + ".DISABLED").is_file():
        report.passed("Assets version is disabled")
    else:
        report.warn("Assets version DLL not found", "may be OK if removed entirely")

    logger.info("=== 4. Podfile Sources (should have only one) ===")
    podfile = project / PODFILE_RELPATH
    if not podfile.is_file():
        report.warn("No Podfile found", "will be generated on first build")
    else:
        sources = podfile_sources(podfile)
        if len(sources) == 1:
            report.passed("Single source found", sources[0])
        elif len(sources) > 1:
            report.fail("Multiple sources found", "; ".join(sources))
        else:
            report.warn("No source found in Podfile", "may be OK if never built")

    logger.info("=== 5. EDM4U Integration Method (should be 0) ===")
    try:
        settings = read_settings(settings_path(project))
    except ValueError as ex:
        report.fail("IOSResolverSettings.xml unreadable", str(ex))
    else:
        if settings is None:
            report.warn("IOSResolverSettings.xml not found")
        elif settings.cocoapods_integration_method == INTEGRATION_NONE:
            report.passed("Integration method is 0 (None)")
        else:
            report.fail(f"Integration method is {settings.cocoapods_integration_method}", "should be 0")

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="verify-edm4u", description="Verify EDM4U configuration for iOS builds")
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    logger.info("=== EDM4U Status Check ===")
    report = verify_edm4u(args.project_path or Path.cwd())
    if report.ok:
        success(logger, "All checks passed! Ready to build.")
    else:
        logger.error("%d issue(s) found. Please fix before building.", len(report.failures))
    return report.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
