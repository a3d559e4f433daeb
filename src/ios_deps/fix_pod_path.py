from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from common.console import setup_logging, success
from common.proc import CommandError, run, which
from ios_deps.resolver_settings import IOSResolverSettings, settings_path, write_settings


logger = logging.getLogger(__name__)

STANDARD_POD_LINK = Path("/usr/local/bin/pod")


def tool_version(args: Sequence[str], *, field: Optional[int] = None) -> str:
    """First line of a ``--version`` call (optionally one whitespace field of it), or "unknown"."""
    result = run(args)
    if not result.ok or not result.stdout.strip():
        return "unknown"
    line = result.stdout.strip().splitlines()[0]
    if field is None:
        return line.strip()
    parts = line.split()
    return parts[field] if len(parts) > field else line.strip()


def ensure_path_export(shell_rc: Path, bin_dir: str) -> bool:
    """Append ``export PATH="<bin_dir>:$PATH"`` to `shell_rc` unless already mentioned."""
    existing = shell_rc.read_text(encoding="utf-8") if shell_rc.is_file() else ""
    if bin_dir in existing:
        return False
    with shell_rc.open("a", encoding="utf-8") as f:
        f.write("\n# CocoaPods (added by fix-cocoapods-path)\n")
        f.write(f'export PATH="{bin_dir}:$PATH"\n')
    return True


def ensure_symlink(link: Path, target: str) -> Optional[bool]:
    """Create `link` -> `target` if nothing is there.

    Returns True when created, False when something already exists, and None
    when the directory is not writable.
    """
    if link.exists():
        return False
    if not os.access(link.parent, os.W_OK):
        return None
    if link.is_symlink():
        # dangling link; replace it like `ln -sf`
        link.unlink()
    link.symlink_to(target)
    return True


def fix_pod_path(
    project: Path,
    *,
    pod: Optional[str] = None,
    shell_rc: Optional[Path] = None,
    symlink: Optional[Path] = STANDARD_POD_LINK,
) -> Dict[str, Any]:
    """Point the EDM4U iOS Resolver at the installed ``pod`` binary."""
    project = project.resolve()

    logger.info("Locating CocoaPods installation...")
    pod_path = pod or which("pod")
    if not pod_path:
        raise CommandError(
            "CocoaPods not found in PATH! Expected e.g. /usr/local/bin/pod or ~/.gem/ruby/*/bin/pod"
        )
    success(logger, "Found CocoaPods at: %s", pod_path)

    pod_version = tool_version([pod_path, "--version"])
    success(logger, "CocoaPods version: %s", pod_version)
    ruby_version = tool_version(["ruby", "--version"], field=1)
    success(logger, "Ruby version: %s", ruby_version)

    logger.info("Creating iOS Resolver settings...")
    target = write_settings(settings_path(project), IOSResolverSettings(cocoapods_tool_path=pod_path))
    success(logger, "Created iOS Resolver settings: %s", target)

    rc = shell_rc or Path.home() / ".zshrc"
    bin_dir = os.path.dirname(pod_path)
    if ensure_path_export(rc, bin_dir):
        success(logger, "Added CocoaPods to PATH in %s", rc)
        logger.warning("You may need to restart your terminal for this to take effect")
    else:
        success(logger, "CocoaPods already in shell profile")

    linked: Optional[bool] = False
    if symlink is not None:
        linked = ensure_symlink(symlink, pod_path)
        if linked is None:
            logger.warning("Cannot create symlink (need sudo). Run if iOS Resolver still fails:")
            logger.warning("  sudo ln -sf %s %s", pod_path, symlink)
        elif linked:
            success(logger, "Created symlink: %s -> %s", symlink, pod_path)
        else:
            success(logger, "Symlink already exists: %s", symlink)

    logger.info("Verifying CocoaPods...")
    run([pod_path, "--version"], cwd=project, check=True)
    success(logger, "CocoaPods command works from project directory")

    return {
        "ok": True,
        "pod_path": pod_path,
        "pod_version": pod_version,
        "ruby_version": ruby_version,
        "settings": str(target),
        "symlink_created": bool(linked),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fix-cocoapods-path",
        description="Configure the Unity iOS Resolver (EDM4U) to find CocoaPods",
    )
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("--shell-rc", type=Path, default=None, help="Shell profile to update (default: ~/.zshrc)")
    parser.add_argument("--no-symlink", action="store_true", help=f"Do not create {STANDARD_POD_LINK}")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    logger.info("=== iOS Resolver CocoaPods Configuration ===")
    try:
        result = fix_pod_path(
            args.project_path or Path.cwd(),
            shell_rc=args.shell_rc,
            symlink=None if args.no_symlink else STANDARD_POD_LINK,
        )
    except CommandError as ex:
        logger.error("%s", ex)
        return 1

    success(logger, "=== Configuration Complete ===")
    logger.info("  CocoaPods Path: %s", result["pod_path"])
    logger.info("  Version: %s", result["pod_version"])
    logger.info("  Settings: %s", result["settings"])
    logger.info("Next: restart Unity, then Assets > External Dependency Manager > iOS Resolver > Settings")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
