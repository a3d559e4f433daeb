from __future__ import annotations

import argparse
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from common.console import setup_logging, success
from ios_deps.verify_edm4u import ASSETS_EDM_VERSION, EDM_PACKAGE


logger = logging.getLogger(__name__)

PINNED_EDM_VERSION = "1.2.186"
LEGACY_EDM_VERSIONS = ("1.2.166",)
# EDM is re-pinned right after this package, where it sat before
ADS_PACKAGE = "com.google.ads.mobile"
RESOLVER_DLL = "Google.IOSResolver.dll"


class EdmFixError(RuntimeError):
    """The project cannot be repaired as-is."""


def _editor_dir(project: Path) -> Path:
    return project / "Assets" / "ExternalDependencyManager" / "Editor"


def _remove(path: Path) -> bool:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


def disable_assets_resolver(project: Path, version: str = ASSETS_EDM_VERSION) -> Optional[Path]:
    """Rename the Assets copy of the iOS Resolver DLL to ``*.DISABLED``.

    Returns the disabled path, or None when there was no enabled DLL.
    """
    dll = _editor_dir(project) / version / RESOLVER_DLL
    if not dll.is_file():
        return None
    disabled = dll.with_name(dll.name + ".DISABLED")
    dll.replace(disabled)
    return disabled


def remove_legacy_assets(project: Path, versions: Sequence[str] = LEGACY_EDM_VERSIONS) -> List[Path]:
    editor = _editor_dir(project)
    removed: List[Path] = []
    for version in versions:
        manifest_txt = f"external-dependency-manager_version-{version}_manifest.txt"
        for path in (
            editor / version,
            editor / f"{version}.meta",
            editor / manifest_txt,
            editor / f"{manifest_txt}.meta",
        ):
            if _remove(path):
                removed.append(path)
    return removed


def clear_package_cache(project: Path) -> List[Path]:
    """Drop compiled script assemblies and every cached EDM package."""
    library = project / "Library"
    targets = [library / "ScriptAssemblies"]
    cache = library / "PackageCache"
    if cache.is_dir():
        targets.extend(sorted(cache.glob(f"{EDM_PACKAGE}@*")))
    return [path for path in targets if _remove(path)]


def _load_manifest(manifest: Path) -> Dict[str, Any]:
    try:
        doc = json.loads(manifest.read_text(encoding="utf-8"))
    except json.JSONDecodeError as ex:
        raise EdmFixError(f"{manifest.name} is not valid JSON: {ex}") from ex
    if not isinstance(doc, dict) or not isinstance(doc.get("dependencies", {}), dict):
        raise EdmFixError(f"{manifest.name} has no dependencies map")
    return doc


def _write_manifest(manifest: Path, doc: Dict[str, Any]) -> None:
    manifest.write_text(json.dumps(doc, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def unpin_from_manifest(manifest: Path) -> Optional[str]:
    """Remove the EDM entry after copying the manifest to ``manifest.json.backup``.

    Returns the version that was pinned, if any.
    """
    doc = _load_manifest(manifest)
    shutil.copyfile(manifest, manifest.with_name(manifest.name + ".backup"))
    deps = doc.setdefault("dependencies", {})
    previous = deps.pop(EDM_PACKAGE, None)
    _write_manifest(manifest, doc)
    return previous


def remove_packages_lock(project: Path) -> bool:
    lock = project / "Packages" / "packages-lock.json"
    if not lock.is_file():
        return False
    lock.unlink()
    return True


def pin_edm(manifest: Path, version: str = PINNED_EDM_VERSION) -> None:
    doc = _load_manifest(manifest)
    deps = {k: v for k, v in doc.get("dependencies", {}).items() if k != EDM_PACKAGE}
    pinned: Dict[str, Any] = {}
    for name, value in deps.items():
        pinned[name] = value
        if name == ADS_PACKAGE:
            pinned[EDM_PACKAGE] = version
    if EDM_PACKAGE not in pinned:
        pinned[EDM_PACKAGE] = version
    doc["dependencies"] = pinned
    _write_manifest(manifest, doc)


def fix_edm4u(
    project: Path,
    *,
    version: str = PINNED_EDM_VERSION,
    pin: bool = True,
    assets_edm_version: str = ASSETS_EDM_VERSION,
) -> Dict[str, Any]:
    """Clean conflicting EDM4U copies out of the project and re-pin the package.

    The manifest is validated before anything is deleted, so a broken
    ``Packages/manifest.json`` leaves the project untouched.
    """
    project = project.resolve()
    manifest = project / "Packages" / "manifest.json"
    if not manifest.is_file():
        raise EdmFixError(f"Packages/manifest.json not found at: {manifest}")
    _load_manifest(manifest)

    logger.info("Disabling the Assets copy of the iOS Resolver...")
    disabled = disable_assets_resolver(project, assets_edm_version)
    if disabled is not None:
        success(logger, "Disabled %s", disabled.relative_to(project))
    else:
        logger.info("No enabled %s in Assets", RESOLVER_DLL)

    logger.info("Checking for conflicting EDM installations in Assets...")
    legacy = remove_legacy_assets(project)
    for path in legacy:
        success(logger, "Removed %s", path.relative_to(project))
    if not legacy:
        success(logger, "No conflicting EDM installations in Assets")

    logger.info("Cleaning Unity Library cache...")
    for path in clear_package_cache(project):
        success(logger, "Cleared %s", path.relative_to(project))

    logger.info("Temporarily removing EDM from manifest...")
    previous = unpin_from_manifest(manifest)
    success(logger, "EDM removed from manifest (was %s, backup created)", previous or "not pinned")

    if remove_packages_lock(project):
        success(logger, "Cleared packages lock")

    if pin:
        logger.info("Re-adding EDM version %s...", version)
        pin_edm(manifest, version)
        success(logger, "EDM %s added back to manifest", version)

    return {
        "ok": True,
        "disabled_dll": str(disabled) if disabled else None,
        "removed_legacy": [str(p) for p in legacy],
        "previous_version": previous,
        "pinned_version": version if pin else None,
        "backup": str(manifest.with_name(manifest.name + ".backup")),
    }


def _confirm_unity_closed() -> bool:
    logger.warning("Please close Unity before continuing!")
    try:
        input("Press Enter once Unity is closed...")
    except EOFError:
        logger.error("No input available; rerun with --yes once Unity is closed")
        return False
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fix-edm4u",
        description="Remove conflicting External Dependency Manager copies and re-pin the package",
    )
    parser.add_argument("--project-path", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("--edm-version", default=PINNED_EDM_VERSION, help="EDM version to pin in the manifest")
    parser.add_argument("--no-pin", action="store_true", help="Leave EDM out of the manifest (Firebase restores it)")
    parser.add_argument("--yes", action="store_true", help="Do not wait for confirmation that Unity is closed")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    project = args.project_path or Path.cwd()
    logger.info("=== EDM Cleanup & Reinstall ===")
    logger.info("Project: %s", project)
    if not args.yes and not _confirm_unity_closed():
        return 1
    try:
        result = fix_edm4u(project, version=args.edm_version, pin=not args.no_pin)
    except (EdmFixError, OSError) as ex:
        logger.error("%s", ex)
        return 1

    success(logger, "=== EDM Cleanup Complete ===")
    logger.info("Next steps:")
    logger.info("1. Open Unity")
    logger.info("2. Wait for package resolution to complete")
    logger.info("3. Check Console for any errors")
    logger.info("4. Test iOS Resolver: Assets > External Dependency Manager > iOS Resolver > Settings")
    logger.info("Backup saved: %s", result["backup"])
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
