from __future__ import annotations

import argparse
import io
import logging
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from common.console import setup_logging, success
from common.downloads import Downloader, DownloadError
from common.env import ConfigError, getenv, require
from common.proc import CommandError, run, spawn_background, which


logger = logging.getLogger(__name__)

ENV_TOKEN = "GITHUB_TOKEN"
ENV_RUNNER_NAME = "RUNNER_NAME"

DEFAULT_REPO = "boardible/ineuj"
DEFAULT_RUNNER_NAME = "ineuj-linux-android"
DEFAULT_RUNNER_VERSION = "2.311.0"
DEFAULT_UNITY_VERSION = "6000.2.6f2"
RUNNER_LABELS = "self-hosted,linux,android,unity"
SYSTEMD_DIR = Path("/etc/systemd/system")

TOTAL_STEPS = 7


class RunnerSetupError(RuntimeError):
    """A runner setup step failed."""


def default_runner_dir() -> Path:
    return Path.home() / "actions-runner"


@dataclass
class RunnerOptions:
    token: str
    name: str = DEFAULT_RUNNER_NAME
    repo: str = DEFAULT_REPO
    runner_dir: Path = field(default_factory=default_runner_dir)
    runner_version: str = DEFAULT_RUNNER_VERSION
    unity_version: str = DEFAULT_UNITY_VERSION
    skip_unity_check: bool = False
    force: bool = False

    @property
    def repo_url(self) -> str:
        return f"https://github.com/{self.repo}"

    @property
    def registration_page(self) -> str:
        return f"{self.repo_url}/settings/actions/runners/new"


def runner_url(version: str) -> str:
    return (
        "https://github.com/actions/runner/releases/download/"
        f"v{version}/actions-runner-linux-x64-{version}.tar.gz"
    )


def unity_candidates(version: str, *, home: Optional[Path] = None) -> List[Path]:
    home = home or Path.home()
    return [
        home / "Unity" / "Hub" / "Editor" / version / "Editor" / "Unity",
        Path("/opt/unity/Editor/Unity"),
        Path(f"/Applications/Unity/Hub/Editor/{version}/Unity.app/Contents/MacOS/Unity"),
    ]


def find_unity(version: str, *, home: Optional[Path] = None) -> Optional[Path]:
    for candidate in unity_candidates(version, home=home):
        if candidate.is_file():
            return candidate
    return None


def _step(n: int, text: str) -> None:
    logger.info("[Step %d/%d] %s", n, TOTAL_STEPS, text)


def prepare_runner_dir(runner_dir: Path, *, force: bool, confirm: Optional[Callable[[str], bool]] = None) -> None:
    if runner_dir.exists():
        logger.warning("Runner directory already exists: %s", runner_dir)
        if not (force or (confirm is not None and confirm("Do you want to remove it and start fresh?"))):
            raise RunnerSetupError(
                "Aborted. Remove the directory manually, pass --force, or use a different --runner-dir."
            )
        shutil.rmtree(runner_dir)
        success(logger, "Removed existing runner directory")
    runner_dir.mkdir(parents=True, exist_ok=True)


def extract_runner(data: bytes, runner_dir: Path) -> None:
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            tar.extractall(runner_dir, filter="data")
    except tarfile.TarError as ex:
        raise RunnerSetupError(f"Failed to extract runner: {ex}") from ex


def install_dependencies() -> str:
    """Install libicu with whichever package manager is present; returns its name."""
    if which("apt-get"):
        logger.info("Detected Debian/Ubuntu - installing dependencies...")
        run(["sudo", "apt-get", "update"], check=True)
        run(["sudo", "apt-get", "install", "-y", "libicu-dev"], check=True)
        return "apt-get"
    if which("yum"):
        logger.info("Detected RHEL/CentOS - installing dependencies...")
        run(["sudo", "yum", "install", "-y", "libicu"], check=True)
        return "yum"
    logger.warning("Unknown package manager - you may need to install libicu manually")
    return "none"


def configure_runner(opts: RunnerOptions) -> None:
    result = run(
        [
            str(opts.runner_dir / "config.sh"),
            "--url", opts.repo_url,
            "--token", opts.token,
            "--name", opts.name,
            "--labels", RUNNER_LABELS,
            "--work", "_work",
            "--unattended",
        ],
        cwd=opts.runner_dir,
    )
    if not result.ok:
        raise RunnerSetupError(f"Failed to configure runner: {result.output.strip()[:500]}")


def start_service(runner_dir: Path) -> str:
    """Install and start the runner as a systemd service, or fall back to a background process."""
    if which("systemctl") and SYSTEMD_DIR.is_dir():
        if not run(["sudo", "./svc.sh", "install"], cwd=runner_dir).ok:
            logger.warning("Failed to install systemd service (non-critical)")
            logger.info("You can run the runner manually with: ./run.sh")
            return "manual"
        success(logger, "Installed runner as systemd service")
        if run(["sudo", "./svc.sh", "start"], cwd=runner_dir).ok:
            success(logger, "Runner service started")
            return "systemd"
        logger.warning("Failed to start service, starting manually...")
    else:
        logger.warning("systemd not available - runner will need to be started manually")
        logger.info("Starting runner in background...")

    pid = spawn_background(["./run.sh"], cwd=runner_dir, log_path=runner_dir / "runner.log")
    success(logger, "Runner started in background (PID: %d)", pid)
    return "background"


def setup_runner(
    opts: RunnerOptions,
    *,
    downloader: Optional[Downloader] = None,
    confirm: Optional[Callable[[str], bool]] = None,
) -> Dict[str, Any]:
    """Register this machine as a self-hosted Actions runner for Android builds."""
    if not opts.token:
        raise ConfigError(f"GitHub token is required. Get one at {opts.registration_page}")

    _step(1, "Creating runner directory...")
    prepare_runner_dir(opts.runner_dir, force=opts.force, confirm=confirm)
    success(logger, "Created runner directory: %s", opts.runner_dir)

    _step(2, "Downloading GitHub Actions runner...")
    owns = downloader is None
    dl = downloader or Downloader(retries=2, timeout=300.0)
    try:
        data = dl.fetch(runner_url(opts.runner_version))
    except DownloadError as ex:
        raise RunnerSetupError(f"Failed to download runner: {ex}") from ex
    finally:
        if owns:
            dl.close()
    success(logger, "Downloaded runner software")

    _step(3, "Extracting runner...")
    extract_runner(data, opts.runner_dir)
    success(logger, "Extracted runner software")

    _step(4, "Installing dependencies...")
    package_manager = install_dependencies()
    success(logger, "Dependencies installed")

    _step(5, "Configuring runner for Android builds...")
    configure_runner(opts)
    success(logger, "Runner configured successfully")

    unity: Optional[Path] = None
    if opts.skip_unity_check:
        _step(6, "Skipping Unity verification (as requested)")
    else:
        _step(6, "Verifying Unity installation...")
        unity = find_unity(opts.unity_version)
        if unity is not None:
            success(logger, "Found Unity %s at: %s", opts.unity_version, unity)
        else:
            logger.warning("Unity %s not found in common locations", opts.unity_version)
            logger.info("Please ensure Unity %s is installed with Android Build Support", opts.unity_version)

    _step(7, "Setting up systemd service...")
    mode = start_service(opts.runner_dir)

    return {
        "ok": True,
        "runner_dir": str(opts.runner_dir),
        "name": opts.name,
        "labels": RUNNER_LABELS.split(","),
        "package_manager": package_manager,
        "unity": str(unity) if unity else None,
        "service": mode,
    }


def _prompt(question: str) -> bool:
    try:
        answer = input(f"{question} (y/n): ")
    except EOFError:
        logger.warning("No input available, treating the answer as 'n'")
        return False
    return answer.strip().lower().startswith("y")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="setup-runner",
        description="Set up this Linux/WSL machine as a GitHub Actions runner for Unity Android builds",
    )
    parser.add_argument("--token", default=None, help=f"Runner registration token (default: ${ENV_TOKEN})")
    parser.add_argument("--name", default=None, help=f"Runner name (default: ${ENV_RUNNER_NAME} or {DEFAULT_RUNNER_NAME})")
    parser.add_argument("--repo", default=DEFAULT_REPO, help="owner/name of the repository")
    parser.add_argument("--runner-dir", type=Path, default=None, help="Install directory (default: ~/actions-runner)")
    parser.add_argument("--runner-version", default=DEFAULT_RUNNER_VERSION)
    parser.add_argument("--unity-version", default=DEFAULT_UNITY_VERSION)
    parser.add_argument("--skip-unity-check", action="store_true", help="Skip Unity installation verification")
    parser.add_argument("--force", action="store_true", help="Replace an existing runner directory without asking")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        token = require(args.token or getenv(ENV_TOKEN), "--token")
    except ConfigError:
        logger.error("GitHub token is required!")
        logger.info("1. Visit: https://github.com/%s/settings/actions/runners/new", args.repo)
        logger.info("2. Select 'Linux' platform and copy the token from the config command")
        logger.info('3. Run: setup-runner --token "YOUR_TOKEN"')
        return 1

    opts = RunnerOptions(
        token=token,
        name=args.name or getenv(ENV_RUNNER_NAME, DEFAULT_RUNNER_NAME) or DEFAULT_RUNNER_NAME,
        repo=args.repo,
        runner_dir=args.runner_dir or default_runner_dir(),
        runner_version=args.runner_version,
        unity_version=args.unity_version,
        skip_unity_check=args.skip_unity_check,
        force=args.force,
    )
    logger.info("GitHub Actions Runner Setup - Android Builds")
    try:
        result = setup_runner(opts, confirm=_prompt)
    except (RunnerSetupError, ConfigError, CommandError) as ex:
        logger.error("%s", ex)
        return 1

    success(logger, "Runner Setup Complete!")
    logger.info("Runner Location: %s", result["runner_dir"])
    logger.info("Runner Name: %s", result["name"])
    logger.info("Labels: %s", ", ".join(result["labels"]))
    logger.info("Verify runner is online: %s/settings/actions/runners", opts.repo_url)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
