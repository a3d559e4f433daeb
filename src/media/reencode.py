from __future__ import annotations

import argparse
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from common.console import setup_logging, success
from common.env import ConfigError, getenv
from common.proc import CommandError, run, which


logger = logging.getLogger(__name__)

ENV_CRF = "CRF"
ENV_AUDIO_BITRATE = "AUDIO_BITRATE"
ENV_PRESET = "PRESET"

DEFAULT_CRF = "28"
DEFAULT_AUDIO_BITRATE = "128k"
DEFAULT_PRESET = "slow"

BACKUP_DIRNAME = "Backup"
BACKUP_PREFIX = "original_mp4s-"


@dataclass
class EncoderSettings:
    crf: str = DEFAULT_CRF
    audio_bitrate: str = DEFAULT_AUDIO_BITRATE
    preset: str = DEFAULT_PRESET

    @classmethod
    def from_env(cls) -> "EncoderSettings":
        return cls(
            crf=getenv(ENV_CRF, DEFAULT_CRF) or DEFAULT_CRF,
            audio_bitrate=getenv(ENV_AUDIO_BITRATE, DEFAULT_AUDIO_BITRATE) or DEFAULT_AUDIO_BITRATE,
            preset=getenv(ENV_PRESET, DEFAULT_PRESET) or DEFAULT_PRESET,
        )


@dataclass
class ReencodeReport:
    backup_root: Optional[Path]
    encoded: List[str] = field(default_factory=list)
    restored: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.encoded) + len(self.restored)


def ffmpeg_command(ffmpeg: str, src: Path, dest: Path, settings: EncoderSettings) -> List[str]:
    """HEVC (hvc1-tagged, so iOS/AVFoundation plays it) + AAC, faststart."""
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-i", str(src),
        "-c:v", "libx265",
        "-preset", settings.preset,
        "-crf", settings.crf,
        "-tag:v", "hvc1",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", settings.audio_bitrate,
        "-movflags", "+faststart",
        str(dest),
    ]


def find_mp4s(assets_dir: Path) -> List[Path]:
    return sorted(p for p in assets_dir.rglob("*.mp4") if p.is_file() and not p.name.endswith(".tmp.mp4"))


def _temp_path(src: Path) -> Path:
    return src.with_name(src.name[: -len(".mp4")] + ".tmp.mp4")


def reencode_all(
    repo_root: Path,
    *,
    settings: Optional[EncoderSettings] = None,
    ffmpeg: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> ReencodeReport:
    """Re-encode every MP4 under ``<repo_root>/Assets`` in place.

    Each original is first copied to ``Backup/original_mp4s-<timestamp>/``
    (same relative path). The encoder reads from that backup; on failure the
    original is restored byte-for-byte and processing continues.
    """
    repo_root = repo_root.resolve()
    assets_dir = repo_root / "Assets"
    if not assets_dir.is_dir():
        raise ConfigError(f"Assets directory not found at {assets_dir}; run from inside the repo.")

    ffmpeg = ffmpeg or which("ffmpeg")
    if not ffmpeg:
        raise CommandError("ffmpeg not found in PATH. Install ffmpeg before running this script.")

    settings = settings or EncoderSettings.from_env()
    stamp = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_root = repo_root / BACKUP_DIRNAME / f"{BACKUP_PREFIX}{stamp}"

    videos = find_mp4s(assets_dir)
    if not videos:
        logger.info("No MP4 files found under Assets/.")
        return ReencodeReport(backup_root=None)

    logger.info("Backing up originals to: %s", backup_root)
    backup_root.mkdir(parents=True, exist_ok=True)
    report = ReencodeReport(backup_root=backup_root)

    for src in videos:
        rel = src.relative_to(repo_root).as_posix()
        backup_path = backup_root / rel
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, backup_path)

        tmp_path = _temp_path(src)
        logger.info("Re-encoding %s", rel)
        result = run(ffmpeg_command(ffmpeg, backup_path, tmp_path, settings))
        if result.ok and tmp_path.is_file():
            tmp_path.replace(src)
            report.encoded.append(rel)
            continue

        logger.error("Failed to encode %s; restoring original.", rel)
        if result.output.strip():
            logger.debug("%s", result.output.strip())
        tmp_path.unlink(missing_ok=True)
        shutil.copy2(backup_path, src)
        report.restored.append(rel)

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reencode-mp4s",
        description="Re-encode all MP4 assets under Assets/ using ffmpeg + libx265 (CRF/AUDIO_BITRATE/PRESET env overrides)",
    )
    parser.add_argument("repo_root", nargs="?", type=Path, default=None, help="Unity project root (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    try:
        report = reencode_all(args.repo_root or Path.cwd())
    except (ConfigError, CommandError) as ex:
        logger.error("%s", ex)
        return 1

    if report.backup_root is None:
        return 0
    if report.restored:
        logger.warning("%d file(s) failed to encode and were restored", len(report.restored))
    success(logger, "Re-encoding complete. Originals are stored in %s", report.backup_root)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
