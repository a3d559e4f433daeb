import logging
import os
import sys

import pytest


# Variables the tools read; cleared so a developer's shell never leaks into tests
_PIPELINE_ENV = (
    "REMOTE_ADDRESSABLES_ENABLED",
    "ADDRESSABLES_S3_PATH",
    "ADDRESSABLES_CLOUDFRONT_DISTRIBUTION_ID",
    "ADDRESSABLES_BUILD_DIR",
    "AWS_PROFILE",
    "AWS_REGION",
    "BUILD_ENV",
    "CSV_S3_BUCKET",
    "CRF",
    "AUDIO_BITRATE",
    "PRESET",
    "GITHUB_TOKEN",
    "RUNNER_NAME",
    "NO_COLOR",
)


def pytest_configure():
    # Tool packages live under `src/` as top-level imports (`common.*`, `addressables.*`)
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def _clean_pipeline_env(monkeypatch):
    for name in _PIPELINE_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _drop_console_handler():
    # main() installs a stdout handler on the root logger; pytest swaps stdout per test
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == "pipeline-console":
            root.removeHandler(handler)
