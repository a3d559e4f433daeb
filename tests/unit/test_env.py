from __future__ import annotations

import pytest

from common.env import (
    ConfigError,
    env_flag,
    getenv,
    load_dotenv_file,
    load_project_config,
    parse_assignments,
    require,
)


def test_parse_assignments_handles_shell_exports_and_comments():
    text = """
# Remote Addressables Settings
export REMOTE_ADDRESSABLES_ENABLED="true"
export ADDRESSABLES_S3_PATH='s3://cdn/addressables_test'  # required
# export ADDRESSABLES_CLOUDFRONT_DISTRIBUTION_ID=""
DEPLOY_TRACK=production # For Android
UNITY_VERSION=$(detect_unity_version)
if [ -f foo ]; then
"""
    out = parse_assignments(text)
    assert out == {
        "REMOTE_ADDRESSABLES_ENABLED": "true",
        "ADDRESSABLES_S3_PATH": "s3://cdn/addressables_test",
        "DEPLOY_TRACK": "production",
    }


def test_parse_assignments_keeps_escaped_quotes_in_secrets():
    out = parse_assignments('AWS_SECRET_ACCESS_KEY="ab\\"cd/ef+gh"\nAWS_ACCESS_KEY_ID=AKIAEXAMPLE\n')
    assert out == {"AWS_SECRET_ACCESS_KEY": 'ab"cd/ef+gh', "AWS_ACCESS_KEY_ID": "AKIAEXAMPLE"}


def test_parse_assignments_skips_bare_words_and_functions():
    text = "detect() {\n  echo hi\n}\nfi\nexport BUILD_ENV=prod\n"
    assert parse_assignments(text) == {"BUILD_ENV": "prod"}


def test_getenv_treats_empty_as_unset(monkeypatch):
    monkeypatch.setenv("ADDRESSABLES_S3_PATH", "")
    assert getenv("ADDRESSABLES_S3_PATH") is None
    assert getenv("ADDRESSABLES_S3_PATH", "fallback") == "fallback"


def test_require_raises_config_error():
    with pytest.raises(ConfigError):
        require(None, "ADDRESSABLES_S3_PATH")
    assert require("x", "ADDRESSABLES_S3_PATH") == "x"


@pytest.mark.parametrize(
    "value,expected",
    [("true", True), ("TRUE", True), (" True ", True), ("1", False), ("yes", False), ("on", False), ("false", False), ("", False)],
)
def test_env_flag(monkeypatch, value, expected):
    monkeypatch.setenv("REMOTE_ADDRESSABLES_ENABLED", value)
    assert env_flag("REMOTE_ADDRESSABLES_ENABLED") is expected


def test_load_dotenv_file_does_not_override_existing(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("AWS_PROFILE=from-file\nAWS_REGION=eu-west-1\n\n# comment\n", encoding="utf-8")
    environ = {"AWS_PROFILE": "from-shell"}

    applied = load_dotenv_file(env_file, environ=environ)

    assert applied == {"AWS_REGION": "eu-west-1"}
    assert environ == {"AWS_PROFILE": "from-shell", "AWS_REGION": "eu-west-1"}


def test_load_dotenv_file_missing_returns_none(tmp_path, caplog):
    assert load_dotenv_file(tmp_path / ".env", environ={}) is None
    assert any(".env file not found" in r.getMessage() for r in caplog.records)


def test_load_project_config_missing_is_silent(tmp_path):
    environ: dict = {}
    assert load_project_config(tmp_path / "project-config.sh", environ=environ) is None
    assert environ == {}
