from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from botocore.exceptions import ClientError

from common.downloads import Downloader
from common.env import ConfigError
from csv_sync import handler
from csv_sync.models import CdnInfo, ProjectConfig


LOC_URL = "https://sheets.example/loc.csv"
PARTNERS_URL = "https://sheets.example/partners.csv"


def _write_project(root: Path, *, with_cdn: bool = True, extra: Optional[Dict[str, Any]] = None) -> Path:
    config = {
        "s3Prefix": "ineuj-app/",
        "csvSources": {"localization": LOC_URL, "partners": PARTNERS_URL},
        "csvCache": {"localization": "Assets/Resources/CSV/localization.csv"},
        "localizationURL": "https://old.example/localization.csv",
        "partnerURL": "https://old.example/partners.csv",
        "tools": {"notificationsURL": "https://old.example/notifications.csv", "debug": True},
        "appName": "ineuj",
    }
    config.update(extra or {})
    cfg_path = root / "Assets" / "Resources" / "boardibleConfigs.json"
    cfg_path.parent.mkdir(parents=True)
    cfg_path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    if with_cdn:
        (root / "AWSDevInfos.asset").write_text(
            'MonoBehaviour:\n  json: {"distributionID":"E2QWRUHAPOMQZL","domainName":"d111111abcdef8.cloudfront.net"}\n',
            encoding="utf-8",
        )
    return cfg_path


class _FakeS3:
    def __init__(self, fail_keys: tuple = ()) -> None:
        self.uploads: List[Dict[str, Any]] = []
        self.fail_keys = fail_keys

    def upload_file(self, Filename: str, Bucket: str, Key: str, ExtraArgs=None):
        if Key in self.fail_keys:
            raise ClientError({"Error": {"Code": "AccessDenied"}}, "PutObject")
        self.uploads.append(
            {"Bucket": Bucket, "Key": Key, "Body": Path(Filename).read_bytes(), "ExtraArgs": ExtraArgs}
        )


class _FakeCloudFront:
    def __init__(self) -> None:
        self.paths: List[str] = []

    def create_invalidation(self, *, DistributionId: str, InvalidationBatch: Dict[str, Any]):
        self.paths.extend(InvalidationBatch["Paths"]["Items"])
        return {"Invalidation": {"Id": "INV1"}}


class _FakeSTS:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok

    def get_caller_identity(self):
        if not self.ok:
            raise ClientError({"Error": {"Code": "ExpiredToken"}}, "GetCallerIdentity")
        return {"Account": "123456789012", "Arn": "arn:aws:iam::123456789012:user/ci", "UserId": "AID"}


def _downloader(bodies: Dict[str, bytes]) -> Downloader:
    def handle(request: httpx.Request) -> httpx.Response:
        body = bodies.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return Downloader(client=httpx.Client(transport=httpx.MockTransport(handle)), retry_delay=0)


def _run(tmp_path: Path, *, s3=None, cf=None, sts=None, bodies=None, **kwargs):
    dl = _downloader(bodies if bodies is not None else {LOC_URL: b"key,en\nhi,Hi\n", PARTNERS_URL: b"name\nacme\n"})
    return handler.run_once(
        project_path=tmp_path,
        s3=s3 or _FakeS3(),
        cloudfront=cf or _FakeCloudFront(),
        sts=sts or _FakeSTS(),
        downloader=dl,
        **kwargs,
    )


def test_project_config_and_cdn_models(tmp_path):
    cfg_path = _write_project(tmp_path)
    config = ProjectConfig.load(cfg_path)
    assert config.configs_prefix("prod") == "ineuj-app/configs/prod"
    assert config.csv_sources["partners"] == PARTNERS_URL

    cdn = CdnInfo.load(tmp_path / "AWSDevInfos.asset")
    assert cdn.distribution_id == "E2QWRUHAPOMQZL"
    assert cdn.domain_name == "d111111abcdef8.cloudfront.net"
    assert CdnInfo.parse('{"distributionID":""}').distribution_id is None


def test_full_sync_uploads_caches_and_invalidates(tmp_path):
    _write_project(tmp_path)
    s3, cf = _FakeS3(), _FakeCloudFront()

    summary = _run(tmp_path, s3=s3, cf=cf)

    assert summary["ok"] is True
    assert summary["uploaded"] == 2 and summary["cached"] == 1
    assert [u["Key"] for u in s3.uploads] == [
        "ineuj-app/configs/dev/localization.csv",
        "ineuj-app/configs/dev/partners.csv",
    ]
    assert all(u["Bucket"] == "boardible-app" for u in s3.uploads)
    assert s3.uploads[0]["ExtraArgs"] == {"ContentType": "text/csv; charset=utf-8", "CacheControl": "max-age=3600"}
    assert s3.uploads[1]["Body"] == b"name\nacme\n"
    assert cf.paths == ["/ineuj-app/configs/dev/*"]
    assert (tmp_path / "Assets/Resources/CSV/localization.csv").read_bytes() == b"key,en\nhi,Hi\n"
    assert not (tmp_path / ".csv-temp").exists()


def test_environment_from_build_env_and_bucket_override(monkeypatch, tmp_path):
    _write_project(tmp_path)
    monkeypatch.setenv("BUILD_ENV", "prod")
    monkeypatch.setenv("CSV_S3_BUCKET", "other-bucket")
    s3 = _FakeS3()

    summary = _run(tmp_path, s3=s3)

    assert summary["prefix"] == "ineuj-app/configs/prod"
    assert {u["Bucket"] for u in s3.uploads} == {"other-bucket"}


def test_partial_failure_is_reported(tmp_path):
    _write_project(tmp_path)
    s3, cf = _FakeS3(), _FakeCloudFront()

    summary = _run(tmp_path, s3=s3, cf=cf, bodies={LOC_URL: b"key\n"})

    assert summary["ok"] is False
    assert summary["uploaded"] == 1
    assert summary["failed"] == ["partners (download failed)"]
    # one success is enough to refresh the CDN
    assert cf.paths == ["/ineuj-app/configs/dev/*"]


def test_upload_failure_skips_invalidation_when_nothing_uploaded(tmp_path):
    _write_project(tmp_path)
    cf = _FakeCloudFront()
    s3 = _FakeS3(fail_keys=("ineuj-app/configs/dev/localization.csv", "ineuj-app/configs/dev/partners.csv"))

    summary = _run(tmp_path, s3=s3, cf=cf)

    assert summary["uploaded"] == 0
    assert summary["failed"] == ["localization (upload failed)", "partners (upload failed)"]
    assert cf.paths == []


def test_update_config_rewrites_existing_url_fields(tmp_path):
    cfg_path = _write_project(tmp_path, extra={"partnerURL": None})

    summary = _run(tmp_path, update_config=True)

    doc = json.loads(cfg_path.read_text(encoding="utf-8"))
    base = "https://d111111abcdef8.cloudfront.net/ineuj-app/configs/dev"
    assert doc["localizationURL"] == f"{base}/localization.csv"
    assert doc["tools"]["notificationsURL"] == f"{base}/notifications.csv"
    assert doc["partnerURL"] is None
    assert doc["appName"] == "ineuj"
    assert summary["updated_fields"] == ["localizationURL", "tools.notificationsURL"]
    backup = json.loads(cfg_path.with_name("boardibleConfigs.json.backup").read_text(encoding="utf-8"))
    assert backup["localizationURL"] == "https://old.example/localization.csv"


def test_missing_cdn_info_skips_invalidation(tmp_path, caplog):
    _write_project(tmp_path, with_cdn=False)
    cf = _FakeCloudFront()

    summary = _run(tmp_path, cf=cf, update_config=True)

    assert summary["ok"] is True
    assert cf.paths == []
    assert summary["updated_fields"] == []
    assert any("Skipping CloudFront invalidation" in r.getMessage() for r in caplog.records)


def test_expired_credentials_abort(tmp_path):
    _write_project(tmp_path)
    s3 = _FakeS3()
    with pytest.raises(ConfigError):
        _run(tmp_path, s3=s3, sts=_FakeSTS(ok=False))
    assert s3.uploads == []


def test_missing_config_or_sources(tmp_path):
    with pytest.raises(ConfigError):
        _run(tmp_path)

    _write_project(tmp_path, extra={"csvSources": {}})
    with pytest.raises(ConfigError):
        _run(tmp_path)


def test_invalid_environment(tmp_path):
    _write_project(tmp_path)
    with pytest.raises(ConfigError):
        _run(tmp_path, environment="staging")


def test_null_prefix_and_cache_entries_fall_back_to_defaults(tmp_path):
    _write_project(tmp_path, extra={"s3Prefix": None, "csvCache": {"localization": None}})
    s3 = _FakeS3()

    summary = _run(tmp_path, s3=s3)

    assert summary["ok"] is True
    assert summary["prefix"] == "ineuj-app/configs/dev"
    assert summary["cached"] == 0
    assert not (tmp_path / "Assets/Resources/CSV").exists()
    assert ProjectConfig.model_validate({"csvCache": None}).csv_cache == {}


def test_malformed_config_is_a_config_error(tmp_path):
    cfg_path = _write_project(tmp_path)
    cfg_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        _run(tmp_path)

    cfg_path.write_text(json.dumps({"csvSources": ["not", "a", "map"]}), encoding="utf-8")
    with pytest.raises(ConfigError):
        _run(tmp_path)


def test_unknown_aws_profile_exits_non_zero(monkeypatch, tmp_path):
    _write_project(tmp_path)
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "aws-config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "aws-credentials"))
    monkeypatch.setenv("AWS_PROFILE", "no-such-profile")

    with pytest.raises(ConfigError):
        handler.run_once(project_path=tmp_path)
    assert handler.main(["dev", "--project-path", str(tmp_path)]) == 1
