from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.env import ConfigError


CONFIG_RELPATH = Path("Assets") / "Resources" / "boardibleConfigs.json"
CDN_INFO_RELPATH = Path("AWSDevInfos.asset")

DEFAULT_S3_PREFIX = "ineuj-app/"

_DISTRIBUTION_ID = re.compile(r'"distributionID"\s*:\s*"([^"]*)"')
_DOMAIN_NAME = re.compile(r'"domainName"\s*:\s*"([^"]*)"')


class ProjectConfig(BaseModel):
    """
    The parts of ``boardibleConfigs.json`` the CSV sync reads.

    Fields
    - s3_prefix: base key prefix in the bucket (``s3Prefix``), e.g. "ineuj-app/".
      null or missing falls back to the default.
    - csv_sources: CSV name -> published spreadsheet export URL (``csvSources``).
    - csv_cache: optional CSV name -> project-relative path for an offline copy
      (``csvCache``); null entries mean "no cache".

    Unknown keys are kept so the document can be written back unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    s3_prefix: str = Field(default=DEFAULT_S3_PREFIX, alias="s3Prefix")
    csv_sources: Dict[str, str] = Field(default_factory=dict, alias="csvSources")
    csv_cache: Dict[str, str] = Field(default_factory=dict, alias="csvCache")

    @field_validator("s3_prefix", mode="before")
    @classmethod
    def _default_prefix(cls, v: Any) -> Any:
        return DEFAULT_S3_PREFIX if v is None else v

    @field_validator("csv_sources", "csv_cache", mode="before")
    @classmethod
    def _drop_nulls(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {k: val for k, val in v.items() if val is not None}
        return v

    def configs_prefix(self, environment: str) -> str:
        """Key prefix CSVs are published under, e.g. "ineuj-app/configs/dev"."""
        return f"{self.s3_prefix}configs/{environment}"

    @classmethod
    def load(cls, path: Path) -> "ProjectConfig":
        """Read and validate the config; malformed documents raise ConfigError."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return cls.model_validate(raw)
        except json.JSONDecodeError as ex:
            raise ConfigError(f"{path.name} is not valid JSON: {ex}") from ex
        except ValidationError as ex:
            raise ConfigError(f"{path.name} has invalid values: {ex}") from ex


class CdnInfo(BaseModel):
    """CloudFront identifiers serialized into Unity's ``AWSDevInfos.asset``."""

    distribution_id: Optional[str] = None
    domain_name: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "CdnInfo":
        dist = _DISTRIBUTION_ID.search(text)
        domain = _DOMAIN_NAME.search(text)
        return cls(
            distribution_id=(dist.group(1) or None) if dist else None,
            domain_name=(domain.group(1) or None) if domain else None,
        )

    @classmethod
    def load(cls, path: Path) -> Optional["CdnInfo"]:
        if not path.is_file():
            return None
        return cls.parse(path.read_text(encoding="utf-8", errors="replace"))


# Config URL fields rewritten by --update-config: (json path, CSV name)
URL_FIELDS = (
    (("localizationURL",), "localization"),
    (("partnerURL",), "partners"),
    (("tools", "notificationsURL"), "notifications"),
)


def set_existing(doc: Dict[str, Any], path: tuple, value: str) -> bool:
    """Set ``doc[path...] = value`` only if the field is already present and not null/false."""
    node: Any = doc
    for key in path[:-1]:
        if not isinstance(node, dict) or key not in node:
            return False
        node = node[key]
    if not isinstance(node, dict):
        return False
    current = node.get(path[-1])
    if current is None or current is False:
        return False
    node[path[-1]] = value
    return True


__all__ = [
    "CONFIG_RELPATH",
    "CDN_INFO_RELPATH",
    "ProjectConfig",
    "CdnInfo",
    "URL_FIELDS",
    "set_existing",
]
