from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


SETTINGS_RELPATH = Path("Assets") / "ExternalDependencyManager" / "Editor" / "IOSResolverSettings.xml"
ROOT_TAG = "iosResolverSettings"

# Values of cocoapodsIntegrationMethod as EDM4U defines them
INTEGRATION_NONE = 0
INTEGRATION_WORKSPACE = 1
INTEGRATION_PROJECT = 2


class IOSResolverSettings(BaseModel):
    """
    EDM4U iOS Resolver settings persisted as ``IOSResolverSettings.xml``.

    Field aliases are the XML element names. The defaults match what the
    project expects after pointing the resolver at an explicit pod binary:
    Xcode workspace integration, Podfile generation on, no in-editor pod
    install.
    """

    model_config = ConfigDict(populate_by_name=True)

    cocoapods_tool_path: Optional[str] = Field(default=None, alias="cocoapodsToolPath")
    podfile_generation_enabled: bool = Field(default=True, alias="podfileGenerationEnabled")
    auto_pod_tool_install_in_editor: bool = Field(default=False, alias="autoPodToolInstallInEditor")
    cocoapods_integration_method: int = Field(default=INTEGRATION_WORKSPACE, alias="cocoapodsIntegrationMethod")
    use_project_settings: bool = Field(default=True, alias="useProjectSettings")
    verbose_logging_enabled: bool = Field(default=False, alias="verboseLoggingEnabled")

    def to_xml(self) -> str:
        root = ET.Element(ROOT_TAG)
        for alias, value in self.model_dump(by_alias=True).items():
            if value is None:
                continue
            child = ET.SubElement(root, alias)
            child.text = str(value).lower() if isinstance(value, bool) else str(value)
        ET.indent(root, space="  ")
        body = ET.tostring(root, encoding="unicode")
        return '<?xml version="1.0" encoding="utf-8"?>\n' + body + "\n"

    @classmethod
    def from_xml(cls, text: str) -> "IOSResolverSettings":
        """Parse the settings document; raises ValueError when malformed."""
        try:
            root = ET.fromstring(text)
        except ET.ParseError as ex:
            raise ValueError(f"Malformed iOS Resolver settings XML: {ex}") from ex
        values: Dict[str, str] = {}
        for child in root:
            values[child.tag] = (child.text or "").strip()
        known = {f.alias for f in cls.model_fields.values() if f.alias}
        try:
            return cls.model_validate({k: v for k, v in values.items() if k in known and v != ""})
        except ValidationError as ex:
            raise ValueError(f"Invalid iOS Resolver settings: {ex}") from ex


def settings_path(project: Path) -> Path:
    return project / SETTINGS_RELPATH


def read_settings(path: Path) -> Optional[IOSResolverSettings]:
    if not path.is_file():
        return None
    return IOSResolverSettings.from_xml(path.read_text(encoding="utf-8"))


def write_settings(path: Path, settings: IOSResolverSettings) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings.to_xml(), encoding="utf-8")
    return path


__all__ = [
    "SETTINGS_RELPATH",
    "INTEGRATION_NONE",
    "INTEGRATION_WORKSPACE",
    "INTEGRATION_PROJECT",
    "IOSResolverSettings",
    "settings_path",
    "read_settings",
    "write_settings",
]
