"""Default analyzer images declared in a repository's .shipshape file."""

from __future__ import annotations

from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from shipshape.common.errors import GlobalConfigError

CONFIG_FILENAME = ".shipshape"


class GlobalSection(BaseModel):
    """The 'global' section of a .shipshape file."""

    images: List[str] = Field(default_factory=list, description="Third-party analyzer images to run.")

    @field_validator("images")
    @classmethod
    def _strip_images(cls, images: List[str]) -> List[str]:
        return [image.strip() for image in images if image and image.strip()]


class ShipshapeFile(BaseModel):
    """Subset of the .shipshape file read by the command line tool."""

    global_: GlobalSection = Field(default_factory=GlobalSection, alias="global")


def load_shipshape_file(path: str | Path) -> ShipshapeFile:
    """Parse a .shipshape file; an empty file yields the defaults."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise GlobalConfigError(f"could not read {path}: {exc}") from exc

    if data is None:
        return ShipshapeFile()
    if not isinstance(data, dict):
        raise GlobalConfigError(f"{path} must contain a mapping at the top level")
    try:
        return ShipshapeFile.model_validate(data)
    except ValidationError as exc:
        raise GlobalConfigError(f"invalid {path}: {exc}") from exc


def global_config(abs_root: str) -> List[str]:
    """
    Return the analyzer images configured for the tree rooted at abs_root.

    Raises:
        GlobalConfigError: When a .shipshape file exists but cannot be parsed.
    """
    path = Path(abs_root) / CONFIG_FILENAME
    if not path.is_file():
        return []
    return list(load_shipshape_file(path).global_.images)
