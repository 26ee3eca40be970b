"""Derive local container names and ports for analyzer images."""
from __future__ import annotations

from dataclasses import dataclass

from .config import ANALYZER_PORT_BASE


@dataclass(frozen=True, slots=True)
class ContainerDescriptor:
    name: str
    image: str
    port: int


def short_image_name(image: str) -> str:
    """
    Return the image name without registry, path or tag.

    A reference looks like ``[registry[:port]/]path[:tag]``. Both the tag and
    the registry port are introduced by a colon, so the last colon only marks
    a tag when it comes after the last slash.
    """
    end = image.rfind(":")
    slash = image.rfind("/")
    if end == -1 or end < slash:
        end = len(image)
    return image[slash + 1:end]


def container_identity(image: str, index: int) -> ContainerDescriptor:
    """Return the container name and host port used for the index-th analyzer image."""
    if index < 0:
        raise ValueError(f"analyzer index must be non-negative, got {index}")
    return ContainerDescriptor(
        name=f"{short_image_name(image)}_{index}",
        image=image,
        port=ANALYZER_PORT_BASE + index,
    )
