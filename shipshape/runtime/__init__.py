"""Adapters for docker and the shipshape service transport."""

from .client import ResponseStream, ShipshapeClient
from .docker import DockerRuntime
from .issues import IssueSeverity, RuntimeIssue

__all__ = [
    "DockerRuntime",
    "ShipshapeClient",
    "ResponseStream",
    "RuntimeIssue",
    "IssueSeverity",
]
