"""Errors that abort a shipshape run."""
from __future__ import annotations


class ShipshapeError(RuntimeError):
    """Base class for failures that stop a run."""


class InvalidTargetError(ShipshapeError):
    """The file or directory to analyze does not exist."""


class DockerUnavailableError(ShipshapeError):
    """The docker binary or daemon could not be reached."""


class ServiceStartError(ShipshapeError):
    """The analysis service container could not be started."""


class ServiceUnhealthyError(ShipshapeError):
    """The analysis service did not report healthy in time."""


class StreamError(ShipshapeError):
    """The streamed Run call failed mid-stream."""


class OutputError(ShipshapeError):
    """A streamed response could not be written to the configured output."""


class BuildExtractionError(ShipshapeError):
    """The Kythe build-unit extraction step failed."""


class GlobalConfigError(ShipshapeError):
    """The .shipshape global configuration could not be read."""
