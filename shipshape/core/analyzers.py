"""Bring up third-party analyzer containers."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from shipshape.runtime.docker import DockerRuntime
from shipshape.runtime.issues import RuntimeIssue

from .config import LOCAL_LOGS
from .identity import container_identity


@dataclass(slots=True)
class AnalyzerStartResult:
    """Containers that are up, plus the problems of the ones that are not."""

    containers: List[str] = field(default_factory=list)
    issues: List[RuntimeIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


@dataclass(slots=True)
class _Outcome:
    container: Optional[str] = None
    issue: Optional[RuntimeIssue] = None


class AnalyzerFleet:
    """Start one container per analyzer image, reusing containers already running that image."""

    def __init__(self, runtime: DockerRuntime, logger: Optional[logging.Logger] = None) -> None:
        self.runtime = runtime
        self.logger = logger or logging.getLogger(__name__)

    def start_analyzers(self, source_root: str, images: Sequence[str], dind: bool) -> AnalyzerStartResult:
        """
        Start every analyzer concurrently.

        A failed start is recorded as an issue and leaves that analyzer out of
        the returned containers; it never prevents its siblings from starting.
        """
        if not images:
            return AnalyzerStartResult()

        self.logger.info("Waiting for dockerized analyzers to start up...")
        with ThreadPoolExecutor(max_workers=len(images), thread_name_prefix="analyzer") as executor:
            futures = [
                executor.submit(self._start_one, source_root, image, index, dind)
                for index, image in enumerate(images)
            ]

        result = AnalyzerStartResult()
        for image, future in zip(images, futures):
            exc = future.exception()
            if exc is not None:
                outcome = _Outcome(issue=RuntimeIssue(
                    code="ANALYZER_START_FAILED",
                    message=f"{image}: {exc}",
                    subject=image,
                ))
            else:
                outcome = future.result()
            if outcome.container is not None:
                result.containers.append(outcome.container)
            if outcome.issue is not None:
                result.issues.append(outcome.issue)
        self.logger.info("Analyzers up (%d of %d)", len(result.containers), len(images))
        return result

    def _start_one(self, source_root: str, image: str, index: int, dind: bool) -> _Outcome:
        identity = container_identity(image, index)
        if self.runtime.image_matches(image, identity.name):
            self.logger.info("Reusing analyzer %s started at localhost:%d", image, identity.port)
            return _Outcome(container=identity.name)

        self.logger.info("Found no analyzer container (%s) to reuse for %s", identity.name, image)
        # Either running an older image or not running at all
        stopped = self.runtime.stop(identity.name, 0, True)
        if not stopped.succeeded():
            self.logger.info("Failed to stop %s (may not be running)", identity.name)

        started = self.runtime.run_analyzer(image, identity.name, source_root, LOCAL_LOGS, identity.port, dind)
        if not started.succeeded():
            self.logger.info(
                "Could not start %s at localhost:%d: %s, stderr: %s",
                image,
                identity.port,
                started.error,
                started.stderr.strip(),
            )
            return _Outcome(issue=RuntimeIssue.from_result("ANALYZER_START_FAILED", image, started))

        self.logger.info("Analyzer %s started at localhost:%d", image, identity.port)
        return _Outcome(container=identity.name)
