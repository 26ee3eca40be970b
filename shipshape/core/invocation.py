"""Drive one shipshape analysis run from container bring-up to teardown."""

from __future__ import annotations

import logging
import os
import posixpath
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipshape.common.errors import (
    BuildExtractionError,
    DockerUnavailableError,
    GlobalConfigError,
    InvalidTargetError,
    ShipshapeError,
)
from shipshape.common.models import ShipshapeContext, ShipshapeRequest, ShipshapeResponse, Stage
from shipshape.runtime.client import ShipshapeClient
from shipshape.runtime.docker import DockerRuntime
from shipshape.runtime.issues import RuntimeIssue

from .analyzers import AnalyzerFleet
from .config import (
    DEFAULT_EVENT,
    DEFAULT_REPO,
    DEFAULT_TAG,
    KYTHE_CONTAINER,
    KYTHE_IMAGE,
    LOCAL_TAG,
    SERVICE_CONTAINER,
    SERVICE_IMAGE,
    WORKSPACE,
    ShipshapeConfig,
)
from .global_config import global_config
from .identity import container_identity
from .images import ImagePuller
from .output import ResponseHandler, make_sink
from .results import analyze
from .service import ClientFactory, ServiceManager


class Options(BaseModel):
    """Settings for a single run; frozen once constructed."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(description="File or directory to analyze.")
    third_party_analyzers: List[str] = Field(
        default_factory=list,
        description="Analyzer images; when empty the .shipshape global config is consulted.",
    )
    build: str = Field(default="", description="Build system to extract compilation units with; empty skips the post-build phase.")
    trigger_cats: List[str] = Field(default_factory=list, description="Categories to run; empty defers to the config file.")
    dind: bool = Field(default=False, description="Pass the local docker daemon through to started containers.")
    event: str = DEFAULT_EVENT
    json_output: str = Field(default="", description="Write results to this file instead of the console.")
    repo: str = DEFAULT_REPO
    stay_up: bool = Field(default=False, description="Leave containers running after the run.")
    tag: str = DEFAULT_TAG
    local_kythe: bool = Field(default=False, description="Use the local Kythe image without pulling.")
    handle_response: Optional[Callable[[ShipshapeResponse, str], None]] = Field(
        default=None,
        exclude=True,
        description="Receives every streamed response instead of the console/JSON output.",
    )

    @field_validator("third_party_analyzers", "trigger_cats")
    @classmethod
    def _drop_blank(cls, values: List[str]) -> List[str]:
        return [value.strip() for value in values if value and value.strip()]

    @field_validator("file", "build", "event", "repo", "tag")
    @classmethod
    def _strip_whitespace(cls, value: str) -> str:
        return value.strip()


class RunState(str, Enum):
    INIT = "init"
    IMAGES_RESOLVED = "images_resolved"
    ANALYZERS_STARTED = "analyzers_started"
    SERVICE_READY = "service_ready"
    PRE_BUILD_DONE = "pre_build_done"
    BUILD_EXTRACTED = "build_extracted"
    POST_BUILD_DONE = "post_build_done"
    TORN_DOWN = "torn_down"


@dataclass(slots=True)
class RunResult:
    """Outcome of a run: notes counted so far and the fatal error, if any."""

    note_count: int = 0
    error: Optional[ShipshapeError] = None
    last_state: RunState = RunState.INIT
    analyzer_issues: List[RuntimeIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class _RunContext:
    """Mutable state that flows through the phases of one run."""

    state: Optional[RunState] = None
    abs_root: str = ""
    files: List[str] = field(default_factory=list)
    image: str = ""
    analyzers: List[str] = field(default_factory=list)
    containers: List[str] = field(default_factory=list)
    issues: List[RuntimeIssue] = field(default_factory=list)
    sub_path: str = ""
    client: Optional[ShipshapeClient] = None
    request: Optional[ShipshapeRequest] = None
    handler: Optional[ResponseHandler] = None
    note_count: int = 0


class Invocation:
    """Run shipshape once over a local file or directory."""

    def __init__(
        self,
        options: Options,
        *,
        runtime: Optional[DockerRuntime] = None,
        config: Optional[ShipshapeConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        config_loader: Callable[[str], List[str]] = global_config,
        sink: Optional[ResponseHandler] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.options = options
        self.logger = logger or logging.getLogger(__name__)
        self.config = config or ShipshapeConfig()
        self.runtime = runtime or DockerRuntime(config=self.config, logger=self.logger)
        self.config_loader = config_loader
        self.sink: Optional[ResponseHandler] = options.handle_response or sink
        self.puller = ImagePuller(self.runtime, logger=self.logger)
        self.fleet = AnalyzerFleet(self.runtime, logger=self.logger)
        self.service = ServiceManager(
            self.runtime,
            config=self.config,
            client_factory=client_factory,
            logger=self.logger,
        )

    def run(self) -> RunResult:
        """
        Execute the run and tear down what it started.

        Never raises a ShipshapeError: a fatal failure is returned in
        RunResult.error together with the notes counted before it happened.
        """
        self.logger.info("Starting shipshape...")
        # A fresh output per run so a JSON file is truncated on every run
        ctx = _RunContext(handler=self.sink or make_sink(self.options.json_output))
        error: Optional[ShipshapeError] = None
        try:
            with ExitStack() as teardown:
                self._execute(ctx, teardown)
        except ShipshapeError as exc:
            self.logger.error("Run failed: %s", exc)
            error = exc

        last_state = ctx.state or RunState.INIT
        self.logger.debug("Run moved from %s to %s", last_state.value, RunState.TORN_DOWN.value)
        if error is None:
            self.logger.info("End of Results.")
        return RunResult(
            note_count=ctx.note_count,
            error=error,
            last_state=last_state,
            analyzer_issues=list(ctx.issues),
        )

    def _execute(self, ctx: _RunContext, teardown: ExitStack) -> None:
        self._resolve_target(ctx)
        self._resolve_images(ctx)
        self._start_analyzers(ctx, teardown)
        self._start_service(ctx, teardown)

        ctx.request = self.create_request(ctx.files, ctx.sub_path, Stage.PRE_BUILD)
        self._run_phase(ctx, ctx.request)
        ctx.state = RunState.PRE_BUILD_DONE

        if not self.options.build:
            return

        self._extract_build(ctx, teardown)
        ctx.state = RunState.BUILD_EXTRACTED

        self._run_phase(ctx, ctx.request.model_copy(update={"stage": Stage.POST_BUILD}))
        ctx.state = RunState.POST_BUILD_DONE

    def _resolve_target(self, ctx: _RunContext) -> None:
        target = self.options.file
        if not target or not os.path.exists(target):
            raise InvalidTargetError(f"{target} is not a valid file or directory")

        is_dir = os.path.isdir(target)
        orig_dir = target if is_dir else os.path.dirname(target) or os.curdir
        ctx.abs_root = os.path.abspath(orig_dir)
        ctx.files = [] if is_dir else [os.path.basename(target)]

        if not self.runtime.has_docker():
            raise DockerUnavailableError("docker could not be found. Make sure you have docker installed.")
        ctx.state = RunState.INIT

    def _resolve_images(self, ctx: _RunContext) -> None:
        ctx.image = self.runtime.full_image_name(self.options.repo, SERVICE_IMAGE, self.options.tag)
        self.logger.info("Starting shipshape using %s on %s", ctx.image, ctx.abs_root)

        if not self.options.trigger_cats:
            self.logger.info(
                "No categories provided. Will be using categories specified by the config file for the event %s",
                self.options.event,
            )

        ctx.analyzers = list(self.options.third_party_analyzers)
        if not ctx.analyzers:
            try:
                ctx.analyzers = list(self.config_loader(ctx.abs_root))
            except GlobalConfigError as exc:
                self.logger.info("Could not get global config; using only the default analyzers: %s", exc)
                ctx.analyzers = []
        ctx.state = RunState.IMAGES_RESOLVED

    def _start_analyzers(self, ctx: _RunContext, teardown: ExitStack) -> None:
        # The local tag also means the analyzer images are local builds
        if self.options.tag != LOCAL_TAG:
            self.puller.pull(ctx.image)
            self.puller.pull_analyzers(ctx.analyzers)

        if not self.options.stay_up:
            # Registered before starting: a failed start may still leave a container behind
            for index, image in enumerate(ctx.analyzers):
                name = container_identity(image, index).name
                teardown.callback(self._stop, name, self.config.stop_grace_seconds)

        started = self.fleet.start_analyzers(ctx.abs_root, ctx.analyzers, self.options.dind)
        for issue in started.issues:
            self.logger.error("Could not start up third party analyzer: %s", issue)
        ctx.containers = started.containers
        ctx.issues = started.issues
        ctx.state = RunState.ANALYZERS_STARTED

    def _start_service(self, ctx: _RunContext, teardown: ExitStack) -> None:
        if not self.options.stay_up:
            teardown.callback(self._stop, SERVICE_CONTAINER, self.config.stop_grace_seconds)
        ctx.client, sub_path = self.service.ensure_running(
            ctx.image,
            ctx.abs_root,
            ctx.containers,
            self.options.dind,
        )
        ctx.sub_path = sub_path.replace(os.sep, "/")
        ctx.state = RunState.SERVICE_READY

    def _run_phase(self, ctx: _RunContext, request: ShipshapeRequest) -> None:
        self.logger.info("Calling with request %s", request)
        ctx.note_count += analyze(ctx.client, request, ctx.abs_root, ctx.handler, log=self.logger)

    def _extract_build(self, ctx: _RunContext, teardown: ExitStack) -> None:
        kythe_image = self.runtime.full_image_name(self.options.repo, KYTHE_IMAGE, self.options.tag)
        if not self.options.local_kythe and self.options.tag != LOCAL_TAG:
            self.puller.pull(kythe_image)

        # The extractor runs in the foreground; it still needs removing afterwards
        teardown.callback(self._stop, KYTHE_CONTAINER, self.config.kythe_stop_grace_seconds)
        self.logger.info("Retrieving compilation units with %s", self.options.build)
        result = self.runtime.run_kythe(kythe_image, KYTHE_CONTAINER, ctx.abs_root, self.options.build, self.options.dind)
        if not result.succeeded():
            # Kythe is noisy, so its output is only shown on failure
            result.log_streams(self.logger)
            raise BuildExtractionError(f"error from run: {result.error}")
        self.logger.info("CompilationUnits prepared")

    def create_request(self, files: List[str], sub_path: str, stage: Stage) -> ShipshapeRequest:
        repo_root = posixpath.join(WORKSPACE, sub_path) if sub_path else WORKSPACE
        return ShipshapeRequest(
            triggered_category=list(self.options.trigger_cats),
            shipshape_context=ShipshapeContext(repo_root=repo_root, file_path=list(files)),
            event=self.options.event,
            stage=stage,
        )

    def _stop(self, container: str, wait_seconds: int) -> None:
        self.logger.info("Stopping and removing %s", container)
        result = self.runtime.stop(container, wait_seconds, True)
        result.log_streams(self.logger)
        if not result.succeeded():
            self.logger.info("Could not stop %s: %s", container, result.error)
        else:
            self.logger.info("Removed %s.", container)
