"""Docker primitives used to pull, run, inspect and stop shipshape containers."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import docker
from docker.errors import DockerException, ImageNotFound, NotFound

from shipshape.common.command_runner import CommandResult, CommandRunner
from shipshape.core.config import (
    ANALYZER_CONTAINER_PORT,
    LOGS_DIR,
    SERVICE_PORT,
    WORKSPACE,
    ShipshapeConfig,
)

DOCKER_SOCKET = "/var/run/docker.sock"


class DockerRuntime:
    """Run containers through the docker CLI and inspect them through the docker SDK.

    The CLI is used wherever the caller wants captured stdout/stderr (pull, run,
    stop); the SDK is used for structured inspection of images and containers.
    """

    def __init__(
        self,
        command_runner: Optional[CommandRunner] = None,
        config: Optional[ShipshapeConfig] = None,
        client: Optional[docker.DockerClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.command_runner = command_runner or CommandRunner(logger=self.logger)
        self.config = config or ShipshapeConfig()
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        # Analyzer workers inspect containers concurrently; build one client only
        with self._client_lock:
            if self._client is None:
                self._client = docker.from_env()
            return self._client

    def has_docker(self) -> bool:
        """Return True when the docker binary exists and the daemon answers."""
        if shutil.which("docker") is None:
            return False
        result = self.command_runner.run(["docker", "version", "--format", "{{.Server.Version}}"], timeout=30)
        if not result.succeeded():
            self.logger.debug("docker version failed: %s", result.error)
        return result.succeeded()

    def full_image_name(self, repo: str, image: str, tag: str) -> str:
        return self.config.get_full_image_name(repo, image, tag)

    def out_of_date(self, image: str) -> bool:
        """Return True when the local copy of image is missing or differs from the registry."""
        try:
            local = self.client.images.get(image)
        except ImageNotFound:
            self.logger.debug("No local copy of %s", image)
            return True
        except DockerException as exc:
            self.logger.warning("Could not inspect local image %s: %s", image, exc)
            return True

        try:
            remote = self.client.images.get_registry_data(image)
        except DockerException as exc:
            # Registry unreachable: keep working with the local copy
            self.logger.debug("Could not query registry for %s: %s", image, exc)
            return False

        digests = local.attrs.get("RepoDigests") or []
        return not any(digest.endswith("@" + remote.id) for digest in digests)

    def pull(self, image: str) -> CommandResult:
        return self.command_runner.run(["docker", "pull", image], timeout=self.config.pull_timeout)

    def inspect_container(self, container: str) -> Optional[Dict[str, Any]]:
        """Return the container's inspect attributes, or None when it does not exist."""
        try:
            return self.client.containers.get(container).attrs
        except NotFound:
            return None
        except DockerException as exc:
            self.logger.warning("Could not inspect container %s: %s", container, exc)
            return None

    def image_matches(self, image: str, container: str) -> bool:
        """Return True when container is running and was created from exactly image."""
        attrs = self.inspect_container(container)
        if not attrs:
            return False
        running = bool((attrs.get("State") or {}).get("Running"))
        return running and (attrs.get("Config") or {}).get("Image") == image

    def mapped_volume(self, path: str, container: str) -> Tuple[bool, str]:
        """
        Check whether path is visible inside container's workspace mount.

        Returns:
            Tuple of (is_mapped, relative path from the mount source to path).
            The relative path is empty when path is the mount source itself.
        """
        attrs = self.inspect_container(container)
        if not attrs:
            return False, ""
        for mount in attrs.get("Mounts") or []:
            if mount.get("Destination") != WORKSPACE:
                continue
            source = mount.get("Source")
            if not source:
                continue
            rel = os.path.relpath(path, source)
            if rel == os.curdir:
                return True, ""
            if rel == os.pardir or rel.startswith(os.pardir + os.sep):
                return False, ""
            return True, rel
        return False, ""

    def contains_links(self, container: str, links: Sequence[str]) -> bool:
        """Return True when container is linked to exactly the named containers."""
        attrs = self.inspect_container(container)
        if attrs is None:
            return False
        raw_links = (attrs.get("HostConfig") or {}).get("Links") or []
        # Entries look like "/analyzer_0:/shipping_container/analyzer_0"
        linked = {entry.split(":", 1)[0].lstrip("/") for entry in raw_links}
        return linked == set(links)

    def run_service(
        self,
        image: str,
        container: str,
        source_root: str,
        local_logs: str,
        analyzers: Sequence[str],
        dind: bool,
    ) -> CommandResult:
        command = [
            "docker", "run", "-d",
            "--name", container,
            "-p", f"{SERVICE_PORT}:{SERVICE_PORT}",
            "-v", f"{source_root}:{WORKSPACE}",
            "-v", f"{local_logs}:{LOGS_DIR}",
        ]
        for analyzer in analyzers:
            command += ["--link", f"{analyzer}:{analyzer}"]
        if analyzers:
            addresses = ",".join(f"{analyzer}:{ANALYZER_CONTAINER_PORT}" for analyzer in analyzers)
            command += ["-e", f"ANALYZERS={addresses}"]
        command += self._dind_args(dind)
        command.append(image)
        return self.command_runner.run(command, timeout=self.config.run_timeout)

    def run_analyzer(
        self,
        image: str,
        container: str,
        source_root: str,
        local_logs: str,
        port: int,
        dind: bool,
    ) -> CommandResult:
        command = [
            "docker", "run", "-d",
            "--name", container,
            "-p", f"{port}:{ANALYZER_CONTAINER_PORT}",
            "-v", f"{source_root}:{WORKSPACE}",
            "-v", f"{local_logs}:{LOGS_DIR}",
        ]
        command += self._dind_args(dind)
        command.append(image)
        return self.command_runner.run(command, timeout=self.config.run_timeout)

    def run_kythe(self, image: str, container: str, source_root: str, build: str, dind: bool) -> CommandResult:
        """Run the build-unit extractor in the foreground and capture its output."""
        command = [
            "docker", "run",
            "--name", container,
            "-v", f"{source_root}:{WORKSPACE}",
            "-e", f"BUILD={build}",
        ]
        command += self._dind_args(dind)
        command.append(image)
        return self.command_runner.run(command, timeout=self.config.kythe_timeout)

    def stop(self, container: str, wait_seconds: int, remove: bool) -> CommandResult:
        """Stop container after wait_seconds of grace and optionally force-remove it."""
        result = self.command_runner.run(
            ["docker", "stop", "-t", str(wait_seconds), container],
            timeout=wait_seconds + 60,
        )
        if not remove:
            return result
        return self.command_runner.run(["docker", "rm", "-f", "-v", container], timeout=60)

    @staticmethod
    def _dind_args(dind: bool) -> List[str]:
        if not dind:
            return []
        return ["-v", f"{DOCKER_SOCKET}:{DOCKER_SOCKET}"]
