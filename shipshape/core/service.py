"""Reuse or restart the main analysis service container."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Tuple

from shipshape.common.errors import ServiceStartError
from shipshape.runtime.client import ShipshapeClient
from shipshape.runtime.docker import DockerRuntime

from .config import LOCAL_LOGS, SERVICE_CONTAINER, ShipshapeConfig

ClientFactory = Callable[[str], ShipshapeClient]


class ServiceManager:
    """Make sure a healthy service can analyze a given directory with a given set of analyzers."""

    def __init__(
        self,
        runtime: DockerRuntime,
        config: Optional[ShipshapeConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runtime = runtime
        self.config = config or ShipshapeConfig()
        self.client_factory = client_factory or self._default_client
        self.logger = logger or logging.getLogger(__name__)

    def needs_restart(self, image: str, source_root: str, analyzers: Sequence[str]) -> Tuple[bool, str]:
        """
        Decide whether the running service container can be reused.

        Returns:
            Tuple of (restart needed, relative path from the container's
            workspace mount to source_root when it can be reused).
        """
        is_mapped, sub_path = self.runtime.mapped_volume(source_root, SERVICE_CONTAINER)
        # Only the linked names are compared, not what is running inside them
        restart = (
            not self.runtime.image_matches(image, SERVICE_CONTAINER)
            or not is_mapped
            or not self.runtime.contains_links(SERVICE_CONTAINER, analyzers)
        )
        return restart, sub_path

    def ensure_running(
        self,
        image: str,
        source_root: str,
        analyzers: Sequence[str],
        dind: bool,
    ) -> Tuple[ShipshapeClient, str]:
        """
        Return a ready client and the sub path of source_root inside the service workspace.

        Raises:
            ServiceStartError: When a fresh container could not be started.
            ServiceUnhealthyError: When the service does not become healthy in time.
        """
        restart, sub_path = self.needs_restart(image, source_root, analyzers)
        if restart:
            self.logger.info("Restarting container with %s", image)
            stopped = self.runtime.stop(SERVICE_CONTAINER, self.config.stop_grace_seconds, True)
            if not stopped.succeeded():
                self.logger.debug("Nothing to stop for %s: %s", SERVICE_CONTAINER, stopped.error)
            result = self.runtime.run_service(image, SERVICE_CONTAINER, source_root, LOCAL_LOGS, analyzers, dind)
            sub_path = ""
            result.log_streams(self.logger)
            if not result.succeeded():
                raise ServiceStartError(f"could not start {image}: {result.error}")
        else:
            self.logger.info("Reusing running %s for %s", SERVICE_CONTAINER, image)

        self.logger.info("Image %s running in service mode", image)
        client = self.client_factory(self.config.service_address)
        client.wait_until_ready(self.config.service_ready_timeout)
        return client, sub_path

    def _default_client(self, address: str) -> ShipshapeClient:
        return ShipshapeClient(address, poll_interval=self.config.health_poll_interval)
