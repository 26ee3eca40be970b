"""Keep service and analyzer images up to date."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

from shipshape.runtime.docker import DockerRuntime


class ImagePuller:
    """Pull images that are missing or stale; pull failures are logged, never raised."""

    def __init__(self, runtime: DockerRuntime, logger: Optional[logging.Logger] = None) -> None:
        self.runtime = runtime
        self.logger = logger or logging.getLogger(__name__)

    def pull(self, image: str) -> bool:
        """Pull image if it is out of date. Returns False only when a pull was attempted and failed."""
        if not self.runtime.out_of_date(image):
            self.logger.debug("Image %s is up to date", image)
            return True

        self.logger.info("Pulling image %s", image)
        result = self.runtime.pull(image)
        result.log_streams(self.logger)
        if not result.succeeded():
            # A missing image surfaces later, when its container fails to start
            self.logger.warning("Error from pull of %s: %s", image, result.error)
            return False
        self.logger.info("Pulling complete for %s", image)
        return True

    def pull_analyzers(self, images: Sequence[str]) -> None:
        """Pull every analyzer image concurrently and wait for all of them."""
        if not images:
            return
        self.logger.info("Pulling dockerized analyzers...")
        with ThreadPoolExecutor(max_workers=len(images), thread_name_prefix="pull") as executor:
            futures = [executor.submit(self.pull, image) for image in images]
        for image, future in zip(images, futures):
            exc = future.exception()
            if exc is not None:
                self.logger.warning("Pulling %s failed unexpectedly: %s", image, exc)
        self.logger.info("Analyzers pulled")
