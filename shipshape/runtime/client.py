"""HTTP client for the shipshape analysis service."""

from __future__ import annotations

import logging
import time
from typing import Iterator, Optional

import requests
from pydantic import ValidationError
from requests import RequestException

from shipshape.common.errors import ServiceUnhealthyError, StreamError
from shipshape.common.models import ShipshapeRequest, ShipshapeResponse

HEALTH_ENDPOINT = "/healthz"


class ResponseStream:
    """Iterator over the newline-delimited JSON responses of one streamed call."""

    def __init__(self, response: requests.Response, endpoint: str) -> None:
        self._response = response
        self.endpoint = endpoint
        self.closed = False

    def __iter__(self) -> Iterator[ShipshapeResponse]:
        try:
            for line in self._response.iter_lines(decode_unicode=True):
                if not line or not line.strip():
                    continue
                yield ShipshapeResponse.model_validate_json(line)
        except RequestException as exc:
            raise StreamError(f"stream {self.endpoint} broke: {exc}") from exc
        except ValidationError as exc:
            raise StreamError(f"malformed response from {self.endpoint}: {exc}") from exc

    def close(self) -> None:
        if not self.closed:
            self._response.close()
            self.closed = True

    def __enter__(self) -> "ResponseStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ShipshapeClient:
    """Talk to the service bound at host:port."""

    def __init__(
        self,
        address: str,
        session: Optional[requests.Session] = None,
        poll_interval: float = 0.25,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.address = address
        self.base_url = address if address.startswith("http") else f"http://{address}"
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)

    def is_healthy(self) -> bool:
        try:
            response = self.session.get(f"{self.base_url}{HEALTH_ENDPOINT}", timeout=2)
        except RequestException as exc:
            self.logger.debug("Health check on %s failed: %s", self.address, exc)
            return False
        return 200 <= response.status_code < 300

    def wait_until_ready(self, timeout: float) -> None:
        """Block until the service reports healthy; raise once timeout seconds have passed."""
        deadline = time.monotonic() + timeout
        while True:
            if self.is_healthy():
                self.logger.debug("Service at %s is healthy", self.address)
                return
            if time.monotonic() >= deadline:
                raise ServiceUnhealthyError(f"service at {self.address} not healthy after {timeout}s")
            time.sleep(self.poll_interval)

    def stream(self, endpoint: str, request: ShipshapeRequest) -> ResponseStream:
        """Open a server-streamed call; the caller must close the returned stream."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.post(
                url,
                data=request.model_dump_json(),
                headers={"Content-Type": "application/json"},
                stream=True,
                timeout=(10, None),
            )
        except RequestException as exc:
            raise StreamError(f"could not call {endpoint}: {exc}") from exc

        if response.status_code != 200:
            body = response.text[:500]
            response.close()
            raise StreamError(f"{endpoint} returned status {response.status_code}: {body}")
        return ResponseStream(response, endpoint)
