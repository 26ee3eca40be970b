"""Run one analysis phase and aggregate its streamed results."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from shipshape.common.errors import OutputError
from shipshape.common.models import ShipshapeRequest, ShipshapeResponse
from shipshape.runtime.client import ShipshapeClient

from .config import RUN_ENDPOINT
from .output import ResponseHandler

logger = logging.getLogger(__name__)


def count_notes(response: ShipshapeResponse) -> int:
    return sum(len(analysis.note) for analysis in response.analyze_response)


def total_notes(responses: Iterable[ShipshapeResponse]) -> int:
    """Sum of notes over a sequence of responses."""
    return sum(count_notes(response) for response in responses)


def analyze(
    client: ShipshapeClient,
    request: ShipshapeRequest,
    directory: str,
    handler: ResponseHandler,
    log: Optional[logging.Logger] = None,
) -> int:
    """
    Stream the Run call for request and hand every response to handler in order.

    Returns:
        Number of notes across all streamed responses.

    Raises:
        StreamError: When the transport fails or a response cannot be decoded.
        OutputError: When handler fails to process a response.
    """
    log = log or logger
    log.info("Calling to the shipshape service with %s", request)

    def deliver(responses: Iterable[ShipshapeResponse]) -> Iterable[ShipshapeResponse]:
        for response in responses:
            try:
                handler(response, directory)
            except Exception as exc:
                raise OutputError(f"could not process results: {exc}") from exc
            yield response

    with client.stream(RUN_ENDPOINT, request) as stream:
        return total_notes(deliver(stream))
