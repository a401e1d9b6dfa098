"""
Failover dispatch across equivalent receivers.
"""
from typing import Any, Sequence

import httpx

from courier.config import RequesterConfig
from courier.errors import ConfigurationError, TransportFailure
from courier.logging_config import get_logger
from courier.routes.metrics import track_dispatch_failure
from courier.services.transport import HttpTransport

logger = get_logger(component="dispatcher")


class FailoverDispatcher:
    """
    Tries receivers in configured order and returns the first success.

    There is no delay between receivers, and the list is never reordered,
    so the first receiver always takes the traffic while it is healthy.
    """

    def __init__(self, config: RequesterConfig, transport: HttpTransport | None = None):
        self.config = config
        self.transport = transport or HttpTransport()

    async def dispatch(
        self,
        payload: Any,
        endpoints: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Send payload to the first receiver that accepts it.

        Args:
            payload: JSON payload
            endpoints: Receivers to try (default: configured receivers)
            timeout: Per-request timeout in seconds (default: configured timeout)

        Returns:
            Response of the first successful receiver

        Raises:
            TransportFailure: The last receiver's failure, when every receiver failed
            ConfigurationError: If there is no receiver to try
        """
        endpoints = self.config.receivers_url if endpoints is None else endpoints
        timeout = self.config.timeout_seconds if timeout is None else timeout

        if not endpoints:
            raise ConfigurationError("No receiver endpoints to dispatch to")

        last_failure: TransportFailure | None = None
        for url in endpoints:
            logger.debug("dispatch_sending", url=url)
            try:
                return await self.transport.send(url, payload, timeout)
            except TransportFailure as e:
                logger.warning(
                    "dispatch_receiver_failed",
                    url=url,
                    classification=e.classification,
                    error=e.message,
                )
                track_dispatch_failure(url, e.classification)
                last_failure = e

        raise last_failure
