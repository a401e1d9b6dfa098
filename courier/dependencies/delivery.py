"""
Delivery component wiring and the FastAPI dependency that exposes it.
"""
from dataclasses import dataclass

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courier.config import Settings, settings as default_settings
from courier.services.dispatcher import FailoverDispatcher
from courier.services.ledger_service import AttemptLedger
from courier.services.recovery_service import RecoveryScan
from courier.services.retry_service import RetryEngine, Sleep
from courier.services.transport import HttpTransport


@dataclass
class Courier:
    """The wired delivery components of one process."""
    engine: RetryEngine
    ledger: AttemptLedger
    recovery: RecoveryScan
    transport: HttpTransport

    async def aclose(self):
        # Pending sequences stay recoverable from their ledger rows
        await self.engine.cancel_pending()
        await self.transport.aclose()


def build_courier(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings = default_settings,
    client: httpx.AsyncClient | None = None,
    sleep: Sleep | None = None,
) -> Courier:
    """
    Build the delivery components from settings.

    Raises:
        ConfigurationError: If the receiver list or limits are invalid
    """
    config = settings.requester_config()
    if client is None:
        transport = HttpTransport(httpx.AsyncClient(), owns_client=True)
    else:
        transport = HttpTransport(client)
    ledger = AttemptLedger(
        session_factory,
        hostname=settings.HOSTNAME,
        fail_open=settings.LEDGER_FAIL_OPEN,
    )
    dispatcher = FailoverDispatcher(config, transport)
    engine_kwargs = {"sleep": sleep} if sleep is not None else {}
    engine = RetryEngine(config, dispatcher, ledger, **engine_kwargs)
    return Courier(
        engine=engine,
        ledger=ledger,
        recovery=RecoveryScan(engine, ledger),
        transport=transport,
    )


def get_courier(request: Request) -> Courier:
    """Get the process-wide Courier built at startup."""
    return request.app.state.courier
