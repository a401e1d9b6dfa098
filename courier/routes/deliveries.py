"""
Delivery API routes.

Accepts payloads for fire-and-forget delivery and gives operators a view
of the attempt ledger, since abandoned rows are the only record of
silently failed deliveries.
"""
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from courier.dependencies.delivery import Courier, get_courier


router = APIRouter(prefix="/api/deliveries", tags=["deliveries"])


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=dict)
async def start_delivery(
    payload: Any = Body(...),
    courier: Courier = Depends(get_courier)
):
    """
    Queue a payload for delivery.

    The response does not reflect the delivery outcome; check the logs
    or the attempt ledger for failures.
    """
    courier.engine.schedule_delivery(payload)
    return {"status": "accepted"}


@router.get("/attempts", response_model=dict)
async def list_attempts(
    include_abandoned: bool = True,
    courier: Courier = Depends(get_courier)
):
    """List ledger records (pending, and abandoned unless excluded)."""
    records = await courier.ledger.list_pending(include_abandoned=include_abandoned)
    return {
        "attempts": [record.to_dict() for record in records],
        "count": len(records)
    }


@router.post("/recover", response_model=dict)
async def recover(courier: Courier = Depends(get_courier)):
    """Resume every pending record now and report how they ended."""
    report = await courier.recovery.run()
    return report.to_dict()


@router.post("/{request_id}/replay", response_model=dict)
async def replay(request_id: str, courier: Courier = Depends(get_courier)):
    """Replay a stored record's payload as a new delivery sequence."""
    outcome = await courier.recovery.replay(request_id)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attempt record not found"
        )

    return {
        "state": outcome.state.value,
        "attempts": outcome.attempts,
        "request_id": outcome.request_id,
        "status_code": outcome.status_code,
        "last_error": outcome.last_error,
    }


@router.delete("/abandoned", response_model=dict)
async def purge_abandoned(
    older_than_days: Optional[int] = Query(None, ge=0),
    courier: Courier = Depends(get_courier)
):
    """
    Remove abandoned records once they have been dealt with.

    Pass older_than_days to keep recently abandoned records for inspection.
    """
    older_than = timedelta(days=older_than_days) if older_than_days is not None else None
    result = await courier.ledger.purge_abandoned(older_than=older_than)
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attempt ledger unavailable"
        )
    return {"purged": result.rows}
