"""Server-sent balance update events."""

import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from marginledger.api.auth import verify_request_signature
from marginledger.api.dependencies import get_notifier
from marginledger.events.notifier import BalanceNotifier

router = APIRouter(prefix="/events", tags=["events"])

# Seconds between keep-alive comments on an idle stream
KEEPALIVE_INTERVAL = 15.0


async def stream_events(
    request: Request,
    notifier: BalanceNotifier,
    user_id: str,
) -> AsyncIterator[str]:
    """Render one user's balance events as an SSE stream until the client goes away."""
    subscription = notifier.subscribe(user_id=user_id)
    try:
        while not await request.is_disconnected():
            event = await subscription.get(timeout=KEEPALIVE_INTERVAL)
            if event is None:
                yield ": keepalive\n\n"
                continue
            data = {"user_address": event.user_id, "timestamp": event.timestamp.isoformat()}
            yield f"event: balances\ndata: {json.dumps(data)}\n\n"
    finally:
        notifier.unsubscribe(subscription)


@router.get("/balances")
async def balance_events(
    request: Request,
    user_address: str = Depends(verify_request_signature),
    notifier: BalanceNotifier = Depends(get_notifier),
) -> StreamingResponse:
    """
    Stream the caller's balance-changed signals.

    Events only say that the caller's balances changed; clients fetch the new
    values from the balance endpoint.
    """
    return StreamingResponse(
        stream_events(request, notifier, user_address),
        media_type="text/event-stream",
    )
