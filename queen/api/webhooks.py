"""
GitHub webhook endpoint for the Hivemoot Queen governance bot.

This module validates webhook signatures and hands each delivery to the
EventRouter, which runs the governance operations synchronously in a
worker thread. Deliveries that fail answer 500 so GitHub redelivers them;
every handler is idempotent. Malformed payloads answer 400.
"""

import asyncio
import json
import time
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel

from queen.api.handlers import EventRouter, InvalidPayloadError
from queen.config.settings import get_settings
from queen.integrations.github_client import get_github_client
from queen.utils.logging import bind_contextvars, get_logger
from queen.utils.webhook import extract_event_context, validate_github_signature

logger = get_logger(__name__)

# Router for webhook endpoints
router = APIRouter(prefix="/webhook", tags=["Webhooks"])


class WebhookResponse(BaseModel):
    """Response model for webhook acknowledgment."""

    status: str
    message: str
    processed_in_ms: float


# Global event router (created lazily from settings)
_event_router: Optional[EventRouter] = None


def set_event_router(event_router: Optional[EventRouter]) -> None:
    """Set the global event router instance."""
    global _event_router
    _event_router = event_router


def get_event_router() -> EventRouter:
    """Get the global event router, creating it on first use."""
    global _event_router
    if _event_router is None:
        _event_router = EventRouter(get_github_client(), get_settings())
    return _event_router


@router.post("/github", response_model=WebhookResponse)
async def github_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
    x_github_event: str | None = Header(None),
    x_github_delivery: str | None = Header(None),
) -> WebhookResponse:
    """
    Receive and process GitHub webhooks.

    Args:
        request: FastAPI request object containing webhook payload
        x_hub_signature_256: GitHub signature header for validation
        x_github_event: GitHub event type (e.g., "pull_request")
        x_github_delivery: Unique delivery id, bound to the log context

    Returns:
        WebhookResponse: Acknowledgment with processing time

    Raises:
        HTTPException: 401 if signature validation fails
        HTTPException: 400 if payload is invalid
        HTTPException: 500 if processing failed
    """
    start_time = time.time()

    # Read raw body for signature validation
    raw_body = await request.body()

    app_settings = get_settings()
    webhook_secret = app_settings.github_webhook_secret

    if x_hub_signature_256:
        if not webhook_secret:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook secret not configured on server",
            )
        if not validate_github_signature(raw_body, x_hub_signature_256, webhook_secret):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )
    elif app_settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook signature header",
        )
    # In development, allow unsigned webhooks

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook payload must be a JSON object",
        )

    context = extract_event_context(x_github_event, payload)
    bind_contextvars(delivery_id=x_github_delivery, github_event=x_github_event)
    if context is not None:
        bind_contextvars(repository=context["repository"], target_number=context["number"])
        logger.info("Received %s.%s", x_github_event, context["action"])

    try:
        result = await asyncio.to_thread(get_event_router().handle, x_github_event, payload)
    except InvalidPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Validation error: {e}",
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process webhook: {e}",
        )

    elapsed_ms = (time.time() - start_time) * 1000
    return WebhookResponse(
        status=result.status,
        message=result.message,
        processed_in_ms=elapsed_ms,
    )
