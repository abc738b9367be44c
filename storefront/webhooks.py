"""
Webhook system for sending order event notifications.

Allows external systems to subscribe to order and return events. Deliveries
are scheduled by the API only after the database commit, and a failing
subscriber never affects the operation that triggered it.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from . import config, models

logger = logging.getLogger(__name__)

# None means the default network transport
transport: Optional[httpx.AsyncBaseTransport] = None


async def send_webhook(event_type: str, data: Dict[str, Any]) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "return.approved")
        data: Event data payload
    """
    if not config.WEBHOOK_URLS:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }

    async with httpx.AsyncClient(timeout=config.WEBHOOK_TIMEOUT, transport=transport) as client:
        tasks = [send_single_webhook(client, url, payload) for url in config.WEBHOOK_URLS]
        # Send all webhooks concurrently
        await asyncio.gather(*tasks, return_exceptions=True)


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> None:
    """
    Send a webhook to a single URL.

    Args:
        client: HTTP client
        url: Webhook URL
        payload: Event payload
    """
    try:
        response = await client.post(url, json=payload, headers={"Content-Type": "application/json"})
        if response.status_code >= 400:
            logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")


def order_payload(order: models.Order) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "total_amount": str(order.total_amount),
        "order_date": order.order_date.isoformat() if order.order_date else None,
    }


def status_change_payload(order: models.Order, old_status: str) -> Dict[str, Any]:
    return {"order_id": order.id, "old_status": old_status, "new_status": order.status}


def return_payload(order_return: models.OrderReturn) -> Dict[str, Any]:
    return {
        "return_id": order_return.id,
        "order_id": order_return.order_id,
        "user_id": order_return.user_id,
        "status": order_return.status,
        "return_reason": order_return.return_reason,
        "refund_amount": str(order_return.refund_amount) if order_return.refund_amount is not None else None,
        "refund_transaction_id": order_return.refund_transaction_id,
    }
