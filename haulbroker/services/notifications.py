from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

import httpx

from haulbroker.core.config import get_settings
from haulbroker.services.event_dispatcher import Event, EventType, get_dispatcher

logger = logging.getLogger(__name__)
settings = get_settings()


class NotificationResult:
    def __init__(self, success: bool, detail: str = "") -> None:
        self.success = success
        self.detail = detail


class NotificationSender(Protocol):
    async def send(self, recipient: str, subject: str, body: str, data: Optional[dict] = None) -> NotificationResult:
        ...


class WebhookSender:
    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    async def send(self, recipient: str, subject: str, body: str, data: Optional[dict] = None) -> NotificationResult:
        payload = {"recipient": recipient, "title": subject, "message": body, "data": data or {}}
        async with httpx.AsyncClient() as client:
            response = await client.post(self.url, json=payload, timeout=self.timeout)
        if response.status_code in (200, 201, 202, 204):
            return NotificationResult(True, "Webhook accepted notification")
        logger.error("notification_webhook_failed", extra={"status": response.status_code, "body": response.text})
        return NotificationResult(False, f"Webhook failure: {response.status_code}")


class InAppSender:
    async def send(self, recipient: str, subject: str, body: str, data: Optional[dict] = None) -> NotificationResult:
        logger.info("in_app_notification", extra={"recipient": recipient, "subject": subject, "data": data or {}})
        return NotificationResult(True, "Recorded in application log")


def build_channel_registry() -> Dict[str, NotificationSender]:
    channels: Dict[str, NotificationSender] = {"in_app": InAppSender()}
    if settings.notification_webhook_url:
        channels["webhook"] = WebhookSender(
            settings.notification_webhook_url, timeout=settings.notification_timeout_seconds
        )
    return channels


_MESSAGES = {
    EventType.FREIGHT_CANCELLED: ("Frete cancelado", "O frete {freight_id} foi cancelado pelo produtor."),
    EventType.PROPOSAL_SUBMITTED: ("Nova proposta", "Você recebeu uma proposta de {proposed_price} no frete {freight_id}."),
    EventType.PROPOSAL_ACCEPTED: ("Proposta aceita", "Sua proposta foi aceita! Valor acordado: {agreed_price}."),
    EventType.PROPOSAL_REJECTED: ("Proposta recusada", "Sua proposta para o frete {freight_id} foi recusada."),
    EventType.ASSIGNMENT_STATUS_CHANGED: ("Status atualizado", "O frete {freight_id} agora está em {to_status}."),
    EventType.ASSIGNMENT_WITHDRAWN: ("Motorista desistiu", "Um motorista desistiu do frete {freight_id}; a vaga foi reaberta."),
    EventType.ASSIGNMENT_RELEASED: ("Você foi liberado", "O produtor liberou você do frete {freight_id}."),
    EventType.ASSIGNMENT_DELIVERY_CONFIRMED: ("Entrega confirmada", "A entrega do frete {freight_id} foi confirmada."),
    EventType.ASSIGNMENT_PAYMENT_SENT: ("Pagamento enviado", "O produtor informou o pagamento do frete {freight_id}."),
    EventType.ASSIGNMENT_PAYMENT_RECEIVED: ("Pagamento recebido", "O motorista confirmou o recebimento do frete {freight_id}."),
}


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return "-"


class NotificationService:
    """Turns domain events into messages for the affected party."""

    def __init__(self, channels: Optional[Dict[str, NotificationSender]] = None) -> None:
        self.channels = channels if channels is not None else build_channel_registry()

    async def handle(self, event: Event) -> None:
        template = _MESSAGES.get(event.type)
        if template is None or not event.target_user_id:
            return

        subject, body = template
        body = body.format_map(_SafeFormat(event.data))
        for name, sender in self.channels.items():
            try:
                result = await sender.send(event.target_user_id, subject, body, data=event.data)
            except Exception as exc:
                logger.exception(
                    "notification_send_failed",
                    extra={"channel": name, "event_type": event.type.value, "error": str(exc)},
                )
                continue
            if not result.success:
                logger.warning(
                    "notification_not_delivered",
                    extra={"channel": name, "event_type": event.type.value, "detail": result.detail},
                )


_registered: Optional[NotificationService] = None


def register_notification_handlers(service: Optional[NotificationService] = None) -> NotificationService:
    """Subscribe the notification service to every domain event, once."""
    global _registered
    if _registered is not None:
        get_dispatcher().unsubscribe_all(_registered.handle)
    _registered = service or NotificationService()
    get_dispatcher().subscribe_all(_registered.handle)
    return _registered
