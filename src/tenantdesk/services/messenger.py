from __future__ import annotations

"""Outbound delivery to recipients.

Both operations are best effort: failures are logged and reported as
``False``, never raised.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

import requests

from ..observability.metrics import observe_delivery

logger = logging.getLogger("tenantdesk.delivery")


class Messenger(Protocol):
    def send_text(self, recipient: str, text: str) -> bool: ...
    def send_document(self, recipient: str, content: bytes, filename: str, mime_type: str) -> bool: ...


class LoggingMessenger:
    """Development messenger: logs and keeps what would have been sent."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, object]]] = []

    def send_text(self, recipient: str, text: str) -> bool:
        self.sent.append(("text", recipient, {"text": text}))
        logger.info("message_logged", extra={"recipient": recipient, "message_type": "text", "chars": len(text)})
        observe_delivery("text", "ok")
        return True

    def send_document(self, recipient: str, content: bytes, filename: str, mime_type: str) -> bool:
        self.sent.append(("document", recipient, {"filename": filename, "mime_type": mime_type, "size": len(content)}))
        logger.info(
            "message_logged",
            extra={"recipient": recipient, "message_type": "document", "doc_filename": filename, "size": len(content)},
        )
        observe_delivery("document", "ok")
        return True


@dataclass(frozen=True)
class WhatsAppConfig:
    access_token: str
    phone_number_id: str
    api_version: str = "v20.0"
    graph_url: str = "https://graph.facebook.com"
    timeout: float = 15.0

    @staticmethod
    def from_env() -> "WhatsAppConfig":
        token = os.getenv("WHATSAPP_ACCESS_TOKEN")
        phone_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID") or os.getenv("PHONE_NUMBER_ID")
        if not token or not phone_id:
            raise RuntimeError("WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID are required for the whatsapp messenger")
        return WhatsAppConfig(
            access_token=token,
            phone_number_id=phone_id,
            api_version=os.getenv("WHATSAPP_API_VERSION", "v20.0"),
            graph_url=os.getenv("WHATSAPP_GRAPH_URL", "https://graph.facebook.com").rstrip("/"),
            timeout=float(os.getenv("WHATSAPP_TIMEOUT", "15")),
        )

    @property
    def base_url(self) -> str:
        return f"{self.graph_url}/{self.api_version}/{self.phone_number_id}"


class WhatsAppMessenger:
    """WhatsApp Cloud API delivery."""

    def __init__(self, config: Optional[WhatsAppConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or WhatsAppConfig.from_env()
        self._session = session or requests.Session()

    def _auth(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.access_token}"}

    def send_text(self, recipient: str, text: str) -> bool:
        body = {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "text",
            "text": {"body": text},
        }
        return self._send_message(recipient, "text", body)

    def send_document(self, recipient: str, content: bytes, filename: str, mime_type: str) -> bool:
        media_id = self._upload_media(content, filename, mime_type)
        if media_id is None:
            observe_delivery("document", "error")
            return False
        body = {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "document",
            "document": {"id": media_id, "filename": filename},
        }
        return self._send_message(recipient, "document", body)

    def _upload_media(self, content: bytes, filename: str, mime_type: str) -> Optional[str]:
        try:
            resp = self._session.post(
                f"{self.config.base_url}/media",
                headers=self._auth(),
                files={"file": (filename, content, mime_type)},
                data={"type": mime_type, "messaging_product": "whatsapp"},
                timeout=self.config.timeout,
            )
            resp.raise_for_status()
            media_id = resp.json().get("id")
        except (requests.exceptions.RequestException, ValueError):
            logger.exception("media_upload_failed", extra={"doc_filename": filename})
            return None
        if not media_id:
            logger.error("media_upload_missing_id", extra={"doc_filename": filename})
            return None
        return str(media_id)

    def _send_message(self, recipient: str, message_type: str, body: Dict[str, object]) -> bool:
        try:
            resp = self._session.post(
                f"{self.config.base_url}/messages",
                headers={**self._auth(), "Content-Type": "application/json"},
                json=body,
                timeout=self.config.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException:
            logger.exception("message_send_failed", extra={"recipient": recipient, "message_type": message_type})
            observe_delivery(message_type, "error")
            return False
        observe_delivery(message_type, "ok")
        return True


_messenger: Optional[Messenger] = None


def get_messenger() -> Messenger:
    global _messenger
    if _messenger is not None:
        return _messenger
    impl = os.getenv("TENANTDESK_MESSENGER_IMPL", "log").lower()
    if impl == "whatsapp":
        _messenger = WhatsAppMessenger()
    else:
        _messenger = LoggingMessenger()
    return _messenger


def set_messenger(messenger: Optional[Messenger]) -> None:
    global _messenger
    _messenger = messenger


def reset_messenger() -> None:
    set_messenger(None)
