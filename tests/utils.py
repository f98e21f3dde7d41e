from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from src.tenantdesk.security.auth import Principal, create_access_token


def headers_for(*roles: str, subject: str = "chat-webhook") -> Dict[str, str]:
    token = create_access_token(Principal(subject=subject, roles=list(roles)))
    return {"Authorization": f"Bearer {token}"}


def service_headers() -> Dict[str, str]:
    return headers_for("service")


class FakeClock:
    """Manually advanced UTC clock for expiry tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeResponse:
    def __init__(self, status_code: int, payload=None, json_error: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._json_error = json_error

    def json(self):
        if self._json_error:
            raise ValueError("not json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            import requests

            raise requests.exceptions.HTTPError(f"{self.status_code} error")


def answer(text: str) -> FakeResponse:
    return FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": text}}]})


class ScriptedSession:
    """Stands in for ``requests.Session``; replays responses (or raises) in order."""

    def __init__(self, script: Iterable[object]) -> None:
        self._script: List[object] = list(script)
        self.calls: List[Dict[str, object]] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingMessenger:
    def __init__(self, fail: bool = False, raise_error: bool = False) -> None:
        self.texts: List[tuple] = []
        self.documents: List[tuple] = []
        self.fail = fail
        self.raise_error = raise_error

    def send_text(self, recipient: str, text: str) -> bool:
        if self.raise_error:
            raise RuntimeError("channel down")
        self.texts.append((recipient, text))
        return not self.fail

    def send_document(self, recipient: str, content: bytes, filename: str, mime_type: str) -> bool:
        if self.raise_error:
            raise RuntimeError("channel down")
        self.documents.append((recipient, content, filename, mime_type))
        return not self.fail
