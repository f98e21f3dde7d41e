import os
from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from src.tenantdesk.api.main import app
from src.tenantdesk.domain.tokens import AuthorizedAction, EntityType, TokenKind, TokenTarget
from src.tenantdesk.infrastructure import image_store as image_store_mod
from src.tenantdesk.infrastructure.token_store import InMemoryTokenStore, TokenConfig, set_token_store
from src.tenantdesk.services.messenger import set_messenger

from .utils import FakeClock, RecordingMessenger, headers_for, service_headers

client = TestClient(app)

PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64
UNIT_123 = TokenTarget(entity_type=EntityType.UNIT, entity_id="123")


def _setup(clock=None):
    store = InMemoryTokenStore(
        config=TokenConfig(upload_ttl=timedelta(minutes=15), authorize_ttl=timedelta(minutes=15)),
        clock=clock or FakeClock(),
    )
    set_token_store(store)
    messenger = RecordingMessenger()
    set_messenger(messenger)
    return store, messenger


def _upload(token, content=PNG, name="front.png", mime="image/png"):
    data = {} if token is None else {"token": token}
    return client.post("/upload-image", data=data, files={"image": (name, content, mime)})


def test_issue_upload_token_returns_link_and_notifies():
    store, messenger = _setup()
    r = client.post(
        "/tokens",
        json={"recipient": "+15550001", "kind": "upload", "entity_type": "unit", "entity_id": "123", "notify": True},
        headers=service_headers(),
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["url"] == f"https://rent.example.com/upload-image?token={body['token']}"
    assert store.peek(body["token"]).entity_id == "123"
    assert messenger.texts and messenger.texts[0][0] == "+15550001"
    assert "valid for 15 minutes" in messenger.texts[0][1]


def test_issue_requires_bearer_and_permission():
    _setup()
    payload = {"recipient": "+1", "kind": "authorize", "action": "addunit"}
    assert client.post("/tokens", json=payload).status_code == 401
    assert client.post("/tokens", json=payload, headers=headers_for("operator")).status_code == 403
    ok = client.post("/tokens", json=payload, headers=headers_for("admin"))
    assert ok.status_code == 201
    assert "/authorize?token=" in ok.json()["url"]


def test_issue_rejects_upload_without_entity_and_unknown_entity_type():
    _setup()
    r = client.post("/tokens", json={"recipient": "+1", "kind": "upload"}, headers=service_headers())
    assert r.status_code == 422
    r = client.post(
        "/tokens",
        json={"recipient": "+1", "kind": "upload", "entity_type": "garage", "entity_id": "9"},
        headers=service_headers(),
    )
    assert r.status_code == 422


def test_view_upload_does_not_consume():
    store, _ = _setup()
    rec = store.issue("+1", TokenKind.UPLOAD, UNIT_123)
    for _ in range(2):
        r = client.get("/upload-image", params={"token": rec.token})
        assert r.status_code == 200
        assert r.json()["entity_type"] == "unit"
        assert r.json()["entity_id"] == "123"
    assert store.peek(rec.token).used is False


def test_view_upload_distinguishes_rejections():
    clock = FakeClock()
    store, _ = _setup(clock)
    r = client.get("/upload-image")
    assert r.status_code == 403 and r.json()["detail"]["code"] == "missing"
    r = client.get("/upload-image", params={"token": "bogus"})
    assert r.status_code == 403 and r.json()["detail"]["code"] == "not_found"

    used = store.issue("+1", TokenKind.UPLOAD, UNIT_123)
    store.consume(used.token)
    r = client.get("/upload-image", params={"token": used.token})
    assert r.json()["detail"]["code"] == "already_used"

    stale = store.issue("+1", TokenKind.UPLOAD, UNIT_123)
    clock.advance(minutes=16)
    r = client.get("/upload-image", params={"token": stale.token})
    assert r.status_code == 403 and r.json()["detail"]["code"] == "expired"


def test_upload_consumes_token_and_stores_image():
    store, messenger = _setup()
    rec = store.issue("+15550001", TokenKind.UPLOAD, UNIT_123)
    r = _upload(rec.token)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["entity_type"] == "unit" and body["entity_id"] == "123"
    assert body["image"].startswith("unit/123/")
    assert (Path(os.environ["TENANTDESK_UPLOAD_DIR"]) / body["image"]).read_bytes() == PNG
    assert store.peek(rec.token).used is True
    assert messenger.texts[-1][0] == "+15550001"

    again = _upload(rec.token)
    assert again.status_code == 403
    assert again.json()["detail"]["code"] == "already_used"


def test_upload_without_token_is_missing():
    _setup()
    r = _upload(None)
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "missing"


def test_invalid_file_does_not_spend_token():
    store, _ = _setup()
    rec = store.issue("+1", TokenKind.UPLOAD, UNIT_123)
    r = _upload(rec.token, content=b"GIF89a", name="x.gif", mime="image/gif")
    assert r.status_code == 400
    r = _upload(rec.token, content=b"0" * (5 * 1024 * 1024 + 1), name="big.jpg", mime="image/jpeg")
    assert r.status_code == 400
    assert store.peek(rec.token).used is False


def test_authorize_token_cannot_be_used_for_upload():
    store, _ = _setup()
    rec = store.issue("+1", TokenKind.AUTHORIZE, TokenTarget(action=AuthorizedAction.ADD_UNIT))
    r = _upload(rec.token)
    assert r.status_code == 403 and r.json()["detail"]["code"] == "not_found"
    assert store.peek(rec.token).used is False


def test_store_failure_after_consume_sends_fresh_link():
    store, messenger = _setup()
    rec = store.issue("+1", TokenKind.UPLOAD, UNIT_123)

    class BrokenImages:
        def save(self, *args, **kwargs):
            raise OSError("disk full")

    image_store_mod.set_image_store(BrokenImages())
    r = _upload(rec.token)
    assert r.status_code == 500
    assert store.peek(rec.token).used is True
    assert messenger.texts, "retry link should be sent"
    retry_text = messenger.texts[-1][1]
    assert "/upload-image?token=" in retry_text
    fresh = retry_text.split("token=")[1].split()[0]
    assert fresh != rec.token
    assert store.peek(fresh).entity_id == "123"


def test_authorize_flow_yes_and_reuse_rejected():
    store, messenger = _setup()
    rec = store.issue("+1", TokenKind.AUTHORIZE, TokenTarget(action=AuthorizedAction.ADD_PROPERTY))
    view = client.get("/authorize", params={"token": rec.token})
    assert view.status_code == 200 and view.json()["action"] == "addproperty"

    r = client.post("/authorize", data={"token": rec.token, "decision": "yes"})
    assert r.status_code == 200
    assert r.json() == {"status": "authorized", "action": "addproperty", "recipient": "+1"}
    assert messenger.texts[-1][0] == "+1"

    r = client.post("/authorize", data={"token": rec.token, "decision": "no"})
    assert r.status_code == 403 and r.json()["detail"]["code"] == "already_used"


def test_authorize_decline_and_bad_decision_keeps_token():
    store, _ = _setup()
    rec = store.issue("+1", TokenKind.AUTHORIZE, TokenTarget(action=AuthorizedAction.ADD_TENANT))
    r = client.post("/authorize", data={"token": rec.token, "decision": "maybe"})
    assert r.status_code == 400
    assert store.peek(rec.token).used is False
    r = client.post("/authorize", data={"token": rec.token, "decision": "NO"})
    assert r.json()["status"] == "declined"


def test_storage_outage_returns_500():
    class DownStore:
        def peek(self, token_id):
            from src.tenantdesk.infrastructure.token_store import TokenStoreUnavailable

            raise TokenStoreUnavailable("down")

    set_token_store(DownStore())
    r = client.get("/upload-image", params={"token": "abc"})
    assert r.status_code == 500


def test_oversized_upload_rejected_without_spending_token():
    store, messenger = _setup()
    rec = store.issue("+1", TokenKind.UPLOAD, UNIT_123)
    r = _upload(rec.token, content=PNG + b"0" * (8 * 1024 * 1024), name="huge.png")
    assert r.status_code == 400
    assert "5 MB" in r.json()["detail"]
    assert store.peek(rec.token).used is False
    assert messenger.texts == []
    assert _upload(rec.token).status_code == 200
