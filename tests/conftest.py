import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolated_singletons(monkeypatch, tmp_path):
    """Fresh in-memory backends for every test; no network, no shared state."""
    from src.tenantdesk.infrastructure import events, image_store, job_queue, token_store
    from src.tenantdesk.security import rate_limit
    from src.tenantdesk.services import ai_client, messenger, telemetry_sink

    for name in (
        "TENANTDESK_TOKEN_STORE_IMPL",
        "TENANTDESK_QUEUE_IMPL",
        "TENANTDESK_MESSENGER_IMPL",
        "TENANTDESK_PUBLIC_MODE",
        "REDIS_URL",
        "GROQ_API_KEYS",
        "GROQ_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TENANTDESK_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("TENANTDESK_PUBLIC_BASE_URL", "https://rent.example.com")

    token_store.reset_token_store()
    job_queue.reset_job_queue()
    image_store.reset_image_store()
    messenger.reset_messenger()
    ai_client.reset_ai_client()
    events.reset_event_client()
    rate_limit.reset_rate_limits()
    telemetry_sink.clear_events()
    yield
    token_store.reset_token_store()
    job_queue.reset_job_queue()
    image_store.reset_image_store()
    messenger.reset_messenger()
    ai_client.reset_ai_client()
