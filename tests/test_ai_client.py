import random

import pytest
import requests

from src.tenantdesk.services.ai_client import (
    TRUNCATION_MARKER,
    AIClientConfig,
    AIErrorKind,
    AIQueryClient,
    AIQueryError,
    build_prompt,
    cap_context,
    extract_answer,
)
from src.tenantdesk.services.credential_pool import CredentialPool

from .utils import FakeResponse, ScriptedSession, answer


def _client(script, keys=("k1", "k2", "k3"), **config):
    session = ScriptedSession(script)
    pool = CredentialPool.from_keys(keys, rng=random.Random(0))
    cfg = AIClientConfig(context_chars=config.pop("context_chars", 3000), **config)
    return AIQueryClient(pool, cfg, session=session), session


def test_rotates_past_rate_limited_credentials():
    client, session = _client([FakeResponse(429), FakeResponse(429), answer("You have 3 tenants.")])
    assert client.ask("ctx", "how many tenants?") == "You have 3 tenants."
    assert len(session.calls) == 3
    for call in session.calls:
        assert call["headers"]["Authorization"].startswith("Bearer k")
        assert call["timeout"] == (3.0, 20.0)


def test_all_credentials_rate_limited_after_pool_size_attempts():
    client, session = _client([FakeResponse(429), FakeResponse(429)], keys=("k1", "k2"))
    with pytest.raises(AIQueryError) as exc:
        client.ask("ctx", "q")
    assert exc.value.kind == AIErrorKind.ALL_CREDENTIALS_EXHAUSTED
    assert exc.value.attempts == 2
    assert len(session.calls) == 2
    assert "busy" in exc.value.user_message


def test_payload_too_large_is_not_retried():
    client, session = _client([FakeResponse(413), answer("never")])
    with pytest.raises(AIQueryError) as exc:
        client.ask("ctx", "q")
    assert exc.value.kind == AIErrorKind.PAYLOAD_TOO_LARGE
    assert len(session.calls) == 1
    assert "simplify" in exc.value.user_message


def test_server_error_is_transient_and_not_retried():
    client, session = _client([FakeResponse(500), answer("never")])
    with pytest.raises(AIQueryError) as exc:
        client.ask("ctx", "q")
    assert exc.value.kind == AIErrorKind.TRANSIENT_PROVIDER_ERROR
    assert exc.value.status_code == 500
    assert len(session.calls) == 1


def test_timeout_and_connection_errors():
    client, _ = _client([requests.exceptions.ReadTimeout("slow")])
    with pytest.raises(AIQueryError) as exc:
        client.ask("ctx", "q")
    assert exc.value.kind == AIErrorKind.TIMEOUT

    client, _ = _client([requests.exceptions.ConnectionError("refused")])
    with pytest.raises(AIQueryError) as exc:
        client.ask("ctx", "q")
    assert exc.value.kind == AIErrorKind.TRANSIENT_PROVIDER_ERROR


def test_malformed_payloads():
    for bad in (FakeResponse(200, json_error=True), FakeResponse(200, {"choices": []}), FakeResponse(200, {"x": 1})):
        client, _ = _client([bad])
        with pytest.raises(AIQueryError) as exc:
            client.ask("ctx", "q")
        assert exc.value.kind == AIErrorKind.MALFORMED_RESPONSE


def test_context_is_capped_with_marker():
    client, session = _client([answer("ok")], context_chars=10)
    client.ask("A" * 50, "question")
    prompt = session.calls[0]["json"]["messages"][0]["content"]
    assert "A" * 10 + TRUNCATION_MARKER in prompt
    assert "A" * 11 not in prompt
    assert 'User\'s question: "question"' in prompt


def test_short_context_is_untouched():
    assert cap_context("abc", 10) == "abc"
    assert TRUNCATION_MARKER not in build_prompt("abc", " q ", 10)
    assert build_prompt("abc", " q ", 10).endswith('"q"')


def test_shrink_on_413_retries_once_when_enabled():
    client, session = _client([FakeResponse(413), answer("smaller")], context_chars=100, shrink_on_413=True)
    assert client.ask("B" * 200, "q") == "smaller"
    assert len(session.calls) == 2
    second = session.calls[1]["json"]["messages"][0]["content"]
    assert "B" * 51 not in second


def test_shrink_retry_failure_reports_total_attempts():
    client, _ = _client([FakeResponse(413), FakeResponse(413)], shrink_on_413=True)
    with pytest.raises(AIQueryError) as exc:
        client.ask("context", "q")
    assert exc.value.kind == AIErrorKind.PAYLOAD_TOO_LARGE
    assert exc.value.attempts == 2


def test_extract_answer_strips_content():
    assert extract_answer({"choices": [{"message": {"content": "  hi \n"}}]}) == "hi"
    with pytest.raises(ValueError):
        extract_answer({"choices": [{"message": {"content": None}}]})


def test_config_from_env():
    cfg = AIClientConfig.from_env(
        {"GROQ_MODEL": "m", "TENANTDESK_AI_READ_TIMEOUT": "5", "TENANTDESK_AI_SHRINK_ON_413": "true"}
    )
    assert cfg.model == "m"
    assert cfg.read_timeout == 5.0
    assert cfg.shrink_on_413 is True
    assert AIClientConfig.from_env({}).context_chars == 3000
