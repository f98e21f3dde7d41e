from __future__ import annotations

"""Assistant client for the Groq OpenAI-compatible chat completions API.

One ``ask`` call makes at most ``len(pool)`` attempts, drawing a fresh
credential for each. Only HTTP 429 moves on to another credential; 413 and
every other failure end the call immediately. Failures are raised as
:class:`AIQueryError` whose ``kind`` callers branch on.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..observability.metrics import observe_ai_attempt
from .credential_pool import CredentialPool

LOG = logging.getLogger("tenantdesk.llm")

DEFAULT_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_MODEL = "llama-3.3-70b-versatile"
TRUNCATION_MARKER = "\n...[context truncated]"

PREAMBLE = (
    "You are a professional, friendly and knowledgeable rental management assistant. "
    "Answer the landlord's question using only the data below. "
    "When the answer is a list of records (tenants, units, payments, properties), reply with "
    'nothing but a JSON array of flat objects, for example [{"name": "A", "rent": 100}]. '
    "Otherwise reply in short plain text."
)


class AIErrorKind(str, Enum):
    ALL_CREDENTIALS_EXHAUSTED = "all_credentials_exhausted"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TRANSIENT_PROVIDER_ERROR = "transient_provider_error"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"


USER_MESSAGES: Dict[AIErrorKind, str] = {
    AIErrorKind.ALL_CREDENTIALS_EXHAUSTED: "The assistant is busy right now. Please try again shortly.",
    AIErrorKind.PAYLOAD_TOO_LARGE: "Your question is too large to answer. Please simplify your question.",
    AIErrorKind.TRANSIENT_PROVIDER_ERROR: "Sorry, the assistant could not answer right now.",
    AIErrorKind.TIMEOUT: "Sorry, the assistant took too long to answer.",
    AIErrorKind.MALFORMED_RESPONSE: "Sorry, the assistant could not answer right now.",
}


class AIQueryError(Exception):
    def __init__(self, kind: AIErrorKind, attempts: int, status_code: Optional[int] = None, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.attempts = attempts
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class AIClientConfig:
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    max_tokens: int = 300
    temperature: float = 0.5
    connect_timeout: float = 3.0
    read_timeout: float = 20.0
    context_chars: int = 3000
    shrink_on_413: bool = False

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "AIClientConfig":
        env = env if env is not None else os.environ
        return AIClientConfig(
            api_url=env.get("GROQ_API_URL") or DEFAULT_API_URL,
            model=env.get("GROQ_MODEL") or DEFAULT_MODEL,
            max_tokens=int(_env_float(env, "GROQ_MAX_TOKENS", 300)),
            temperature=_env_float(env, "GROQ_TEMPERATURE", 0.5),
            connect_timeout=_env_float(env, "TENANTDESK_AI_CONNECT_TIMEOUT", 3.0),
            read_timeout=_env_float(env, "TENANTDESK_AI_READ_TIMEOUT", 20.0),
            context_chars=int(_env_float(env, "TENANTDESK_AI_CONTEXT_CHARS", 3000)),
            shrink_on_413=(env.get("TENANTDESK_AI_SHRINK_ON_413") or "").lower() in ("1", "true", "yes"),
        )


def cap_context(context: str, limit: int) -> str:
    if len(context) <= limit:
        return context
    return context[:limit] + TRUNCATION_MARKER


def build_prompt(context: str, query: str, limit: int) -> str:
    capped = cap_context(context or "", limit)
    return f"{PREAMBLE}\n\n=== LANDLORD DATA ===\n{capped}\n\nUser's question: \"{query.strip()}\""


def _build_session() -> requests.Session:
    # Rotation across credentials replaces transport-level retries.
    session = requests.Session()
    retry = Retry(total=0, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def extract_answer(payload: Any) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("missing choices[0].message.content") from exc
    if not isinstance(content, str):
        raise ValueError("answer content is not a string")
    return content.strip()


class AIQueryClient:
    """Stateless across calls; one instance can serve concurrent workers."""

    def __init__(
        self,
        pool: CredentialPool,
        config: Optional[AIClientConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.pool = pool
        self.config = config or AIClientConfig.from_env()
        self._session = session or _build_session()

    def ask(self, context_text: Optional[str], query_text: str) -> str:
        context_text = context_text or ""
        try:
            return self._rotate(build_prompt(context_text, query_text, self.config.context_chars))
        except AIQueryError as exc:
            if exc.kind != AIErrorKind.PAYLOAD_TOO_LARGE or not self.config.shrink_on_413 or not context_text:
                raise
            half = max(min(len(context_text), self.config.context_chars) // 2, 1)
            LOG.info("llm_shrink_retry", extra={"context_chars": half})
            return self._rotate(build_prompt(context_text, query_text, half), prior_attempts=exc.attempts, limit=1)

    def _rotate(self, prompt: str, prior_attempts: int = 0, limit: Optional[int] = None) -> str:
        limit = limit or self.pool.size
        attempts = prior_attempts
        for _ in range(limit):
            credential = self.pool.acquire()
            attempts += 1
            response = self._post(prompt, credential.key, attempts)
            status = response.status_code
            if status == 429:
                observe_ai_attempt("rate_limited")
                LOG.warning("llm_rate_limited", extra={"key": credential.masked(), "attempt": attempts})
                continue
            if status == 413:
                observe_ai_attempt("payload_too_large")
                raise AIQueryError(AIErrorKind.PAYLOAD_TOO_LARGE, attempts, status, "prompt too large")
            if status >= 400:
                observe_ai_attempt("error")
                LOG.error("llm_http_error", extra={"status": status, "key": credential.masked()})
                raise AIQueryError(AIErrorKind.TRANSIENT_PROVIDER_ERROR, attempts, status, f"provider returned {status}")
            try:
                answer = extract_answer(response.json())
            except ValueError as exc:
                observe_ai_attempt("malformed")
                raise AIQueryError(AIErrorKind.MALFORMED_RESPONSE, attempts, status, str(exc)) from exc
            observe_ai_attempt("ok")
            LOG.debug("llm_answer", extra={"attempt": attempts, "chars": len(answer)})
            return answer
        LOG.error("llm_credentials_exhausted", extra={"attempts": attempts})
        raise AIQueryError(AIErrorKind.ALL_CREDENTIALS_EXHAUSTED, attempts, 429, "all credentials rate limited")

    def _post(self, prompt: str, api_key: str, attempt: int) -> requests.Response:
        body = {
            "model": self.config.model,
            "messages": self._messages(prompt),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        try:
            return self._session.post(
                self.config.api_url,
                json=body,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                timeout=(self.config.connect_timeout, self.config.read_timeout),
            )
        except requests.exceptions.Timeout as exc:
            observe_ai_attempt("timeout")
            raise AIQueryError(AIErrorKind.TIMEOUT, attempt, None, "provider call timed out") from exc
        except requests.exceptions.RequestException as exc:
            observe_ai_attempt("error")
            raise AIQueryError(AIErrorKind.TRANSIENT_PROVIDER_ERROR, attempt, None, str(exc)) from exc

    @staticmethod
    def _messages(prompt: str) -> List[Dict[str, str]]:
        return [{"role": "user", "content": prompt}]


_client: Optional[AIQueryClient] = None


def get_ai_client() -> AIQueryClient:
    """Process-wide client; raises :class:`PoolEmpty` when no keys are configured."""
    global _client
    if _client is None:
        _client = AIQueryClient(CredentialPool.from_env())
    return _client


def set_ai_client(client: Optional[AIQueryClient]) -> None:
    global _client
    _client = client


def reset_ai_client() -> None:
    set_ai_client(None)
