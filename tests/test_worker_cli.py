from datetime import timedelta

from src.tenantdesk import worker
from src.tenantdesk.domain.reports import ReportJob
from src.tenantdesk.domain.tokens import TokenKind
from src.tenantdesk.infrastructure.job_queue import get_job_queue
from src.tenantdesk.infrastructure.token_store import InMemoryTokenStore, set_token_store
from src.tenantdesk.services.ai_client import AIErrorKind, AIQueryError, set_ai_client
from src.tenantdesk.services.messenger import set_messenger

from .utils import FakeClock, RecordingMessenger


class StubAI:
    def __init__(self, reply="done", error=None):
        self.reply = reply
        self.error = error

    def ask(self, context, query):
        if self.error:
            raise self.error
        return self.reply


def test_once_with_empty_queue_exits_cleanly():
    set_ai_client(StubAI())
    assert worker.main(["--once", "--timeout", "0"]) == 0


def test_once_processes_a_job():
    messenger = RecordingMessenger()
    set_messenger(messenger)
    set_ai_client(StubAI(reply="3 tenants"))
    get_job_queue().enqueue(ReportJob(recipient="+1", query="q"))
    assert worker.main(["--once", "--timeout", "0"]) == 0
    assert messenger.texts == [("+1", "3 tenants")]


def test_once_reports_failed_job():
    set_messenger(RecordingMessenger())
    set_ai_client(StubAI(error=AIQueryError(AIErrorKind.TIMEOUT, 1)))
    get_job_queue().enqueue(ReportJob(recipient="+1", query="q"))
    assert worker.main(["--once", "--timeout", "0"]) == 1


def test_missing_keys_is_a_startup_error():
    get_job_queue().enqueue(ReportJob(recipient="+1", query="q"))
    assert worker.main(["--once", "--timeout", "0"]) == 2


def test_purge_tokens():
    clock = FakeClock()
    store = InMemoryTokenStore(clock=clock)
    set_token_store(store)
    store.issue("+1", TokenKind.AUTHORIZE, ttl=timedelta(minutes=1))
    clock.advance(minutes=2)
    assert worker.main(["--purge-tokens"]) == 0
    assert store.purge_expired() == 0
