import importlib
import sys
import types

MODULE = "src.tenantdesk.infrastructure.events"


def _reload_events(monkeypatch, *, url=None, redis_module=None):
    monkeypatch.delenv("REDIS_URL", raising=False)
    if url is not None:
        monkeypatch.setenv("REDIS_URL", url)
    if redis_module is None:
        redis_module = types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=lambda *args, **kwargs: None))
    monkeypatch.setitem(sys.modules, "redis", redis_module)
    monkeypatch.delitem(sys.modules, MODULE, raising=False)
    return importlib.import_module(MODULE)


def test_publish_event_without_url_is_a_noop(monkeypatch):
    module = _reload_events(monkeypatch)
    assert module.load_event_client() is None
    assert module.publish_event("report.done", {"job_id": "x"}) is False


class FakeRedisClient:
    attempt = 0
    published = []
    publish_should_fail = False

    def ping(self):
        if FakeRedisClient.attempt == 0:
            FakeRedisClient.attempt += 1
            raise Exception("connect failed")

    def publish(self, channel, payload):
        FakeRedisClient.published.append((channel, payload))
        if FakeRedisClient.publish_should_fail:
            FakeRedisClient.publish_should_fail = False
            raise Exception("publish failed")


def test_publisher_reconnects_after_failures(monkeypatch):
    FakeRedisClient.attempt = 0
    FakeRedisClient.published = []
    FakeRedisClient.publish_should_fail = False

    def from_url(url, socket_timeout=0.5):
        return FakeRedisClient()

    redis_module = types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=staticmethod(from_url)))
    module = _reload_events(monkeypatch, url="redis://localhost", redis_module=redis_module)
    publisher = module.load_event_client()
    assert publisher is not None

    assert module.publish_event("report.done", {"job_id": "j1"}) is True
    assert FakeRedisClient.attempt == 1
    assert FakeRedisClient.published[-1] == ("tenantdesk.events.report.done", '{"job_id": "j1"}')

    FakeRedisClient.publish_should_fail = True
    assert module.publish_event("report.failed", {"job_id": "j2"}) is False
    assert module.load_event_client() is publisher
    assert module.publish_event("report.done", {"job_id": "j3"}) is True
