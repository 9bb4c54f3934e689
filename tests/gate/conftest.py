import threading
import time

import pytest
from flask import Flask
from redis.exceptions import ConnectionError as RedisConnectionError

from edge_gate import GateSettings, Identity, issue_session_token

SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture()
def secret() -> str:
    return SECRET


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def make_token():
    """
    Factory fixture that returns a function.

    Usage in tests:
        token = make_token(user_id="u1")
        expired = make_token(ttl_seconds=-60)
    """

    def _make(
        *,
        user_id: str = "u1",
        username: str | None = "ada",
        secret: str = SECRET,
        ttl_seconds: int = 3600,
        now: float | None = None,
    ) -> str:
        issued = now if now is not None else time.time()
        if ttl_seconds < 0:
            # Issue far enough in the past that exp is already behind us.
            issued = issued - 3600
            ttl_seconds = 3600 + ttl_seconds
        return issue_session_token(
            Identity(user_id=user_id, username=username),
            secret,
            ttl_seconds=ttl_seconds,
            now=issued,
        )

    return _make


@pytest.fixture
def settings_box():
    """
    Mutable holder so a test can flip configuration between requests.

    ``settings_box.load`` is a settings loader for EdgeGate.
    """

    class Box:
        def __init__(self):
            self.value = GateSettings(auth_secret=SECRET)

        def set(self, **changes):
            self.value = GateSettings(**{**self._as_dict(), **changes})

        def _as_dict(self):
            return {f: getattr(self.value, f) for f in self.value.__dataclass_fields__}

        def load(self) -> GateSettings:
            return self.value

    return Box()


class FakeRedis:
    """
    Minimal redis stub for RedisCounterStore tests.

    register_script() returns a callable that mimics the hit script:
    INCR, then PEXPIRE on the first hit, returning [count, pttl_ms].
    Set ``fail = True`` to make every call raise a redis ConnectionError.
    """

    def __init__(self):
        self._store: dict[str, tuple[int, int]] = {}
        self._lock = threading.Lock()
        self.fail = False
        self.scripts: list[str] = []

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def register_script(self, source: str):
        self.scripts.append(source)

        def _run(keys, args):
            if self.fail:
                raise RedisConnectionError("connection refused")
            key = keys[0]
            window_ms = int(args[0])
            with self._lock:
                now = self._now_ms()
                count, expires_at = self._store.get(key, (0, 0))
                if expires_at and now >= expires_at:
                    count, expires_at = 0, 0
                count += 1
                if not expires_at:
                    expires_at = now + window_ms
                self._store[key] = (count, expires_at)
                return [count, expires_at - now]

        return _run


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


class RecordingLogger:
    """Stand-in for a module's structlog logger that keeps every event."""

    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    def _record(self, level):
        def log(event, **kw):
            self.events.append((level, event, kw))

        return log

    def __getattr__(self, level):
        return self._record(level)

    def names(self, level: str | None = None) -> list[str]:
        return [e for lvl, e, _ in self.events if level is None or lvl == level]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
