from urllib.parse import parse_qs, urlsplit

import pytest

import edge_gate as m
from edge_gate import gate as gate_module


@pytest.fixture
def limiter():
    return m.RateLimiter(m.InMemoryCounterStore())


@pytest.fixture
def gate(settings_box, limiter):
    return m.EdgeGate(settings_box.load, limiter=limiter)


def ctx(path, *, cookies=None, client="203.0.113.9", query=""):
    return m.RequestContext.build(
        path, query_string=query, cookies=cookies, headers={"X-Forwarded-For": client}
    )


def test_favicon_allowed_when_locked_and_anonymous(gate, settings_box):
    settings_box.set(site_locked=True)

    result = gate.evaluate(ctx("/favicon.ico"))

    assert result.decision.kind is m.DecisionKind.ALLOW


def test_locked_dashboard_without_cookie_goes_to_waitlist(gate, settings_box):
    settings_box.set(site_locked=True)

    result = gate.evaluate(ctx("/dashboard/tasks"))

    assert result.decision.kind is m.DecisionKind.REDIRECT_TO_WAITLIST
    assert result.decision.location == "/waitlist"


def test_protected_without_session_redirects_to_login(gate):
    result = gate.evaluate(ctx("/dashboard/tasks"))

    assert result.decision.kind is m.DecisionKind.REDIRECT_TO_LOGIN
    query = parse_qs(urlsplit(result.decision.location).query)
    assert query["callbackUrl"] == ["/dashboard/tasks"]


def test_valid_session_then_api_within_quota(gate, make_token):
    cookies = {"session-token": make_token(user_id="u1")}

    page = gate.evaluate(ctx("/dashboard", cookies=cookies))
    first = gate.evaluate(ctx("/api/layout", cookies=cookies))
    second = gate.evaluate(ctx("/api/layout", cookies=cookies))

    assert page.decision.kind is m.DecisionKind.ALLOW
    assert page.identity == m.Identity("u1", "ada")
    assert page.rate_limit is None
    assert first.decision.kind is m.DecisionKind.ALLOW
    assert (first.rate_limit.remaining, second.rate_limit.remaining) == (49, 48)


def test_api_over_quota_is_rejected(gate, settings_box):
    settings_box.set(rate_limit_max=2)

    results = [gate.evaluate(ctx("/api/tasks")) for _ in range(3)]

    assert [r.decision.kind for r in results] == [
        m.DecisionKind.ALLOW,
        m.DecisionKind.ALLOW,
        m.DecisionKind.REJECT_TOO_MANY_REQUESTS,
    ]
    rejected = results[-1].decision
    assert rejected.rule == "rate-limit"
    assert rejected.rate_limit.remaining == 0
    assert rejected.rate_limit.limit == 2


def test_public_api_paths_are_still_rate_limited(gate, settings_box):
    settings_box.set(rate_limit_max=1)

    gate.evaluate(ctx("/api/auth/session"))
    result = gate.evaluate(ctx("/api/auth/session"))

    assert result.decision.kind is m.DecisionKind.REJECT_TOO_MANY_REQUESTS


def test_clients_are_limited_independently(gate, settings_box):
    settings_box.set(rate_limit_max=1)

    gate.evaluate(ctx("/api/tasks", client="10.0.0.1"))

    assert gate.evaluate(ctx("/api/tasks", client="10.0.0.2")).decision.allowed


def test_redirected_api_requests_do_not_consume_quota(gate, settings_box):
    settings_box.set(site_locked=True, rate_limit_max=1)
    gate.evaluate(ctx("/api/tasks"))
    gate.evaluate(ctx("/api/tasks"))

    settings_box.set(site_locked=False, rate_limit_max=1)

    assert gate.evaluate(ctx("/api/tasks")).decision.allowed


def test_lock_change_takes_effect_without_restart(gate, settings_box):
    assert gate.evaluate(ctx("/pricing")).decision.allowed

    settings_box.set(site_locked=True)

    assert gate.evaluate(ctx("/pricing")).decision.kind is m.DecisionKind.REDIRECT_TO_WAITLIST


def test_missing_secret_forces_login_and_logs_error(
    gate, settings_box, make_token, monkeypatch, recording_logger
):
    monkeypatch.setattr(gate_module, "logger", recording_logger)
    settings_box.set(auth_secret=None)

    result = gate.evaluate(ctx("/dashboard", cookies={"session-token": make_token()}))

    assert result.decision.kind is m.DecisionKind.REDIRECT_TO_LOGIN
    assert recording_logger.names("error") == ["session_secret_missing"]


def test_missing_secret_is_logged_without_a_session_cookie(
    gate, settings_box, monkeypatch, recording_logger
):
    monkeypatch.setattr(gate_module, "logger", recording_logger)
    settings_box.set(auth_secret=None)

    result = gate.evaluate(ctx("/dashboard"))

    assert result.decision.kind is m.DecisionKind.REDIRECT_TO_LOGIN
    assert recording_logger.names("error") == ["session_secret_missing"]


def test_missing_secret_does_not_affect_unprotected_paths(gate, settings_box):
    settings_box.set(auth_secret=None)

    assert gate.evaluate(ctx("/pricing")).decision.allowed


def test_token_is_only_verified_for_protected_paths(settings_box, limiter):
    calls = []

    def factory(settings):
        calls.append(settings)
        return m.SessionVerifier.from_secret(settings.auth_secret)

    gate = m.EdgeGate(settings_box.load, limiter=limiter, verifier_factory=factory)
    gate.evaluate(ctx("/pricing"))
    gate.evaluate(ctx("/api/tasks"))
    gate.evaluate(ctx("/dashboard"))

    assert len(calls) == 1


def test_store_outage_fails_open(settings_box, fake_redis):
    fake_redis.fail = True
    gate = m.EdgeGate(settings_box.load, limiter=m.RateLimiter(m.RedisCounterStore(fake_redis)))

    result = gate.evaluate(ctx("/api/tasks"))

    assert result.decision.allowed
    assert result.rate_limit.reset_at == 0


class TestUnexpectedFailures:
    def boom(self, *args, **kwargs):
        raise RuntimeError("boom")

    def test_verifier_crash_on_protected_path_redirects_to_login(
        self, settings_box, limiter, monkeypatch, recording_logger
    ):
        monkeypatch.setattr(gate_module, "logger", recording_logger)
        gate = m.EdgeGate(settings_box.load, limiter=limiter, verifier_factory=self.boom)

        result = gate.evaluate(ctx("/dashboard"))

        assert result.decision.kind is m.DecisionKind.REDIRECT_TO_LOGIN
        assert result.decision.rule == "fallback"
        assert "gate_evaluation_failed" in recording_logger.names("exception")

    def test_limiter_crash_on_open_site_allows(self, settings_box, limiter, monkeypatch):
        monkeypatch.setattr(limiter, "check", self.boom)
        gate = m.EdgeGate(settings_box.load, limiter=limiter)

        assert gate.evaluate(ctx("/api/tasks")).decision.allowed

    def test_unreadable_settings_lock_non_public_paths(self, limiter):
        gate = m.EdgeGate(self.boom, limiter=limiter)

        assert gate.evaluate(ctx("/pricing")).decision.kind is m.DecisionKind.REDIRECT_TO_WAITLIST
        assert gate.evaluate(ctx("/dashboard")).decision.kind is m.DecisionKind.REDIRECT_TO_LOGIN
        assert gate.evaluate(ctx("/favicon.ico")).decision.allowed


def test_default_gate_builds_limiter_from_settings():
    gate = m.EdgeGate(lambda: m.GateSettings(allow_in_memory_fallback=True))

    assert gate.limiter.enabled


def test_default_gate_without_store_is_fail_open():
    gate = m.EdgeGate(lambda: m.GateSettings())

    assert gate.limiter.enabled is False
    assert gate.evaluate(ctx("/api/tasks")).decision.allowed
