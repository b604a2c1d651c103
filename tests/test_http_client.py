"""Tests for the retrying HTTP client."""
from __future__ import annotations

import asyncio

import pytest

from core.exceptions import (
    AuthExpiredError,
    AuthRequiredError,
    NetworkError,
    RateLimitedError,
    RemoteError
)
from core.retry import Outcome, RetryPolicy, default_classifier
from tests.fakes import connection_error

FILES_URL = "https://www.googleapis.com/drive/v3/files"
QUERY = {"q": "name='x' and mimeType='application/vnd.google-apps.folder' and trashed=false and 'root' in parents"}


class TestRetryPolicy:
    def test_backoff_grows_until_cap(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert [policy.backoff(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_bound(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=100.0, jitter=0.5)
        for attempt in range(4):
            delay = policy.backoff(attempt)
            assert 2 ** attempt <= delay <= 2 ** attempt + 0.5

    @pytest.mark.parametrize("status, outcome", [
        (200, Outcome.SUCCESS), (204, Outcome.SUCCESS), (401, Outcome.AUTH_EXPIRED),
        (429, Outcome.RATE_LIMITED), (500, Outcome.RETRY), (404, Outcome.RETRY),
    ])
    def test_default_classifier(self, status, outcome):
        assert default_classifier(status) is outcome


class TestRateLimitedClient:
    async def test_success_returns_json(self, client):
        assert await client.get(FILES_URL, "test-token", params=QUERY) == {"files": []}

    async def test_missing_token_fails_without_network(self, client, fake_api):
        with pytest.raises(AuthRequiredError):
            await client.get(FILES_URL, None, params=QUERY)
        assert fake_api.requests == []

    async def test_401_is_not_retried(self, client, fake_api, sleeper):
        fake_api.fail_next(401)
        with pytest.raises(AuthExpiredError) as excinfo:
            await client.get(FILES_URL, "test-token", params=QUERY)
        assert excinfo.value.needs_auth is True
        assert len(fake_api.requests) == 1
        assert sleeper.calls == []

    async def test_rate_limit_recovers_transparently(self, client, fake_api, sleeper):
        fake_api.fail_next(429, 429)
        assert await client.get(FILES_URL, "test-token", params=QUERY) == {"files": []}
        assert sleeper.calls == [1.0, 2.0]

    async def test_three_429_waits_then_hard_failure(self, client, fake_api, sleeper):
        fake_api.fail_next(429, 429, 429, 429)
        with pytest.raises(RateLimitedError) as excinfo:
            await client.get(FILES_URL, "test-token", params=QUERY)
        assert excinfo.value.status == 429
        assert sleeper.calls == [1.0, 2.0, 4.0]
        assert len(fake_api.requests) == 4

    async def test_generic_error_retried_then_surfaced(self, client, fake_api, sleeper):
        fake_api.fail_next(500, 500, 500, 500)
        with pytest.raises(RemoteError) as excinfo:
            await client.get(FILES_URL, "test-token", params=QUERY)
        assert excinfo.value.status == 500
        assert not isinstance(excinfo.value, RateLimitedError)
        assert sleeper.calls == [1.0, 2.0, 4.0]

    async def test_rate_limit_and_failures_counted_separately(self, client, fake_api, sleeper):
        fake_api.fail_next(429, 500, 429, 500)
        assert await client.get(FILES_URL, "test-token", params=QUERY) == {"files": []}
        assert sleeper.calls == [1.0, 1.0, 2.0, 2.0]

    async def test_transport_errors_use_same_policy(self, client, fake_api, sleeper):
        fake_api.fail_next(connection_error(), asyncio.TimeoutError())
        assert await client.get(FILES_URL, "test-token", params=QUERY) == {"files": []}
        assert sleeper.calls == [1.0, 2.0]

    async def test_transport_errors_exhausted(self, client, fake_api):
        fake_api.fail_next(*[connection_error() for _ in range(4)])
        with pytest.raises(NetworkError) as excinfo:
            await client.get(FILES_URL, "test-token", params=QUERY)
        assert excinfo.value.status is None

    async def test_per_call_retry_count(self, client, fake_api, sleeper):
        fake_api.fail_next(500, 500)
        with pytest.raises(RemoteError):
            await client.get(FILES_URL, "test-token", params=QUERY, retry_count=1)
        assert sleeper.calls == [1.0]

    async def test_close_does_not_close_injected_session(self, client, session):
        await client.close()
        assert session.closed is False
