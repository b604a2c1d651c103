# services/http_client.py

"""
HTTP-клиент к Google API с повторами и классификацией ошибок.

Состояния между вызовами клиент не хранит: токен передаётся в каждый
запрос, политика повторов задаётся объектом RetryPolicy.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from core.exceptions import (
    AuthExpiredError,
    AuthRequiredError,
    NetworkError,
    RateLimitedError,
    RemoteError
)
from core.retry import Outcome, RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RateLimitedClient:
    """Авторизованные запросы с экспоненциальной задержкой на 429 и сбоях"""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 policy: Optional[RetryPolicy] = None,
                 sleep: Sleep = asyncio.sleep,
                 timeout: float = 30.0):
        self._session = session
        self._owns_session = session is None
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.timeout = timeout
        self.requests_sent = 0

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.info("🔌 HTTP-сессия закрыта")

    async def _send(self, method: str, url: str, token: str,
                    params: Optional[Dict[str, Any]], payload: Any):
        headers = {'Authorization': f'Bearer {token}'}
        if payload is not None:
            headers['Content-Type'] = 'application/json'
        self.requests_sent += 1
        async with self._get_session().request(method, url, headers=headers, params=params, json=payload) as response:
            return response.status, await response.text()

    @staticmethod
    def _parse(status: int, text: str) -> Any:
        if not text or not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteError(status, text, f"Некорректный JSON в ответе: {e}") from e

    async def request(self, method: str, url: str, token: Optional[str], *,
                      params: Optional[Dict[str, Any]] = None,
                      json: Any = None,
                      retry_count: Optional[int] = None) -> Any:
        """Выполнить запрос и вернуть разобранный JSON.

        retry_count - сколько раз можно подождать и повторить; 429 и прочие
        сбои считаются раздельно. 401 не повторяется никогда.
        """
        if not token:
            raise AuthRequiredError()

        policy = self.policy.with_retries(retry_count)
        rate_limit_waits = 0
        failure_waits = 0

        while True:
            try:
                status, text = await self._send(method, url, token, params, json)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if failure_waits >= policy.max_retries:
                    logger.error(f"❌ {method} {url}: сеть недоступна после {failure_waits} повторов: {e!r}")
                    raise NetworkError(e) from e
                delay = policy.backoff(failure_waits)
                failure_waits += 1
                logger.warning(f"⚠️ Попытка {failure_waits}/{policy.max_retries}: {method} {url} - {e!r}, ждём {delay:.1f}с")
                await self.sleep(delay)
                continue

            outcome = policy.classify(status)

            if outcome is Outcome.SUCCESS:
                return self._parse(status, text)

            if outcome is Outcome.AUTH_EXPIRED:
                logger.warning(f"🔑 {method} {url}: 401, токен истёк")
                raise AuthExpiredError()

            if outcome is Outcome.RATE_LIMITED:
                if rate_limit_waits >= policy.max_retries:
                    logger.error(f"❌ {method} {url}: лимит запросов не снялся после {rate_limit_waits} ожиданий")
                    raise RateLimitedError(text)
                delay = policy.backoff(rate_limit_waits)
                rate_limit_waits += 1
                logger.info(f"⏳ Лимит запросов (429), ждём {delay:.1f}с перед повтором")
                await self.sleep(delay)
                continue

            if failure_waits >= policy.max_retries:
                logger.error(f"❌ {method} {url}: HTTP {status} после {failure_waits} повторов")
                raise RemoteError(status, text)
            delay = policy.backoff(failure_waits)
            failure_waits += 1
            logger.warning(f"⚠️ Попытка {failure_waits}/{policy.max_retries}: {method} {url} - HTTP {status}, ждём {delay:.1f}с")
            await self.sleep(delay)

    async def get(self, url: str, token: Optional[str], **kwargs) -> Any:
        return await self.request('GET', url, token, **kwargs)

    async def post(self, url: str, token: Optional[str], **kwargs) -> Any:
        return await self.request('POST', url, token, **kwargs)

    async def put(self, url: str, token: Optional[str], **kwargs) -> Any:
        return await self.request('PUT', url, token, **kwargs)
