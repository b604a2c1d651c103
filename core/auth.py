# core/auth.py

"""
Поставщики токенов доступа.

Движок только потребляет токен: вход, выход и экран согласия
живут снаружи. TokenProvider - минимальный контракт, который нужен
клиенту и фоновым проверкам.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from core.exceptions import AuthExpiredError, AuthRequiredError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = [
    'https://www.googleapis.com/auth/drive.file',
    'https://www.googleapis.com/auth/spreadsheets'
]


class TokenProvider(ABC):
    """Источник bearer-токена"""

    @abstractmethod
    async def get_token(self) -> Optional[str]:
        """Текущий токен или None, если авторизации нет"""

    @abstractmethod
    async def refresh(self) -> str:
        """Обновить токен; AuthExpiredError, если без пользователя не обойтись"""

    @abstractmethod
    async def revoke(self) -> None:
        """Забыть токен"""

    @abstractmethod
    async def has_required_scopes(self) -> bool:
        """Выданы ли все нужные права"""


class StaticTokenProvider(TokenProvider):
    """Токен, выданный снаружи (например, из переменной окружения)"""

    def __init__(self, token: Optional[str], scopes: Optional[Sequence[str]] = None,
                 granted_scopes: Optional[Sequence[str]] = None):
        self._token = token or None
        self.required_scopes: List[str] = list(scopes or DEFAULT_SCOPES)
        # Без явного списка считаем, что выдано всё запрошенное
        self.granted_scopes: List[str] = list(granted_scopes if granted_scopes is not None else self.required_scopes)

    async def get_token(self) -> Optional[str]:
        return self._token

    async def refresh(self) -> str:
        # Обновить чужой токен нечем
        if not self._token:
            raise AuthRequiredError()
        raise AuthExpiredError("Статический токен нельзя обновить - нужна повторная авторизация")

    async def revoke(self) -> None:
        self._token = None
        logger.info("🔒 Токен отозван")

    async def has_required_scopes(self) -> bool:
        return set(self.required_scopes).issubset(self.granted_scopes)

    def set_token(self, token: Optional[str]):
        """Подставить новый токен после повторного входа"""
        self._token = token or None


class ServiceAccountTokenProvider(TokenProvider):
    """Токен сервисного аккаунта Google (google-auth)"""

    def __init__(self, credentials_file: Path, scopes: Optional[Sequence[str]] = None):
        self.credentials_file = Path(credentials_file)
        self.scopes: List[str] = list(scopes or DEFAULT_SCOPES)
        self._credentials: Optional[service_account.Credentials] = None

    def _load(self) -> service_account.Credentials:
        if self._credentials is None:
            if not self.credentials_file.exists():
                raise AuthRequiredError(f"Файл ключа сервисного аккаунта не найден: {self.credentials_file}")
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    str(self.credentials_file), scopes=self.scopes
                )
            except (ValueError, OSError, google.auth.exceptions.GoogleAuthError) as e:
                # Битый или неполный ключ: без нового ключа работать нельзя
                raise AuthRequiredError(f"Некорректный файл ключа {self.credentials_file}: {e}") from e
        return self._credentials

    async def get_token(self) -> Optional[str]:
        try:
            credentials = self._load()
        except AuthRequiredError as e:
            logger.warning(f"⚠️ {e}")
            return None
        if not credentials.valid:
            try:
                await self.refresh()
            except (AuthExpiredError, NetworkError) as e:
                logger.warning(f"⚠️ Не удалось получить токен сервисного аккаунта: {e}")
                return None
        return credentials.token

    async def refresh(self) -> str:
        credentials = self._load()
        try:
            await asyncio.to_thread(credentials.refresh, Request())
        except google.auth.exceptions.RefreshError as e:
            raise AuthExpiredError(f"Не удалось обновить токен: {e}") from e
        except google.auth.exceptions.TransportError as e:
            raise NetworkError(e) from e
        logger.debug("🔑 Токен сервисного аккаунта обновлён")
        return credentials.token

    async def revoke(self) -> None:
        # Ключ сервисного аккаунта не отзывается, забываем только выданный токен
        self._credentials = None
        logger.info("🔒 Токен сервисного аккаунта сброшен")

    async def has_required_scopes(self) -> bool:
        try:
            credentials = self._load()
        except AuthRequiredError:
            return False
        return credentials.has_scopes(self.scopes)
