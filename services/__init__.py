# services/__init__.py

"""
Сервисы синхронизации привычек

ServiceManager - единственная точка сборки: все сервисы создаются здесь
явно и передаются друг другу по ссылке, глобальных экземпляров нет.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import aiohttp
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.auth import ServiceAccountTokenProvider, StaticTokenProvider, TokenProvider
from core.exceptions import HabitSyncError
from core.retry import RetryPolicy
from database.cache import CacheStore
from database.habit_cache import HabitCache
from database.storage import JsonFileStorage, KeyValueStorage, MemoryStorage

from .background import BackgroundOperations
from .http_client import RateLimitedClient
from .scheduler import BackgroundScheduler
from .sheet_repository import SheetRepository
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class ServiceManager:
    """
    Менеджер сервисов синхронизации

    Обеспечивает:
    - Сборку сервисов в нужном порядке (хранилище -> кэш -> клиент -> таблица -> движок -> планировщик)
    - Начальную загрузку данных
    - Корректное закрытие сетевых ресурсов
    """

    def __init__(self):
        self.config = None
        self.storage: Optional[KeyValueStorage] = None
        self.cache_store: Optional[CacheStore] = None
        self.habit_cache: Optional[HabitCache] = None
        self.token_provider: Optional[TokenProvider] = None
        self.client: Optional[RateLimitedClient] = None
        self.repository: Optional[SheetRepository] = None
        self.sync_engine: Optional[SyncEngine] = None
        self.operations: Optional[BackgroundOperations] = None
        self.scheduler: Optional[BackgroundScheduler] = None
        self.initialized = False

    def _build_token_provider(self) -> TokenProvider:
        google = self.config.google
        if google.credentials_file:
            logger.info("🔑 Авторизация через сервисный аккаунт")
            return ServiceAccountTokenProvider(google.credentials_file, google.scopes)
        logger.info("🔑 Авторизация через готовый токен")
        return StaticTokenProvider(google.access_token, google.scopes)

    def initialize_services(self, config,
                            storage: Optional[KeyValueStorage] = None,
                            token_provider: Optional[TokenProvider] = None,
                            session: Optional[aiohttp.ClientSession] = None,
                            job_scheduler: Optional[AsyncIOScheduler] = None,
                            sleep: Callable[[float], Any] = asyncio.sleep) -> bool:
        """Собрать все сервисы; необязательные аргументы подменяют зависимости"""
        try:
            logger.info("🔧 Инициализация сервисов синхронизации...")
            self.config = config

            # 1. Локальное хранилище и кэш
            logger.info("📂 Инициализация кэша...")
            if storage is not None:
                self.storage = storage
            elif config.cache.storage_path:
                self.storage = JsonFileStorage(config.cache.storage_path)
            else:
                self.storage = MemoryStorage()
            self.cache_store = CacheStore(
                self.storage,
                schema_version=config.cache.schema_version,
                cleanup_budget=config.cache.cleanup_budget
            )
            self.habit_cache = HabitCache(self.cache_store, config.cache.habit_ttl, config.cache.system_ttl)

            # 2. Сеть
            logger.info("🌐 Инициализация HTTP-клиента...")
            self.token_provider = token_provider or self._build_token_provider()
            policy = RetryPolicy(
                max_retries=config.http.max_retries,
                base_delay=config.http.base_delay,
                max_delay=config.http.max_delay,
                jitter=config.http.jitter
            )
            self.client = RateLimitedClient(session=session, policy=policy, sleep=sleep, timeout=config.http.timeout)
            self.repository = SheetRepository(self.client, self.token_provider, config.google, config.http, sleep=sleep)

            # 3. Синхронизация
            logger.info("🔄 Инициализация движка синхронизации...")
            self.sync_engine = SyncEngine(
                self.repository,
                self.habit_cache,
                freshness_window=config.scheduler.freshness_window
            )
            self.operations = BackgroundOperations(self.token_provider, self.repository, self.habit_cache)
            self.scheduler = BackgroundScheduler(
                self.sync_engine,
                self.operations,
                config.scheduler,
                scheduler=job_scheduler
            )

            self.initialized = True
            logger.info("✅ Все сервисы инициализированы успешно!")
            return True

        except (ValueError, OSError, HabitSyncError) as e:
            logger.error(f"❌ Ошибка инициализации сервисов: {e}")
            self.initialized = False
            return False

    async def bootstrap(self) -> bool:
        """Найти таблицу месяца и загрузить данные в кэш"""
        month = self.repository.month
        try:
            spreadsheet_id = await self.habit_cache.get_spreadsheet_id(month.month, month.year)
            if spreadsheet_id:
                self.repository.set_spreadsheet_id(spreadsheet_id)
            else:
                spreadsheet_id = await self.repository.setup_drive()
                await self.habit_cache.set_spreadsheet_id(spreadsheet_id, month.month, month.year)
        except HabitSyncError as e:
            logger.error(f"❌ Не удалось подготовить таблицу: {e}")
            return False

        result = await self.sync_engine.reconcile(force_refresh=True)
        if result.success:
            logger.info(f"📥 Загружено привычек: {result.synced_count}")
        return result.success

    async def health_check(self) -> Dict[str, Any]:
        """Проверка состояния всех сервисов"""
        health = {
            "status": "healthy",
            "services": {}
        }
        if not self.initialized:
            health["status"] = "error"
            return health

        check = await self.operations.perform_background_check()
        health["services"]["system"] = check.to_dict()
        health["services"]["cache"] = {
            "counters": self.cache_store.get_stats(),
            "contents": (await self.cache_store.stats()).to_dict()
        }
        health["services"]["sync"] = self.sync_engine.get_sync_stats()
        health["services"]["scheduler"] = self.scheduler.get_status()

        if check.needs_auth or check.needs_full_setup:
            health["status"] = "error"
        elif not check.healthy or self.scheduler.consecutive_failures:
            health["status"] = "warning"
        return health

    async def close_services(self):
        """Закрытие всех сервисов"""
        logger.info("🛑 Закрытие сервисов...")

        # Закрываем в обратном порядке инициализации
        if self.scheduler:
            self.scheduler.shutdown()
            self.scheduler = None

        if self.client:
            await self.client.close()
            self.client = None

        self.initialized = False
        logger.info("✅ Все сервисы закрыты")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_services()


__all__ = [
    'BackgroundOperations',
    'BackgroundScheduler',
    'RateLimitedClient',
    'ServiceManager',
    'SheetRepository',
    'SyncEngine'
]
