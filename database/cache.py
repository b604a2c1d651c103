# database/cache.py

"""
Версионированный TTL-кэш поверх KeyValueStorage.

Запись действительна, только пока now < expires_at и её версия совпадает
с текущей schema_version. Недействительная запись считается отсутствующей
и удаляется при первом же чтении. Вытеснения по LRU/LFU нет: число ключей
ограничено (одна запись на привычку плюс несколько системных ключей).
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.exceptions import CacheCorruption, StorageError
from database.storage import KeyValueStorage

logger = logging.getLogger(__name__)

MAX_WRITE_RETRIES = 2
WRITE_RETRY_DELAY = 0.2


def estimate_size(value: Any) -> int:
    """Примерный размер в байтах по JSON-представлению"""
    return len(json.dumps(value, ensure_ascii=False, default=str).encode('utf-8'))


@dataclass
class CacheEntry:
    """Обёртка над значением в кэше"""
    data: Any
    created_at: float
    expires_at: Optional[float]  # None - бессрочно
    version: str
    size: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': self.data,
            'created_at': self.created_at,
            'expires_at': self.expires_at,
            'version': self.version,
            'size': self.size
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CacheEntry":
        return cls(
            data=raw['data'],
            created_at=float(raw['created_at']),
            expires_at=None if raw['expires_at'] is None else float(raw['expires_at']),
            version=str(raw['version']),
            size=int(raw.get('size', 0))
        )


@dataclass
class CacheStats:
    """Статистика кэша"""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


@dataclass
class CacheReport:
    """Диагностика содержимого; на вытеснение не влияет"""
    total_items: int = 0
    total_size: int = 0
    invalid_items: int = 0
    per_key_expiry: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_items': self.total_items,
            'total_size': self.total_size,
            'invalid_items': self.invalid_items,
            'per_key_expiry': self.per_key_expiry
        }


class CacheStore:
    """TTL-кэш с инвалидацией по версии схемы"""

    def __init__(self, storage: KeyValueStorage, schema_version: str,
                 clock: Callable[[], float] = time.time,
                 monotonic: Callable[[], float] = time.monotonic,
                 cleanup_budget: float = 5.0):
        self.storage = storage
        self.schema_version = schema_version
        self.clock = clock
        self.monotonic = monotonic
        self.cleanup_budget = cleanup_budget
        self.stats_counters = CacheStats()

    # ===== ЧТЕНИЕ =====

    def _validate(self, key: str, raw: Any, now: float) -> CacheEntry:
        try:
            entry = CacheEntry.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError):
            raise CacheCorruption(key, "неверный формат записи")
        if entry.version != self.schema_version:
            raise CacheCorruption(key, f"версия {entry.version} != {self.schema_version}")
        if entry.is_expired(now):
            raise CacheCorruption(key, "истёк срок жизни")
        return entry

    def _split_valid(self, raw_items: Dict[str, Any]) -> Tuple[Dict[str, CacheEntry], List[str]]:
        now = self.clock()
        valid: Dict[str, CacheEntry] = {}
        invalid: List[str] = []
        for key, raw in raw_items.items():
            try:
                valid[key] = self._validate(key, raw, now)
            except CacheCorruption as e:
                logger.debug(f"🧹 {e}")
                invalid.append(key)
        return valid, invalid

    async def _evict(self, keys: List[str]):
        if not keys:
            return
        await self.storage.remove(keys)
        self.stats_counters.evictions += len(keys)

    async def get(self, key: str) -> Optional[Any]:
        """Значение или None; недействительная запись удаляется"""
        result = await self.get_many([key])
        return result.get(key)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Действительные значения по ключам одним чтением"""
        keys = list(keys)
        raw_items = await self.storage.get(keys)
        valid, invalid = self._split_valid(raw_items)
        await self._evict(invalid)

        self.stats_counters.hits += len(valid)
        self.stats_counters.misses += len(keys) - len(valid)
        return {key: entry.data for key, entry in valid.items()}

    async def get_prefixed(self, prefix: str) -> Dict[str, Any]:
        """Все действительные значения, ключ которых начинается с prefix"""
        raw_items = await self.storage.get(None)
        matching = {k: v for k, v in raw_items.items() if k.startswith(prefix)}
        valid, invalid = self._split_valid(matching)
        await self._evict(invalid)
        return {key: entry.data for key, entry in valid.items()}

    # ===== ЗАПИСЬ =====

    def _make_entry(self, data: Any, ttl: Optional[float]) -> Dict[str, Any]:
        now = self.clock()
        entry = CacheEntry(
            data=data,
            created_at=now,
            expires_at=now + ttl if ttl else None,
            version=self.schema_version,
            size=estimate_size(data)
        )
        return entry.to_dict()

    async def set(self, key: str, data: Any, ttl: Optional[float]):
        """Сохранить значение на ttl секунд (0 или None - бессрочно)"""
        await self.set_many({key: data}, ttl)

    async def set_many(self, items: Dict[str, Any], ttl: Optional[float]):
        """Сохранить несколько значений одной записью в хранилище"""
        if not items:
            return
        payload = {key: self._make_entry(data, ttl) for key, data in items.items()}

        for attempt in range(MAX_WRITE_RETRIES + 1):
            try:
                await self.storage.set(payload)
                return
            except StorageError as e:
                self.stats_counters.errors += 1
                if attempt >= MAX_WRITE_RETRIES:
                    logger.error(f"❌ Не удалось записать в кэш {list(items)[:5]}: {e}")
                    raise
                logger.warning(f"⚠️ Попытка {attempt + 1}/{MAX_WRITE_RETRIES} записи в кэш не удалась: {e}")
                await asyncio.sleep(WRITE_RETRY_DELAY * (attempt + 1))

    # ===== УДАЛЕНИЕ =====

    async def remove(self, key: str):
        await self.storage.remove([key])

    async def remove_many(self, keys: Iterable[str]):
        keys = list(keys)
        if keys:
            await self.storage.remove(keys)

    async def clear_all(self):
        await self.storage.clear()
        self.reset_stats()
        logger.info("🧹 Кэш полностью очищен")

    async def cleanup_expired(self) -> int:
        """Удалить все просроченные и несовместимые записи одним вызовом.

        Сканирование ограничено по времени cleanup_budget секундами:
        то, что не успели проверить, дочистится в следующий раз.
        """
        started = self.monotonic()
        raw_items = await self.storage.get(None)
        now = self.clock()

        expired: List[str] = []
        scanned = 0
        for key, raw in raw_items.items():
            if self.monotonic() - started > self.cleanup_budget:
                logger.warning(f"⏱️ Очистка кэша прервана по времени: проверено {scanned} из {len(raw_items)}")
                break
            scanned += 1
            try:
                self._validate(key, raw, now)
            except CacheCorruption:
                expired.append(key)

        await self._evict(expired)
        if expired:
            logger.info(f"🧹 Удалено {len(expired)} устаревших записей кэша")
        return len(expired)

    # ===== СТАТИСТИКА =====

    async def stats(self) -> CacheReport:
        """Количество, размер и сроки жизни действительных записей"""
        raw_items = await self.storage.get(None)
        now = self.clock()
        report = CacheReport()

        for key, raw in sorted(raw_items.items()):
            try:
                entry = self._validate(key, raw, now)
            except CacheCorruption:
                report.invalid_items += 1
                continue
            report.total_items += 1
            report.total_size += estimate_size(raw)
            report.per_key_expiry.append({
                'key': key,
                'expires_at': entry.expires_at,
                'expires_in': None if entry.expires_at is None else round(entry.expires_at - now, 3)
            })
        return report

    def get_stats(self) -> Dict[str, Any]:
        """Счётчики попаданий и промахов"""
        return {
            'hits': self.stats_counters.hits,
            'misses': self.stats_counters.misses,
            'errors': self.stats_counters.errors,
            'evictions': self.stats_counters.evictions,
            'hit_rate': round(self.stats_counters.hit_rate, 2)
        }

    def reset_stats(self):
        self.stats_counters = CacheStats()
