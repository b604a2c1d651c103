# database/storage.py

"""
Постоянное key-value хранилище под кэшем.

Интерфейс повторяет минимальный набор операций get/set/remove/clear;
TTL и версии здесь не живут - ими занимается CacheStore.
"""

import asyncio
import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from core.exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Асинхронное key-value хранилище"""

    @abstractmethod
    async def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Значения по ключам; keys=None - всё содержимое"""

    @abstractmethod
    async def set(self, items: Dict[str, Any]) -> None:
        """Записать несколько ключей одной операцией"""

    @abstractmethod
    async def remove(self, keys: Iterable[str]) -> None:
        """Удалить ключи одной операцией"""

    @abstractmethod
    async def clear(self) -> None:
        """Удалить всё"""


class MemoryStorage(KeyValueStorage):
    """Хранилище в памяти процесса (тесты, режим без диска)"""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self.set_calls = 0
        self.remove_calls = 0

    async def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self._data)
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Dict[str, Any]) -> None:
        self.set_calls += 1
        for key, value in items.items():
            self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: Iterable[str]) -> None:
        self.remove_calls += 1
        for key in keys:
            self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()


class JsonFileStorage(KeyValueStorage):
    """Хранилище в JSON-файле с атомарной записью через временный файл"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._data: Optional[Dict[str, Any]] = None

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info(f"📂 Файл кэша {self.path} не найден, начинаем с пустого хранилища")
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            # Повреждённый файл не должен ронять приложение - кэш восстановится при сверке
            logger.error(f"❌ Файл кэша повреждён ({e}), начинаем заново")
            return {}
        except OSError as e:
            raise StorageError(f"Не удалось прочитать {self.path}: {e}") from e

        if not isinstance(data, dict):
            logger.warning("⚠️ Неверный формат файла кэша")
            return {}
        return data

    def _write_file(self, data: Dict[str, Any]):
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Не удалось записать {self.path}: {e}") from e

    async def _load(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read_file)
        return self._data

    async def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        async with self._lock:
            data = await self._load()
            if keys is None:
                return copy.deepcopy(data)
            return {k: copy.deepcopy(data[k]) for k in keys if k in data}

    async def set(self, items: Dict[str, Any]) -> None:
        async with self._lock:
            data = dict(await self._load())
            data.update(copy.deepcopy(items))
            await asyncio.to_thread(self._write_file, data)
            # В памяти только то, что уже записано на диск
            self._data = data

    async def remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            current = await self._load()
            removed = [k for k in keys if k in current]
            if not removed:
                return
            drop = set(removed)
            data = {k: v for k, v in current.items() if k not in drop}
            await asyncio.to_thread(self._write_file, data)
            self._data = data

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_file, {})
            self._data = {}
