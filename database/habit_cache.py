# database/habit_cache.py

import asyncio
import logging
import re
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from database.cache import CacheStore
from models.habit import Habit

logger = logging.getLogger(__name__)

HABIT_KEY_PATTERN = re.compile(r'^habit_(\d{2})_(\d{4})_(.+)$')

LAST_SYNC_KEY = "system_last_sync"
SPREADSHEET_ID_KEY = "system_spreadsheet_id"


def habit_key(habit_id: str, month: int, year: int) -> str:
    """habit_MM_YYYY_<id>"""
    return f"habit_{month:02d}_{year}_{habit_id}"


def parse_habit_key(key: str) -> Optional[Tuple[str, int, int]]:
    """(habit_id, month, year) или None для чужого ключа"""
    match = HABIT_KEY_PATTERN.match(key)
    if not match:
        return None
    month, year, habit_id = match.groups()
    return habit_id, int(month), int(year)


def index_key(month: int, year: int) -> str:
    return f"habits_index_{month:02d}_{year}"


class HabitCache:
    """Привычки месяца в кэше: запись на привычку плюс индекс id в порядке строк"""

    def __init__(self, store: CacheStore, habit_ttl: Optional[float],
                 system_ttl: Optional[float] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.habit_ttl = habit_ttl
        self.system_ttl = system_ttl
        self.clock = clock
        self._index_lock = asyncio.Lock()

    # ===== ЧТЕНИЕ =====

    async def _get_index(self, month: int, year: int) -> Optional[List[str]]:
        index = await self.store.get(index_key(month, year))
        return list(index) if isinstance(index, list) else None

    async def has_cache(self, month: int, year: int) -> bool:
        """Была ли за месяц хоть одна успешная запись (пустой список тоже считается)"""
        return await self._get_index(month, year) is not None

    async def get_all_habits(self, month: int, year: int) -> Dict[str, Habit]:
        """Привычки месяца в порядке строк таблицы"""
        ids = await self._get_index(month, year)
        if ids is None:
            # Индекс истёк раньше записей - собираем по префиксу ключа
            raw = await self.store.get_prefixed(f"habit_{month:02d}_{year}_")
            ids = sorted(parse_habit_key(key)[0] for key in raw)
            data = {habit_key(habit_id, month, year): raw[habit_key(habit_id, month, year)] for habit_id in ids}
        else:
            data = await self.store.get_many(habit_key(habit_id, month, year) for habit_id in ids)

        habits: Dict[str, Habit] = {}
        for habit_id in ids:
            raw_habit = data.get(habit_key(habit_id, month, year))
            if raw_habit is None:
                continue
            try:
                habits[habit_id] = Habit.from_dict(raw_habit)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ Пропущена повреждённая привычка {habit_id} в кэше: {e}")
        return habits

    async def get_habit(self, habit_id: str, month: int, year: int) -> Optional[Habit]:
        raw = await self.store.get(habit_key(habit_id, month, year))
        if raw is None:
            return None
        try:
            return Habit.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ Повреждённая привычка {habit_id} в кэше: {e}")
            return None

    # ===== ЗАПИСЬ =====
    # Индекс меняется чтением-изменением-записью, поэтому все записи идут под одним замком

    async def store_habits(self, habits: Iterable[Habit], month: int, year: int):
        """Добавить или обновить привычки, не трогая остальные"""
        habits = list(habits)
        if not habits:
            return
        async with self._index_lock:
            ids = await self._get_index(month, year) or []
            known = set(ids)
            items = {}
            for habit in habits:
                items[habit_key(habit.id, month, year)] = habit.to_dict()
                if habit.id not in known:
                    ids.append(habit.id)
                    known.add(habit.id)
            items[index_key(month, year)] = ids
            await self.store.set_many(items, self.habit_ttl)

    async def store_habit(self, habit: Habit, month: int, year: int):
        await self.store_habits([habit], month, year)

    async def remove_habits(self, habit_ids: Iterable[str], month: int, year: int):
        habit_ids = list(habit_ids)
        if not habit_ids:
            return
        async with self._index_lock:
            ids = await self._get_index(month, year)
            if ids is not None:
                drop = set(habit_ids)
                await self.store.set(index_key(month, year), [i for i in ids if i not in drop], self.habit_ttl)
            await self.store.remove_many(habit_key(habit_id, month, year) for habit_id in habit_ids)

    async def replace_all(self, habits: List[Habit], month: int, year: int, stale_ids: Iterable[str] = ()):
        """Полная замена месяца: одна пакетная запись и одно пакетное удаление"""
        items = {habit_key(habit.id, month, year): habit.to_dict() for habit in habits}
        items[index_key(month, year)] = [habit.id for habit in habits]
        async with self._index_lock:
            await self.store.set_many(items, self.habit_ttl)
            await self.store.remove_many(habit_key(habit_id, month, year) for habit_id in stale_ids)

    # ===== СИСТЕМНЫЕ КЛЮЧИ =====

    async def get_last_sync(self) -> Optional[float]:
        value = await self.store.get(LAST_SYNC_KEY)
        return float(value) if value is not None else None

    async def set_last_sync(self, timestamp: Optional[float] = None):
        await self.store.set(LAST_SYNC_KEY, timestamp if timestamp is not None else self.clock(), self.system_ttl)

    async def get_spreadsheet_id(self, month: int, year: int) -> Optional[str]:
        """id таблицы, если он сохранён именно для этого месяца"""
        value = await self.store.get(SPREADSHEET_ID_KEY)
        if not isinstance(value, dict):
            return None
        if value.get('month') != month or value.get('year') != year:
            return None
        return value.get('spreadsheet_id')

    async def set_spreadsheet_id(self, spreadsheet_id: str, month: int, year: int):
        await self.store.set(SPREADSHEET_ID_KEY, {
            'spreadsheet_id': spreadsheet_id,
            'month': month,
            'year': year
        }, self.system_ttl)
