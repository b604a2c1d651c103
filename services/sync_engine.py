# services/sync_engine.py

"""
Движок синхронизации привычек.

Все изменения сначала уходят в таблицу и только после успеха попадают
в кэш. Номер строки определяется заново перед каждой записью: после
удаления строки сдвигаются. Сверка (reconcile) считает таблицу
источником истины и перезаписывает кэш целиком.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from core.exceptions import HabitNotFoundError, HabitSyncError, StorageError, ValidationError
from database.habit_cache import HabitCache
from models.enums import HabitCategory, HabitType
from models.habit import Habit, HabitFormData, generate_habit_id, validate_form
from models.results import (
    BatchOperationResult,
    HabitOperationResult,
    SyncChanges,
    SyncResult
)
from services.sheet_layout import habit_to_row, row_to_habit
from services.sheet_repository import SheetRepository

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Статистика сверок за время работы процесса"""
    sync_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    total_duration: float = 0.0
    last_result: Optional[SyncResult] = None
    last_success_at: Optional[float] = None

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.sync_count if self.sync_count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sync_count': self.sync_count,
            'error_count': self.error_count,
            'skipped_count': self.skipped_count,
            'average_duration': round(self.average_duration, 3),
            'last_result': self.last_result.to_dict() if self.last_result else None,
            'last_success_at': self.last_success_at
        }


class SyncEngine:
    """Операции над привычками и сверка кэша с таблицей"""

    def __init__(self, repository: SheetRepository, habit_cache: HabitCache,
                 freshness_window: float = 5 * 60,
                 id_factory: Callable[[], str] = generate_habit_id,
                 clock: Callable[[], float] = time.time,
                 monotonic: Callable[[], float] = time.monotonic):
        self.repository = repository
        self.habit_cache = habit_cache
        self.freshness_window = freshness_window
        self.id_factory = id_factory
        self.clock = clock
        self.monotonic = monotonic
        self.stats = SyncStats()
        self._sync_in_progress = False

    # ===== ВСПОМОГАТЕЛЬНЫЕ =====

    @property
    def period(self):
        month = self.repository.month
        return month.month, month.year

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    def _failed(self, action: str, error: HabitSyncError) -> HabitOperationResult:
        if error.needs_auth:
            logger.warning(f"🔑 {action}: нужна авторизация ({error})")
        else:
            logger.error(f"❌ Ошибка {action}: {error}")
        return HabitOperationResult.failed(error)

    async def _cache_habit(self, habit: Habit):
        # Таблица уже обновлена; сбой кэша исправит следующая сверка
        try:
            await self.habit_cache.store_habit(habit, *self.period)
        except StorageError as e:
            logger.error(f"❌ Привычка {habit.id} сохранена в таблице, но не в кэше: {e}")

    async def _uncache_habits(self, habit_ids: List[str]):
        try:
            await self.habit_cache.remove_habits(habit_ids, *self.period)
        except StorageError as e:
            logger.error(f"❌ Не удалось убрать из кэша {habit_ids}: {e}")

    async def _resolve_row(self, habit_id: str) -> int:
        row_index = await self.repository.find_row_index('id', habit_id)
        if row_index < 0:
            raise HabitNotFoundError(habit_id)
        return row_index

    async def _load_habit(self, habit_id: str) -> Habit:
        """Привычка из кэша, а при промахе - из таблицы"""
        habit = await self.habit_cache.get_habit(habit_id, *self.period)
        if habit is not None:
            return habit
        for row in await self.repository.fetch_rows():
            remote = row_to_habit(row, self.repository.month)
            if remote is not None and remote.id == habit_id:
                return remote
        raise HabitNotFoundError(habit_id)

    async def _write_habit(self, habit: Habit) -> Habit:
        row_index = await self._resolve_row(habit.id)
        await self.repository.update_row(row_index, habit_to_row(habit))
        await self._cache_habit(habit)
        return habit

    # ===== ОПЕРАЦИИ =====

    async def create_habit(self, form_data: Union[dict, HabitFormData]) -> HabitOperationResult:
        """Создать привычку: проверка формы, новая строка, затем кэш"""
        try:
            form = validate_form(form_data)
            habit = Habit.from_form(form, self.id_factory(), created=self.repository.today())
            await self.repository.append_row(habit_to_row(habit))
            await self._cache_habit(habit)
            logger.info(f"✅ Создана привычка {habit.id} ({habit.name})")
            return HabitOperationResult.ok(habit)
        except HabitSyncError as e:
            return self._failed("создания привычки", e)

    async def update_habit(self, habit: Habit) -> HabitOperationResult:
        """Перезаписать строку привычки целиком"""
        try:
            if not habit.name or not habit.name.strip():
                raise ValidationError(["Название привычки обязательно"])
            await self._write_habit(habit.copy())
            logger.info(f"✏️ Обновлена привычка {habit.id}")
            return HabitOperationResult.ok(habit)
        except HabitSyncError as e:
            return self._failed(f"обновления привычки {habit.id}", e)

    async def archive_habit(self, habit_id: str, archive: bool = True) -> HabitOperationResult:
        """Архивация - смена флага, строка остаётся в таблице"""
        try:
            habit = await self._load_habit(habit_id)
            habit.is_archived = archive
            await self._write_habit(habit)
            logger.info(f"📦 Привычка {habit_id} {'в архиве' if archive else 'возвращена из архива'}")
            return HabitOperationResult.ok(habit)
        except HabitSyncError as e:
            return self._failed(f"архивации привычки {habit_id}", e)

    async def track_day(self, habit_id: str, day: int, value: Union[int, float]) -> HabitOperationResult:
        """Отметить значение за день и пересчитать серии"""
        try:
            habit = await self._load_habit(habit_id)
            today = self.repository.today()
            habit.track(day, value, month=self.repository.month, now=datetime.now())
            habit.recalculate_streaks(today.day)
            await self._write_habit(habit)
            logger.info(f"📅 {habit_id}: день {day} = {value}, серия {habit.current_streak}")
            return HabitOperationResult.ok(habit)
        except HabitSyncError as e:
            return self._failed(f"отметки дня для {habit_id}", e)

    async def delete_habit(self, habit_id: str) -> HabitOperationResult:
        try:
            row_index = await self._resolve_row(habit_id)
            await self.repository.delete_row(row_index)
            await self._uncache_habits([habit_id])
            logger.info(f"🗑️ Удалена привычка {habit_id}")
            return HabitOperationResult.ok()
        except HabitSyncError as e:
            return self._failed(f"удаления привычки {habit_id}", e)

    async def batch_archive_habits(self, habit_ids: Iterable[str], archive: bool = True) -> BatchOperationResult:
        """По очереди, ошибка одной привычки не прерывает остальные"""
        result = BatchOperationResult()
        for habit_id in habit_ids:
            result.add(habit_id, await self.archive_habit(habit_id, archive))
        logger.info(f"📦 Пакетная архивация: {len(result.successful)} успешно, {len(result.failed)} с ошибкой")
        return result

    async def batch_delete_habits(self, habit_ids: Iterable[str]) -> BatchOperationResult:
        """По очереди: каждое удаление сдвигает строки, номер ищется заново"""
        result = BatchOperationResult()
        for habit_id in habit_ids:
            result.add(habit_id, await self.delete_habit(habit_id))
        logger.info(f"🗑️ Пакетное удаление: {len(result.successful)} успешно, {len(result.failed)} с ошибкой")
        return result

    # ===== СВЕРКА =====

    def _habits_from_rows(self, rows: List[List[str]]) -> Dict[str, Habit]:
        month = self.repository.month
        habits: Dict[str, Habit] = {}
        for row_index, row in enumerate(rows):
            habit = row_to_habit(row, month)
            if habit is None:
                continue
            if habit.id in habits:
                logger.warning(f"⚠️ Повтор id {habit.id} в строке {row_index}, оставлена первая строка")
                continue
            habits[habit.id] = habit
        return habits

    @staticmethod
    def _diff(cached: Dict[str, Habit], remote: Dict[str, Habit]) -> SyncChanges:
        changes = SyncChanges()
        for habit_id, habit in remote.items():
            local = cached.get(habit_id)
            if local is None:
                changes.added += 1
            elif habit_to_row(local) != habit_to_row(habit):
                changes.updated += 1
        changes.deleted = sum(1 for habit_id in cached if habit_id not in remote)
        return changes

    async def _is_fresh(self) -> bool:
        last_sync = await self.habit_cache.get_last_sync()
        if last_sync is None or self.clock() - last_sync >= self.freshness_window:
            return False
        return await self.habit_cache.has_cache(*self.period)

    async def reconcile(self, force_refresh: bool = False) -> SyncResult:
        """Привести кэш к содержимому таблицы (таблица побеждает)"""
        if self._sync_in_progress:
            logger.info("⏭️ Сверка уже идёт, повторный вызов пропущен")
            self.stats.skipped_count += 1
            return SyncResult(success=True, skipped=True)

        self._sync_in_progress = True
        started = self.monotonic()
        try:
            if not force_refresh and await self._is_fresh():
                logger.debug("⏭️ Кэш свежий, сверка не нужна")
                self.stats.skipped_count += 1
                return SyncResult(success=True, skipped=True)

            month, year = self.period
            remote = self._habits_from_rows(await self.repository.fetch_rows())
            cached = await self.habit_cache.get_all_habits(month, year)
            changes = self._diff(cached, remote)

            stale_ids = [habit_id for habit_id in cached if habit_id not in remote]
            await self.habit_cache.replace_all(list(remote.values()), month, year, stale_ids=stale_ids)
            await self.habit_cache.set_last_sync(self.clock())
            if self.repository.spreadsheet_id:
                await self.habit_cache.set_spreadsheet_id(self.repository.spreadsheet_id, month, year)

            result = SyncResult(success=True, changes=changes, synced_count=len(remote))
            if changes.total:
                logger.info(f"🔄 Сверка: +{changes.added} ~{changes.updated} -{changes.deleted}")
        except HabitSyncError as e:
            # Кэш не тронут: последний удачный снимок остаётся на экране
            logger.error(f"❌ Сверка не удалась: {e}")
            result = SyncResult(success=False, error=str(e), needs_auth=e.needs_auth)
        finally:
            self._sync_in_progress = False

        result.duration = self.monotonic() - started
        self._record(result)
        return result

    def _record(self, result: SyncResult):
        self.stats.sync_count += 1
        self.stats.total_duration += result.duration
        self.stats.last_result = result
        if result.success:
            self.stats.last_success_at = self.clock()
        else:
            self.stats.error_count += 1

    def get_sync_stats(self) -> Dict[str, Any]:
        return self.stats.to_dict()

    # ===== ЗАПРОСЫ К КЭШУ =====

    async def get_habits(self, include_archived: bool = True) -> List[Habit]:
        habits = list((await self.habit_cache.get_all_habits(*self.period)).values())
        if include_archived:
            return habits
        return [habit for habit in habits if not habit.is_archived]

    async def get_active_habits(self) -> List[Habit]:
        return await self.get_habits(include_archived=False)

    async def get_habits_by_category(self, category: HabitCategory) -> List[Habit]:
        category = HabitCategory(category)
        return [habit for habit in await self.get_active_habits() if habit.category is category]

    async def get_habits_by_type(self, habit_type: HabitType) -> List[Habit]:
        habit_type = HabitType(habit_type)
        return [habit for habit in await self.get_active_habits() if habit.habit_type is habit_type]
