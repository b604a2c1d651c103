# services/scheduler.py

"""
Адаптивный фоновый планировщик синхронизации.

Интервал зависит от видимости приложения и истории сбоев:
ACTIVE пока приложение на экране, BACKGROUND в фоне и IDLE после
нескольких сбоев подряд. Один тик - это проверка состояния и одно
действие по её итогам. Сам таймер живёт в APScheduler.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import SchedulerConfig
from models.enums import Connectivity, IntervalTier, SchedulerState, Visibility
from models.results import BackgroundCheckResult, SyncResult
from services.background import BackgroundOperations
from services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'habit_background_sync'
INITIAL_CHECK_JOB_ID = 'habit_initial_check'
MAX_STORED_ERRORS = 20


class BackgroundScheduler:
    """Когда и как часто ходить в сеть"""

    def __init__(self, sync_engine: SyncEngine, operations: BackgroundOperations,
                 config: SchedulerConfig,
                 scheduler: Optional[AsyncIOScheduler] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.sync_engine = sync_engine
        self.operations = operations
        self.config = config
        self.clock = clock
        self._scheduler = scheduler or AsyncIOScheduler()

        self.state = SchedulerState.IDLE
        self.visibility = Visibility.VISIBLE
        self.connectivity = Connectivity.ONLINE
        self.consecutive_failures = 0
        self.last_check: Optional[datetime] = None
        self.last_attempt: Optional[float] = None
        self.last_sync_success: Optional[bool] = None
        self.background_status = "not_started"
        self.halted_for_auth = False
        self.errors: List[str] = []

        self._scheduled_interval: Optional[float] = None
        self._tick_in_flight = False
        self._resume_when_online = False
        # Меняется при каждой остановке: ответы старых тиков отбрасываются
        self._generation = 0

    # ===== СВОЙСТВА =====

    @property
    def is_active(self) -> bool:
        return self.state is not SchedulerState.IDLE

    @property
    def tier(self) -> IntervalTier:
        if self.consecutive_failures > self.config.failure_threshold:
            return IntervalTier.IDLE
        if self.visibility is Visibility.HIDDEN:
            return IntervalTier.BACKGROUND
        return IntervalTier.ACTIVE

    @property
    def interval(self) -> float:
        return {
            IntervalTier.ACTIVE: self.config.active_interval,
            IntervalTier.BACKGROUND: self.config.background_interval,
            IntervalTier.IDLE: self.config.idle_interval
        }[self.tier]

    @property
    def can_sync(self) -> bool:
        return (
            self.connectivity is Connectivity.ONLINE
            and not self.halted_for_auth
            and not self._tick_in_flight
            and not self.sync_engine.sync_in_progress
        )

    # ===== ЗАПУСК И ОСТАНОВКА =====

    def _schedule_interval(self):
        interval = self.interval
        if interval == self._scheduled_interval:
            return
        self._scheduler.add_job(
            self._run_scheduled_tick,
            IntervalTrigger(seconds=interval),
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self._scheduled_interval = interval
        logger.info(f"⏱️ Интервал фоновой синхронизации: {interval:.0f}с ({self.tier.value})")

    def _remove_job(self, job_id: str):
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def start(self) -> bool:
        """Запустить; повторный запуск ничего не делает"""
        if self.is_active:
            return False
        if self.connectivity is Connectivity.OFFLINE:
            logger.info("📴 Нет сети, запуск планировщика отложен")
            self._resume_when_online = True
            return False

        if not self._scheduler.running:
            self._scheduler.start()

        self.state = SchedulerState.SCHEDULED
        self.halted_for_auth = False
        self.background_status = "scheduled"
        self._scheduled_interval = None
        self._schedule_interval()
        self._scheduler.add_job(
            self._run_scheduled_tick,
            'date',
            run_date=datetime.now() + timedelta(seconds=self.config.initial_delay),
            id=INITIAL_CHECK_JOB_ID,
            replace_existing=True
        )
        logger.info("🚀 Фоновая синхронизация запущена")
        return True

    def stop(self) -> bool:
        """Остановить таймеры; запрос, который уже в пути, не прерывается"""
        if not self.is_active:
            return False
        self._remove_job(SYNC_JOB_ID)
        self._remove_job(INITIAL_CHECK_JOB_ID)
        self._scheduled_interval = None
        self._generation += 1
        self.state = SchedulerState.IDLE
        logger.info("⏹️ Фоновая синхронизация остановлена")
        return True

    def restart(self) -> bool:
        self.stop()
        return self.start()

    def shutdown(self):
        """Остановка вместе с APScheduler (при завершении процесса)"""
        self.stop()
        self._resume_when_online = False
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _halt_for_auth(self, reason: str):
        self._add_error(reason)
        self.background_status = "needs_auth"
        self.halted_for_auth = True
        self._resume_when_online = False
        logger.warning(f"🔑 Фоновая синхронизация остановлена до повторной авторизации: {reason}")
        self.stop()

    # ===== ТИК =====

    async def _run_scheduled_tick(self):
        await self._tick("timer")

    async def trigger_background_check(self) -> Optional[BackgroundCheckResult]:
        """Ручной запуск тика (с той же защитой от частых попыток)"""
        return await self._tick("manual")

    async def _tick(self, reason: str) -> Optional[BackgroundCheckResult]:
        if self._tick_in_flight:
            logger.debug(f"⏭️ Тик ({reason}) пропущен: предыдущий ещё идёт")
            return None
        if self.connectivity is Connectivity.OFFLINE:
            logger.debug(f"⏭️ Тик ({reason}) пропущен: нет сети")
            return None
        now = self.clock()
        if self.last_attempt is not None and now - self.last_attempt < self.config.min_sync_gap:
            logger.debug(f"⏭️ Тик ({reason}) пропущен: с прошлой попытки прошло {now - self.last_attempt:.1f}с")
            return None

        self._tick_in_flight = True
        self.last_attempt = now
        generation = self._generation
        if self.is_active:
            self.state = SchedulerState.RUNNING
        try:
            check = await self.operations.perform_background_check()
            if generation != self._generation:
                logger.info("⏹️ Планировщик остановлен во время проверки, результат отброшен")
                return None
            self.last_check = datetime.now()
            logger.debug(f"🔍 Проверка ({reason}): {check.to_dict()}")
            await self._act(check, generation)
            return check
        finally:
            self._tick_in_flight = False
            if self.state is SchedulerState.RUNNING:
                self.state = SchedulerState.SCHEDULED

    async def _act(self, check: BackgroundCheckResult, generation: int):
        if check.has_cache and check.healthy:
            self.background_status = "healthy"
            return

        if check.has_cache:
            logger.info("🔧 Кэш есть, но система не в порядке - пробуем восстановить")
            repair = await self.operations.auto_repair_system()
            if generation != self._generation:
                return
            if repair.success:
                self.background_status = "repaired"
                await self._refresh(generation)
            elif repair.needs_user_action:
                self._halt_for_auth("; ".join(repair.errors) or "Нужны действия пользователя")
            else:
                self.background_status = "repair_failed"
                self._register_failure("; ".join(repair.errors) or "Автовосстановление не удалось")
            return

        if check.healthy:
            logger.info("🔄 Кэша нет - загружаем данные из таблицы")
            await self._refresh(generation)
            return

        self.background_status = "needs_setup"
        self._add_error("Требуется полная настройка: " + "; ".join(check.errors))
        logger.warning(f"⚠️ Требуется полная настройка: {'; '.join(check.errors)}")
        if check.needs_auth:
            self._halt_for_auth("Нет действующей авторизации")

    async def _refresh(self, generation: int):
        result = await self.sync_engine.reconcile(force_refresh=True)
        if generation != self._generation:
            logger.info("⏹️ Планировщик остановлен во время сверки, итог не применяется")
            return
        self._apply_sync_result(result)

    def _apply_sync_result(self, result: SyncResult):
        if result.skipped:
            return
        self.last_sync_success = result.success
        if result.success:
            self.background_status = "synced"
            if self.consecutive_failures:
                logger.info(f"✅ Синхронизация восстановлена после {self.consecutive_failures} сбоев")
            self.consecutive_failures = 0
            self._reschedule()
            return
        if result.needs_auth:
            self._halt_for_auth(result.error or "Нужна авторизация")
            return
        self.background_status = "sync_failed"
        self._register_failure(result.error or "Сверка не удалась")

    def _register_failure(self, error: str):
        self.consecutive_failures += 1
        self._add_error(error)
        if self.consecutive_failures > self.config.failure_threshold:
            logger.warning(f"🐢 {self.consecutive_failures} сбоев подряд, переходим на редкий интервал")
        self._reschedule()

    def _reschedule(self):
        if self.is_active:
            self._schedule_interval()

    def _add_error(self, error: str):
        self.errors.append(f"{datetime.now():%H:%M:%S} {error}")
        del self.errors[:-MAX_STORED_ERRORS]

    # ===== СОБЫТИЯ ПРИЛОЖЕНИЯ =====

    async def on_visibility_change(self, visible: bool):
        previous = self.visibility
        self.visibility = Visibility.VISIBLE if visible else Visibility.HIDDEN
        if previous is self.visibility or not self.is_active:
            return
        self._reschedule()
        if self.visibility is Visibility.VISIBLE:
            await self._tick("visibility")

    async def on_focus(self):
        if not self.is_active:
            return
        if self.last_attempt is None or self.clock() - self.last_attempt >= self.config.focus_idle_gap:
            await self._tick("focus")

    async def on_online(self):
        was_offline = self.connectivity is Connectivity.OFFLINE
        self.connectivity = Connectivity.ONLINE
        if not was_offline:
            return
        logger.info("📶 Сеть появилась")
        if self._resume_when_online:
            self._resume_when_online = False
            self.start()
            await self._tick("online")

    def on_offline(self):
        if self.connectivity is Connectivity.OFFLINE:
            return
        self.connectivity = Connectivity.OFFLINE
        logger.info("📴 Сеть пропала, фоновая синхронизация на паузе")
        if self.is_active:
            self._resume_when_online = True
            self.stop()

    # ===== СТАТУС =====

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'is_active': self.is_active,
            'visibility': self.visibility.value,
            'connectivity': self.connectivity.value,
            'tier': self.tier.value,
            'interval': self.interval,
            'last_check': self.last_check.isoformat() if self.last_check else None,
            'last_attempt': self.last_attempt,
            'consecutive_failures': self.consecutive_failures,
            'last_sync_success': self.last_sync_success,
            'background_status': self.background_status,
            'halted_for_auth': self.halted_for_auth,
            'errors': list(self.errors),
            'can_sync': self.can_sync
        }

    def clear_errors(self):
        self.errors.clear()
