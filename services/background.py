# services/background.py

"""
Проверка состояния системы и автоматический ремонт для фонового планировщика.
"""

import logging
from typing import List

from core.auth import TokenProvider
from core.exceptions import HabitSyncError, StorageError
from database.habit_cache import HabitCache
from models.results import BackgroundCheckResult, RepairResult
from services.sheet_repository import SheetRepository

logger = logging.getLogger(__name__)


class BackgroundOperations:
    """Снимок здоровья системы на один тик и попытка починки без пользователя"""

    def __init__(self, token_provider: TokenProvider, repository: SheetRepository, habit_cache: HabitCache):
        self.token_provider = token_provider
        self.repository = repository
        self.habit_cache = habit_cache

    async def _check_auth(self, errors: List[str]) -> bool:
        token = await self.token_provider.get_token()
        if not token:
            errors.append("Нет токена доступа")
            return False
        if not await self.token_provider.has_required_scopes():
            errors.append("Выданы не все необходимые права доступа")
            return False
        return True

    async def perform_background_check(self) -> BackgroundCheckResult:
        """Только локальные проверки, без запросов к таблице"""
        errors: List[str] = []
        month = self.repository.month

        try:
            has_cache = await self.habit_cache.has_cache(month.month, month.year)
        except StorageError as e:
            errors.append(f"Кэш недоступен: {e}")
            has_cache = False

        is_auth_valid = await self._check_auth(errors)

        spreadsheet_id = self.repository.spreadsheet_id
        if not spreadsheet_id:
            try:
                spreadsheet_id = await self.habit_cache.get_spreadsheet_id(month.month, month.year)
            except StorageError as e:
                errors.append(f"Кэш недоступен: {e}")
            if spreadsheet_id:
                self.repository.set_spreadsheet_id(spreadsheet_id)
        has_file_structure = bool(spreadsheet_id)
        if not has_file_structure:
            errors.append(f"Таблица за {month:%m/%Y} ещё не найдена")

        healthy = is_auth_valid and has_file_structure
        return BackgroundCheckResult(
            has_cache=has_cache,
            needs_full_setup=not has_cache and not healthy,
            needs_auth=not is_auth_valid,
            is_auth_valid=is_auth_valid,
            has_file_structure=has_file_structure,
            errors=errors
        )

    async def auto_repair_system(self) -> RepairResult:
        """Обновить токен при необходимости и заново найти таблицу месяца"""
        repaired: List[str] = []
        errors: List[str] = []
        try:
            token = await self.token_provider.get_token()
            if not token:
                await self.token_provider.refresh()
                repaired.append('auth')
            if not await self.token_provider.has_required_scopes():
                return RepairResult(
                    success=False,
                    needs_user_action=True,
                    repaired=repaired,
                    errors=["Выданы не все необходимые права доступа"]
                )

            spreadsheet_id = await self.repository.setup_drive(force=True)
            repaired.append('file_structure')

            month = self.repository.month
            await self.habit_cache.set_spreadsheet_id(spreadsheet_id, month.month, month.year)
            repaired.append('spreadsheet_link')
        except HabitSyncError as e:
            errors.append(str(e))
            logger.error(f"❌ Автовосстановление не удалось: {e}")
            return RepairResult(success=False, needs_user_action=e.needs_auth, repaired=repaired, errors=errors)

        logger.info(f"🔧 Автовосстановление выполнено: {', '.join(repaired)}")
        return RepairResult(success=True, repaired=repaired)
