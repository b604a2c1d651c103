# models/results.py

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.exceptions import HabitSyncError
from models.habit import Habit


@dataclass
class HabitOperationResult:
    """Результат одиночной операции над привычкой"""
    success: bool
    data: Optional[Habit] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    needs_auth: bool = False

    @classmethod
    def ok(cls, habit: Optional[Habit] = None) -> "HabitOperationResult":
        return cls(success=True, data=habit)

    @classmethod
    def failed(cls, error: HabitSyncError) -> "HabitOperationResult":
        return cls(
            success=False,
            error=str(error),
            error_type=type(error).__name__,
            needs_auth=error.needs_auth
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'data': self.data.to_dict() if self.data else None,
            'error': self.error,
            'error_type': self.error_type,
            'needs_auth': self.needs_auth
        }


@dataclass
class BatchOperationResult:
    """Итог пакетной операции: успехи и ошибки по каждому id"""
    successful: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    needs_auth: bool = False

    @property
    def success(self) -> bool:
        return not self.failed

    def add(self, habit_id: str, result: HabitOperationResult):
        if result.success:
            self.successful.append(habit_id)
        else:
            self.failed.append(habit_id)
            self.errors[habit_id] = result.error or ""
            self.needs_auth = self.needs_auth or result.needs_auth

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'successful': self.successful,
            'failed': self.failed,
            'errors': self.errors,
            'needs_auth': self.needs_auth
        }


@dataclass
class SyncChanges:
    added: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.added + self.updated + self.deleted

    def to_dict(self) -> Dict[str, int]:
        return {'added': self.added, 'updated': self.updated, 'deleted': self.deleted}


@dataclass
class SyncResult:
    """Результат сверки кэша с таблицей"""
    success: bool
    changes: SyncChanges = field(default_factory=SyncChanges)
    error: Optional[str] = None
    needs_auth: bool = False
    skipped: bool = False
    synced_count: int = 0
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'changes': self.changes.to_dict(),
            'error': self.error,
            'needs_auth': self.needs_auth,
            'skipped': self.skipped,
            'synced_count': self.synced_count,
            'duration': round(self.duration, 3)
        }


@dataclass
class BackgroundCheckResult:
    """Снимок состояния системы на один тик; никогда не сохраняется"""
    has_cache: bool
    needs_full_setup: bool
    needs_auth: bool
    is_auth_valid: bool
    has_file_structure: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        """Авторизация в порядке и таблица месяца известна"""
        return self.is_auth_valid and self.has_file_structure

    def to_dict(self) -> Dict[str, Any]:
        return {
            'has_cache': self.has_cache,
            'needs_full_setup': self.needs_full_setup,
            'needs_auth': self.needs_auth,
            'is_auth_valid': self.is_auth_valid,
            'has_file_structure': self.has_file_structure,
            'errors': list(self.errors)
        }


@dataclass
class RepairResult:
    success: bool
    needs_user_action: bool = False
    repaired: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'needs_user_action': self.needs_user_action,
            'repaired': list(self.repaired),
            'errors': list(self.errors)
        }
