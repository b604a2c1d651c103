"""
Модели данных движка синхронизации привычек
"""

from .enums import (
    HabitType,
    HabitCategory,
    Visibility,
    Connectivity,
    SchedulerState,
    IntervalTier
)

from .habit import (
    DailyTracking,
    Habit,
    HabitFormData,
    generate_habit_id,
    validate_form
)

from .results import (
    HabitOperationResult,
    BatchOperationResult,
    SyncChanges,
    SyncResult,
    BackgroundCheckResult,
    RepairResult
)

__all__ = [
    # Enums
    'HabitType',
    'HabitCategory',
    'Visibility',
    'Connectivity',
    'SchedulerState',
    'IntervalTier',

    # Habit models
    'DailyTracking',
    'Habit',
    'HabitFormData',
    'generate_habit_id',
    'validate_form',

    # Results
    'HabitOperationResult',
    'BatchOperationResult',
    'SyncChanges',
    'SyncResult',
    'BackgroundCheckResult',
    'RepairResult'
]
