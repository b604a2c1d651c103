# models/enums.py

from enum import Enum


class HabitType(str, Enum):
    """Тип привычки: полезная (цель) или вредная (лимит)"""
    GOOD = "good"
    BAD = "bad"


class HabitCategory(str, Enum):
    HEALTH = "health"
    FITNESS = "fitness"
    PRODUCTIVITY = "productivity"
    MINDFULNESS = "mindfulness"
    LEARNING = "learning"
    SOCIAL = "social"
    FINANCE = "finance"
    CREATIVITY = "creativity"
    OTHER = "other"


class Visibility(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


class Connectivity(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class SchedulerState(str, Enum):
    """Состояния фонового планировщика"""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class IntervalTier(str, Enum):
    """Уровни интервала фоновой синхронизации"""
    ACTIVE = "active"
    BACKGROUND = "background"
    IDLE = "idle"
