# models/habit.py

import random
import string
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from core.exceptions import ValidationError
from models.enums import HabitCategory, HabitType

Number = Union[int, float]

DEFAULT_COLOR = "#3b82f6"
MAX_DAYS_IN_MONTH = 31


def generate_habit_id() -> str:
    """habit_<мс с эпохи>_<9 случайных символов base36>"""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"habit_{int(time.time() * 1000)}_{suffix}"


def parse_number(raw: Any) -> Optional[Number]:
    """Число из ячейки таблицы; пустая или мусорная ячейка даёт None"""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return int(value) if value.is_integer() else value


@dataclass
class DailyTracking:
    """Отметка за один день месяца"""
    date: str  # ISO формат даты (YYYY-MM-DD)
    value: Number
    completed: bool
    timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "value": self.value,
            "completed": self.completed,
            "timestamp": self.timestamp
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DailyTracking":
        return cls(**data)


@dataclass
class Habit:
    """Привычка - ровно одна строка таблицы.

    habit_type выбирает, какое из полей осмысленно: goal для полезной
    привычки, limit для вредной. Второе поле всегда сбрасывается в None.
    """
    id: str
    name: str
    habit_type: HabitType = HabitType.GOOD
    description: str = ""
    difficulty_level: int = 3
    goal: Optional[Number] = None
    limit: Optional[Number] = None
    current_streak: int = 0
    longest_streak: int = 0
    # Ключ - день месяца 1..31; незаполненных дней в словаре нет
    daily_tracking: Dict[int, DailyTracking] = field(default_factory=dict)
    created_date: date = field(default_factory=date.today)
    color_code: str = DEFAULT_COLOR
    category: HabitCategory = HabitCategory.OTHER
    tags: List[str] = field(default_factory=list)
    is_archived: bool = False
    is_quantifiable: bool = False
    unit: str = ""
    start_time: str = ""
    subtasks: List[str] = field(default_factory=list)
    emoji: str = ""

    def __post_init__(self):
        self.habit_type = HabitType(self.habit_type)
        self.category = HabitCategory(self.category)
        if self.habit_type is HabitType.GOOD:
            self.limit = None
        elif self.habit_type is HabitType.BAD:
            self.goal = None

    @property
    def target(self) -> Optional[Number]:
        """Цель для полезной привычки или лимит для вредной"""
        if self.habit_type is HabitType.GOOD:
            return self.goal
        if self.habit_type is HabitType.BAD:
            return self.limit
        raise ValueError(f"Неизвестный тип привычки: {self.habit_type}")

    def is_value_completed(self, value: Optional[Number]) -> bool:
        """Выполнен ли день с таким значением"""
        if value is None:
            return False
        if self.habit_type is HabitType.GOOD:
            return value >= self.goal if self.goal else value > 0
        if self.habit_type is HabitType.BAD:
            return value <= self.limit if self.limit is not None else value == 0
        raise ValueError(f"Неизвестный тип привычки: {self.habit_type}")

    def is_completed_on(self, day: int) -> bool:
        tracking = self.daily_tracking.get(day)
        return bool(tracking and tracking.completed)

    def track(self, day: int, value: Number, month: date, now: Optional[datetime] = None) -> DailyTracking:
        """Записать значение за день месяца month"""
        if not 1 <= day <= MAX_DAYS_IN_MONTH:
            raise ValidationError([f"День должен быть от 1 до {MAX_DAYS_IN_MONTH}"])
        try:
            day_date = month.replace(day=day)
        except ValueError:
            raise ValidationError([f"В месяце {month:%m/%Y} нет дня {day}"])

        tracking = DailyTracking(
            date=day_date.isoformat(),
            value=value,
            completed=self.is_value_completed(value),
            timestamp=(now or datetime.now()).isoformat()
        )
        self.daily_tracking[day] = tracking
        return tracking

    def recalculate_streaks(self, today: int):
        """Пересчёт серий по дням 1..today текущего месяца"""
        run = 0
        longest = self.longest_streak
        for day in range(1, min(today, MAX_DAYS_IN_MONTH) + 1):
            if self.is_completed_on(day):
                run += 1
                longest = max(longest, run)
            else:
                run = 0
        self.current_streak = run
        self.longest_streak = longest

    def copy(self) -> "Habit":
        return Habit.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        """Сериализация в словарь"""
        return {
            "id": self.id,
            "name": self.name,
            "habit_type": self.habit_type.value,
            "description": self.description,
            "difficulty_level": self.difficulty_level,
            "goal": self.goal,
            "limit": self.limit,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "daily_tracking": {str(day): t.to_dict() for day, t in sorted(self.daily_tracking.items())},
            "created_date": self.created_date.isoformat(),
            "color_code": self.color_code,
            "category": self.category.value,
            "tags": list(self.tags),
            "is_archived": self.is_archived,
            "is_quantifiable": self.is_quantifiable,
            "unit": self.unit,
            "start_time": self.start_time,
            "subtasks": list(self.subtasks),
            "emoji": self.emoji
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Habit":
        data = dict(data)
        data["daily_tracking"] = {
            int(day): DailyTracking.from_dict(t)
            for day, t in (data.get("daily_tracking") or {}).items()
        }
        if isinstance(data.get("created_date"), str):
            data["created_date"] = date.fromisoformat(data["created_date"])
        return cls(**data)

    @classmethod
    def from_form(cls, form: "HabitFormData", habit_id: str, created: Optional[date] = None) -> "Habit":
        return cls(
            id=habit_id,
            name=form.name,
            habit_type=form.habit_type,
            description=form.description,
            difficulty_level=form.difficulty_level,
            goal=form.goal,
            limit=form.limit,
            created_date=created or date.today(),
            color_code=form.color_code,
            category=form.category,
            tags=list(form.tags),
            is_quantifiable=form.is_quantifiable,
            unit=form.unit,
            start_time=form.start_time,
            subtasks=list(form.subtasks),
            emoji=form.emoji
        )


# ===== ФОРМА СОЗДАНИЯ =====

class HabitFormData(BaseModel):
    """Данные формы создания привычки (принимает camelCase ключи)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    name: str = Field(..., max_length=100)
    description: str = Field("", max_length=500)
    habit_type: HabitType = HabitType.GOOD
    difficulty_level: int = Field(3, ge=1, le=5)
    goal: Optional[float] = Field(None, gt=0)
    limit: Optional[float] = Field(None, ge=0)
    category: HabitCategory = HabitCategory.OTHER
    tags: List[str] = Field(default_factory=list, max_length=10)
    is_quantifiable: bool = False
    unit: str = Field("", max_length=20)
    start_time: str = ""
    subtasks: List[str] = Field(default_factory=list, max_length=20)
    color_code: str = DEFAULT_COLOR
    emoji: str = ""

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Название привычки обязательно')
        return v

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, v):
        if not v:
            return v
        try:
            datetime.strptime(v, "%H:%M")
        except ValueError:
            raise ValueError('Время начала должно быть в формате HH:MM')
        return v

    @field_validator('goal', 'limit')
    @classmethod
    def normalize_number(cls, v):
        if v is not None and float(v).is_integer():
            return int(v)
        return v


def validate_form(form_data: Union[dict, HabitFormData]) -> HabitFormData:
    """Проверка формы; ошибки pydantic превращаются в ValidationError"""
    if isinstance(form_data, HabitFormData):
        return form_data
    try:
        return HabitFormData.model_validate(form_data)
    except PydanticValidationError as e:
        errors = []
        for err in e.errors():
            location = ".".join(str(part) for part in err.get("loc", ()))
            errors.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
        raise ValidationError(errors) from e
