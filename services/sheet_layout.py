# services/sheet_layout.py

"""
Раскладка привычки по колонкам таблицы.

Одна привычка - одна строка из 50 колонок (A..AX). Колонка 0 (id) -
единственный стабильный идентификатор: номер строки сдвигается после
каждого удаления.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from models.enums import HabitCategory, HabitType
from models.habit import DEFAULT_COLOR, MAX_DAYS_IN_MONTH, DailyTracking, Habit, parse_number

logger = logging.getLogger(__name__)

DAY_COLUMNS = [str(day) for day in range(1, MAX_DAYS_IN_MONTH + 1)]

HEADER: List[str] = [
    'id', 'name', 'description', 'habitType', 'difficultyLevel', 'goal', 'limit', 'currentStreak',
    *DAY_COLUMNS,
    'createdDate', 'colorCode', 'longestStreak', 'category', 'tags', 'isArchived',
    'isQuantifiable', 'unit', 'startTime', 'subtasks', 'emoji'
]

COLUMN_COUNT = len(HEADER)
COLUMNS: Dict[str, int] = {name: index for index, name in enumerate(HEADER)}
FIRST_DAY_COLUMN = COLUMNS['1']


def column_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 49 -> AX"""
    if index < 0:
        raise ValueError(f"Отрицательный номер колонки: {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


LAST_COLUMN = column_letter(COLUMN_COUNT - 1)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def habit_to_row(habit: Habit) -> List[str]:
    """Привычка -> строка таблицы (ровно COLUMN_COUNT ячеек-строк)"""
    days = [""] * MAX_DAYS_IN_MONTH
    for day, tracking in habit.daily_tracking.items():
        if 1 <= day <= MAX_DAYS_IN_MONTH:
            days[day - 1] = _cell(tracking.value)

    row = [
        habit.id,
        habit.name,
        habit.description,
        habit.habit_type.value,
        _cell(habit.difficulty_level),
        _cell(habit.goal),
        _cell(habit.limit),
        _cell(habit.current_streak),
        *days,
        habit.created_date.isoformat(),
        habit.color_code,
        _cell(habit.longest_streak),
        habit.category.value,
        json.dumps(habit.tags, ensure_ascii=False),
        _cell(habit.is_archived),
        _cell(habit.is_quantifiable),
        habit.unit,
        habit.start_time,
        json.dumps(habit.subtasks, ensure_ascii=False),
        habit.emoji
    ]
    return row


def _get(row: Sequence[Any], column: str) -> str:
    index = COLUMNS[column]
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def _parse_int(raw: str, default: int) -> int:
    value = parse_number(raw)
    return int(value) if value is not None else default


def _parse_tags(raw: str) -> List[str]:
    if raw.startswith('['):
        # JSON-массив; строка через запятую осталась от ранних версий
        try:
            return [str(tag) for tag in json.loads(raw)]
        except (json.JSONDecodeError, TypeError):
            pass
    return [tag.strip() for tag in raw.split(',') if tag.strip()]


def _parse_list(raw: str) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(item) for item in value] if isinstance(value, list) else []


def _parse_date(raw: str, fallback: date) -> date:
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return fallback


def _parse_enum(enum_cls, raw: str, default):
    try:
        return enum_cls(raw.lower())
    except ValueError:
        return default


def row_to_habit(row: Sequence[Any], month: date) -> Optional[Habit]:
    """Строка таблицы -> привычка; строка без id даёт None.

    Даты отметок восстанавливаются из месяца таблицы: в ячейке хранится
    только значение.
    """
    habit_id = _get(row, 'id')
    if not habit_id:
        return None

    habit_type = _parse_enum(HabitType, _get(row, 'habitType'), HabitType.GOOD)
    habit = Habit(
        id=habit_id,
        name=_get(row, 'name'),
        habit_type=habit_type,
        description=_get(row, 'description'),
        difficulty_level=_parse_int(_get(row, 'difficultyLevel'), 3),
        goal=parse_number(_get(row, 'goal')),
        limit=parse_number(_get(row, 'limit')),
        current_streak=_parse_int(_get(row, 'currentStreak'), 0),
        longest_streak=_parse_int(_get(row, 'longestStreak'), 0),
        created_date=_parse_date(_get(row, 'createdDate'), month),
        color_code=_get(row, 'colorCode') or DEFAULT_COLOR,
        category=_parse_enum(HabitCategory, _get(row, 'category'), HabitCategory.OTHER),
        tags=_parse_tags(_get(row, 'tags')),
        is_archived=_get(row, 'isArchived').upper() == 'TRUE',
        is_quantifiable=_get(row, 'isQuantifiable').upper() == 'TRUE',
        unit=_get(row, 'unit'),
        start_time=_get(row, 'startTime'),
        subtasks=_parse_list(_get(row, 'subtasks')),
        emoji=_get(row, 'emoji')
    )

    for day in range(1, MAX_DAYS_IN_MONTH + 1):
        value = parse_number(_get(row, str(day)))
        if value is None:
            continue
        try:
            day_date = month.replace(day=day)
        except ValueError:
            logger.debug(f"Пропущена отметка за несуществующий день {day} в {month:%m/%Y} ({habit_id})")
            continue
        habit.daily_tracking[day] = DailyTracking(
            date=day_date.isoformat(),
            value=value,
            completed=habit.is_value_completed(value),
            timestamp=None
        )
    return habit
