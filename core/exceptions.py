# core/exceptions.py

"""
Иерархия ошибок движка синхронизации привычек.

Все ошибки, которые SyncEngine превращает в объекты результата,
наследуются от HabitSyncError. Ошибки программирования сюда не входят
и пробрасываются как есть.
"""

from typing import Any, Dict, List, Optional


class HabitSyncError(Exception):
    """Базовое исключение движка синхронизации"""

    needs_auth: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': type(self).__name__,
            'message': str(self),
            'needs_auth': self.needs_auth
        }


# ===== АВТОРИЗАЦИЯ =====

class AuthRequiredError(HabitSyncError):
    """Токен отсутствует - запрос даже не отправлялся"""

    needs_auth = True

    def __init__(self, message: str = "Требуется авторизация"):
        super().__init__(message)


class AuthExpiredError(HabitSyncError):
    """Сервер ответил 401 - токен истёк или отозван"""

    needs_auth = True

    def __init__(self, message: str = "Срок действия авторизации истёк. Войдите снова."):
        super().__init__(message)


# ===== УДАЛЁННОЕ ХРАНИЛИЩЕ =====

class RemoteError(HabitSyncError):
    """Ответ не 2xx после исчерпания повторов"""

    def __init__(self, status: Optional[int], body: Any = None, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"Ошибка удалённого API: {status}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['status'] = self.status
        return data


class RateLimitedError(RemoteError):
    """429 повторялся дольше, чем позволяет политика повторов"""

    def __init__(self, body: Any = None):
        super().__init__(429, body, "Превышен лимит запросов к удалённому API")


class NetworkError(RemoteError):
    """Сбой транспорта (соединение, таймаут) после всех повторов"""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(None, str(cause), f"Сетевая ошибка: {cause}")


class HabitNotFoundError(HabitSyncError):
    """Строка с таким id не найдена в таблице"""

    def __init__(self, habit_id: str):
        self.habit_id = habit_id
        super().__init__(f"Привычка {habit_id} не найдена")


# ===== ВАЛИДАЦИЯ =====

class ValidationError(HabitSyncError):
    """Некорректные входные данные, никогда не повторяется"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Некорректные данные")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['errors'] = self.errors
        return data


# ===== ЛОКАЛЬНОЕ ХРАНИЛИЩЕ =====

class CacheCorruption(HabitSyncError):
    """Запись кэша устарела, несовместима по версии или повреждена.

    Наружу не выходит: CacheStore удаляет такую запись и отвечает промахом.
    """

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Запись кэша {key} недействительна: {reason}")


class StorageError(HabitSyncError):
    """Ошибка ввода-вывода постоянного key-value хранилища"""
    pass
