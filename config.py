#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Habit Sync - конфигурация
Централизованная конфигурация из переменных окружения с валидацией
"""

import os
import sys
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum

from core.auth import DEFAULT_SCOPES


class Environment(Enum):
    """Среды выполнения"""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class LogLevel(Enum):
    """Уровни логирования"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class GoogleConfig:
    """Доступ к Google Drive / Sheets"""
    credentials_file: Optional[Path] = None
    access_token: Optional[str] = None
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    root_folder: str = "HabitTracker"
    sub_folder: str = "HabitManager"
    spreadsheet_prefix: str = "habitManager"
    drive_api_url: str = "https://www.googleapis.com/drive/v3"
    sheets_api_url: str = "https://sheets.googleapis.com/v4"


@dataclass
class HttpConfig:
    """Повторы и задержки HTTP-клиента (секунды)"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0
    request_delay: float = 0.1  # пауза перед каждым запросом к таблице
    timeout: float = 30.0


@dataclass
class CacheConfig:
    """Локальный кэш"""
    schema_version: str = "1.0.0"
    habit_ttl: Optional[float] = 2 * 60 * 60
    system_ttl: Optional[float] = None  # бессрочно
    storage_path: Optional[Path] = None  # None - только в памяти
    cleanup_budget: float = 5.0
    cleanup_interval: float = 30 * 60


@dataclass
class SchedulerConfig:
    """Фоновая синхронизация (секунды)"""
    active_interval: float = 5 * 60
    background_interval: float = 15 * 60
    idle_interval: float = 30 * 60
    min_sync_gap: float = 30.0
    initial_delay: float = 3.0
    failure_threshold: int = 2
    freshness_window: float = 5 * 60
    focus_idle_gap: float = 5 * 60


def _env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    if raw.lower() in ('none', 'never'):
        return None
    return float(raw)


def _env_bool(key: str, default: bool) -> bool:
    return os.getenv(key, str(default)).lower() == 'true'


class SyncConfig:
    """Главный класс конфигурации"""

    def __init__(self):
        self.environment = Environment(os.getenv('ENVIRONMENT', 'development'))
        self._load_config()
        self._validate_config()
        self._ensure_directories()

    def _load_config(self):
        """Загрузка конфигурации из переменных окружения"""

        # Директории
        self.data_dir = Path(os.getenv('DATA_DIR', 'data'))
        self.log_dir = Path(os.getenv('LOG_DIR', 'logs'))

        credentials = os.getenv('GOOGLE_CREDENTIALS_FILE')
        scopes = os.getenv('GOOGLE_SCOPES')
        self.google = GoogleConfig(
            credentials_file=Path(credentials) if credentials else None,
            access_token=os.getenv('GOOGLE_ACCESS_TOKEN') or None,
            scopes=scopes.split(',') if scopes else list(DEFAULT_SCOPES),
            root_folder=os.getenv('DRIVE_ROOT_FOLDER', 'HabitTracker'),
            sub_folder=os.getenv('DRIVE_SUB_FOLDER', 'HabitManager'),
            spreadsheet_prefix=os.getenv('SPREADSHEET_PREFIX', 'habitManager')
        )

        self.http = HttpConfig(
            max_retries=int(os.getenv('HTTP_MAX_RETRIES', 3)),
            base_delay=float(os.getenv('HTTP_BASE_DELAY', 1.0)),
            max_delay=float(os.getenv('HTTP_MAX_DELAY', 30.0)),
            jitter=float(os.getenv('HTTP_JITTER', 1.0)),
            request_delay=float(os.getenv('SHEETS_REQUEST_DELAY', 0.1)),
            timeout=float(os.getenv('HTTP_TIMEOUT', 30.0))
        )

        self.cache = CacheConfig(
            schema_version=os.getenv('CACHE_SCHEMA_VERSION', '1.0.0'),
            habit_ttl=_env_float('CACHE_HABIT_TTL', 2 * 60 * 60),
            system_ttl=_env_float('CACHE_SYSTEM_TTL', None),
            storage_path=None if _env_bool('CACHE_IN_MEMORY', False) else self.data_dir / "cache.json",
            cleanup_budget=float(os.getenv('CACHE_CLEANUP_BUDGET', 5.0)),
            cleanup_interval=float(os.getenv('CACHE_CLEANUP_INTERVAL', 30 * 60))
        )

        self.scheduler = SchedulerConfig(
            active_interval=float(os.getenv('SYNC_ACTIVE_INTERVAL', 5 * 60)),
            background_interval=float(os.getenv('SYNC_BACKGROUND_INTERVAL', 15 * 60)),
            idle_interval=float(os.getenv('SYNC_IDLE_INTERVAL', 30 * 60)),
            min_sync_gap=float(os.getenv('SYNC_MIN_GAP', 30)),
            initial_delay=float(os.getenv('SYNC_INITIAL_DELAY', 3)),
            failure_threshold=int(os.getenv('SYNC_FAILURE_THRESHOLD', 2)),
            freshness_window=float(os.getenv('SYNC_FRESHNESS_WINDOW', 5 * 60)),
            focus_idle_gap=float(os.getenv('SYNC_FOCUS_IDLE_GAP', 5 * 60))
        )

        # Логирование
        self.log_level = LogLevel(os.getenv('LOG_LEVEL', 'INFO'))
        self.log_to_file = _env_bool('LOG_TO_FILE', True)
        self.log_format = os.getenv(
            'LOG_FORMAT',
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )

    def _validate_config(self):
        """Валидация конфигурации"""
        errors = []

        if not self.google.access_token and not self.google.credentials_file:
            errors.append("Нужен GOOGLE_ACCESS_TOKEN или GOOGLE_CREDENTIALS_FILE")
        elif self.google.credentials_file and not self.google.credentials_file.exists():
            errors.append(f"Файл ключа {self.google.credentials_file} не найден")

        if self.http.max_retries < 0:
            errors.append("HTTP_MAX_RETRIES не может быть отрицательным")
        if self.http.base_delay <= 0 or self.http.max_delay < self.http.base_delay:
            errors.append("Задержки HTTP: нужно 0 < HTTP_BASE_DELAY <= HTTP_MAX_DELAY")
        if self.http.jitter < 0 or self.http.request_delay < 0:
            errors.append("HTTP_JITTER и SHEETS_REQUEST_DELAY не могут быть отрицательными")

        if not self.cache.schema_version.strip():
            errors.append("CACHE_SCHEMA_VERSION не может быть пустым")
        for name, ttl in (('CACHE_HABIT_TTL', self.cache.habit_ttl), ('CACHE_SYSTEM_TTL', self.cache.system_ttl)):
            if ttl is not None and ttl < 0:
                errors.append(f"{name} не может быть отрицательным")

        scheduler = self.scheduler
        if not 0 < scheduler.active_interval <= scheduler.background_interval <= scheduler.idle_interval:
            errors.append("Интервалы синхронизации: нужно 0 < ACTIVE <= BACKGROUND <= IDLE")
        if scheduler.failure_threshold < 0:
            errors.append("SYNC_FAILURE_THRESHOLD не может быть отрицательным")
        if scheduler.min_sync_gap < 0 or scheduler.initial_delay < 0:
            errors.append("SYNC_MIN_GAP и SYNC_INITIAL_DELAY не могут быть отрицательными")

        if errors:
            raise ValueError("Ошибки конфигурации:\n" + "\n".join(f"• {error}" for error in errors))

        if self.google.access_token and self.google.credentials_file:
            logging.warning("⚠️ Заданы и токен, и ключ сервисного аккаунта - используется ключ")

    def _ensure_directories(self):
        """Создание необходимых директорий"""
        directories = [self.data_dir, self.log_dir]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def get_logging_config(self) -> Dict[str, Any]:
        """Получение конфигурации логирования"""
        handlers = ['console']
        if self.log_to_file:
            handlers.append('file')

        return {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': self.log_format,
                    'datefmt': '%Y-%m-%d %H:%M:%S'
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': self.log_level.value,
                    'formatter': 'default',
                    'stream': sys.stdout
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'level': self.log_level.value,
                    'formatter': 'default',
                    'filename': self.log_dir / f"habit_sync_{self.environment.value}.log",
                    'maxBytes': 10485760,  # 10MB
                    'backupCount': 5,
                    'encoding': 'utf-8'
                }
            },
            'loggers': {
                '': {
                    'level': self.log_level.value,
                    'handlers': handlers,
                    'propagate': False
                },
                'aiohttp': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'apscheduler': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'urllib3': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                }
            }
        }

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация конфигурации в словарь (без секретов)"""
        return {
            'environment': self.environment.value,
            'google': {
                'auth': 'service_account' if self.google.credentials_file else 'token',
                'root_folder': self.google.root_folder,
                'sub_folder': self.google.sub_folder
            },
            'cache': {
                'schema_version': self.cache.schema_version,
                'habit_ttl': self.cache.habit_ttl,
                'storage': str(self.cache.storage_path) if self.cache.storage_path else 'memory'
            },
            'scheduler': {
                'active_interval': self.scheduler.active_interval,
                'background_interval': self.scheduler.background_interval,
                'idle_interval': self.scheduler.idle_interval
            },
            'log_level': self.log_level.value
        }


def load_config() -> SyncConfig:
    """Собрать конфигурацию из окружения (для точки сборки сервисов)"""
    return SyncConfig()
