#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Habit Sync - фоновая синхронизация привычек с Google Sheets

Запуск:
    python main.py          # работать до SIGINT/SIGTERM
    python main.py --once   # одна сверка и выход
"""

import argparse
import asyncio
import logging
import logging.config
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import load_config
from services import ServiceManager

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = 'cache_cleanup'


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Фоновая синхронизация привычек с Google Sheets")
    parser.add_argument('--once', action='store_true', help="выполнить одну сверку и выйти")
    return parser.parse_args(argv)


async def cleanup_cache(manager: ServiceManager):
    """Периодическая очистка устаревших записей кэша"""
    removed = await manager.cache_store.cleanup_expired()
    logger.debug(f"🧹 Плановая очистка кэша: удалено {removed}")


async def run_once(manager: ServiceManager) -> int:
    if not await manager.bootstrap():
        logger.error("❌ Сверка не выполнена")
        return 1
    stats = manager.sync_engine.get_sync_stats()
    logger.info(f"✅ Сверка выполнена: {stats['last_result']}")
    return 0


async def run_forever(manager: ServiceManager, job_scheduler: AsyncIOScheduler) -> int:
    stop_event = asyncio.Event()

    def signal_handler(signum):
        """Обработчик сигналов для graceful shutdown"""
        logger.info(f"📢 Получен сигнал {signum}, завершение работы...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    await manager.bootstrap()

    job_scheduler.add_job(
        cleanup_cache,
        IntervalTrigger(seconds=manager.config.cache.cleanup_interval),
        args=[manager],
        id=CLEANUP_JOB_ID,
        replace_existing=True
    )
    manager.scheduler.start()
    logger.info("🚀 Синхронизация запущена, ожидание сигнала остановки")

    await stop_event.wait()
    return 0


async def main(argv=None) -> int:
    """Главная функция запуска"""
    args = parse_args(argv)

    try:
        config = load_config()
    except ValueError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"❌ {e}")
        return 2

    logging.config.dictConfig(config.get_logging_config())
    logger.info(f"🔧 Конфигурация: {config.to_dict()}")

    job_scheduler = AsyncIOScheduler()
    manager = ServiceManager()
    if not manager.initialize_services(config, job_scheduler=job_scheduler):
        return 1

    async with manager:
        if args.once:
            return await run_once(manager)
        return await run_forever(manager, job_scheduler)


# ===== ТОЧКА ВХОДА =====

def run():
    """Синхронная обёртка для консольной команды habit-sync"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("👋 Остановлено пользователем")


if __name__ == "__main__":
    run()
