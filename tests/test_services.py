"""Tests for background health checks, auto-repair and service wiring."""
from __future__ import annotations

import pytest

from config import SyncConfig
from core.auth import ServiceAccountTokenProvider, StaticTokenProvider
from core.exceptions import AuthRequiredError
from database.storage import MemoryStorage
from services import ServiceManager
from services.background import BackgroundOperations
from services.sheet_repository import SheetRepository
from services.sync_engine import SyncEngine
from tests.conftest import TODAY, RecordingSleep
from tests.fakes import FakeJobScheduler

MONTH, YEAR = TODAY.month, TODAY.year


class TestBackgroundOperations:
    @pytest.fixture
    def operations(self, token_provider, repository, habit_cache) -> BackgroundOperations:
        return BackgroundOperations(token_provider, repository, habit_cache)

    async def test_fresh_install_needs_full_setup(self, operations, fake_api):
        check = await operations.perform_background_check()

        assert check.has_cache is False
        assert check.is_auth_valid is True
        assert check.has_file_structure is False
        assert check.needs_full_setup is True
        assert check.needs_auth is False
        assert fake_api.requests == []

    async def test_cached_spreadsheet_link_is_restored(self, operations, repository, habit_cache):
        await habit_cache.set_spreadsheet_id("sheet_1", MONTH, YEAR)

        check = await operations.perform_background_check()

        assert check.has_file_structure is True
        assert check.healthy is True
        assert check.needs_full_setup is False
        assert repository.spreadsheet_id == "sheet_1"

    async def test_missing_token_needs_auth(self, repository, habit_cache):
        operations = BackgroundOperations(StaticTokenProvider(None), repository, habit_cache)
        check = await operations.perform_background_check()
        assert check.needs_auth is True
        assert check.is_auth_valid is False

    async def test_missing_scopes_invalidate_auth(self, repository, habit_cache):
        provider = StaticTokenProvider("test-token", granted_scopes=[])
        operations = BackgroundOperations(provider, repository, habit_cache)
        check = await operations.perform_background_check()
        assert check.is_auth_valid is False

    async def test_repair_sets_up_drive_and_caches_link(self, operations, repository, habit_cache, fake_api):
        repair = await operations.auto_repair_system()

        assert repair.success is True
        assert repair.repaired == ['file_structure', 'spreadsheet_link']
        assert await habit_cache.get_spreadsheet_id(MONTH, YEAR) == repository.spreadsheet_id
        assert len(fake_api.files) == 4

    async def test_repair_without_token_needs_user(self, repository, habit_cache, fake_api):
        operations = BackgroundOperations(StaticTokenProvider(None), repository, habit_cache)
        repair = await operations.auto_repair_system()
        assert repair.success is False
        assert repair.needs_user_action is True
        assert fake_api.requests == []

    async def test_repair_with_missing_scopes_needs_user(self, repository, habit_cache, fake_api):
        provider = StaticTokenProvider("test-token", granted_scopes=[])
        repair = await BackgroundOperations(provider, repository, habit_cache).auto_repair_system()
        assert repair.needs_user_action is True
        assert fake_api.files == {}

    async def test_repair_network_failure_is_retryable(self, operations, fake_api):
        # folder lookup fails, then the unfoldered fallback fails too
        fake_api.fail_next(*[500] * 8)
        repair = await operations.auto_repair_system()
        assert repair.success is False
        assert repair.needs_user_action is False
        assert repair.errors


class TestServiceAccountTokenProvider:
    @pytest.fixture(params=["{not json", "{}"])
    def broken_key(self, request, tmp_path):
        path = tmp_path / "service_account.json"
        path.write_text(request.param, encoding="utf-8")
        return path

    async def test_broken_key_file_means_no_token(self, broken_key):
        provider = ServiceAccountTokenProvider(broken_key)

        assert await provider.get_token() is None
        assert await provider.has_required_scopes() is False
        with pytest.raises(AuthRequiredError):
            await provider.refresh()

    async def test_reconcile_reports_needs_auth(self, broken_key, client, google_config, http_config,
                                                sleeper, habit_cache, fake_api):
        provider = ServiceAccountTokenProvider(broken_key)
        repository = SheetRepository(client, provider, google_config, http_config,
                                     sleep=sleeper, today=lambda: TODAY)
        engine = SyncEngine(repository, habit_cache)

        result = await engine.reconcile(force_refresh=True)

        assert result.success is False
        assert result.needs_auth is True
        assert fake_api.requests == []


class TestServiceManager:
    @pytest.fixture
    def config(self, monkeypatch, tmp_path) -> SyncConfig:
        monkeypatch.setenv('DATA_DIR', str(tmp_path / "data"))
        monkeypatch.setenv('LOG_DIR', str(tmp_path / "logs"))
        monkeypatch.setenv('GOOGLE_ACCESS_TOKEN', "test-token")
        monkeypatch.delenv('GOOGLE_CREDENTIALS_FILE', raising=False)
        monkeypatch.setenv('CACHE_IN_MEMORY', 'true')
        monkeypatch.setenv('HTTP_JITTER', '0')
        return SyncConfig()

    @pytest.fixture
    async def manager(self, config, session):
        manager = ServiceManager()
        assert manager.initialize_services(
            config,
            storage=MemoryStorage(),
            session=session,
            job_scheduler=FakeJobScheduler(),
            sleep=RecordingSleep()
        ) is True
        yield manager
        await manager.close_services()

    async def test_initialize_wires_shared_instances(self, manager):
        assert manager.initialized is True
        assert manager.sync_engine.habit_cache is manager.habit_cache
        assert manager.operations.repository is manager.repository
        assert manager.scheduler.sync_engine is manager.sync_engine
        assert isinstance(manager.token_provider, StaticTokenProvider)

    async def test_bootstrap_creates_and_links_spreadsheet(self, manager, fake_api):
        assert await manager.bootstrap() is True

        month = manager.repository.month
        spreadsheet_id = manager.repository.spreadsheet_id
        assert spreadsheet_id in fake_api.grids
        assert await manager.habit_cache.get_spreadsheet_id(month.month, month.year) == spreadsheet_id

        created = len(fake_api.files)
        assert await manager.bootstrap() is True
        assert len(fake_api.files) == created

    async def test_bootstrap_failure(self, manager, fake_api):
        fake_api.fail_next(401)
        assert await manager.bootstrap() is False

    async def test_health_check_after_bootstrap(self, manager):
        await manager.bootstrap()

        health = await manager.health_check()

        assert health['status'] == "healthy"
        assert health['services']['system']['has_cache'] is True
        assert health['services']['sync']['sync_count'] == 1
        assert health['services']['scheduler']['is_active'] is False
        assert "hits" in health['services']['cache']['counters']

    async def test_health_check_before_setup_reports_error(self, manager):
        health = await manager.health_check()
        assert health['status'] == "error"

    async def test_close_releases_scheduler_and_client(self, manager, session):
        manager.scheduler.start()
        await manager.close_services()
        assert manager.scheduler is None
        assert manager.client is None
        assert manager.initialized is False
        assert session.closed is False

    async def test_uninitialized_health_check(self):
        assert (await ServiceManager().health_check())['status'] == "error"
