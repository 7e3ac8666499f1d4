"""
設定管理・ログシステムのテスト
"""

import yaml
import pytest

from routine_calendar_sync.config.enhanced_config import ConfigManager, SecurityManager, SyncEngineConfig
from routine_calendar_sync.utils.enhanced_logger import EnhancedLogger, LogLevel, setup_logging


def _write_yaml(path, data):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, allow_unicode=True)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ('ROUTINE_SYNC_DEBUG', 'ROUTINE_SYNC_ENVIRONMENT', 'ROUTINE_SYNC_LOG_LEVEL',
                'ROUTINE_SYNC_TIMEZONE', 'ROUTINE_SYNC_DATABASE_PATH', 'ROUTINE_SYNC_ENCRYPTION_KEY',
                'GOOGLE_CLIENT_ID', 'GOOGLE_CLIENT_SECRET', 'GOOGLE_CALENDAR_CREDS'):
        monkeypatch.delenv(key, raising=False)


class TestConfigManager:
    """設定管理のテスト"""

    def test_defaults_when_files_missing(self, tmp_path):
        config = ConfigManager(tmp_path / "missing").load_config()

        assert isinstance(config, SyncEngineConfig)
        assert config.calendar.time_zone == "Asia/Seoul"
        assert config.calendar.default_start_time == "09:00"
        assert config.calendar.completed_color_id == "10"
        assert config.calendar.scheduled_color_id is None
        assert config.sync.retry_policy.max_retries == 3
        assert config.sync.retry_policy.max_delay_seconds == 10.0

    def test_layered_files_are_merged(self, tmp_path):
        _write_yaml(tmp_path / "main.yaml", {
            'environment': 'staging',
            'logging': {'level': 'DEBUG'},
            'calendar': {'calendar_id': 'from-main', 'reminder_minutes': 15},
        })
        _write_yaml(tmp_path / "calendar.yaml", {'calendar_id': 'workouts@example.com', 'scheduled_color_id': '9'})
        _write_yaml(tmp_path / "sync.yaml", {
            'max_concurrent_routines': 5,
            'retry_policy': {'max_retries': 1, 'base_delay_seconds': 0.5},
        })

        config = ConfigManager(tmp_path).load_config()

        assert config.environment == 'staging'
        assert config.logging.level == 'DEBUG'
        assert config.calendar.calendar_id == 'workouts@example.com'
        assert config.calendar.reminder_minutes == 15
        assert config.calendar.scheduled_color_id == '9'
        assert config.sync.max_concurrent_routines == 5
        assert config.sync.retry_policy.max_retries == 1
        assert config.sync.retry_policy.base_delay_seconds == 0.5
        assert config.sync.retry_policy.max_delay_seconds == 10.0

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ROUTINE_SYNC_DEBUG', 'true')
        monkeypatch.setenv('ROUTINE_SYNC_LOG_LEVEL', 'warning')
        monkeypatch.setenv('ROUTINE_SYNC_TIMEZONE', 'Asia/Tokyo')
        monkeypatch.setenv('ROUTINE_SYNC_DATABASE_PATH', '/tmp/override.db')

        config = ConfigManager(tmp_path).load_config()

        assert config.debug is True
        assert config.logging.level == 'WARNING'
        assert config.calendar.time_zone == 'Asia/Tokyo'
        assert config.sync.database_path == '/tmp/override.db'

    def test_malformed_yaml_falls_back_to_defaults(self, tmp_path):
        (tmp_path / "calendar.yaml").write_text("calendar_id: [unclosed", encoding='utf-8')

        config = ConfigManager(tmp_path).load_config()

        assert config.calendar.calendar_id == "primary"

    def test_config_is_cached(self, tmp_path):
        manager = ConfigManager(tmp_path)
        assert manager.load_config() is manager.load_config()
        assert manager.load_config(reload=True) is not None

    def test_save_config_template(self, tmp_path):
        manager = ConfigManager(tmp_path / "config")

        created = manager.save_config_template()

        assert sorted(created) == ["calendar.yaml", "main.yaml", "sync.yaml"]
        assert manager.save_config_template() == []
        config = manager.load_config()
        assert config.sync.database_path == "data/routine_sync.db"

    def test_encrypted_secrets(self, tmp_path, monkeypatch):
        key = SecurityManager.generate_key()
        security = SecurityManager(key)
        secrets_dir = tmp_path / "secrets"
        secrets_dir.mkdir()
        (secrets_dir / ".env").write_text(
            f"GOOGLE_CLIENT_ID=client-123\nGOOGLE_CLIENT_SECRET=encrypted:{security.encrypt_value('s3cret')}\n",
            encoding='utf-8'
        )
        monkeypatch.setenv('GOOGLE_CALENDAR_CREDS', 'from-env')

        secrets = ConfigManager(tmp_path, security_manager=security).load_secrets()

        assert secrets['GOOGLE_CLIENT_ID'] == 'client-123'
        assert secrets['GOOGLE_CLIENT_SECRET'] == 's3cret'
        assert secrets['GOOGLE_CALENDAR_CREDS'] == 'from-env'

    def test_security_manager_without_key(self):
        security = SecurityManager()
        assert security.encrypt_value("plain") == "plain"
        assert security.decrypt_value("cipher") == "cipher"


class TestEnhancedLogger:
    """ログシステムのテスト"""

    def test_operation_metrics(self):
        logger = EnhancedLogger(name="test_metrics", log_level=LogLevel.DEBUG, structured=False)

        ok = logger.log_operation_start("sync_routine", routine_id="r1")
        logger.log_operation_end(ok, success=True, created_count=3)
        failed = logger.log_operation_start("sync_routine", routine_id="r2")
        logger.log_operation_end(failed, success=False, error_count=1)

        health = logger.get_health_status()
        assert health['total_operations'] >= 1
        assert 'overall_status' in health

    def test_file_logging(self, tmp_path):
        log_file = tmp_path / "logs" / "sync.log"
        logger = setup_logging({'level': 'info', 'file_path': str(log_file), 'structured': False})

        logger.info("Sync finished", created_count=2)

        for handler in logger.logger.handlers:
            handler.flush()
        content = log_file.read_text(encoding='utf-8')
        assert "Sync finished" in content
        assert '"created_count": 2' in content

    def test_metrics_disabled(self):
        logger = EnhancedLogger(name="test_no_metrics", metrics_enabled=False, structured=False)
        assert logger.get_health_status() == {"status": "metrics_disabled"}
