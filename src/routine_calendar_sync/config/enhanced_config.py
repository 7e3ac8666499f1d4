"""
強化設定管理システム - 階層化YAML設定とセキュアな秘密情報管理
カレンダー連携・同期・ログ設定を読み込み、環境変数で上書きする
"""

import os
import yaml
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, Optional, Union
from cryptography.fernet import Fernet, InvalidToken
from ..utils.enhanced_logger import get_logger

logger = get_logger(__name__)


@dataclass
class RetryPolicyConfig:
    """リトライ設定（外部API呼び出し共通のバックオフポリシー）"""
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass
class CalendarConfig:
    """カレンダー連携設定"""
    calendar_id: str = "primary"
    credentials_path: str = "config/secrets/google_credentials.json"
    token_path: str = "config/secrets/google_token.json"
    time_zone: str = "Asia/Seoul"
    default_start_time: str = "09:00"
    default_duration_minutes: Optional[int] = None
    scheduled_color_id: Optional[str] = None
    completed_color_id: str = "10"
    completion_marker: str = "✅ "
    reminder_minutes: int = 30


@dataclass
class SyncConfig:
    """同期層設定"""
    database_path: str = "data/routine_sync.db"
    max_concurrent_routines: int = 3
    retry_policy: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)


@dataclass
class LoggingConfig:
    """ログ設定"""
    level: str = "INFO"
    file_path: Optional[str] = None
    structured: bool = True
    metrics_enabled: bool = True


@dataclass
class SyncEngineConfig:
    """設定メインクラス"""
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    debug: bool = False
    version: str = "1.0.0"
    environment: str = "development"  # development, staging, production


class SecurityManager:
    """秘密情報の暗号化・復号化"""

    def __init__(self, encryption_key: Optional[str] = None):
        self.encryption_key = encryption_key or os.getenv('ROUTINE_SYNC_ENCRYPTION_KEY')
        self.cipher = Fernet(self.encryption_key.encode()) if self.encryption_key else None

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt_value(self, value: str) -> str:
        """値の暗号化"""
        if not self.cipher:
            return value
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted_value: str) -> str:
        """値の復号化"""
        if not self.cipher:
            logger.warning("Encrypted secret found but no encryption key configured",
                           operation="secrets_decrypt")
            return encrypted_value

        try:
            return self.cipher.decrypt(encrypted_value.encode()).decode()
        except InvalidToken as e:
            logger.error("Decryption failed", error=e, operation="secrets_decrypt")
            return encrypted_value


class ConfigManager:
    """設定管理メインクラス"""

    ENCRYPTED_PREFIX = "encrypted:"

    SECRET_KEYS = [
        'GOOGLE_CLIENT_ID',
        'GOOGLE_CLIENT_SECRET',
        'GOOGLE_CALENDAR_CREDS',
    ]

    def __init__(self,
                 config_dir: Union[str, Path] = "config",
                 secrets_dir: Optional[Union[str, Path]] = None,
                 security_manager: Optional[SecurityManager] = None):

        self.config_dir = Path(config_dir)
        self.secrets_dir = Path(secrets_dir) if secrets_dir else self.config_dir / "secrets"
        self.security_manager = security_manager or SecurityManager()

        self._config_cache: Optional[SyncEngineConfig] = None
        self._secrets_cache: Dict[str, Any] = {}

    def load_config(self, reload: bool = False) -> SyncEngineConfig:
        """設定の読み込み"""
        if self._config_cache and not reload:
            return self._config_cache

        main_config = self._load_yaml_file(self.config_dir / "main.yaml")

        layer_configs = {
            'calendar': self._load_yaml_file(self.config_dir / "calendar.yaml"),
            'sync': self._load_yaml_file(self.config_dir / "sync.yaml"),
        }

        merged_config = self._merge_configs(main_config, layer_configs)
        merged_config = self._apply_env_overrides(merged_config)

        self._config_cache = self._create_config_object(merged_config)

        logger.info(
            "Configuration loaded successfully",
            config_dir=str(self.config_dir),
            environment=self._config_cache.environment,
            version=self._config_cache.version,
            operation="config_load"
        )

        return self._config_cache

    def load_secrets(self, reload: bool = False) -> Dict[str, Any]:
        """秘密情報の読み込み（優先順位: 環境変数 > .env）"""
        if self._secrets_cache and not reload:
            return self._secrets_cache

        env_file_secrets = self._load_env_file()
        env_secrets = {key: os.getenv(key) for key in self.SECRET_KEYS if os.getenv(key)}

        secrets = {**env_file_secrets, **env_secrets}

        for key, value in secrets.items():
            if isinstance(value, str) and value.startswith(self.ENCRYPTED_PREFIX):
                secrets[key] = self.security_manager.decrypt_value(value[len(self.ENCRYPTED_PREFIX):])

        self._secrets_cache = secrets

        logger.info(
            "Secrets loaded successfully",
            secret_count=len(secrets),
            operation="secrets_load"
        )

        return self._secrets_cache

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """YAMLファイルの読み込み"""
        if not file_path.exists():
            logger.debug(f"Config file not found: {file_path}")
            return {}

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to load YAML file: {file_path}", error=e, operation="config_load")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-mapping config file: {file_path}", operation="config_load")
            return {}

        return data

    def _load_env_file(self) -> Dict[str, str]:
        """.envファイルからの読み込み"""
        env_file = self.secrets_dir / ".env"
        if not env_file.exists():
            return {}

        secrets = {}
        with open(env_file, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    secrets[key.strip()] = value.strip().strip('"\'')

        return secrets

    def _merge_configs(self, main_config: Dict, layer_configs: Dict) -> Dict:
        """設定の統合（レイヤー別ファイルが main.yaml の同名セクションを上書き）"""
        merged = dict(main_config)

        for layer_name, layer_config in layer_configs.items():
            if layer_config:
                base = merged.get(layer_name) or {}
                merged[layer_name] = {**base, **layer_config}

        return merged

    def _apply_env_overrides(self, config: Dict) -> Dict:
        """環境変数によるオーバーライド"""
        env_overrides = {
            'ROUTINE_SYNC_DEBUG': ('debug', lambda x: x.lower() in ['true', '1', 'yes']),
            'ROUTINE_SYNC_ENVIRONMENT': ('environment', str),
            'ROUTINE_SYNC_LOG_LEVEL': ('logging.level', str.upper),
            'ROUTINE_SYNC_TIMEZONE': ('calendar.time_zone', str),
            'ROUTINE_SYNC_DATABASE_PATH': ('sync.database_path', str),
        }

        for env_key, (config_path, converter) in env_overrides.items():
            env_value = os.getenv(env_key)
            if env_value:
                self._set_nested_value(config, config_path, converter(env_value))

        return config

    def _set_nested_value(self, config: Dict, path: str, value: Any):
        """ネストされた設定値の設定"""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _create_config_object(self, config_dict: Dict) -> SyncEngineConfig:
        """設定辞書から設定オブジェクトを作成"""
        sync_dict = dict(config_dict.get('sync') or {})
        retry_policy = _build_dataclass(RetryPolicyConfig, sync_dict.pop('retry_policy', None) or {})

        general = _known_fields(SyncEngineConfig, config_dict)
        for section in ('calendar', 'sync', 'logging'):
            general.pop(section, None)

        return SyncEngineConfig(
            calendar=_build_dataclass(CalendarConfig, config_dict.get('calendar') or {}),
            sync=SyncConfig(retry_policy=retry_policy, **_known_fields(SyncConfig, sync_dict, exclude={'retry_policy'})),
            logging=_build_dataclass(LoggingConfig, config_dict.get('logging') or {}),
            **general
        )

    def save_config_template(self):
        """設定ファイルテンプレートの作成"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        templates = {
            "main.yaml": {
                "version": "1.0.0",
                "environment": "development",
                "debug": False,
                "logging": {
                    "level": "INFO",
                    "file_path": "logs/routine_calendar_sync.log"
                }
            },
            "calendar.yaml": {
                "calendar_id": "primary",
                "time_zone": "Asia/Seoul",
                "default_start_time": "09:00",
                "completed_color_id": "10",
                "reminder_minutes": 30
            },
            "sync.yaml": {
                "database_path": "data/routine_sync.db",
                "max_concurrent_routines": 3,
                "retry_policy": {
                    "max_retries": 3,
                    "base_delay_seconds": 1.0,
                    "max_delay_seconds": 10.0,
                    "backoff_multiplier": 2.0
                }
            }
        }

        created = []
        for filename, template in templates.items():
            file_path = self.config_dir / filename
            if not file_path.exists():
                with open(file_path, 'w', encoding='utf-8') as f:
                    yaml.dump(template, f, default_flow_style=False, allow_unicode=True)
                created.append(filename)
                logger.info(f"Created config template: {filename}")

        return created


def _known_fields(cls, values: Dict[str, Any], exclude: Optional[set] = None) -> Dict[str, Any]:
    """データクラスに存在するキーのみ抽出（未知のキーは警告して無視）"""
    names = {f.name for f in fields(cls)} - (exclude or set())
    unknown = set(values) - names - (exclude or set())
    if unknown:
        logger.warning(f"Ignoring unknown config keys for {cls.__name__}: {sorted(unknown)}",
                       operation="config_load")
    return {k: v for k, v in values.items() if k in names}


def _build_dataclass(cls, values: Dict[str, Any]):
    return cls(**_known_fields(cls, values))


# グローバルインスタンス
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_dir: Union[str, Path] = "config") -> ConfigManager:
    """グローバル設定マネージャーの取得"""
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(config_dir)

    return _global_config_manager


def get_config(reload: bool = False) -> SyncEngineConfig:
    """設定の取得"""
    return get_config_manager().load_config(reload)


def get_secrets(reload: bool = False) -> Dict[str, Any]:
    """秘密情報の取得"""
    return get_config_manager().load_secrets(reload)
