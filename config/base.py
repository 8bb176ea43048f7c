# config/base.py
import os

ENTITY_NAMES = ("customer_groups", "representatives", "customers", "products", "orders")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
# chatty client libraries kept at WARNING unless LOG_QUIET_LOGGERS says otherwise
QUIET_LOGGERS = ("urllib3", "kombu", "amqp")


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_entity_list(value):
    """
    Parse a comma-separated entity list, keeping order and dropping duplicates.

    Unknown names raise so a typo in ``SYNC_ENTITIES`` fails at startup instead
    of silently skipping an entity.

    Returns:
        tuple[str, ...]: Entity names, or every entity when ``value`` is empty.
    """
    if not value:
        return ENTITY_NAMES

    seen = set()
    entities = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        if item not in ENTITY_NAMES:
            raise ValueError(f"SYNC_ENTITIES contains unknown entity '{item}'. Expected any of {', '.join(ENTITY_NAMES)}.")
        seen.add(item)
        entities.append(item)
    return tuple(entities) or ENTITY_NAMES


def _parse_int(value, default, *, minimum=0):
    """Parse an integer setting, falling back to ``default`` on junk."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    return max(minimum, number)


def _parse_log_level(value, default):
    """Normalise a level name; unknown names fall back to ``default``."""
    if value is None or str(value).strip() == "":
        return default
    level = str(value).strip().upper()
    if level not in LOG_LEVELS:
        return default
    return level


def _parse_name_list(value, default):
    if value is None:
        return default
    return tuple(item.strip() for item in str(value).split(",") if item.strip())


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Sync engine
    SYNC_ENABLED = _coerce_bool(os.environ.get("SYNC_ENABLED"), default=True)
    SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False)
    SYNC_ENTITIES = _parse_entity_list(os.environ.get("SYNC_ENTITIES", ""))
    SYNC_PAGE_SIZE = _parse_int(os.environ.get("SYNC_PAGE_SIZE"), 1000, minimum=1)
    SYNC_ORDER_CHUNK_SIZE = _parse_int(os.environ.get("SYNC_ORDER_CHUNK_SIZE"), 20, minimum=1)
    SYNC_WATERMARK_CHECKPOINT_ROWS = _parse_int(os.environ.get("SYNC_WATERMARK_CHECKPOINT_ROWS"), 0)
    SYNC_WATERMARK_CHECKPOINT_SECONDS = _parse_int(os.environ.get("SYNC_WATERMARK_CHECKPOINT_SECONDS"), 0)
    SYNC_SOURCE_MAX_ATTEMPTS = _parse_int(os.environ.get("SYNC_SOURCE_MAX_ATTEMPTS"), 5, minimum=1)
    SYNC_STORE_MAX_ATTEMPTS = _parse_int(os.environ.get("SYNC_STORE_MAX_ATTEMPTS"), 3, minimum=1)
    SYNC_SOURCE_STATEMENT_TIMEOUT_MS = _parse_int(
        os.environ.get("SYNC_SOURCE_STATEMENT_TIMEOUT_MS"),
        300000,
        minimum=1,
    )
    SYNC_TASK_TIME_LIMIT = _parse_int(os.environ.get("SYNC_TASK_TIME_LIMIT"), 60 * 60, minimum=1)
    SYNC_TASK_SOFT_TIME_LIMIT = _parse_int(os.environ.get("SYNC_TASK_SOFT_TIME_LIMIT"), 55 * 60, minimum=1)

    # Worker transport; empty values fall back to SQLite in the instance folder
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Logging; see b2bsync.utils.logging_config.setup_logging
    APP_NAME = os.environ.get("APP_NAME", "b2bsync")
    LOG_LEVEL = _parse_log_level(os.environ.get("LOG_LEVEL"), "INFO")
    LOG_FORMAT = "json" if os.environ.get("LOG_FORMAT", "text").strip().lower() == "json" else "text"
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = _parse_int(os.environ.get("LOG_FILE_MAX_BYTES"), 10 * 1024 * 1024, minimum=1024)
    LOG_FILE_BACKUP_COUNT = _parse_int(os.environ.get("LOG_FILE_BACKUP_COUNT"), 10)
    LOG_QUIET_LOGGERS = _parse_name_list(os.environ.get("LOG_QUIET_LOGGERS"), QUIET_LOGGERS)
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=True)
    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=False)


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = _parse_log_level(os.environ.get("LOG_LEVEL"), "DEBUG")
    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=True)
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path = os.path.join(instance_path, "b2bsync_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    SYNC_WORKER_ENABLED = False
    SYNC_ENTITIES = ENTITY_NAMES
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_CONSOLE_LOGGING = False
    ENABLE_FILE_LOGGING = False


class ProductionConfig(Config):
    DEBUG = False
    # one JSON object per line on stdout for the log shipper
    LOG_FORMAT = "text" if os.environ.get("LOG_FORMAT", "json").strip().lower() == "text" else "json"
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
