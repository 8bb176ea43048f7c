import json
import logging
import sys

from flask import Flask

from b2bsync.sync import SYNC_EXTENSION_KEY, init_sync
from b2bsync.utils.logging_config import StructuredFormatter, setup_logging


class TestAppFactory:
    """Application factory wiring"""

    def test_app_creation(self, app):
        assert app is not None
        assert app.config["TESTING"] is True

    def test_sync_state_is_recorded(self, app):
        state = app.extensions[SYNC_EXTENSION_KEY]

        assert state["enabled"] is True
        assert state["worker_enabled"] is False
        assert state["celery_app"] is None
        assert state["entities"] == ("customer_groups", "representatives", "customers", "products", "orders")

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json() == {
            "status": "ok",
            "database": "ok",
            "sync_enabled": True,
            "sync_worker_enabled": False,
        }


class TestInitSync:
    """Sync extension flags"""

    def test_disabled_sync_never_enables_worker(self):
        app = Flask(__name__)
        app.config.update(SYNC_ENABLED=False, SYNC_WORKER_ENABLED=True)

        init_sync(app)

        state = app.extensions[SYNC_EXTENSION_KEY]
        assert state["enabled"] is False
        assert state["worker_enabled"] is False
        assert state["celery_app"] is None

    def test_entity_setting_is_kept(self):
        app = Flask(__name__)
        app.config.update(SYNC_ENTITIES=("products",))

        init_sync(app)

        assert app.extensions[SYNC_EXTENSION_KEY]["entities"] == ("products",)


class TestLogging:
    """Structured logging output"""

    def test_structured_formatter_includes_extra_fields(self):
        record = logging.LogRecord("b2bsync.sync", logging.INFO, __file__, 10, "Synced %s rows", (3,), None)
        record.sync_tenant_id = 7
        record.sync_entity = "products"

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["message"] == "Synced 3 rows"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "b2bsync.sync"
        assert payload["sync_tenant_id"] == 7
        assert payload["sync_entity"] == "products"
        assert "args" not in payload

    def test_structured_formatter_includes_exception(self):
        try:
            raise RuntimeError("source down")
        except RuntimeError:
            record = logging.LogRecord("b2bsync", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(StructuredFormatter().format(record))

        assert "RuntimeError: source down" in payload["exception"]

    def test_setup_logging_writes_rotating_file(self, tmp_path):
        app = Flask(__name__)
        app.config.update(
            LOG_LEVEL="INFO",
            LOG_FORMAT="json",
            LOG_DIR=str(tmp_path),
            APP_NAME="b2bsync-test",
            ENABLE_FILE_LOGGING=True,
            ENABLE_CONSOLE_LOGGING=False,
        )

        setup_logging(app)
        try:
            logging.getLogger("b2bsync.sync.service").info("hello", extra={"sync_tenant_slug": "acme"})
            for handler in logging.getLogger().handlers:
                handler.flush()
            lines = (tmp_path / "b2bsync-test.log").read_text(encoding="utf-8").splitlines()
        finally:
            app.config.update(ENABLE_FILE_LOGGING=False)
            setup_logging(app)

        payload = json.loads(lines[-1])
        assert payload["message"] == "hello"
        assert payload["sync_tenant_slug"] == "acme"

    def test_setup_logging_replaces_its_own_handlers(self):
        app = Flask(__name__)
        app.config.update(ENABLE_CONSOLE_LOGGING=True, ENABLE_FILE_LOGGING=False)

        setup_logging(app)
        setup_logging(app)
        try:
            installed = [h for h in logging.getLogger().handlers if getattr(h, "_b2bsync_handler", False)]
            assert len(installed) == 1
        finally:
            app.config.update(ENABLE_CONSOLE_LOGGING=False)
            setup_logging(app)

    def test_setup_logging_quiets_configured_loggers(self):
        app = Flask(__name__)
        app.config.update(
            LOG_LEVEL="DEBUG",
            ENABLE_CONSOLE_LOGGING=False,
            LOG_QUIET_LOGGERS=("kombu", "b2bsync.tests.chatty"),
        )
        chatty = logging.getLogger("b2bsync.tests.chatty")

        try:
            setup_logging(app)

            assert chatty.level == logging.WARNING
            assert logging.getLogger("kombu").level == logging.WARNING
            assert logging.getLogger("b2bsync").level == logging.DEBUG
        finally:
            chatty.setLevel(logging.NOTSET)
            app.config.update(LOG_LEVEL="WARNING")
            setup_logging(app)
