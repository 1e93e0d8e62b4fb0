"""Tests for configuration module."""

import json
from pathlib import Path

import pytest

from pg_sync.config import Settings, TableSpec, load_settings, validate_identifier
from pg_sync.exceptions import ConfigurationError


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Test default settings creation."""
        settings = Settings()
        assert settings.sync.page_size == 1000
        assert settings.sync.staging_suffix == "_stg"
        assert settings.sync.state_dir == Path("sync-state")
        assert settings.sync.transactional_merge is True
        assert settings.source.port == 5432
        assert settings.source.schema_name == "public"
        assert settings.notify.webhook_url is None

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings loading from nested environment variables."""
        monkeypatch.setenv("PG_SYNC_SOURCE__HOST", "src.internal")
        monkeypatch.setenv("PG_SYNC_SOURCE__PASSWORD", "s3cret")
        monkeypatch.setenv("PG_SYNC_DESTINATION__DATABASE", "warehouse")
        monkeypatch.setenv("PG_SYNC_SYNC__PAGE_SIZE", "250")
        monkeypatch.setenv("PG_SYNC_NOTIFY__PIPELINE_NAME", "nightly")

        settings = Settings()
        assert settings.source.host == "src.internal"
        assert settings.source.password.get_secret_value() == "s3cret"
        assert settings.destination.database == "warehouse"
        assert settings.sync.page_size == 250
        assert settings.notify.pipeline_name == "nightly"

    def test_settings_validate_credentials_missing(self) -> None:
        """Test credential validation with missing values."""
        settings = Settings()
        errors = settings.validate_credentials()
        assert "source.host is required" in errors
        assert "destination.user is required" in errors

    def test_settings_validate_credentials_present(self, settings: Settings) -> None:
        """Test credential validation with all values present."""
        assert settings.validate_credentials() == []

    def test_masked_hides_passwords(self) -> None:
        settings = Settings(source={"host": "h", "password": "hunter2"})
        masked = settings.masked()
        assert masked["source"]["password"] == "***REDACTED***"
        assert "hunter2" not in json.dumps(masked)
        assert masked["source"]["schema"] == "public"

    def test_staging_name(self, settings: Settings, orders_spec: TableSpec) -> None:
        assert settings.staging_name(orders_spec) == "orders_stg"
        assert settings.staging_name("customers") == "customers_stg"

    def test_page_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Settings(sync={"page_size": 0})


class TestTableSpec:
    """Test TableSpec validation."""

    def test_unique_cols_from_list(self) -> None:
        spec = TableSpec(name="orders", replication_key="updated_at", unique_cols=["id"])
        assert spec.unique_cols == ("id",)

    def test_unique_cols_from_comma_string(self) -> None:
        spec = TableSpec(
            name="line_items",
            replication_key="updated_at",
            unique_cols="order_id, line_no",
        )
        assert spec.unique_cols == ("order_id", "line_no")

    def test_unique_cols_required(self) -> None:
        with pytest.raises(ValueError, match="at least one"):
            TableSpec(name="orders", replication_key="updated_at", unique_cols=[])

    def test_unique_cols_no_duplicates(self) -> None:
        with pytest.raises(ValueError, match="duplicates"):
            TableSpec(name="orders", replication_key="updated_at", unique_cols=["id", "id"])

    @pytest.mark.parametrize("name", ["orders; DROP TABLE x", "1orders", "a-b", ""])
    def test_rejects_unsafe_names(self, name: str) -> None:
        with pytest.raises(ValueError):
            TableSpec(name=name, replication_key="updated_at", unique_cols=["id"])

    def test_is_frozen(self, orders_spec: TableSpec) -> None:
        with pytest.raises(ValueError):
            orders_spec.name = "other"  # type: ignore[misc]

    def test_validate_identifier(self) -> None:
        assert validate_identifier("order_items$2") == "order_items$2"
        with pytest.raises(ValueError, match="schema name"):
            validate_identifier('public"', "schema name")


class TestLoadTables:
    """Test table list loading."""

    def test_inline_tables_win(self, settings: Settings) -> None:
        tables = settings.load_tables()
        assert [t.name for t in tables] == ["orders"]

    def test_json_tables_file_keeps_order(self, tmp_path: Path) -> None:
        path = tmp_path / "tables-config.json"
        path.write_text(json.dumps([
            {"name": "customers", "replication_key": "modified", "unique_cols": ["id"]},
            {"name": "orders", "replication_key": "updated_at", "unique_cols": ["id"]},
        ]))
        settings = Settings(sync={"tables_file": path})

        tables = settings.load_tables()
        assert [t.name for t in tables] == ["customers", "orders"]
        assert tables[0].replication_key == "modified"

    def test_toml_tables_file(self, tmp_path: Path) -> None:
        path = tmp_path / "tables.toml"
        path.write_text(
            '[[tables]]\n'
            'name = "line_items"\n'
            'replication_key = "updated_at"\n'
            'unique_cols = ["order_id", "line_no"]\n'
        )
        settings = Settings(sync={"tables_file": path})

        tables = settings.load_tables()
        assert tables[0].unique_cols == ("order_id", "line_no")

    def test_missing_tables_file(self, tmp_path: Path) -> None:
        settings = Settings(sync={"tables_file": tmp_path / "nope.json"})
        with pytest.raises(ConfigurationError, match="not found"):
            settings.load_tables()

    def test_invalid_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "tables.json"
        path.write_text(json.dumps([{"name": "orders", "replication_key": "updated_at"}]))
        settings = Settings(sync={"tables_file": path})
        with pytest.raises(ConfigurationError, match="Invalid table"):
            settings.load_tables()

    def test_duplicate_names(self, tmp_path: Path) -> None:
        entry = {"name": "orders", "replication_key": "updated_at", "unique_cols": ["id"]}
        path = tmp_path / "tables.json"
        path.write_text(json.dumps([entry, entry]))
        settings = Settings(sync={"tables_file": path})
        with pytest.raises(ConfigurationError, match="Duplicate"):
            settings.load_tables()


class TestLoadSettings:
    """Test load_settings() and config files."""

    def test_from_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pg-sync.json"
        path.write_text(json.dumps({
            "source": {"host": "a", "database": "app", "user": "u", "schema": "sales"},
            "sync": {"page_size": 500},
        }))

        settings = load_settings(path)
        assert settings.source.host == "a"
        assert settings.source.schema_name == "sales"
        assert settings.sync.page_size == 500

    def test_from_toml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pg-sync.toml"
        path.write_text(
            '[destination]\nhost = "dw"\ndatabase = "warehouse"\nuser = "loader"\n'
            '[notify]\nwebhook_url = "https://hooks.example.com/x"\n'
        )

        settings = load_settings(path)
        assert settings.destination.host == "dw"
        assert settings.notify.webhook_url == "https://hooks.example.com/x"

    def test_env_fills_what_file_omits(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PG_SYNC_SOURCE__PASSWORD", "from-env")
        path = tmp_path / "pg-sync.json"
        path.write_text(json.dumps({"source": {"host": "a"}}))

        settings = load_settings(path)
        assert settings.source.host == "a"
        assert settings.source.password.get_secret_value() == "from-env"

    def test_overrides(self, tmp_path: Path) -> None:
        path = tmp_path / "pg-sync.json"
        path.write_text(json.dumps({"notify": {"pipeline_name": "a"}}))

        settings = load_settings(path, notify={"pipeline_name": "b"})
        assert settings.notify.pipeline_name == "b"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "missing.toml")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "pg-sync.yaml"
        path.write_text("source: {}")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_settings(path)
