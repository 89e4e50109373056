"""Unit tests for environment settings and the settings table shape."""
from pmta_insights.core.config import Settings as AppSettings
from pmta_insights.db.models import Settings, UploadedFile


class TestDatabaseUri:
    """The driver is chosen by the database URL, so each one is optional."""

    def test_sqlite_default_needs_no_driver_package(self):
        uri = AppSettings(DATABASE_URL="", DB_TYPE="sqlite", SQLITE_PATH="./data/x.db").SQLALCHEMY_DATABASE_URI
        assert uri == "sqlite:///./data/x.db"

    def test_mysql_selects_pymysql(self):
        uri = AppSettings(DATABASE_URL="", DB_TYPE="mysql").SQLALCHEMY_DATABASE_URI
        assert uri.startswith("mysql+pymysql://")

    def test_postgresql_selects_psycopg(self):
        uri = AppSettings(DATABASE_URL="", DB_TYPE="postgresql", DB_PORT=5432).SQLALCHEMY_DATABASE_URI
        assert uri.startswith("postgresql+psycopg://")
        assert ":5432/" in uri

    def test_explicit_url_wins(self):
        assert AppSettings(DATABASE_URL="sqlite:///:memory:", DB_TYPE="mysql").SQLALCHEMY_DATABASE_URI == "sqlite:///:memory:"


class TestModelShape:
    """Models carry only the columns the pipeline reads."""

    def test_settings_columns(self):
        assert set(Settings.__table__.columns.keys()) == {"key", "value_json", "updated_at"}

    def test_uploaded_file_has_no_status_helpers(self):
        assert not hasattr(UploadedFile, "is_terminal")
