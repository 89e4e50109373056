"""Unit tests for dialect dispatch in the upsert helpers."""
from types import SimpleNamespace

import pytest

from pmta_insights.db.models import AlertCooldown, RiskScore
from pmta_insights.db.upsert import dialect_name, insert_ignore, upsert


class FakeSession:
    """Session stand-in bound to an arbitrary dialect name."""

    def __init__(self, dialect):
        self._bind = SimpleNamespace(dialect=SimpleNamespace(name=dialect))
        self.executed = []

    def get_bind(self):
        return self._bind

    def execute(self, stmt):
        self.executed.append(stmt)


class TestDialectDispatch:
    """Tests for unsupported database backends."""

    def test_dialect_name(self):
        assert dialect_name(FakeSession("sqlite")) == "sqlite"

    def test_upsert_rejects_unknown_dialect(self):
        """Backends without a single-statement upsert are refused."""
        db = FakeSession("mssql")
        with pytest.raises(ValueError, match="mssql"):
            upsert(db, RiskScore, [{"entity_type": "sender", "entity_value": "a"}],
                   conflict_columns=("entity_type", "entity_value"),
                   build_updates=lambda table, incoming: [])
        assert db.executed == []

    def test_insert_ignore_rejects_unknown_dialect(self):
        db = FakeSession("oracle")
        with pytest.raises(ValueError, match="oracle"):
            insert_ignore(db, AlertCooldown, {"alert_type": "THROTTLING", "entity_value": "a.com"},
                          conflict_columns=("alert_type", "entity_value"))
        assert db.executed == []

    def test_empty_upsert_is_a_no_op(self):
        """No rows means no statement, whatever the backend."""
        assert upsert(FakeSession("mssql"), RiskScore, [], ("entity_type",), lambda t, i: []) == 0
