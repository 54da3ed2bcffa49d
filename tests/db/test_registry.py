"""Tests for the connection registry."""

from __future__ import annotations

from typing import List
from unittest.mock import patch

import pytest

from sqlconsole.config.models import ConnectionInfo, ConsoleConfig, DatabaseType
from sqlconsole.db.adapters.sqlite import SQLiteAdapter
from sqlconsole.db.registry import (
    AdapterFactory,
    ConnectionEvent,
    ConnectionEventType,
    ConnectionRegistry,
)
from sqlconsole.db.session import ConnectionState
from sqlconsole.exceptions import DatabaseError


class RejectingAdapter(SQLiteAdapter):
    """Adapter whose engine refuses every login."""

    def get_engine(self):
        raise DatabaseError("Login failed for user 'sa'", database_type="sqlite")


def collect(registry: ConnectionRegistry) -> List[ConnectionEvent]:
    events: List[ConnectionEvent] = []
    registry.subscribe(events.append)
    return events


class TestAdapterFactory:

    def test_creates_adapter_for_type(self, sqlite_info: ConnectionInfo) -> None:
        adapter = AdapterFactory.create_adapter(sqlite_info)
        assert isinstance(adapter, SQLiteAdapter)

    def test_supported_types(self) -> None:
        supported = AdapterFactory.get_supported_types()
        assert DatabaseType.SQLSERVER in supported
        assert DatabaseType.SQLITE in supported


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_registers_and_activates(self, registry, sqlite_info) -> None:
        events = collect(registry)

        attempt = await registry.connect(sqlite_info)

        assert attempt.success
        assert attempt.connection_id == "local"
        assert registry.active_connection_id == "local"
        assert registry.is_connected
        assert registry.active_session.is_open
        assert [e.kind for e in events] == [ConnectionEventType.CONNECTION_CHANGED]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_connect_keeps_existing_sessions_open(self, registry, sqlite_info, other_sqlite_info) -> None:
        await registry.connect(sqlite_info)
        await registry.connect(other_sqlite_info)

        assert registry.active_connection_id == "other"
        assert set(registry.connections) == {"local", "other"}
        assert registry.get_session("local").is_open
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_failed_connect_registers_nothing(self, sqlite_info) -> None:
        registry = ConnectionRegistry(adapter_factory=RejectingAdapter)
        events = collect(registry)

        attempt = await registry.connect(sqlite_info)

        assert not attempt.success
        assert "Login failed" in attempt.error
        assert registry.snapshot().connection_ids == ()
        assert registry.active_connection_id is None
        assert events == []

    @pytest.mark.asyncio
    async def test_reconnect_with_same_id_replaces_session(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        first = registry.active_session

        await registry.connect(sqlite_info)

        assert registry.active_session is not first
        assert first.state == ConnectionState.CLOSED
        assert list(registry.connections) == ["local"]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_connect_saved_uses_profile_name(self, registry, tmp_path) -> None:
        config = ConsoleConfig(
            connections={"scratch": {"type": "sqlite", "path": str(tmp_path / "scratch.db")}},
        )

        attempt = await registry.connect_saved(config)

        assert attempt.success
        assert registry.active_connection_id == "scratch"
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_connect_saved_unknown_profile(self, registry) -> None:
        attempt = await registry.connect_saved(ConsoleConfig(), "missing")
        assert not attempt.success
        assert "missing" in attempt.error


class TestTestConnect:

    @pytest.mark.asyncio
    async def test_probe_does_not_touch_state(self, registry, sqlite_info, other_sqlite_info) -> None:
        await registry.connect(sqlite_info)
        before = registry.snapshot()
        events = collect(registry)

        attempt = await registry.test_connect(other_sqlite_info)

        assert attempt.success
        assert registry.snapshot() == before
        assert events == []
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_probe_reports_failure(self, sqlite_info) -> None:
        registry = ConnectionRegistry(adapter_factory=RejectingAdapter)
        before = registry.snapshot()

        attempt = await registry.test_connect(sqlite_info)

        assert not attempt.success
        assert attempt.error
        assert registry.snapshot() == before


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_active_moves_pointer(self, registry, sqlite_info, other_sqlite_info) -> None:
        await registry.connect(sqlite_info)
        await registry.connect(other_sqlite_info)
        session = registry.active_session

        await registry.disconnect("other")

        assert registry.active_connection_id == "local"
        assert "other" not in registry.connections
        assert session.state == ConnectionState.CLOSED
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_disconnect_last_session_clears_active(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        events = collect(registry)

        await registry.disconnect("local")

        assert registry.active_connection_id is None
        assert not registry.is_connected
        assert events[-1] == ConnectionEvent(ConnectionEventType.CONNECTION_CHANGED, "local")

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        before = registry.snapshot()
        events = collect(registry)

        await registry.disconnect("nope")

        assert registry.snapshot() == before
        assert events == []
        await registry.close_all()


class TestSetActive:

    @pytest.mark.asyncio
    async def test_switches_and_notifies(self, registry, sqlite_info, other_sqlite_info) -> None:
        await registry.connect(sqlite_info)
        await registry.connect(other_sqlite_info)
        events = collect(registry)

        registry.set_active("local")

        assert registry.active_connection_id == "local"
        assert events == [ConnectionEvent(ConnectionEventType.CONNECTION_CHANGED, "local")]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_unknown_id_changes_nothing(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        events = collect(registry)

        registry.set_active("ghost")

        assert registry.active_connection_id == "local"
        assert events == []
        await registry.close_all()


class TestChangeDatabase:

    @pytest.mark.asyncio
    async def test_switch_updates_current_database(self, scripted_registry, sqlite_info) -> None:
        await scripted_registry.connect(sqlite_info)
        events = collect(scripted_registry)

        assert await scripted_registry.change_database("Sales")

        assert scripted_registry.get_current_database() == "Sales"
        assert [e.kind for e in events] == [ConnectionEventType.CONNECTION_CHANGED]
        await scripted_registry.close_all()

    @pytest.mark.asyncio
    async def test_failed_switch_keeps_database(self, scripted_registry, sqlite_info) -> None:
        await scripted_registry.connect(sqlite_info)
        scripted_registry.active_session.adapter.missing.add("Nope")
        events = collect(scripted_registry)

        assert not await scripted_registry.change_database("Nope")

        assert scripted_registry.get_current_database() == "master"
        assert [e.kind for e in events] == [ConnectionEventType.ERROR]
        assert events[0].message
        await scripted_registry.close_all()

    @pytest.mark.asyncio
    async def test_partial_switch_reports_degraded_state(self, scripted_registry, sqlite_info) -> None:
        await scripted_registry.connect(sqlite_info)
        scripted_registry.active_session.adapter.redirects["Archive"] = "tempdb"
        events = collect(scripted_registry)

        assert not await scripted_registry.change_database("Archive")

        assert scripted_registry.get_current_database() == "tempdb"
        assert events[-1].kind == ConnectionEventType.ERROR
        assert "partially applied" in events[-1].message
        await scripted_registry.close_all()

    @pytest.mark.asyncio
    async def test_plain_sqlite_cannot_switch(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        events = collect(registry)

        assert not await registry.change_database("other")

        assert registry.get_current_database() == "main"
        assert events[0].kind == ConnectionEventType.ERROR
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_without_active_session(self, registry) -> None:
        assert not await registry.change_database("master")


class TestEnsureOpen:

    @pytest.mark.asyncio
    async def test_reopens_closed_session(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)
        session = registry.active_session
        session.close()

        assert await registry.ensure_open()
        assert session.is_open
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_reopen_restores_database(self, scripted_registry, sqlite_info) -> None:
        await scripted_registry.connect(sqlite_info)
        await scripted_registry.change_database("Sales")
        session = scripted_registry.active_session
        session.mark_broken("link failure")

        assert await scripted_registry.ensure_open()
        assert session.current_database == "Sales"
        await scripted_registry.close_all()

    @pytest.mark.asyncio
    async def test_reports_failed_reopen(self, registry, sqlite_info, monkeypatch) -> None:
        await registry.connect(sqlite_info)
        session = registry.active_session
        session.close()
        events = collect(registry)

        def refuse() -> None:
            raise DatabaseError("server unavailable")

        monkeypatch.setattr(session, "open", refuse)

        assert not await registry.ensure_open()
        assert events[-1].kind == ConnectionEventType.ERROR
        assert events[-1].message == "server unavailable"

    @pytest.mark.asyncio
    async def test_without_session(self, registry) -> None:
        assert not await registry.ensure_open()


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_registry(self, registry, sqlite_info) -> None:
        def explode(event: ConnectionEvent) -> None:
            raise RuntimeError("subscriber bug")

        registry.subscribe(explode)
        events = collect(registry)

        attempt = await registry.connect(sqlite_info)

        assert attempt.success
        assert len(events) == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, registry, sqlite_info) -> None:
        events: List[ConnectionEvent] = []
        with registry.subscribe(events.append):
            await registry.connect(sqlite_info)

        registry.set_active("local")

        assert len(events) == 1
        await registry.close_all()


class TestTeardown:

    @pytest.mark.asyncio
    async def test_context_manager_closes_everything(self, sqlite_info) -> None:
        async with ConnectionRegistry() as registry:
            await registry.connect(sqlite_info)
            session = registry.active_session

        assert session.state == ConnectionState.CLOSED
        assert registry.snapshot().connection_ids == ()

    @pytest.mark.asyncio
    async def test_close_all_goes_through_mutation_path(self, registry, sqlite_info, other_sqlite_info) -> None:
        await registry.connect(sqlite_info)
        await registry.connect(other_sqlite_info)
        sessions = [registry.connections["local"], registry.connections["other"]]
        events = collect(registry)

        with patch.object(registry, "_mutate", wraps=registry._mutate) as mutate:
            await registry.close_all()

        mutate.assert_called_once_with(clear=True)
        assert registry.active_connection_id is None
        assert not registry.is_connected
        assert all(s.state == ConnectionState.CLOSED for s in sessions)
        assert [e.kind for e in events] == [ConnectionEventType.CONNECTION_CHANGED]

    @pytest.mark.asyncio
    async def test_connection_status(self, registry, sqlite_info) -> None:
        await registry.connect(sqlite_info)

        status = registry.get_connection_status()

        assert status["total_active"] == 1
        assert status["active_connection"] == "local"
        assert status["connections"]["local"]["state"] == "open"
        await registry.close_all()
