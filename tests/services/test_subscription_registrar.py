"""
Tests for SubscriptionRegistrar and SubscriptionHandle
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from spacetime_link.exceptions import (
    ConnectionStateError,
    NotInitializedError,
    SubscriptionFailedError,
    TransportDisconnect,
)
from spacetime_link.services.subscription_registrar import SubscriptionRegistrar
from tests.fakes import applied, settle


QUERY = "SELECT * FROM chat_message_state"


class TestSubscribe:
    def test_requires_connection(self, manager):
        registrar = SubscriptionRegistrar(manager)
        with pytest.raises(NotInitializedError):
            registrar.subscribe(QUERY)

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, manager, connection_config):
        await manager.connect(connection_config)
        registrar = SubscriptionRegistrar(manager)

        with pytest.raises(ValueError):
            registrar.subscribe("   ")
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_sends_one_request(self, manager, transports, connection_config):
        conn = await manager.connect(connection_config)
        handle = SubscriptionRegistrar(manager).subscribe(QUERY)
        await settle()

        assert handle.connection is conn
        assert handle.query_text == QUERY
        assert handle.applied is False
        assert transports.last.sent_of("SubscribeSingle") == [{
            "query": QUERY,
            "request_id": handle.request_id,
            "query_id": {"id": handle.query_id},
        }]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_identical_queries_are_independent(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        registrar = SubscriptionRegistrar(manager)
        on_applied = MagicMock()

        first = registrar.subscribe(QUERY, on_applied=on_applied)
        second = registrar.subscribe(QUERY, on_applied=on_applied)
        await settle()

        assert first is not second
        assert first.query_id != second.query_id
        assert len(transports.last.sent_of("SubscribeSingle")) == 2

        transports.last.push(applied(first.query_id, first.request_id))
        await settle()
        assert first.applied and not second.applied

        transports.last.push(applied(second.query_id, second.request_id))
        await settle()
        assert first.applied and second.applied
        assert on_applied.call_count == 2
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_applied_flips_once(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        on_applied = MagicMock()
        handle = SubscriptionRegistrar(manager).subscribe(QUERY, on_applied=on_applied)

        transports.last.push(applied(handle.query_id))
        transports.last.push(applied(handle.query_id))
        await settle()

        assert handle.applied
        assert handle.is_active
        on_applied.assert_called_once_with(handle)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_async_on_applied(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        seen = asyncio.Event()

        async def on_applied(handle):
            await asyncio.sleep(0)
            seen.set()

        handle = SubscriptionRegistrar(manager).subscribe(QUERY, on_applied=on_applied)
        transports.last.push(applied(handle.query_id))

        await asyncio.wait_for(seen.wait(), timeout=1)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_failing_on_applied_is_contained(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        registrar = SubscriptionRegistrar(manager)
        bad = registrar.subscribe(QUERY, on_applied=MagicMock(side_effect=RuntimeError("boom")))
        good = registrar.subscribe(QUERY)

        transports.last.push(applied(bad.query_id))
        transports.last.push(applied(good.query_id))
        await settle()

        assert bad.applied and good.applied
        assert manager.is_ready
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_queued_while_connecting(self, manager, transports, connection_config):
        manager.initialize(connection_config)
        gate = asyncio.Event()
        transports.last.gate = gate

        handle = SubscriptionRegistrar(manager).subscribe(QUERY)
        await settle()
        assert transports.last.sent == []

        gate.set()
        await settle()
        assert transports.last.sent_of("SubscribeSingle")[0]["query_id"] == {"id": handle.query_id}
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_subscribe_after_disconnect(self, manager, transports, connection_config):
        conn = await manager.connect(connection_config)
        transports.last.drop(TransportDisconnect("reset by peer"))
        await settle()

        with pytest.raises(NotInitializedError):
            SubscriptionRegistrar(manager).subscribe(QUERY)
        with pytest.raises(ConnectionStateError):
            conn.subscription_builder().subscribe(QUERY)


class TestSubscriptionErrors:
    @pytest.mark.asyncio
    async def test_server_rejects_query(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        on_error = MagicMock()
        handle = SubscriptionRegistrar(manager).subscribe("SELECT * FROM nope", on_error=on_error)

        transports.last.push({
            "SubscriptionError": {
                "request_id": {"some": handle.request_id},
                "query_id": {"some": handle.query_id},
                "table_id": {"none": []},
                "error": "no such table: `nope`",
            }
        })
        await settle()

        assert handle.error == "no such table: `nope`"
        assert handle.ended
        assert not handle.applied
        error = on_error.call_args[0][0]
        assert isinstance(error, SubscriptionFailedError)
        assert error.query == "SELECT * FROM nope"
        assert manager.current().subscriptions == []
        await manager.shutdown()


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_unsubscribe_applied(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        handle = SubscriptionRegistrar(manager).subscribe(QUERY)
        transports.last.push(applied(handle.query_id))
        await settle()

        handle.unsubscribe()
        await settle()

        sent = transports.last.sent_of("Unsubscribe")
        assert sent == [{"request_id": sent[0]["request_id"], "query_id": {"id": handle.query_id}}]
        assert sent[0]["request_id"] != handle.request_id

        transports.last.push({"UnsubscribeApplied": {"request_id": sent[0]["request_id"], "query_id": {"id": handle.query_id}}})
        await settle()
        assert handle.ended
        assert not handle.is_active
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unsubscribe_inside_on_applied(self, manager, transports, connection_config):
        """One-shot lookup: read once applied, then drop the subscription"""
        await manager.connect(connection_config)
        handle = SubscriptionRegistrar(manager).subscribe(
            "SELECT * FROM player_username_state WHERE username = 'Kai'",
            on_applied=lambda h: h.unsubscribe(),
        )

        transports.last.push(applied(handle.query_id))
        await settle()

        assert len(transports.last.sent_of("Unsubscribe")) == 1
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unsubscribe_before_applied_is_deferred(self, manager, transports, connection_config):
        await manager.connect(connection_config)
        handle = SubscriptionRegistrar(manager).subscribe(QUERY)

        handle.unsubscribe()
        handle.unsubscribe()
        await settle()
        assert transports.last.sent_of("Unsubscribe") == []

        transports.last.push(applied(handle.query_id))
        await settle()
        assert len(transports.last.sent_of("Unsubscribe")) == 1
        await manager.shutdown()
