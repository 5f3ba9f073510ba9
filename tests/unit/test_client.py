"""
Unit tests for the OKX streaming client facade.

Tests cover reference-counted subscribe/unsubscribe frames, routing between
the public and business connections, resubscription after reconnect, the
exact/wildcard/aliased dispatch chain, callback isolation and the handling
of acknowledgements, error events and notices.
"""

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio

from fakes import settle, wait_for
from okxfeed.stream.client import OKXStreamClient, resolve_keys
from okxfeed.stream.errors import ProtocolError
from okxfeed.stream.models import (
    Candle,
    ConnectionClass,
    RegistryKey,
    StreamMessage,
    Subscription,
)
from okxfeed.stream.registry import SubscriptionRegistry

CANDLES_ARG = {"channel": "candles:1H", "instId": "BTC-USDT"}
TRADES_ARG = {"channel": "trades", "instId": "BTC-USDT"}


@pytest_asyncio.fixture
async def client(test_settings, socket_factory):
    stream = OKXStreamClient(test_settings, socket_factory=socket_factory)
    yield stream
    await stream.disconnect()


def trade_push(inst_id: str = "BTC-USDT", trade_id: str = "1") -> dict:
    return {
        "arg": {"channel": "trades", "instId": inst_id},
        "data": [
            {
                "instId": inst_id,
                "tradeId": trade_id,
                "px": "42000",
                "sz": "0.1",
                "side": "buy",
                "ts": "1700000000000",
            }
        ],
    }


# =============================================================================
# Subscribe / unsubscribe
# =============================================================================


@pytest.mark.unit
class TestSubscriptions:
    """Test subscription reference counting and wire frames."""

    @pytest.mark.asyncio
    async def test_candle_example_end_to_end(self, client, socket_factory, candle_push):
        received: list[StreamMessage] = []

        await client.subscribe(Subscription.candles("BTC", "1H"), received.append)

        ws = socket_factory.latest("public")
        assert ws.frames == [{"op": "subscribe", "args": [CANDLES_ARG]}]

        ws.feed(candle_push)
        await wait_for(lambda: len(received) == 1)

        message = received[0]
        assert message.channel == "candles:1H"
        assert message.data == [
            Candle(time=1700000000, open="100", high="110", low="90", close="105", volume="12")
        ]

        await settle()
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_one_wire_subscription_per_key(self, client, socket_factory):
        def cb_a(message):
            pass

        def cb_b(message):
            pass

        await client.subscribe(Subscription.candles("BTC", "1H"), cb_a)
        await client.subscribe(Subscription.candles("btc-usdt", "1h"), cb_b)

        ws = socket_factory.latest("public")
        assert ws.ops("subscribe") == [CANDLES_ARG]

        client.unsubscribe(Subscription.candles("BTC", "1H"), cb_a)
        await settle()
        assert ws.ops("unsubscribe") == []

        client.unsubscribe(Subscription.candles("BTC", "1H"), cb_b)
        await settle()
        assert ws.ops("unsubscribe") == [CANDLES_ARG]

    @pytest.mark.asyncio
    async def test_returned_function_unsubscribes(self, client, socket_factory):
        received = []
        unsubscribe = await client.subscribe(Subscription.trades("BTC-USDT"), received.append)
        ws = socket_factory.latest("public")

        unsubscribe()
        ws.feed(trade_push())
        await settle()
        await asyncio.sleep(0.02)

        assert received == []
        assert ws.ops("unsubscribe") == [TRADES_ARG]

    @pytest.mark.asyncio
    async def test_resubscribe_after_last_unsubscribe_keeps_wire_order(
        self, client, socket_factory
    ):
        received = []

        def cb_a(message):
            pass

        await client.subscribe(Subscription.trades("BTC-USDT"), cb_a)
        client.unsubscribe(Subscription.trades("BTC-USDT"), cb_a)
        await client.subscribe(Subscription.trades("BTC-USDT"), received.append)
        await settle()

        ws = socket_factory.latest("public")
        trade_ops = [frame["op"] for frame in ws.frames if frame["args"] == [TRADES_ARG]]
        assert trade_ops == ["subscribe", "unsubscribe", "subscribe"]
        assert RegistryKey("trades", instrument_id="BTC-USDT") in client.connection(
            ConnectionClass.PUBLIC
        ).registry

        ws.feed(trade_push())
        await wait_for(lambda: len(received) == 1)

    @pytest.mark.asyncio
    async def test_unsubscribe_during_resubscription_follows_subscribe(
        self, client, socket_factory
    ):
        def cb(message):
            pass

        await client.subscribe(Subscription.trades("BTC-USDT"), cb)
        await client.subscribe(Subscription.candles("BTC", "1H"), print)

        socket_factory.send_delay = 0.05
        socket_factory.latest("public").drop()
        await wait_for(lambda: len(socket_factory.for_url("public")) == 2)
        ws = socket_factory.latest("public")
        assert ws.frames == []

        client.unsubscribe(Subscription.trades("BTC-USDT"), cb)
        await wait_for(lambda: len(ws.frames) == 3)

        ops = [(frame["op"], frame["args"][0]["channel"]) for frame in ws.frames]
        assert ops == [
            ("subscribe", "trades"),
            ("subscribe", "candles:1H"),
            ("unsubscribe", "trades"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_unsubscribe_is_noop(self, client, socket_factory):
        await client.connect()

        client.unsubscribe(Subscription.trades("BTC-USDT"), print)
        await settle()

        assert socket_factory.latest("public").frames == []

    @pytest.mark.asyncio
    async def test_subscribe_on_open_connection_sends_immediately(self, client, socket_factory):
        await client.connect()
        assert client.is_connected()

        await client.subscribe(Subscription.trades("ETH"), print)

        assert socket_factory.latest("public").ops("subscribe") == [
            {"channel": "trades", "instId": "ETH-USDT"}
        ]

    @pytest.mark.asyncio
    async def test_index_candles_use_business_connection(self, client, socket_factory):
        await client.subscribe(Subscription.index_candles("BTC-USDT", "1H"), print)

        assert socket_factory.for_url("public") == []
        (business,) = socket_factory.for_url("business")
        assert business.ops("subscribe") == [{"channel": "index-candle1H", "instId": "BTC-USD"}]

    @pytest.mark.asyncio
    async def test_ticker_helpers(self, client, socket_factory):
        await client.subscribe_instrument_type_tickers(print)
        await client.subscribe_ticker("ETH", print)

        assert socket_factory.latest("public").ops("subscribe") == [
            {"channel": "tickers", "instType": "SPOT"},
            {"channel": "tickers", "instId": "ETH-USDT"},
        ]

    @pytest.mark.asyncio
    async def test_concurrent_subscribes_while_connecting(self, client, socket_factory):
        socket_factory.gate = asyncio.Event()

        first = asyncio.create_task(client.subscribe(Subscription.candles("BTC"), print))
        second = asyncio.create_task(client.subscribe(Subscription.trades("BTC"), print))
        await settle()
        socket_factory.gate.set()
        await asyncio.gather(first, second)

        ws = socket_factory.latest("public")
        assert len(socket_factory.for_url("public")) == 1
        assert sorted(arg["channel"] for arg in ws.ops("subscribe")) == ["candles:1H", "trades"]

    @pytest.mark.asyncio
    async def test_subscribe_survives_connect_failure(self, client, socket_factory):
        socket_factory.fail_next = 1

        unsubscribe = await client.subscribe(Subscription.trades("BTC"), print)

        assert callable(unsubscribe)
        await wait_for(lambda: len(socket_factory.for_url("public")) == 1)
        await wait_for(lambda: socket_factory.latest("public").ops("subscribe") == [TRADES_ARG])


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.unit
class TestLifecycle:
    """Test connect/disconnect and reconnection behaviour."""

    @pytest.mark.asyncio
    async def test_resubscribes_every_key_after_reconnect(self, client, socket_factory):
        reconnected = []
        client.on_connect(lambda: reconnected.append(True))

        await client.subscribe(Subscription.candles("BTC", "1H"), print)
        await client.subscribe(Subscription.trades("BTC"), print)
        await client.subscribe(Subscription.trades("BTC-USDT"), repr)

        socket_factory.latest("public").drop()
        await wait_for(lambda: len(socket_factory.for_url("public")) == 2)
        await wait_for(lambda: len(reconnected) == 2)

        assert socket_factory.latest("public").ops("subscribe") == [CANDLES_ARG, TRADES_ARG]

    @pytest.mark.asyncio
    async def test_connect_opens_both_connections(self, client, socket_factory):
        await client.connect()

        assert len(socket_factory.for_url("public")) == 1
        assert len(socket_factory.for_url("business")) == 1
        assert client.stats["public"]["state"] == "open"
        assert client.stats["business"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_disconnect_closes_and_forgets(self, client, socket_factory):
        disconnected = []
        client.on_disconnect(lambda: disconnected.append(True))
        await client.subscribe(Subscription.trades("BTC"), print)

        await client.disconnect()

        assert not client.is_connected()
        assert len(client.connection(ConnectionClass.PUBLIC).registry) == 0
        assert disconnected == [True]
        await asyncio.sleep(0.05)
        assert len(socket_factory.for_url("public")) == 1

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, test_settings, socket_factory):
        async with OKXStreamClient(test_settings, socket_factory=socket_factory) as stream:
            await stream.subscribe(Subscription.trades("BTC"), print)
            assert stream.is_connected()

        assert not stream.is_connected()


# =============================================================================
# Dispatch
# =============================================================================


@pytest.mark.unit
class TestDispatch:
    """Test routing of data pushes to subscribers."""

    @pytest.mark.asyncio
    async def test_ticker_wildcard_by_type(self, client, socket_factory, ticker_record):
        received = []
        await client.subscribe_instrument_type_tickers(received.append, "SPOT")

        socket_factory.latest("public").feed(
            {
                "arg": {"channel": "tickers", "instId": "BTC-USDT", "instType": "SPOT"},
                "data": [ticker_record],
            }
        )
        await wait_for(lambda: len(received) == 1)

        assert received[0].channel == "tickers"
        assert received[0].data[0].instrument_id == "BTC-USDT"

    @pytest.mark.asyncio
    async def test_ticker_wildcard_any(self, client, socket_factory, ticker_record):
        received = []
        await client.subscribe(Subscription.ticker(), received.append)

        socket_factory.latest("public").feed(
            {"arg": {"channel": "tickers", "instId": "BTC-USDT"}, "data": [ticker_record]}
        )
        await wait_for(lambda: len(received) == 1)

    @pytest.mark.asyncio
    async def test_exact_match_wins_over_wildcard(self, client, socket_factory, ticker_record):
        exact = []
        by_type = []
        await client.subscribe_ticker("BTC-USDT", exact.append)
        await client.subscribe_instrument_type_tickers(by_type.append)

        socket_factory.latest("public").feed(
            {
                "arg": {"channel": "tickers", "instId": "BTC-USDT", "instType": "SPOT"},
                "data": [ticker_record],
            }
        )
        await wait_for(lambda: len(exact) == 1)
        await settle()

        assert by_type == []

    @pytest.mark.asyncio
    async def test_aliased_quote_currency(self, client, socket_factory):
        received = []
        await client.subscribe(Subscription.trades("BTC-USD"), received.append)

        socket_factory.latest("public").feed(trade_push("BTC-USDT"))
        await wait_for(lambda: len(received) == 1)

    @pytest.mark.asyncio
    async def test_aliased_book_depth_variant(self, client, socket_factory):
        received = []
        await client.subscribe(Subscription.book("BTC-USDT", depth=5), received.append)

        socket_factory.latest("public").feed(
            {
                "arg": {"channel": "books", "instId": "BTC-USDT"},
                "action": "snapshot",
                "data": [{"bids": [["1", "1"]], "asks": [["2", "1"]], "ts": "1700000000000"}],
            }
        )
        await wait_for(lambda: len(received) == 1)

        assert received[0].channel == "books"
        assert received[0].is_snapshot

    @pytest.mark.asyncio
    async def test_aliasing_does_not_cross_candle_intervals(self, client, socket_factory, candle_push):
        received = []
        await client.subscribe(Subscription.candles("BTC", "1m"), received.append)

        socket_factory.latest("public").feed(candle_push)
        await settle()
        await asyncio.sleep(0.02)

        assert received == []

    @pytest.mark.asyncio
    async def test_unmatched_push_dropped(self, client, socket_factory):
        received = []
        await client.subscribe(Subscription.trades("ETH"), received.append)
        ws = socket_factory.latest("public")

        ws.feed(trade_push("BTC-USDT"))
        ws.feed(trade_push("ETH-USDT"))
        await wait_for(lambda: len(received) == 1)

        assert received[0].data[0].instrument_id == "ETH-USDT"

    @pytest.mark.asyncio
    async def test_malformed_frames_dropped(self, client, socket_factory):
        received = []
        await client.subscribe(Subscription.trades("BTC"), received.append)
        ws = socket_factory.latest("public")

        ws.feed("{not json")
        ws.feed({"arg": TRADES_ARG, "data": [{"px": "x", "sz": "1", "side": "buy"}]})
        ws.feed(trade_push())
        await wait_for(lambda: len(received) == 1)

        assert client.is_connected()

    @pytest.mark.asyncio
    async def test_callback_isolation(self, client, socket_factory):
        received = []

        def failing(message):
            raise RuntimeError("subscriber bug")

        async def async_ok(message):
            received.append(message)

        await client.subscribe(Subscription.trades("BTC"), failing)
        await client.subscribe(Subscription.trades("BTC"), async_ok)

        ws = socket_factory.latest("public")
        ws.feed(trade_push(trade_id="1"))
        ws.feed(trade_push(trade_id="2"))
        await wait_for(lambda: len(received) == 2)

        assert [message.data[0].id for message in received] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_unsubscribed_during_dispatch_is_skipped(self, client, socket_factory):
        received = []

        def second(message):
            received.append(message)

        def first(message):
            client.unsubscribe(Subscription.trades("BTC"), second)

        await client.subscribe(Subscription.trades("BTC"), first)
        await client.subscribe(Subscription.trades("BTC"), second)

        socket_factory.latest("public").feed(trade_push())
        await settle()
        await asyncio.sleep(0.02)

        assert received == []


# =============================================================================
# Control frames
# =============================================================================


@pytest.mark.unit
class TestControlFrames:
    """Test acknowledgements, error events and notices."""

    @pytest.mark.asyncio
    async def test_subscribe_ack_delivered(self, client, socket_factory):
        received = []
        await client.subscribe(Subscription.candles("BTC", "1H"), received.append)

        socket_factory.latest("public").feed({"event": "subscribe", "arg": CANDLES_ARG})
        await wait_for(lambda: len(received) == 1)

        assert received[0] == StreamMessage(channel="subscribed", data=[CANDLES_ARG])

    @pytest.mark.asyncio
    async def test_rejected_ack_reaches_error_hooks(self, client, socket_factory):
        errors = []
        client.on_error(errors.append)
        await client.subscribe(Subscription.trades("NOPE"), print)

        socket_factory.latest("public").feed(
            {
                "event": "subscribe",
                "arg": {"channel": "trades", "instId": "NOPE-USDT"},
                "code": "60018",
                "msg": "Wrong URL or channel",
            }
        )
        await wait_for(lambda: len(errors) == 1)

        assert isinstance(errors[0], ProtocolError)
        assert errors[0].code == "60018"
        assert errors[0].arg == {"channel": "trades", "instId": "NOPE-USDT"}

    @pytest.mark.asyncio
    async def test_ack_with_non_object_arg_dropped_as_unparseable(self, client, socket_factory):
        received = []
        errors = []
        client.on_error(errors.append)
        await client.subscribe(Subscription.trades("BTC"), received.append)
        ws = socket_factory.latest("public")

        with patch("okxfeed.stream.client.logger") as log:
            ws.feed({"event": "subscribe", "arg": "trades"})
            ws.feed(trade_push())
            await wait_for(lambda: len(received) == 1)

        events = [call.args[0] for call in log.warning.call_args_list]
        assert "stream_frame_unparseable" in events
        assert errors == []
        assert received[0].channel == "trades"

    @pytest.mark.asyncio
    async def test_error_event_reaches_error_hooks(self, client, socket_factory):
        errors = []

        async def on_error(error):
            errors.append(error)

        client.on_error(on_error)
        await client.connect()

        socket_factory.latest("public").feed({"event": "error", "code": "60012", "msg": "Invalid request"})
        await wait_for(lambda: len(errors) == 1)

        assert str(errors[0]) == "Invalid request (code 60012)"

    @pytest.mark.asyncio
    async def test_notice_reaches_each_callback_once(self, client, socket_factory):
        seen_a = []
        seen_b = []
        await client.subscribe(Subscription.candles("BTC"), seen_a.append)
        await client.subscribe(Subscription.trades("BTC"), seen_a.append)
        await client.subscribe(Subscription.trades("BTC"), seen_b.append)

        notice = {"event": "notice", "code": "64008", "msg": "service upgrade"}
        socket_factory.latest("public").feed(notice)
        await wait_for(lambda: len(seen_a) == 1 and len(seen_b) == 1)
        await settle()

        assert seen_a == [StreamMessage(channel="notice", data=[notice])]
        assert len(seen_b) == 1


# =============================================================================
# Key resolution
# =============================================================================


@pytest.mark.unit
class TestResolveKeys:
    """Test the dispatch fallback chain in isolation."""

    def test_passes_in_order(self):
        registry: SubscriptionRegistry = SubscriptionRegistry()
        type_key = RegistryKey("tickers", instrument_type="SWAP")
        family_key = RegistryKey("tickers", instrument_type="SWAP", instrument_family="BTC-USD")
        registry.add(type_key, print)
        registry.add(family_key, print)

        arg = {
            "channel": "tickers",
            "instId": "BTC-USD-SWAP",
            "instType": "SWAP",
            "instFamily": "BTC-USD",
        }
        assert resolve_keys(registry, arg) == [family_key, type_key]

    def test_empty_arg(self):
        assert resolve_keys(SubscriptionRegistry(), None) == []
        assert resolve_keys(SubscriptionRegistry(), {}) == []
