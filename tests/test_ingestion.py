"""
Event Ingestion Tests.

Logs and pending transactions are built with eth_abi the same way a node
would encode them.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from eth_utils import encode_hex

from liqwatch.api.abi import (
    ACTIVITY_EVENTS,
    LIQUIDATION_CALL_SELECTOR,
    LIQUIDATION_CALL_TYPES,
    LIQUIDATION_EVENT,
    log_topics,
)
from liqwatch.api.connection import TransportEvent
from liqwatch.api.pool import ConnectionPool
from liqwatch.core.ingestion import EventIngestion
from liqwatch.errors import RpcError, TransportError
from liqwatch.models import (
    ConfirmedLiquidation,
    NotificationKind,
    PendingLiquidationAttempt,
    RoutineActivity,
)

from .conftest import POOL, USER_A, USER_B, FakeConnection, account

EVENTS = {spec.name: spec for spec in ACTIVITY_EVENTS + (LIQUIDATION_EVENT,)}
WETH = account(0xC02A)
USDC = account(0xA0B8)
LIQUIDATOR = account(0x1111)
TX_HASH = "0x" + "5e" * 32


def build_log(name, values, tx_hash=TX_HASH, **extra):
    spec = EVENTS[name]
    indexed = [i for i in spec.inputs if i.indexed]
    plain = [i for i in spec.inputs if not i.indexed]
    log = {
        "address": POOL,
        "topics": [spec.topic] + [encode_hex(encode([i.type], [values[i.name]])) for i in indexed],
        "data": encode_hex(encode([i.type for i in plain], [values[i.name] for i in plain])),
        "transactionHash": tx_hash,
        "removed": False,
    }
    log.update(extra)
    return log


def borrow_log(user=USER_A, **extra):
    return build_log("Borrow", {
        "user": user, "reserve": USDC, "amount": 10**9,
        "borrowRateMode": 2, "borrowRate": 10**25, "referral": 0,
    }, **extra)


def liquidation_log():
    return build_log("LiquidationCall", {
        "collateralAsset": WETH,
        "debtAsset": USDC,
        "user": USER_A,
        "debtToCover": 1500 * 10**18,
        "liquidatedCollateralAmount": 10**18 // 2,
        "liquidator": LIQUIDATOR,
        "receiveAToken": False,
    })


def liquidation_call_input(user=USER_B):
    args = encode(LIQUIDATION_CALL_TYPES, [WETH, USDC, user, 10**18, False])
    return encode_hex(LIQUIDATION_CALL_SELECTOR + args)


@pytest.fixture
def pool():
    pool = ConnectionPool(FakeConnection)
    pool.initialize(["wss://p1", "wss://p2"])
    return pool


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def ingestion(pool, scheduler, dispatcher):
    return EventIngestion(pool, scheduler, dispatcher, pool_address=POOL)


# ============================================================
# LOG NORMALIZATION
# ============================================================

class TestPoolLogs:
    """Confirmed event feed."""

    @pytest.mark.parametrize("name,values", [
        ("Borrow", {"reserve": USDC, "amount": 1, "borrowRateMode": 2, "borrowRate": 3, "referral": 0}),
        ("Repay", {"reserve": USDC, "amount": 1}),
        ("Deposit", {"reserve": USDC, "amount": 1, "referral": 7}),
        ("Withdraw", {"reserve": USDC, "amount": 1}),
    ])
    def test_activity_events_go_to_scheduler(self, ingestion, scheduler, dispatcher, name, values):
        notification = ingestion.handle_log(build_log(name, dict(values, user=USER_A)))

        assert isinstance(notification, RoutineActivity)
        assert notification.kind == NotificationKind.ROUTINE_ACTIVITY
        assert notification.address == USER_A
        assert notification.event_name == name
        scheduler.submit.assert_called_once_with(USER_A)
        dispatcher.enqueue.assert_not_called()

    def test_liquidation_goes_straight_to_alerts(self, ingestion, scheduler, dispatcher):
        notification = ingestion.handle_log(liquidation_log())

        assert isinstance(notification, ConfirmedLiquidation)
        assert notification.user == USER_A
        assert notification.liquidator == LIQUIDATOR
        assert notification.debt_to_cover == 1500 * 10**18
        scheduler.submit.assert_not_called()

        message = dispatcher.enqueue.call_args[0][0]
        assert "Liquidation Executed" in message
        assert USER_A in message
        assert "debtToCover: 1500" in message
        assert "collateralAmount: 0.5" in message
        assert f"https://etherscan.io/tx/{TX_HASH}" in message
        assert ingestion.stats["confirmed_liquidations"] == 1

    def test_malformed_tx_hash_is_dropped(self, ingestion, dispatcher):
        log = liquidation_log()
        log["transactionHash"] = "<i>not a hash</i>"

        assert ingestion.handle_log(log) is None
        assert ingestion.stats["decode_errors"] == 1
        dispatcher.enqueue.assert_not_called()

    def test_removed_log_is_ignored(self, ingestion, scheduler):
        assert ingestion.handle_log(borrow_log(removed=True)) is None
        scheduler.submit.assert_not_called()
        assert ingestion.stats["decode_errors"] == 0

    def test_unknown_topic_is_dropped(self, ingestion, scheduler):
        log = borrow_log()
        log["topics"][0] = "0x" + "00" * 32

        assert ingestion.handle_log(log) is None
        assert ingestion.stats["decode_errors"] == 1
        scheduler.submit.assert_not_called()

    def test_truncated_data_is_dropped(self, ingestion, scheduler):
        log = borrow_log()
        log["data"] = log["data"][:20]

        assert ingestion.handle_log(log) is None
        assert ingestion.stats["decode_errors"] == 1

    def test_wrong_topic_count_is_dropped(self, ingestion):
        log = borrow_log()
        log["topics"] = log["topics"][:2]

        assert ingestion.handle_log(log) is None
        assert ingestion.stats["decode_errors"] == 1

    @pytest.mark.parametrize("payload", [None, "0xdead", {"topics": []}, {"topics": "x"}])
    def test_garbage_never_raises(self, ingestion, payload):
        assert ingestion.handle_log(payload) is None
        assert ingestion.stats["decode_errors"] == 1


# ============================================================
# PENDING TRANSACTIONS
# ============================================================

class TestPendingTransactions:
    """Pre-confirmation firehose."""

    def test_liquidation_call_extracts_user(self, ingestion, scheduler):
        tx = {"hash": TX_HASH, "to": POOL, "input": liquidation_call_input(USER_B)}

        notification = ingestion.handle_pending_transaction(tx)

        assert isinstance(notification, PendingLiquidationAttempt)
        assert notification.address == USER_B
        assert notification.tx_hash == TX_HASH
        scheduler.submit.assert_called_once_with(USER_B)
        assert ingestion.stats["pending_liquidations"] == 1

    def test_data_field_is_accepted(self, ingestion, scheduler):
        tx = {"hash": TX_HASH, "data": liquidation_call_input(USER_A)}

        assert ingestion.handle_pending_transaction(tx).address == USER_A

    def test_other_calls_are_ignored(self, ingestion, scheduler):
        tx = {"hash": TX_HASH, "input": "0xa9059cbb" + "00" * 64}

        assert ingestion.handle_pending_transaction(tx) is None
        scheduler.submit.assert_not_called()
        assert ingestion.stats["decode_errors"] == 0

    @pytest.mark.parametrize("tx", [
        {"input": encode_hex(LIQUIDATION_CALL_SELECTOR + b"\x00" * 10)},
        {"input": "not hex"},
        {"input": None},
        "0x1234",
    ])
    def test_malformed_transactions_are_dropped(self, ingestion, scheduler, tx):
        assert ingestion.handle_pending_transaction(tx) is None
        assert ingestion.stats["decode_errors"] == 1
        scheduler.submit.assert_not_called()


# ============================================================
# SUBSCRIPTIONS
# ============================================================

class TestSubscriptions:
    """Subscriptions follow the active connection."""

    @pytest.mark.asyncio
    async def test_subscribes_on_promotion(self, pool, ingestion):
        p1, _ = pool.connections
        ingestion.attach()

        pool.on_transport_event(p1, TransportEvent.OPENED)
        await ingestion._subscribe_task

        params = [p for p, _ in p1.subscriptions]
        assert params[0] == ["logs", {"address": POOL, "topics": [log_topics()]}]
        assert params[1] == ["alchemy_pendingTransactions", {"toAddress": [POOL], "hashesOnly": False}]
        assert ingestion.subscribed_to is p1

    @pytest.mark.asyncio
    async def test_resubscribes_after_failover(self, pool, ingestion):
        p1, p2 = pool.connections
        ingestion.attach()
        pool.on_transport_event(p1, TransportEvent.OPENED)
        pool.on_transport_event(p2, TransportEvent.OPENED)
        await ingestion._subscribe_task
        assert p2.subscriptions == []

        pool.on_transport_event(p1, TransportEvent.CLOSED)
        await ingestion._subscribe_task

        assert len(p2.subscriptions) == 2
        assert ingestion.subscribed_to is p2

    @pytest.mark.asyncio
    async def test_total_loss_pauses_ingestion(self, pool, ingestion):
        p1, _ = pool.connections
        ingestion.attach()
        pool.on_transport_event(p1, TransportEvent.OPENED)
        await ingestion._subscribe_task

        pool.on_transport_event(p1, TransportEvent.ERRORED)

        assert ingestion.subscribed_to is None

    @pytest.mark.asyncio
    async def test_pending_stream_can_be_disabled(self, pool, scheduler, dispatcher):
        ingestion = EventIngestion(pool, scheduler, dispatcher, pool_address=POOL, pending_tx_stream=False)
        p1, _ = pool.connections

        assert await ingestion.subscribe(p1) == 1
        assert p1.subscriptions[0][0][0] == "logs"

    @pytest.mark.asyncio
    async def test_subscribe_failure_is_not_fatal(self, pool, ingestion):
        p1, _ = pool.connections
        p1.responses["eth_subscribe"] = RpcError("method not found", code=-32601)

        assert await ingestion.subscribe(p1) == 0
        assert ingestion.subscribed_to is None

    @pytest.mark.asyncio
    async def test_subscription_handlers_route_notifications(self, pool, ingestion, scheduler):
        p1, _ = pool.connections
        await ingestion.subscribe(p1)
        log_handler = p1.subscriptions[0][1]
        tx_handler = p1.subscriptions[1][1]

        log_handler(borrow_log(USER_A))
        tx_handler({"hash": TX_HASH, "input": liquidation_call_input(USER_B)})

        assert [c.args[0] for c in scheduler.submit.call_args_list] == [USER_A, USER_B]

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_subscribe(self, pool, ingestion):
        p1, _ = pool.connections
        ingestion.attach()
        pool.on_transport_event(p1, TransportEvent.OPENED)

        await ingestion.stop()

        assert ingestion._subscribe_task is None


# ============================================================
# SUBSCRIPTION RETRIES
# ============================================================

def flaky_subscribe(connection, fail_method, failures):
    """Make `connection.subscribe` reject `fail_method` the first `failures` times."""
    original = connection.subscribe
    attempts = []

    async def subscribe(params, handler):
        attempts.append(params[0])
        if params[0] == fail_method and attempts.count(fail_method) <= failures:
            raise TransportError("transient")
        return await original(params, handler)

    connection.subscribe = subscribe
    return attempts


@pytest.fixture
def retrying_ingestion(pool, scheduler, dispatcher):
    return EventIngestion(
        pool, scheduler, dispatcher, pool_address=POOL,
        subscribe_retry_delay=0.01, max_subscribe_retry_delay=0.02,
    )


class TestSubscriptionRetries:
    """A failed eth_subscribe is retried while its connection stays active."""

    @pytest.mark.asyncio
    async def test_failed_subscribe_recovers(self, pool, retrying_ingestion):
        p1, _ = pool.connections
        p1.responses["eth_subscribe"] = TransportError("transient")
        retrying_ingestion.attach()

        pool.on_transport_event(p1, TransportEvent.OPENED)
        await asyncio.sleep(0.05)
        assert retrying_ingestion.subscribed_to is None
        assert pool.get_active() is p1

        del p1.responses["eth_subscribe"]
        await asyncio.wait_for(retrying_ingestion._subscribe_task, timeout=1)

        assert retrying_ingestion.subscribed_to is p1
        assert len(p1.subscriptions) == 2
        assert set(retrying_ingestion.streams) == {"logs", "pending_txs"}

    @pytest.mark.asyncio
    async def test_partial_failure_retries_missing_stream_only(self, pool, retrying_ingestion):
        p1, _ = pool.connections
        attempts = flaky_subscribe(p1, "alchemy_pendingTransactions", failures=2)
        retrying_ingestion.attach()

        pool.on_transport_event(p1, TransportEvent.OPENED)
        await asyncio.wait_for(retrying_ingestion._subscribe_task, timeout=1)

        assert attempts.count("logs") == 1
        assert attempts.count("alchemy_pendingTransactions") == 3
        assert [p[0] for p, _ in p1.subscriptions] == ["logs", "alchemy_pendingTransactions"]
        assert retrying_ingestion.subscribed_to is p1

    @pytest.mark.asyncio
    async def test_partial_failure_is_not_reported_as_subscribed(self, pool, ingestion):
        p1, _ = pool.connections
        flaky_subscribe(p1, "alchemy_pendingTransactions", failures=1)

        assert await ingestion.subscribe(p1) == 1
        assert ingestion.subscribed_to is None
        assert list(ingestion.streams) == ["logs"]

    @pytest.mark.asyncio
    async def test_retries_stop_once_connection_is_not_active(self, pool, retrying_ingestion):
        p1, _ = pool.connections
        attempts = flaky_subscribe(p1, "logs", failures=100)

        await asyncio.wait_for(retrying_ingestion._maintain(p1), timeout=1)

        assert attempts == ["logs", "alchemy_pendingTransactions"]
        assert retrying_ingestion.subscribed_to is None

    @pytest.mark.asyncio
    async def test_failover_abandons_retries_on_old_connection(self, pool, retrying_ingestion):
        p1, p2 = pool.connections
        attempts = flaky_subscribe(p1, "logs", failures=100)
        retrying_ingestion.attach()
        pool.on_transport_event(p1, TransportEvent.OPENED)
        pool.on_transport_event(p2, TransportEvent.OPENED)
        await asyncio.sleep(0.03)

        pool.on_transport_event(p1, TransportEvent.ERRORED)
        await asyncio.wait_for(retrying_ingestion._subscribe_task, timeout=1)
        tried = len(attempts)
        await asyncio.sleep(0.05)

        assert retrying_ingestion.subscribed_to is p2
        assert len(attempts) == tried
