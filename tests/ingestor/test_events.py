"""Tests for domain event conversion."""

import pytest

from aptos_trade_indexer.ingestor.models import (
    DEFAULT_FEE_TIER,
    DEFAULT_TICK_SPACING,
    EventKind,
    MessageCreated,
    ModuleUpgraded,
    PackageUpgraded,
    PoolCreated,
    SwapOccurred,
    TradeCreated,
    event_type_name,
    from_chain_event,
)
from aptos_trade_indexer.ingestor.numeric import DecimalString, ParseFallbacks

TRADE_DATA = {
    "trade_obj_addr": "0xt1",
    "trader": "0xa",
    "trade_type": "1",
    "token_from": "0x1::aptos_coin::AptosCoin",
    "token_to": "0xdead::usdc::USDC",
    "amount_from": "1000",
    "amount_to": "10",
    "price": "100",
    "status": "1",
    "creation_timestamp": "1700000000",
    "last_update_timestamp": "1700000000",
}


class TestEventTypeName:
    def test_strips_module_path(self) -> None:
        assert event_type_name("0xabc::trade::CreateTradeEvent") == "CreateTradeEvent"

    def test_ignores_generics(self) -> None:
        assert event_type_name("0xabc::pool::SwapEvent<0x1::aptos_coin::AptosCoin>") == "SwapEvent"


class TestFromChainEvent:
    def test_trade_created(self) -> None:
        event = from_chain_event(
            "0xabc::trade::CreateTradeEvent", TRADE_DATA, version=10, event_index=2
        )
        assert isinstance(event, TradeCreated)
        assert event.kind is EventKind.TRADE_CREATED
        assert event.version == 10
        assert event.event_index == 2
        assert event.trade.trader_addr == "0xa"
        assert event.trade.amount_from == 1000
        assert event.trade.price == 100

    def test_unknown_type_is_ignored(self) -> None:
        assert from_chain_event("0x1::coin::DepositEvent", {}, version=1, event_index=0) is None

    def test_message_reads_nested_body(self) -> None:
        data = {
            "message_obj_addr": "0xm1",
            "message": {
                "creator": "0xa",
                "content": "hello",
                "creation_timestamp": "5",
                "last_update_timestamp": "6",
            },
        }
        event = from_chain_event("0xabc::message_board::CreateMessageEvent", data, version=1, event_index=0)
        assert isinstance(event, MessageCreated)
        assert event.message.creator_addr == "0xa"
        assert event.message.content == "hello"
        assert event.message.last_update_timestamp == 6

    def test_pool_created_defaults_on_bad_fee(self) -> None:
        fallbacks = ParseFallbacks()
        data = {
            "pool_address": "0xp",
            "token0": "0x1",
            "token1": "0x2",
            "fee": "three thousand",
            "tick_spacing": "",
            "sqrt_price_x96": "79228162514264337593543950336",
            "tick": "-5",
            "timestamp": "100",
        }
        event = from_chain_event(
            "0xabc::pool::PoolCreatedEvent", data, version=3, event_index=0, fallbacks=fallbacks
        )
        assert isinstance(event, PoolCreated)
        assert event.pool.fee_tier == DEFAULT_FEE_TIER
        assert event.pool.tick_spacing == DEFAULT_TICK_SPACING
        assert event.pool.tick == -5
        assert fallbacks.counts == {"fee": 1, "tick_spacing": 1}

    def test_swap_keeps_u128_liquidity(self) -> None:
        data = {
            "pool": "0xp",
            "sender": "0xa",
            "recipient": "0xa",
            "amount_in": "1000",
            "amount_out": "1990",
            "sqrt_price_x96": "79228162514264337593543950336",
            "liquidity": "340282366920938463463374607431768211455",
            "tick": "1",
            "timestamp": "100",
        }
        event = from_chain_event("0xabc::pool::SwapEvent", data, version=7, event_index=4)
        assert isinstance(event, SwapOccurred)
        assert event.swap.liquidity == DecimalString("340282366920938463463374607431768211455")
        assert event.swap_id == "0xp-7-4"

    def test_events_are_frozen(self) -> None:
        event = from_chain_event("0xabc::trade::CreateTradeEvent", TRADE_DATA, version=1, event_index=0)
        with pytest.raises(AttributeError):
            event.version = 2  # type: ignore[misc, union-attr]


class TestUpgradeChanges:
    def test_module_upgrade_decodes_hex_and_abi(self) -> None:
        event = ModuleUpgraded.from_change(
            {
                "module_addr": "0xabc",
                "module_name": "trade",
                "upgrade_number": "2",
                "module_bytecode": "0xa11ceb0b",
                "module_abi": '{"name": "trade"}',
            },
            version=50,
            change_index=1,
        )
        assert event.kind is EventKind.MODULE_UPGRADED
        assert event.upgrade.module_bytecode == bytes.fromhex("a11ceb0b")
        assert event.upgrade.module_abi == {"name": "trade"}
        assert event.upgrade.upgrade_number == 2

    def test_package_upgrade(self) -> None:
        event = PackageUpgraded.from_change(
            {
                "package_addr": "0xabc",
                "package_name": "dapp",
                "upgrade_number": "3",
                "upgrade_policy": "1",
                "source_digest": "DEADBEEF",
            },
            version=51,
            change_index=0,
        )
        assert event.upgrade.upgrade_policy == 1
        assert event.upgrade.package_manifest == ""
        assert event.version == 51
