"""Notification variants validate their own payloads."""

import pytest

from liqwatch.errors import DecodeError
from liqwatch.models import (
    ConfirmedLiquidation,
    PendingLiquidationAttempt,
    RoutineActivity,
    canonical_address,
    format_units,
)

A = "0x" + "aa" * 20
B = "0x" + "bb" * 20


def liquidation(**overrides):
    fields = dict(
        user=A, liquidator=B, collateral_asset=A, debt_asset=B,
        debt_to_cover=10**18, liquidated_collateral_amount=25 * 10**16,
    )
    fields.update(overrides)
    return ConfirmedLiquidation(**fields)


def test_canonical_address():
    assert canonical_address(" 0xAbC ") == "0xabc"


@pytest.mark.parametrize("value,expected", [
    (10**18, "1"),
    (25 * 10**16, "0.25"),
    (0, "0"),
    (1, "0.000000000000000001"),
])
def test_format_units(value, expected):
    assert format_units(value) == expected


@pytest.mark.parametrize("cls", [RoutineActivity, PendingLiquidationAttempt])
def test_address_variants_reject_bad_addresses(cls):
    with pytest.raises(DecodeError):
        cls(address="0x1234")
    with pytest.raises(DecodeError):
        cls(address=None)

    assert cls(address=A.upper().replace("0X", "0x")).address == A


@pytest.mark.parametrize("overrides", [
    {"liquidator": "nobody"},
    {"debt_to_cover": -1},
    {"liquidated_collateral_amount": "100"},
    {"debt_to_cover": True},
])
def test_confirmed_liquidation_validation(overrides):
    with pytest.raises(DecodeError):
        liquidation(**overrides)


def test_render_without_tx_hash():
    text = liquidation().render()

    assert text.startswith("<b>💥 Liquidation Executed (on-chain)</b>")
    assert f"user: <code>{A}</code>" in text
    assert "debtToCover: 1" in text
    assert "collateralAmount: 0.25" in text
    assert text.endswith("tx: unknown")


TX_HASH = "0x" + "fe" * 32


def test_render_uses_explorer_prefix():
    text = liquidation(tx_hash=TX_HASH).render("https://arbiscan.io/tx/")

    assert f"tx: https://arbiscan.io/tx/{TX_HASH}" in text
    assert liquidation().address == A


@pytest.mark.parametrize("tx_hash", [
    "0xfeed",
    "0x" + "zz" * 32,
    "<b>0x" + "fe" * 32 + "</b>",
    "0x" + "fe" * 32 + "00",
    12345,
])
def test_tx_hash_must_be_32_bytes_of_hex(tx_hash):
    with pytest.raises(DecodeError):
        liquidation(tx_hash=tx_hash)
    with pytest.raises(DecodeError):
        PendingLiquidationAttempt(address=A, tx_hash=tx_hash)


def test_tx_hash_is_lowercased():
    assert liquidation(tx_hash=TX_HASH.upper().replace("0X", "0x")).tx_hash == TX_HASH
    assert PendingLiquidationAttempt(address=A).tx_hash is None


def test_render_escapes_explorer_prefix():
    text = liquidation(tx_hash=TX_HASH).render("https://scan.example/tx?chain=1&hash=")

    assert f"tx: https://scan.example/tx?chain=1&amp;hash={TX_HASH}" in text
