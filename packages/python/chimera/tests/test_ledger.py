import asyncio
from decimal import Decimal

import pytest

from conftest import FakeClock, make_intent, user_address

from chimera_facilitator.chain import Receipt
from chimera_facilitator.config import PolicyConfig
from chimera_facilitator.ledger import CONFIRMED, PENDING, UNCONFIRMED, PolicyLedger, gas_cost

USER = user_address()


def _receipt(tx_hash="0x01"):
    return Receipt(tx_hash=tx_hash, block_number=1, gas_used=21_000, effective_gas_price=5 * 10**9)


def test_gas_cost_in_native_units():
    assert gas_cost(_receipt()) == Decimal("0.000105")


def test_users_are_keyed_case_insensitively():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    ledger.record_transaction(USER.lower(), make_intent(), _receipt())
    assert len(ledger.transactions(USER.upper().replace("0X", "0x"))) == 1


def test_record_without_user_is_skipped():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    assert ledger.record_transaction(None, make_intent(), _receipt()) is None
    assert ledger.transactions(None) == []


def test_reservation_counts_then_confirms():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    reservation = ledger.reserve(USER, make_intent())
    assert ledger.get_remaining_tx(USER)["perMinute"] == 4
    assert ledger.transactions(USER)[0].status == PENDING

    confirmed = ledger.record_transaction(USER, make_intent(), _receipt("0xaa"), reservation)
    history = ledger.transactions(USER)
    assert len(history) == 1
    assert history[0].status == CONFIRMED
    assert history[0].tx_hash == "0xaa"
    assert confirmed.id == reservation.id


def test_released_reservation_frees_the_slot():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    reservation = ledger.reserve(USER, make_intent())
    ledger.release(USER, reservation)
    assert ledger.get_remaining_tx(USER)["perMinute"] == 5


def test_unconfirmed_reservation_keeps_slot_and_charges_estimate():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    reservation = ledger.reserve(USER, make_intent())
    record = ledger.mark_unconfirmed(USER, reservation, "0x02", Decimal("0.001"))

    assert record.id == reservation.id
    (stored,) = ledger.transactions(USER)
    assert stored.status == UNCONFIRMED
    assert stored.tx_hash == "0x02"
    assert ledger.get_remaining_tx(USER)["perMinute"] == 4
    assert ledger.get_remaining_spend(USER)["hourly"] == Decimal("0.999")


def test_history_is_bounded():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock(), max_history=3)
    for nonce in range(5):
        ledger.record_transaction(USER, make_intent(nonce=nonce), _receipt())
    assert [t.nonce for t in ledger.transactions(USER)] == [2, 3, 4]


def test_remaining_spend_and_windows():
    clock = FakeClock()
    ledger = PolicyLedger(PolicyConfig(), clock=clock)
    ledger.record_transaction(USER, make_intent(), _receipt())
    assert ledger.get_remaining_spend(USER) == {
        "hourly": Decimal("0.999895"),
        "daily": Decimal("4.999895"),
    }

    clock.advance(3600)
    assert ledger.get_remaining_spend(USER)["hourly"] == Decimal("1.0")
    assert ledger.get_remaining_tx(USER) == {"perMinute": 5, "perHour": 30, "perDay": 99}


def test_nonce_tracking_and_release():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    ledger.track_nonce(9)
    assert ledger.has_nonce(9)
    ledger.release_nonce(9)
    assert not ledger.has_nonce(9)


@pytest.mark.asyncio
async def test_atomic_serialises_sections():
    ledger = PolicyLedger(PolicyConfig(), clock=FakeClock())
    order = []

    async def section(tag):
        async with ledger.atomic(USER):
            order.append(f"{tag}-enter")
            await asyncio.sleep(0)
            order.append(f"{tag}-exit")

    await asyncio.gather(section("a"), section("b"))
    assert order == ["a-enter", "a-exit", "b-enter", "b-exit"]
