"""Tests for the flash-loan leverage overlay."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stratvault.adapters.leverage import LeverageParams, max_leverage_for
from stratvault.engine import events as ev
from stratvault.errors import AmountTooLow, InvalidData, Unauthorized

from vault_fixtures import ADMIN, ALICE, TWO_LEG_INS, UNIT, USDC, USDT, make_world


def opened_world(**kwargs):
    """Leveraged vault: 1000 USDC deposited, 920 opened at 4x with a 1% haircut."""
    world = make_world(adapter="leverage", **kwargs)
    world.vault.deposit(1_000 * UNIT, ALICE)
    world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
    return world


class TestLeverageParams:
    """Bounds derived from the venue's collateral factor."""

    def test_max_leverage(self):
        assert max_leverage_for(8_000) == 500
        assert max_leverage_for(5_000) == 200

    def test_check_accepts_below_max(self):
        LeverageParams(target_leverage=499, haircut_bps=100, collateral_factor_bps=8_000).check()

    def test_check_rejects_at_max(self):
        params = LeverageParams(target_leverage=500, haircut_bps=100, collateral_factor_bps=8_000)
        with pytest.raises(Unauthorized):
            params.check()

    def test_check_rejects_no_leverage(self):
        with pytest.raises(InvalidData):
            LeverageParams(target_leverage=100, haircut_bps=0, collateral_factor_bps=8_000).check()

    def test_check_rejects_haircut(self):
        with pytest.raises(InvalidData):
            LeverageParams(target_leverage=400, haircut_bps=40_000, collateral_factor_bps=8_000).check()


class TestOpen:
    """Opening the leveraged leg."""

    def test_open_position(self):
        world = opened_world()
        overlay = world.adapter
        assert overlay.collateral() == 3_680_000_000
        assert overlay.debt() == 2_732_400_000
        assert overlay.equity() == 947_600_000
        assert world.vault.idle_cash() == 52_400_000
        assert world.vault.total_assets() == 1_000 * UNIT
        ok, error = world.vault.check_invariants()
        assert ok, error

    def test_short_leg_reports_nothing(self):
        world = opened_world()
        assert world.adapter.position(1) == 0
        assert world.adapter.invested_value(1) == 0

    def test_open_emits_event_and_repays_lender(self):
        world = opened_world()
        event = world.vault.events.last(ev.LEVERAGE_OPENED)
        assert event.data["loan"] == 3_680_000_000
        assert event.data["debt_after"] == 2_732_400_000
        assert world.tokens.balance_of(USDC, world.lender.address) == 10 ** 15
        assert world.lender.loans_served == 1

    def test_missing_instruction(self):
        world = make_world(adapter="leverage")
        world.vault.deposit(1_000 * UNIT, ALICE)
        with pytest.raises(InvalidData):
            world.vault.invest(sender=ADMIN)

    def test_unrepayable_loan_reverts_everything(self):
        """Staking everything leaves no idle cash to cover the haircut."""
        world = make_world(adapter="leverage")
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.set_input_weights([10_000, 0], sender=ADMIN)
        with pytest.raises(AmountTooLow):
            world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.vault.idle_cash() == 1_000 * UNIT
        assert world.adapter.collateral() == 0
        assert world.adapter.debt() == 0
        assert world.tokens.balance_of(USDC, world.lender.address) == 10 ** 15
        assert world.lender.loans_served == 0

    def test_loan_fee_counts_against_slippage(self):
        """A 1% loan fee on a 4x loan costs 4% of the staked amount."""
        world = make_world(adapter="leverage", lender_fee_bps=100)
        world.vault.deposit(1_000 * UNIT, ALICE)
        with pytest.raises(AmountTooLow):
            world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.vault.idle_cash() == 1_000 * UNIT
        assert world.adapter.debt() == 0
        assert world.lender.loans_served == 0

    def test_loan_fee_within_wider_budget(self):
        world = make_world(adapter="leverage", lender_fee_bps=100)
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.set_max_slippage(500, sender=ADMIN)
        result = world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)

        entry = result.allocations[0]
        assert entry.target == 920 * UNIT
        assert entry.value_delta == 947_600_000
        assert entry.spent == 984_400_000
        assert entry.net_value == 883_200_000
        assert world.vault.idle_cash() == 15_600_000
        assert world.vault.total_assets() == 963_200_000

    def test_short_leg_cannot_be_staked(self):
        world = make_world(adapter="leverage")
        with pytest.raises(InvalidData):
            world.adapter.stake(1, 10 * UNIT, TWO_LEG_INS)


class TestClose:
    """Unwinding the leveraged leg."""

    def test_full_close_carries_dust(self):
        world = opened_world()
        world.vault.liquidate(10 ** 12, swap_instructions=TWO_LEG_INS, sender=ADMIN)
        overlay = world.adapter
        assert overlay.debt() == 0
        assert overlay.collateral() == 0
        assert overlay.secondary_dust == 27_324_000
        assert world.tokens.balance_of(USDT, world.vault.address) == 27_324_000
        assert world.vault.idle_cash() == 972_676_000
        assert world.vault.total_assets() == 1_000 * UNIT

        event = world.vault.events.last(ev.LEVERAGE_CLOSED)
        assert event.data["released"] == 920_276_000

    def test_reopen_consumes_dust(self):
        world = opened_world()
        world.vault.liquidate(10 ** 12, swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.adapter.secondary_dust == 0
        assert world.tokens.balance_of(USDT, world.vault.address) == 0
        assert world.vault.total_assets() == 1_000 * UNIT
        ok, error = world.vault.check_invariants()
        assert ok, error

    def test_rescued_dust_is_written_off(self):
        """Carried short-leg dust stops counting once the admin takes it."""
        world = opened_world()
        world.vault.liquidate(10 ** 12, swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.vault.request_rescue(USDT, sender=ADMIN)
        world.clock.advance(world.vault.config.rescue_timelock_seconds)

        assert world.vault.rescue(USDT, sender=ADMIN) == 27_324_000
        assert world.adapter.secondary_dust == 0
        assert world.tokens.balance_of(USDT, world.vault.address) == 0
        assert world.vault.total_assets() == 972_676_000
        event = world.vault.events.last(ev.RESCUED)
        assert event.data["assets_before"] - event.data["assets_after"] == 27_324_000
        ok, error = world.vault.check_invariants()
        assert ok, error

    def test_leveraged_leg_cannot_be_removed(self):
        world = opened_world()
        with pytest.raises(InvalidData):
            world.vault.update_inputs([{"token": USDC, "weight_bps": 9200, "decimals": 6}], sender=ADMIN)
        with pytest.raises(InvalidData):
            world.vault.update_inputs(
                [{"token": USDT, "weight_bps": 0, "decimals": 6}, {"token": USDC, "weight_bps": 9200, "decimals": 6}],
                sender=ADMIN,
            )
        assert world.adapter.debt() > 0

    def test_partial_close_repays_pro_rata(self):
        world = opened_world()
        debt_before = world.adapter.debt()
        world.vault.liquidate(100 * UNIT, swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert 0 < world.adapter.debt() < debt_before
        assert world.vault.idle_cash() > 52_400_000


class TestCallbackOrigin:
    """Loan callbacks are accepted only for the pending loan."""

    def test_foreign_provider_rejected(self):
        world = opened_world()
        with pytest.raises(Unauthorized):
            world.adapter.on_flash_loan(object(), USDC, 1, 0, "open")

    def test_callback_without_pending_loan_rejected(self):
        world = opened_world()
        with pytest.raises(Unauthorized):
            world.adapter.on_flash_loan(world.lender, USDC, 1, 0, "open")


class TestSetLeverage:
    """Admin changes to leverage bounds."""

    def test_set_leverage_at_venue_max(self):
        world = make_world(adapter="leverage")
        with pytest.raises(Unauthorized):
            world.vault.set_leverage(500, 100, sender=ADMIN)
        assert world.adapter.params.target_leverage == 400

    def test_set_leverage(self):
        world = make_world(adapter="leverage")
        world.vault.set_leverage(300, 50, sender=ADMIN)
        assert world.adapter.params.target_leverage == 300
        assert world.vault.config.leverage.haircut_bps == 50

    def test_set_leverage_without_overlay(self):
        world = make_world()
        with pytest.raises(InvalidData):
            world.vault.set_leverage(300, 50, sender=ADMIN)
