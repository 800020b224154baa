"""Tests for simulated venues and the adapters over them."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stratvault.engine.fees import SECONDS_PER_YEAR
from stratvault.engine.state import Stateful, atomic
from stratvault.engine.tokens import TokenLedger
from stratvault.errors import (
    AmountTooHigh,
    AmountTooLow,
    InsufficientLiquidity,
    InvalidData,
    MissingOracle,
)
from stratvault.markets import (
    LegacyLendingMarket,
    SimulatedFlashLender,
    SimulatedLendingMarket,
    SimulatedSwapper,
    StaticPriceOracle,
    SwapInstruction,
)

from vault_fixtures import ADMIN, ALICE, INS, RWD, TWO_LEG_INS, UNIT, USDC, USDT, ManualClock, make_world


def lending_setup(base_rate=0.1):
    clock = ManualClock()
    tokens = TokenLedger()
    oracle = StaticPriceOracle(clock)
    for token in (USDC, USDT):
        oracle.set_price(token, 1.0, decimals=6)
    venue = SimulatedLendingMarket(tokens, oracle)
    venue.list_market(USDC, collateral_factor_bps=8_000, base_rate=base_rate, utilization_elasticity=2.0)
    venue.list_market(USDT, collateral_factor_bps=8_000, base_rate=base_rate, utilization_elasticity=2.0)
    tokens.mint(USDC, "alice", 1_000 * UNIT)
    tokens.mint(USDT, "bob", 1_000 * UNIT)
    return tokens, oracle, venue


class TestLendingMarket:
    """Tests for the lending venue."""

    def test_supply_at_par(self):
        tokens, _, venue = lending_setup()
        assert venue.supply("alice", USDC, 1_000 * UNIT) == 1_000 * UNIT
        assert venue.underlying_balance("alice", USDC) == 1_000 * UNIT

    def test_interest_accrues_to_suppliers(self):
        """Utilization 50% → rate = 0.1 × 1.5² = 22.5%."""
        tokens, _, venue = lending_setup()
        venue.supply("alice", USDC, 1_000 * UNIT)
        venue.supply("bob", USDT, 1_000 * UNIT)
        venue.borrow("bob", USDC, 500 * UNIT)

        assert venue.compute_utilization(USDC) == pytest.approx(0.5)
        assert venue.compute_lending_rate(USDC) == pytest.approx(0.225)

        venue.accrue(SECONDS_PER_YEAR)

        assert venue.borrow_balance("bob", USDC) == pytest.approx(612.5 * UNIT, rel=1e-9)
        assert venue.underlying_balance("alice", USDC) == pytest.approx(1_112.5 * UNIT, rel=1e-9)

    def test_borrow_capped_by_collateral(self):
        tokens, _, venue = lending_setup()
        venue.supply("alice", USDC, 1_000 * UNIT)
        venue.supply("bob", USDT, 1_000 * UNIT)
        assert venue.borrow_capacity("bob", USDC) == 800 * UNIT
        with pytest.raises(AmountTooHigh):
            venue.borrow("bob", USDC, 801 * UNIT)

    def test_redeem_cannot_leave_debt_uncovered(self):
        tokens, _, venue = lending_setup()
        venue.supply("alice", USDC, 1_000 * UNIT)
        venue.supply("bob", USDT, 1_000 * UNIT)
        venue.borrow("bob", USDC, 700 * UNIT)
        with pytest.raises(AmountTooHigh):
            venue.redeem("bob", USDT, 200 * UNIT)

    def test_repay_capped_at_debt(self):
        tokens, _, venue = lending_setup(base_rate=0.0)
        venue.supply("alice", USDC, 1_000 * UNIT)
        venue.supply("bob", USDT, 1_000 * UNIT)
        venue.borrow("bob", USDC, 100 * UNIT)
        assert venue.repay("bob", USDC, 150 * UNIT) == 100 * UNIT
        assert venue.borrow_balance("bob", USDC) == 0

    def test_unknown_market(self):
        _, _, venue = lending_setup()
        with pytest.raises(InvalidData):
            venue.market("DAI")


class TestLendingAdapter:
    """Reward call shapes and conversions."""

    def test_no_rewards(self):
        world = make_world()
        assert world.adapter.reward_tokens() == []
        assert world.adapter.claim_rewards() == []
        assert world.vault.harvest(sender=ADMIN) == 0

    def test_dict_rewards_harvest(self):
        world = make_world(reward_rate=0.1)
        assert world.adapter.dict_rewards is True
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.venue.accrue(SECONDS_PER_YEAR)

        pending = world.adapter.rewards_available()
        assert pending[0] == pytest.approx(60 * UNIT, rel=1e-6)

        harvested = world.vault.harvest([INS], sender=ADMIN)
        assert harvested == pytest.approx(60 * UNIT, rel=1e-6)
        assert world.vault.idle_cash() == harvested
        assert world.vault.share_price() > UNIT
        assert world.tokens.balance_of(RWD, world.vault.address) == 0

    def test_harvest_needs_reward_instruction(self):
        world = make_world(reward_rate=0.1)
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.venue.accrue(SECONDS_PER_YEAR)
        with pytest.raises(InvalidData):
            world.vault.harvest(sender=ADMIN)
        assert world.adapter.rewards_available()[0] > 0

    def test_legacy_rewards(self):
        """Single-token reward API is detected at bind time."""
        world = make_world(venue_cls=LegacyLendingMarket, reward_rate=0.1)
        assert world.adapter.dict_rewards is False
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.venue.accrue(SECONDS_PER_YEAR)

        harvested = world.vault.harvest([INS], sender=ADMIN)
        assert harvested == pytest.approx(60 * UNIT, rel=1e-6)
        assert world.venue.reward_accrued(world.vault.address) == 0

    def test_compound_reinvests(self):
        world = make_world(reward_rate=0.1)
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.venue.accrue(SECONDS_PER_YEAR)

        harvested = world.vault.compound([INS], TWO_LEG_INS, sender=ADMIN)

        assert harvested > 0
        assert world.vault.idle_cash() < 10
        assert world.vault.invested() == pytest.approx(1_000 * UNIT + harvested, abs=10)

    def test_conversions_follow_exchange_rate(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.adapter.native_to_input(100, 0) == 100
        assert world.adapter.input_to_native(100, 0) == 100


class TestStakingAdapter:
    """Rebasing pool adapter."""

    def test_rebase_shows_in_value(self):
        world = make_world(adapter="staking")
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.vault.invested() == 1_000 * UNIT

        world.pool.rebase(USDC, 50 * UNIT)

        assert world.vault.invested() == 1_050 * UNIT
        world.vault.collect_fees(sender=ADMIN)
        assert world.vault.share_price() == 1_050_000

    def test_unstake_through_liquidate(self):
        world = make_world(adapter="staking")
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.vault.liquidate(10 ** 12, swap_instructions=TWO_LEG_INS, sender=ADMIN)
        assert world.vault.idle_cash() == 1_000 * UNIT
        assert world.pool.pooled(USDC) == 0


class TestSwapperAndOracle:
    """Swap and price facades."""

    def test_oracle_converts_across_decimals(self):
        clock = ManualClock()
        oracle = StaticPriceOracle(clock)
        oracle.set_price("USDC", 1.0, decimals=6)
        oracle.set_price("WETH", 2_000.0, decimals=18)
        assert oracle.convert("WETH", 10 ** 18, "USDC") == 2_000 * UNIT
        assert oracle.convert("USDC", 2_000 * UNIT, "WETH") == 10 ** 18

    def test_oracle_staleness(self):
        clock = ManualClock()
        oracle = StaticPriceOracle(clock)
        oracle.set_price("USDC", 1.0, decimals=6, validity=60)
        oracle.set_price("USDT", 1.0, decimals=6, validity=60)
        clock.advance(61)
        assert oracle.has_feed("USDC") is False
        with pytest.raises(MissingOracle):
            oracle.convert("USDC", 1, "USDT")

    def test_oracle_rejects_non_positive_price(self):
        with pytest.raises(InvalidData):
            StaticPriceOracle(ManualClock()).set_price("USDC", 0.0)

    def test_swap_fee_and_min_out(self):
        world = make_world(swap_fee_bps=30)
        assert world.swapper.quote(USDC, USDT, 10_000) == 9_970
        instruction = SwapInstruction(router="sim-router", min_amount_out=9_980).encode()
        with pytest.raises(AmountTooLow):
            world.swapper.swap(USDC, USDT, 10_000, instruction, ALICE)

    def test_depth_slippage(self):
        tokens = TokenLedger()
        oracle = StaticPriceOracle(ManualClock())
        swapper = SimulatedSwapper(tokens, oracle, depth=1_000_000)
        assert swapper.compute_slippage(0) == 0
        assert swapper.compute_slippage(100_000) == 1_000
        assert swapper.compute_slippage(500_000) > swapper.compute_slippage(100_000) * 5

    def test_instruction_decoding(self):
        ins = SwapInstruction(router="r", min_amount_out=5, data="0xabc")
        assert SwapInstruction.decode(ins.encode()) == ins
        with pytest.raises(InvalidData):
            SwapInstruction.decode(b"")
        with pytest.raises(InvalidData):
            SwapInstruction.decode(b"not json")
        with pytest.raises(InvalidData):
            SwapInstruction.decode(b'{"min_amount_out": 1}')


class TestFlashLender:
    """Loan provider repayment checks."""

    class Receiver:
        holder = "receiver"

        def __init__(self, tokens, repay=True):
            self.tokens = tokens
            self.repay = repay

        def on_flash_loan(self, provider, token, amount, fee, data):
            if not self.repay:
                self.tokens.transfer(token, self.holder, "gone", amount)

    def test_round_trip_with_fee(self):
        tokens = TokenLedger()
        lender = SimulatedFlashLender(tokens, fee_bps=9)
        tokens.mint(USDC, lender.address, 1_000 * UNIT)
        tokens.mint(USDC, "receiver", 1 * UNIT)
        fee = lender.flash_borrow(USDC, 100 * UNIT, self.Receiver(tokens))
        assert fee == 90_000
        assert tokens.balance_of(USDC, lender.address) == 1_000 * UNIT + fee

    def test_short_repayment(self):
        tokens = TokenLedger()
        lender = SimulatedFlashLender(tokens)
        tokens.mint(USDC, lender.address, 1_000 * UNIT)
        with pytest.raises(AmountTooLow):
            lender.flash_borrow(USDC, 100 * UNIT, self.Receiver(tokens, repay=False))

    def test_over_capacity(self):
        tokens = TokenLedger()
        lender = SimulatedFlashLender(tokens)
        with pytest.raises(InsufficientLiquidity):
            lender.flash_borrow(USDC, 1, self.Receiver(tokens))


class TestAtomic:
    """Snapshot and restore of stateful participants."""

    def test_rollback_restores_every_participant(self):
        tokens = TokenLedger()
        tokens.mint(USDC, "alice", 100)

        class Counter(Stateful):
            _state_fields = ("value",)

            def __init__(self):
                self.value = 0

        counter = Counter()
        with pytest.raises(RuntimeError):
            with atomic([tokens, counter]):
                tokens.transfer(USDC, "alice", "bob", 60)
                counter.value = 5
                raise RuntimeError("boom")
        assert tokens.balance_of(USDC, "alice") == 100
        assert tokens.balance_of(USDC, "bob") == 0
        assert counter.value == 0

    def test_token_ledger_checks(self):
        tokens = TokenLedger()
        tokens.mint(USDC, "alice", 10)
        with pytest.raises(InsufficientLiquidity):
            tokens.transfer(USDC, "alice", "bob", 11)
        with pytest.raises(InvalidData):
            tokens.transfer(USDC, "alice", "bob", -1)
