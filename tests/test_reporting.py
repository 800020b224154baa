"""Tests for sanity checks, exports and performance summaries."""

import json
import pytest
import sys
import os

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stratvault.engine import events as ev
from stratvault.engine.fees import SECONDS_PER_YEAR
from stratvault.reporting import (
    compute_max_drawdown,
    events_frame,
    export_csv,
    export_json,
    period_returns,
    price_history_frame,
    summarize_history,
    vault_snapshot,
)
from stratvault.validation import SanityChecker, validate_vault

from vault_fixtures import ADMIN, ALICE, COLLECTOR, TWO_LEG_INS, UNIT, USDC, leverage_config, make_config, make_world


class TestSanityChecks:
    """Tests for configuration and state checks."""

    def test_default_config_is_clean(self):
        warnings = SanityChecker(make_config()).check_config_inputs()
        assert [w for w in warnings if w.severity == "error"] == []

    def test_zero_weight_without_leverage_is_error(self):
        config = make_config(inputs=[
            {"token": USDC, "weight_bps": 10_000, "decimals": 6},
            {"token": "USDT", "weight_bps": 0, "decimals": 6},
        ])
        warnings = SanityChecker(config).check_config_inputs()
        assert any(w.severity == "error" and w.category == "input" for w in warnings)

    def test_zero_weight_with_leverage_is_fine(self):
        warnings = SanityChecker(leverage_config()).check_config_inputs()
        assert [w for w in warnings if w.severity == "error"] == []

    def test_high_fees_and_slippage_warn(self):
        config = make_config(fees={"perf": 4_000, "mgmt": 300}, max_slippage_bps=800)
        warnings = SanityChecker(config).check_config_inputs()
        assert sum(1 for w in warnings if w.category == "bounds") == 3

    def test_collector_not_exempt_warns(self):
        config = make_config(exemption_list=[])
        warnings = SanityChecker(config).check_config_inputs()
        assert any(COLLECTOR in w.message for w in warnings)

    def test_healthy_vault(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        errors = [w for w in validate_vault(world.vault) if w.severity == "error"]
        assert errors == []

    def test_pending_requests_warn(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        world.vault.request_withdraw(100 * UNIT, ALICE)
        warnings = SanityChecker(world.vault.config).check_vault(world.vault)
        assert [w.category for w in warnings] == ["liquidity"]

    def test_unmarked_gain_flagged(self):
        """Donation not yet accrued shows as an accounting gap."""
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.tokens.transfer(USDC, ALICE, world.vault.address, 1 * UNIT)
        warnings = SanityChecker(world.vault.config).check_vault(world.vault)
        assert any(w.category == "conservation" for w in warnings)


class TestExport:
    """Tests for pandas exports."""

    def test_events_frame(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.invest(swap_instructions=TWO_LEG_INS, sender=ADMIN)
        df = events_frame(world.vault)
        assert list(df['event']) == [ev.DEPOSIT, ev.ALLOCATION_PERFORMED]
        assert 't' in df.columns

    def test_empty_events_frame(self):
        df = events_frame(make_world().vault)
        assert len(df) == 0
        assert list(df.columns) == ['t', 'event']

    def test_price_history_frame(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.collect_fees(sender=ADMIN)
        df = price_history_frame(world.vault)
        assert list(df.columns) == ['t', 'share_price', 'share_price_float']
        assert df['share_price_float'].iloc[-1] == pytest.approx(1.0)

    def test_snapshot(self):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        world.vault.request_withdraw(10 * UNIT, ALICE)
        snap = vault_snapshot(world.vault)
        assert snap['total_supply'] == 1_000 * UNIT
        assert snap['config_hash'] == world.vault.config.compute_hash()
        assert snap['requests'][0]['status'] == 'claimable'

    def test_export_files(self, tmp_path):
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        csv_path = tmp_path / "events.csv"
        json_path = tmp_path / "vault.json"

        export_csv(world.vault, str(csv_path))
        export_json(world.vault, str(json_path))

        assert csv_path.read_text().startswith("t,event")
        data = json.loads(json_path.read_text())
        assert data['events'][0]['event'] == ev.DEPOSIT
        assert data['idle_cash'] == 1_000 * UNIT


class TestPerformance:
    """Tests for the performance summary."""

    def test_max_drawdown(self):
        prices = np.array([100.0, 120.0, 90.0, 130.0])
        assert compute_max_drawdown(prices) == pytest.approx(0.25)
        assert compute_max_drawdown(np.array([])) == 0.0

    def test_summary_one_year(self):
        history = [(0.0, 1_000_000), (float(SECONDS_PER_YEAR), 1_100_000)]
        summary = summarize_history(history)
        assert summary.total_return == pytest.approx(0.1)
        assert summary.annualized_return == pytest.approx(0.1)
        assert summary.max_drawdown == 0.0
        assert summary.to_dict()['observations'] == 2

    def test_summary_short_history(self):
        summary = summarize_history([(5.0, 1_000_000)])
        assert summary.total_return == 0.0
        assert summary.start == summary.end == 5.0

    def test_period_returns(self):
        returns = period_returns([(0, 100), (1, 110), (2, 99)])
        assert returns == pytest.approx([0.1, -0.1])
        assert period_returns([(0, 100)]) == []
