"""Smoke tests for core stratvault modules.

These tests verify basic functionality without deep validation.
Run these first to catch obvious breakage.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import yaml
from pydantic import ValidationError

from stratvault import StrategyVault
from stratvault.config.loader import config_from_dict, load_config, save_config
from stratvault.config.schema import LeverageConfig, VaultConfig, validate_weights
from stratvault.errors import InvalidData

from vault_fixtures import ALICE, UNIT, make_config, make_world


class TestConfigLoading:
    """Smoke tests for configuration loading."""

    def test_load_default_config(self):
        """Config loads without errors."""
        config = load_config()
        assert config is not None
        assert isinstance(config, VaultConfig)

    def test_default_config_values(self):
        """Defaults describe a two-input USDC vault."""
        config = load_config()
        assert config.asset == "USDC"
        assert config.weights == [6000, 4000]
        assert config.fee_collector in config.exemption_list
        assert config.leverage is None

    def test_config_hash_is_deterministic(self):
        """Same config produces same hash."""
        config1 = load_config()
        config2 = load_config()
        assert config1.compute_hash() == config2.compute_hash()

    def test_config_round_trips_through_dict(self):
        """to_dict/from_dict preserve the config."""
        config = load_config()
        again = config_from_dict(config.to_dict())
        assert again.compute_hash() == config.compute_hash()

    def test_weights_over_100_percent_rejected(self):
        """Σ weight_bps > 10000 fails validation."""
        with pytest.raises(ValidationError):
            make_config(inputs=[
                {"token": "USDC", "weight_bps": 6000},
                {"token": "USDT", "weight_bps": 5000},
            ])

    def test_validate_weights(self):
        """Weight vector helper accepts ≤ 100% and rejects the rest."""
        assert validate_weights([6000, 4000]) == [6000, 4000]
        with pytest.raises(InvalidData):
            validate_weights([6000, 4001])
        with pytest.raises(InvalidData):
            validate_weights([-1, 100])

    def test_leverage_haircut_bound(self):
        """Haircut must stay below target_leverage*100."""
        LeverageConfig(target_leverage=400, haircut_bps=100)
        with pytest.raises(ValidationError):
            LeverageConfig(target_leverage=400, haircut_bps=40_000)
        with pytest.raises(ValidationError):
            LeverageConfig(target_leverage=100, haircut_bps=0)


class TestConfigLayers:
    """Deployment files and overrides layered over the defaults."""

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "deploy.yaml"
        path.write_text("name: \"Euro Vault\"\nfees:\n  perf: 500\n")
        config = load_config(path)
        assert config.name == "Euro Vault"
        assert config.fees.perf == 500
        assert config.fees.mgmt == 20
        assert config.weights == [6000, 4000]

    def test_file_inputs_replace_default_list(self, tmp_path):
        path = tmp_path / "deploy.yaml"
        path.write_text("inputs:\n  - token: \"USDC\"\n    weight_bps: 10000\n")
        config = load_config(path)
        assert [i.token for i in config.inputs] == ["USDC"]

    def test_overrides_apply_last(self, tmp_path):
        path = tmp_path / "deploy.yaml"
        path.write_text("max_slippage_bps: 300\n")
        config = load_config(path, max_slippage_bps=50, fees={"entry": 10})
        assert config.max_slippage_bps == 50
        assert config.fees.entry == 10
        assert config.fees.perf == 1000

    def test_empty_file_is_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).compute_hash() == load_config().compute_hash()

    def test_invalid_layers_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(InvalidData):
            load_config(path)
        with pytest.raises(InvalidData):
            load_config(fees={"perf": 9000})
        with pytest.raises(InvalidData):
            config_from_dict({"name": "missing fields"})

    def test_layered_dict(self):
        config = config_from_dict({"symbol": "svX"}, layered=True)
        assert config.symbol == "svX"
        assert config.asset == "USDC"

    def test_saved_changes_reload(self, tmp_path):
        config = load_config(name="Stored", max_slippage_bps=75)
        path = save_config(config, tmp_path / "stored.yaml", only_changes=True)
        with open(path) as f:
            assert yaml.safe_load(f) == {"name": "Stored", "max_slippage_bps": 75}
        assert load_config(path).compute_hash() == config.compute_hash()


class TestVaultSmoke:
    """Smoke tests for the vault facade."""

    def test_build_vault(self):
        """Vault builds over simulated venues."""
        world = make_world()
        assert isinstance(world.vault, StrategyVault)
        assert world.vault.total_supply() == 0
        assert world.vault.share_price() == UNIT

    def test_deposit_mints_one_to_one(self):
        """First deposit mints shares 1:1."""
        world = make_world()
        shares = world.vault.deposit(1_000 * UNIT, ALICE)
        assert shares == 1_000 * UNIT
        assert world.vault.balance_of(ALICE) == 1_000 * UNIT
        assert world.vault.idle_cash() == 1_000 * UNIT

    def test_invariants_hold_after_deposit(self):
        """Accounting identity holds right after an operation."""
        world = make_world()
        world.vault.deposit(1_000 * UNIT, ALICE)
        ok, error = world.vault.check_invariants()
        assert ok, error
