"""Export functionality for CSV and JSON."""

import json
from typing import Any, Dict

import pandas as pd

from ..engine.vault import StrategyVault


def events_frame(vault: StrategyVault) -> pd.DataFrame:
    """One row per emitted event, event data flattened into columns."""
    data = []
    for event in vault.events.events:
        row = {'t': event.t, 'event': event.name}
        for key, value in event.data.items():
            row[key] = value if isinstance(value, (int, float, str, bool)) or value is None else json.dumps(value)
        data.append(row)
    return pd.DataFrame(data, columns=None if data else ['t', 'event'])


def price_history_frame(vault: StrategyVault) -> pd.DataFrame:
    """Share price at every accrual point, in base units per whole share."""
    df = pd.DataFrame(vault.price_history, columns=['t', 'share_price'])
    df['share_price_float'] = df['share_price'] / vault.ledger.unit
    return df


def vault_snapshot(vault: StrategyVault) -> Dict[str, Any]:
    """Current vault state as plain data."""
    state = vault.ledger_state()
    return {
        'config': vault.config.to_dict(),
        'config_hash': vault.config.compute_hash(),
        't': state.t,
        'total_supply': state.total_supply,
        'total_accounted_assets': state.total_accounted_assets,
        'share_price': state.share_price,
        'high_water_mark': state.high_water_mark,
        'unclaimed_fee_shares': state.unclaimed_fee_shares,
        'idle_cash': vault.idle_cash(),
        'invested': [vault.adapter.invested_value(i) for i in range(len(vault.config.inputs))],
        'balances': state.balances,
        'escrowed': state.escrowed,
        'requests': [
            {
                'owner': r.owner,
                'shares': r.shares,
                'snapshot_share_price': r.snapshot_share_price,
                'requested_at': r.requested_at,
                'claimable_after': r.claimable_after,
                'status': r.status.value,
            }
            for r in vault.redemptions.requests.values()
        ],
    }


def export_csv(vault: StrategyVault, filepath: str):
    """Export the event log to CSV."""
    events_frame(vault).to_csv(filepath, index=False)


def export_json(vault: StrategyVault, filepath: str):
    """Export vault state, price history and events to JSON."""
    export_data = vault_snapshot(vault)
    export_data['price_history'] = [
        {'t': t, 'share_price': price} for t, price in vault.price_history
    ]
    export_data['events'] = [
        {'t': e.t, 'event': e.name, 'data': e.data} for e in vault.events.events
    ]

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2, default=str)
