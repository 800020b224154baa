"""Fee math - Management, performance and transaction fees.

Key Concepts:
- All amounts are integers in the smallest token unit; rounding always
  favours the vault (fees and shares owed to the vault round up, amounts
  paid out round down)
- Management fee: assets × mgmt_bps × elapsed / (BPS × year)
- Performance fee: (price - high_water_mark) × shares × perf_bps / BPS,
  charged only above the high-water mark
- Entry/exit fees: fixed bps haircut on the transacted amount
"""

from dataclasses import dataclass

BPS = 10_000
SECONDS_PER_YEAR = 31_557_600  # 365.25 days


def mul_div(a: int, b: int, c: int) -> int:
    """a * b / c rounded down."""
    return a * b // c


def mul_div_up(a: int, b: int, c: int) -> int:
    """a * b / c rounded up."""
    return -(-(a * b) // c)


def bps_of(amount: int, bps: int) -> int:
    """The `bps` share of `amount`, rounded down."""
    return amount * bps // BPS


def sub_bps(amount: int, bps: int) -> int:
    """`amount` with `bps` taken off, rounded down."""
    return amount * (BPS - bps) // BPS


def add_bps(amount: int, bps: int) -> int:
    """`amount` grossed up by `bps`, rounded up."""
    return mul_div_up(amount, BPS + bps, BPS)


@dataclass
class FeeAccrual:
    """Fees accrued at one accrual point, in base-denomination units."""
    management: int = 0
    performance: int = 0
    shares: int = 0  # Fee shares actually moved into the unclaimed bucket

    @property
    def total(self) -> int:
        return self.management + self.performance


def management_fee(assets: int, mgmt_bps: int, elapsed_seconds: float) -> int:
    """
    Management fee accrued over a time span.

    Args:
        assets: Fee-bearing assets
        mgmt_bps: Annual management fee in bps
        elapsed_seconds: Time since the last accrual

    Returns:
        Fee in base units
    """
    if assets <= 0 or mgmt_bps <= 0 or elapsed_seconds <= 0:
        return 0
    return int(assets * mgmt_bps * int(elapsed_seconds)) // (BPS * SECONDS_PER_YEAR)


def performance_fee(
    price: int,
    high_water_mark: int,
    shares: int,
    unit: int,
    perf_bps: int
) -> int:
    """
    Performance fee on share price appreciation above the high-water mark.

    Args:
        price: Current share price (base units per `unit` shares)
        high_water_mark: Highest price fees were already charged at
        shares: Fee-bearing shares
        unit: One whole share (10**decimals)
        perf_bps: Performance fee in bps

    Returns:
        Fee in base units
    """
    if price <= high_water_mark or shares <= 0 or perf_bps <= 0:
        return 0
    gain = (price - high_water_mark) * shares // unit
    return bps_of(gain, perf_bps)


def entry_fee_shares(shares: int, entry_bps: int) -> int:
    """Part of freshly minted shares kept as entry fee."""
    return bps_of(shares, entry_bps)


def exit_fee_shares(shares: int, exit_bps: int) -> int:
    """Part of redeemed shares kept as exit fee."""
    return bps_of(shares, exit_bps)


def gross_up_shares(net_shares: int, fee_bps: int) -> int:
    """Shares needed so that `net_shares` remain after a `fee_bps` haircut."""
    if fee_bps <= 0:
        return net_shares
    return mul_div_up(net_shares, BPS, BPS - fee_bps)


def flash_fee(amount: int, flash_bps: int) -> int:
    """Fee on a flash loan, rounded up."""
    return mul_div_up(amount, flash_bps, BPS)
