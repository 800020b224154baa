"""Error taxonomy raised by vault operations.

Every failure inside a vault entry point aborts the whole operation. The
exception type is what lets off-chain tooling tell "retry with a better
quote" apart from "forbidden configuration" or "oracle stale, wait".
"""


class VaultError(Exception):
    """Base class for all vault failures."""


class Unauthorized(VaultError):
    """Role, ownership or callback-origin check failed."""


class InvalidData(VaultError, ValueError):
    """Malformed or missing parameters (e.g. a missing swap instruction)."""


class AmountTooLow(VaultError):
    """A slippage, valuation or repayment check came out short."""


class AmountTooHigh(VaultError):
    """An amount exceeds a configured cap or a venue capacity."""


class MissingOracle(VaultError):
    """A required price feed is unavailable or stale."""


class InsufficientLiquidity(VaultError):
    """Not enough idle balance to serve the request synchronously."""


class NotYetClaimable(VaultError):
    """Withdrawal request is still pending or inside its cooldown."""
