"""Swap facade - executes serialized swap instructions.

The core never looks inside an instruction beyond the minimum output it
declares; routers and calldata are the swap venue's business.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol, Tuple, Union

from ..engine.tokens import TokenLedger
from ..errors import AmountTooLow, InvalidData
from .oracle import PriceOracle

logger = logging.getLogger(__name__)

BPS = 10_000


@dataclass(frozen=True)
class SwapInstruction:
    """Serialized swap call: router, declared minimum out, opaque calldata."""
    router: str
    min_amount_out: int = 0
    data: str = ""

    def encode(self) -> bytes:
        return json.dumps(asdict(self), sort_keys=True).encode()

    @classmethod
    def decode(cls, payload: Union[bytes, str, "SwapInstruction", None]) -> "SwapInstruction":
        """
        Parse an instruction.

        Raises:
            InvalidData: If the payload is empty or malformed
        """
        if isinstance(payload, SwapInstruction):
            return payload
        if not payload:
            raise InvalidData("Empty swap instruction")
        try:
            data = json.loads(payload)
            return cls(
                router=str(data["router"]),
                min_amount_out=int(data.get("min_amount_out", 0)),
                data=str(data.get("data", "")),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidData(f"Malformed swap instruction: {exc}") from exc


Instruction = Union[bytes, str, SwapInstruction]


class Swapper(Protocol):
    """Boundary consumed by the core."""

    def swap(
        self,
        input_token: str,
        output_token: str,
        amount: int,
        instruction: Instruction,
        payer: str
    ) -> Tuple[int, int]:
        """Swap `amount` held by `payer`; returns (received, spent)."""
        ...


class SimulatedSwapper:
    """Oracle-priced market maker with a fee and depth-based price impact."""

    def __init__(
        self,
        tokens: TokenLedger,
        oracle: PriceOracle,
        fee_bps: int = 0,
        depth: Optional[int] = None
    ):
        """
        Initialize swapper.

        Args:
            tokens: Token ledger the swaps settle in
            oracle: Reference prices
            fee_bps: Swap fee in bps
            depth: Order book depth in output units (None = infinite)
        """
        self.tokens = tokens
        self.oracle = oracle
        self.fee_bps = fee_bps
        self.depth = depth

    def compute_slippage(self, amount: int) -> int:
        """
        Price impact for a given output amount.

        Piecewise linear in utilization = amount / depth:
        small trades pay little, large trades pay progressively more.
        """
        if self.depth is None or amount <= 0 or self.depth <= 0:
            return 0
        utilization = amount / self.depth
        if utilization <= 0.1:
            slippage_fraction = utilization * 0.1
        elif utilization <= 0.5:
            slippage_fraction = 0.01 + (utilization - 0.1) * 0.2
        else:
            slippage_fraction = min(0.99, 0.09 + (utilization - 0.5) * 0.3)
        return int(amount * slippage_fraction)

    def quote(self, input_token: str, output_token: str, amount: int) -> int:
        fair = self.oracle.convert(input_token, amount, output_token)
        after_fee = fair * (BPS - self.fee_bps) // BPS
        return after_fee - self.compute_slippage(after_fee)

    def swap(
        self,
        input_token: str,
        output_token: str,
        amount: int,
        instruction: Instruction,
        payer: str
    ) -> Tuple[int, int]:
        """
        Execute a swap.

        Raises:
            InvalidData: If the instruction cannot be parsed
            AmountTooLow: If output falls under the declared minimum
        """
        ins = SwapInstruction.decode(instruction)
        received = self.quote(input_token, output_token, amount)
        if received < ins.min_amount_out:
            raise AmountTooLow(
                f"Swap {input_token}->{output_token} returned {received}, "
                f"minimum {ins.min_amount_out}"
            )
        self.tokens.burn(input_token, payer, amount)
        self.tokens.mint(output_token, payer, received)
        logger.debug("swap %d %s -> %d %s via %s", amount, input_token, received, output_token, ins.router)
        return received, amount
