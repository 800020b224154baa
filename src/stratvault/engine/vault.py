"""Strategy vault - Share ledger, allocation and redemption behind one facade.

Every public state-changing method is an entry point:
- runs atomically: all stateful participants (token balances, ledger,
  request queue, roles, events, venues, loan provider) are restored if
  anything raises
- holds a per-entry-point reentrancy flag; while a vault flash loan is out
  no entry point can be entered at all
- accrues fees first, so every share price it uses is marked to the live
  valuation (idle cash + Σ invested value)
"""

import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..adapters.base import Adapter, AdapterContext
from ..config.schema import Fees, InputConfig, VaultConfig, validate_weights
from ..errors import (
    AmountTooHigh,
    AmountTooLow,
    InsufficientLiquidity,
    InvalidData,
    NotYetClaimable,
    Unauthorized,
)
from ..markets.oracle import PriceOracle
from ..markets.swapper import Instruction, Swapper
from . import events as ev
from .access import ADMIN, KEEPER, MANAGER, AccessControl
from .allocation import AllocationResult, AllocationRouter
from .events import EventLog
from .fees import FeeAccrual, flash_fee, gross_up_shares, mul_div, mul_div_up, sub_bps
from .ledger import LedgerState, ShareLedger
from .redemption import RedemptionManager, RequestStatus, WithdrawalRequest
from .state import Stateful, atomic
from .tokens import TokenLedger

logger = logging.getLogger(__name__)

FLASH_LOAN = "flash_loan"


def entry_point(fn: Callable) -> Callable:
    """Make a vault method atomic and non-reentrant."""
    name = fn.__name__

    @functools.wraps(fn)
    def wrapper(self: "StrategyVault", *args, **kwargs):
        if name in self._entered or FLASH_LOAN in self._entered:
            raise Unauthorized(f"Reentrant call to {name}")
        self._entered.add(name)
        try:
            with atomic(self.participants(), name):
                return fn(self, *args, **kwargs)
        finally:
            self._entered.discard(name)

    return wrapper


@dataclass
class RescueRequest:
    """Pending recovery of a stray token, executable after the timelock."""
    token: str
    receiver: str
    requested_at: float
    ready_at: float


class StrategyVault(Stateful):
    """Pooled capital deployed across weighted inputs through one adapter."""

    _state_fields = ("config", "paused", "price_history", "rescue_requests")

    def __init__(
        self,
        config: VaultConfig,
        adapter: Adapter,
        swapper: Swapper,
        oracle: PriceOracle,
        tokens: TokenLedger,
        admin: str,
        clock: Callable[[], float] = time.time,
        events: Optional[EventLog] = None
    ):
        """
        Initialize vault.

        Args:
            config: Vault configuration
            adapter: Adapter owning every input position
            swapper: Swap facade
            oracle: Price facade
            tokens: Token ledger of the domain
            admin: Initial holder of every role
            clock: Returns the current time in seconds
            events: Event log (a fresh one by default)
        """
        self.config = config
        self.adapter = adapter
        self.swapper = swapper
        self.oracle = oracle
        self.tokens = tokens
        self.clock = clock
        self.events = events or EventLog()
        self.roles = AccessControl(admin)
        self.ledger = ShareLedger(config.decimals, config.fees, config.exemption_list)
        self.redemptions = RedemptionManager(self.ledger, config.withdrawal_cooldown_seconds)
        self.router = AllocationRouter(lambda: self.config, adapter, swapper, oracle, tokens)
        self.paused = False
        self.price_history: List[Tuple[float, int]] = []
        self.rescue_requests: Dict[str, RescueRequest] = {}
        self._entered = set()

        adapter.bind(AdapterContext(
            holder=config.address,
            asset=config.asset,
            tokens=tokens,
            oracle=oracle,
            inputs=lambda: self.config.inputs,
            events=self.events,
            clock=clock,
        ))
        if config.leverage is not None:
            self._apply_leverage(config.leverage.target_leverage, config.leverage.haircut_bps)
        logger.info("Vault %s (%s) ready with %d inputs", config.name, config.symbol, len(config.inputs))

    @property
    def address(self) -> str:
        return self.config.address

    @property
    def asset(self) -> str:
        return self.config.asset

    def participants(self) -> List[Stateful]:
        """Every component an entry point may change."""
        parts = [self, self.tokens, self.ledger, self.redemptions, self.roles, self.events]
        parts.extend(c for c in self.adapter.stateful_components() if isinstance(c, Stateful))
        return parts

    # --- views ---

    def idle_cash(self) -> int:
        return self.tokens.balance_of(self.asset, self.address)

    def available(self) -> int:
        """Idle cash not reserved for claimable withdrawal requests."""
        return max(0, self.idle_cash() - self.redemptions.claimable_assets())

    def invested(self) -> int:
        return self.router.total_invested()

    def live_total_assets(self) -> int:
        return self.idle_cash() + self.invested()

    def total_assets(self) -> int:
        """Total accounted assets as marked at the last accrual point."""
        return self.ledger.total_accounted_assets

    def total_supply(self) -> int:
        return self.ledger.total_supply

    def balance_of(self, account: str) -> int:
        return self.ledger.balance_of(account)

    def share_price(self) -> int:
        return self.ledger.share_price()

    def convert_to_shares(self, assets: int, round_up: bool = False) -> int:
        return self.ledger.convert_to_shares(assets, round_up)

    def convert_to_assets(self, shares: int, round_up: bool = False) -> int:
        return self.ledger.convert_to_assets(shares, round_up)

    def preview_deposit(self, assets: int, receiver: Optional[str] = None) -> int:
        shares = self.ledger.convert_to_shares(assets)
        return shares - self.ledger.entry_fee(receiver or "", shares)

    def preview_mint(self, shares: int, receiver: Optional[str] = None) -> int:
        gross = self._gross_entry(shares, receiver or "")
        return self.ledger.convert_to_assets(gross, round_up=True)

    def preview_redeem(self, shares: int, owner: Optional[str] = None) -> int:
        return self.ledger.convert_to_assets(shares - self.ledger.exit_fee(owner or "", shares))

    def preview_withdraw(self, assets: int, owner: Optional[str] = None) -> int:
        net = self.ledger.convert_to_shares(assets, round_up=True)
        return self._gross_exit(net, owner or "")

    def preview_invest(self, amount: int) -> List[int]:
        return self.router.preview_invest(amount)

    def preview_liquidate(self, amount: int) -> List[int]:
        return self.router.preview_liquidate(amount)

    def _request_ready(self, owner: str) -> Optional[WithdrawalRequest]:
        request = self.redemptions.get(owner)
        if request is None or request.status != RequestStatus.CLAIMABLE:
            return None
        if self._now() < request.claimable_after:
            return None
        return request

    def max_withdraw(self, owner: str) -> int:
        request = self._request_ready(owner)
        if request is not None:
            return self.redemptions.claim_value(request, request.shares - self.ledger.exit_fee(owner, request.shares))
        return min(self.preview_redeem(self.balance_of(owner), owner), self.available())

    def max_redeem(self, owner: str) -> int:
        request = self._request_ready(owner)
        if request is not None:
            return request.shares
        balance = self.balance_of(owner)
        if self.preview_redeem(balance, owner) <= self.available():
            return balance
        return min(balance, self._gross_exit(self.ledger.convert_to_shares(self.available()), owner))

    def pending_request(self, owner: str) -> Optional[WithdrawalRequest]:
        return self.redemptions.get(owner)

    def request_status(self, owner: str) -> RequestStatus:
        return self.redemptions.status(owner)

    def ledger_state(self) -> LedgerState:
        return self.ledger.state(self.clock())

    def check_invariants(self) -> Tuple[bool, Optional[str]]:
        """
        Check supply conservation and the accounting identity
        total accounted assets == idle cash + Σ invested value.

        Returns:
            (is_valid, error_message)
        """
        ok, message = self.ledger_state().validate_supply()
        if not ok:
            return ok, message
        live = self.live_total_assets()
        if live != self.total_assets():
            return False, f"Accounted assets {self.total_assets()} != idle + invested {live}"
        return True, None

    # --- internals ---

    def _now(self) -> float:
        return self.clock()

    def _accrue(self) -> FeeAccrual:
        now = self._now()
        accrual = self.ledger.accrue(self.live_total_assets(), now)
        if self.ledger.total_supply:
            self.price_history.append((now, self.ledger.share_price()))
        return accrual

    def _require_not_paused(self) -> None:
        if self.paused:
            raise Unauthorized(f"Vault {self.config.symbol} is paused")

    def _require_owner(self, owner: str, sender: Optional[str]) -> None:
        if sender is not None and sender != owner:
            raise Unauthorized(f"{sender} cannot act on shares of {owner}")

    def _gross_entry(self, shares: int, receiver: str) -> int:
        if self.ledger.is_exempt(receiver):
            return shares
        return gross_up_shares(shares, self.config.fees.entry)

    def _gross_exit(self, shares: int, owner: str) -> int:
        if self.ledger.is_exempt(owner):
            return shares
        return gross_up_shares(shares, self.config.fees.exit)

    def _refresh_requests(self) -> None:
        for request in self.redemptions.refresh(self.idle_cash()):
            self.events.emit(
                ev.WITHDRAW_CLAIMABLE, self._now(),
                owner=request.owner, shares=request.shares,
                assets=self.redemptions.claim_value(request),
            )

    def _issue(self, assets: int, shares: int, receiver: str, payer: str) -> int:
        """Take `assets` from `payer` and mint `shares` (entry fee included) to `receiver`."""
        if self.ledger.total_supply == 0 and assets < self.config.min_liquidity:
            raise AmountTooLow(
                f"First deposit of {assets} is below the minimum liquidity {self.config.min_liquidity}"
            )
        cap = self.config.max_total_assets
        if cap is not None and self.ledger.total_accounted_assets + assets > cap:
            raise AmountTooHigh(
                f"Deposit of {assets} would exceed max total assets {cap}"
            )
        if shares <= 0:
            raise AmountTooLow(f"Deposit of {assets} mints no shares")

        supply_before = self.ledger.total_supply
        assets_before = self.ledger.total_accounted_assets
        fee = self.ledger.entry_fee(receiver, shares)
        self.tokens.transfer(self.asset, payer, self.address, assets)
        self.ledger.mint(receiver, shares - fee)
        if fee:
            self.ledger.mint_fees(fee)
        self.ledger.total_accounted_assets += assets

        self.events.emit(
            ev.DEPOSIT, self._now(),
            sender=payer, receiver=receiver, assets=assets, shares=shares - fee, fee_shares=fee,
            supply_before=supply_before, supply_after=self.ledger.total_supply,
            assets_before=assets_before, assets_after=self.ledger.total_accounted_assets,
        )
        logger.info("Deposit: %s paid %d %s for %d shares to %s", payer, assets, self.asset, shares - fee, receiver)
        self._refresh_requests()
        return shares - fee

    def _deposit(self, assets: int, receiver: str, payer: str) -> int:
        self._require_not_paused()
        if assets <= 0:
            raise AmountTooLow(f"Deposit amount must be positive, got {assets}")
        self._accrue()
        return self._issue(assets, self.ledger.convert_to_shares(assets), receiver, payer)

    def _claims_request(self, owner: str, shares: int, from_request: Optional[bool]) -> bool:
        """
        Decide whether an exit is paid from the owner's withdrawal request.

        Explicit `from_request` wins. Otherwise a request that is claimable
        and past its cooldown is claimed first; free shares are used while
        they cover the exit, and only then does a pending request answer.
        """
        request = self.redemptions.get(owner)
        if request is None:
            if from_request:
                raise InvalidData(f"{owner} has no active withdrawal request")
            return False
        if from_request is not None:
            return from_request
        if self._request_ready(owner) is not None:
            return True
        return self.ledger.balance_of(owner) < shares

    def _redeem(
        self,
        shares: int,
        receiver: str,
        owner: str,
        assets: Optional[int] = None,
        from_request: Optional[bool] = None
    ) -> int:
        """
        Burn `shares` of `owner` and pay `receiver`, either against the
        owner's claimable request or from free shares and available cash.
        """
        if shares <= 0:
            raise AmountTooLow(f"Redeem amount must be positive, got {shares}")
        supply_before = self.ledger.total_supply
        assets_before = self.ledger.total_accounted_assets
        fee = self.ledger.exit_fee(owner, shares)
        claiming = self._claims_request(owner, shares, from_request)

        if claiming:
            request = self.redemptions.get(owner)
            price = self.redemptions.claim_price(request)
            self.redemptions.consume(owner, shares, self._now())
            value = mul_div(shares - fee, price, self.ledger.unit)
            payout = value if assets is None else min(assets, value)
            if payout > self.idle_cash():
                raise InsufficientLiquidity(f"Idle cash {self.idle_cash()} cannot cover claim of {payout}")
            self.ledger.burn_escrowed(owner, shares - fee)
            if fee:
                self.ledger.escrow_to_fees(owner, fee)
        else:
            value = self.ledger.convert_to_assets(shares - fee)
            payout = value if assets is None else min(assets, value)
            if payout > self.available():
                raise InsufficientLiquidity(
                    f"Available cash {self.available()} cannot cover {payout}; request a withdrawal instead"
                )
            self.ledger.burn(owner, shares - fee)
            if fee:
                self.ledger.credit_fees(owner, fee)

        self.tokens.transfer(self.asset, self.address, receiver, payout)
        self.ledger.total_accounted_assets -= payout
        self.events.emit(
            ev.REDEMPTION_FULFILLED, self._now(),
            owner=owner, receiver=receiver, shares=shares, assets=payout, fee_shares=fee,
            from_request=claiming,
            supply_before=supply_before, supply_after=self.ledger.total_supply,
            assets_before=assets_before, assets_after=self.ledger.total_accounted_assets,
        )
        logger.info("Redemption: %s burned %d shares for %d %s", owner, shares, payout, self.asset)
        return payout

    def _shares_for_withdraw(self, assets: int, owner: str, from_request: Optional[bool]) -> Tuple[int, bool]:
        """Shares to burn for `assets`, and whether they come from the request."""
        shares = self._gross_exit(self.ledger.convert_to_shares(assets, round_up=True), owner)
        if not self._claims_request(owner, shares, from_request):
            return shares, False
        price = self.redemptions.claim_price(self.redemptions.get(owner))
        return self._gross_exit(mul_div_up(assets, self.ledger.unit, price), owner), True

    def _invest(self, amount: int, min_iou_out: int, swap_instructions: Optional[Sequence[Instruction]]) -> AllocationResult:
        self._require_not_paused()
        self._accrue()
        available = self.available()
        amount = available if amount == 0 else min(amount, available)
        idle_before, invested_before = self.idle_cash(), self.invested()

        result = self.router.invest(amount, swap_instructions)
        if result.invested_value < min_iou_out:
            raise AmountTooLow(f"Invested value {result.invested_value} below minimum {min_iou_out}")
        reserve = self.redemptions.claimable_assets()
        if self.idle_cash() < reserve:
            raise InsufficientLiquidity(f"Invest would spend cash reserved for claims ({reserve})")
        self._accrue()

        self.events.emit(
            ev.ALLOCATION_PERFORMED, self._now(),
            amount=result.amount, invested_value=result.invested_value,
            per_input=[a.value_delta for a in result.allocations],
            idle_before=idle_before, idle_after=self.idle_cash(),
            invested_before=invested_before, invested_after=self.invested(),
        )
        logger.info("Invested %d %s, positions +%d", result.amount, self.asset, result.invested_value)
        return result

    def _harvest(self, swap_instructions: Optional[Sequence[Instruction]]) -> int:
        self._accrue()
        assets_before = self.ledger.total_accounted_assets
        reward_tokens = self.adapter.reward_tokens()
        claimed = self.adapter.claim_rewards()
        harvested = 0
        for index, (token, amount) in enumerate(zip(reward_tokens, claimed)):
            if amount == 0:
                continue
            if token == self.asset:
                harvested += amount
                continue
            if not swap_instructions or len(swap_instructions) <= index or not swap_instructions[index]:
                raise InvalidData(f"Missing swap instruction for reward token {token}")
            expected = self.oracle.convert(token, amount, self.asset)
            received, _ = self.swapper.swap(token, self.asset, amount, swap_instructions[index], self.address)
            floor = sub_bps(expected, self.config.max_slippage_bps)
            if received < floor:
                raise AmountTooLow(f"Reward swap of {amount} {token} returned {received}, minimum {floor}")
            harvested += received
        accrual = self._accrue()

        self.events.emit(
            ev.HARVEST, self._now(),
            rewards=dict(zip(reward_tokens, claimed)), harvested=harvested,
            fee_shares=accrual.shares,
            assets_before=assets_before, assets_after=self.ledger.total_accounted_assets,
        )
        logger.info("Harvested %d %s", harvested, self.asset)
        self._refresh_requests()
        return harvested

    def _candidate_config(self, **changes: Any) -> VaultConfig:
        data = self.config.model_dump()
        data.update(changes)
        try:
            return VaultConfig.from_dict(data)
        except ValidationError as exc:
            raise InvalidData(f"Invalid vault parameters: {exc}") from exc

    def _update_config(self, **changes: Any) -> VaultConfig:
        config = self._candidate_config(**changes)
        self.config = config
        self.events.emit(ev.PARAMS_UPDATED, self._now(), **changes)
        return config

    def _apply_leverage(self, target_leverage: int, haircut_bps: int) -> None:
        set_params = getattr(self.adapter, "set_params", None)
        if set_params is None:
            raise InvalidData(f"{type(self.adapter).__name__} has no leverage overlay")
        set_params(target_leverage, haircut_bps)

    # --- deposits ---

    @entry_point
    def deposit(self, assets: int, receiver: str, sender: Optional[str] = None) -> int:
        """Deposit `assets` of base; returns shares minted to `receiver`."""
        return self._deposit(assets, receiver, sender or receiver)

    @entry_point
    def mint(self, shares: int, receiver: str, sender: Optional[str] = None) -> int:
        """Mint exactly `shares` to `receiver`; returns base paid."""
        self._require_not_paused()
        if shares <= 0:
            raise AmountTooLow(f"Mint amount must be positive, got {shares}")
        self._accrue()
        gross = self._gross_entry(shares, receiver)
        assets = self.ledger.convert_to_assets(gross, round_up=True)
        self._issue(assets, gross, receiver, sender or receiver)
        return assets

    @entry_point
    def safe_deposit(self, assets: int, min_shares_out: int, receiver: str, sender: Optional[str] = None) -> int:
        shares = self._deposit(assets, receiver, sender or receiver)
        if shares < min_shares_out:
            raise AmountTooLow(f"Deposit minted {shares} shares, minimum {min_shares_out}")
        return shares

    @entry_point
    def swap_safe_deposit(
        self,
        input_token: str,
        amount: int,
        receiver: str,
        min_shares_out: int,
        swap_instruction: Optional[Instruction] = None,
        sender: Optional[str] = None
    ) -> int:
        """
        Deposit a non-base token, swapped into base first.

        Raises:
            InvalidData: If a swap is needed and no instruction is given
            AmountTooLow: If the swap or the minted shares come out short
        """
        payer = sender or receiver
        assets = amount
        if input_token != self.asset:
            if not swap_instruction:
                raise InvalidData(f"Missing swap instruction for {input_token} deposit")
            assets, _ = self.swapper.swap(input_token, self.asset, amount, swap_instruction, payer)
        shares = self._deposit(assets, receiver, payer)
        if shares < min_shares_out:
            raise AmountTooLow(f"Deposit minted {shares} shares, minimum {min_shares_out}")
        return shares

    @entry_point
    def seed_liquidity(self, assets: int, *, sender: str) -> int:
        """Operator seed deposit; the seeder becomes fee-exempt."""
        self.roles.require(ADMIN, sender)
        if assets < self.config.min_liquidity:
            raise AmountTooLow(f"Seed of {assets} is below the minimum liquidity {self.config.min_liquidity}")
        self._accrue()
        if sender not in self.config.exemption_list:
            self._update_config(exemption_list=self.config.exemption_list + [sender])
        self.ledger.exemption_list.add(sender)
        return self._deposit(assets, sender, sender)

    # --- redemptions ---

    @entry_point
    def withdraw(
        self,
        assets: int,
        receiver: str,
        owner: str,
        sender: Optional[str] = None,
        from_request: Optional[bool] = None
    ) -> int:
        """
        Pay exactly `assets` base to `receiver`; returns shares burned.

        Args:
            from_request: True claims against the owner's request, False
                spends free shares; by default a ready request is claimed
                first
        """
        self._require_owner(owner, sender)
        if assets <= 0:
            raise AmountTooLow(f"Withdraw amount must be positive, got {assets}")
        self._accrue()
        shares, claiming = self._shares_for_withdraw(assets, owner, from_request)
        self._redeem(shares, receiver, owner, assets=assets, from_request=claiming)
        return shares

    @entry_point
    def redeem(
        self,
        shares: int,
        receiver: str,
        owner: str,
        sender: Optional[str] = None,
        from_request: Optional[bool] = None
    ) -> int:
        """Burn `shares` of `owner`; returns base paid to `receiver`."""
        self._require_owner(owner, sender)
        self._accrue()
        return self._redeem(shares, receiver, owner, from_request=from_request)

    @entry_point
    def safe_withdraw(
        self,
        assets: int,
        max_shares_in: int,
        receiver: str,
        owner: str,
        sender: Optional[str] = None,
        from_request: Optional[bool] = None
    ) -> int:
        self._require_owner(owner, sender)
        if assets <= 0:
            raise AmountTooLow(f"Withdraw amount must be positive, got {assets}")
        self._accrue()
        shares, claiming = self._shares_for_withdraw(assets, owner, from_request)
        if shares > max_shares_in:
            raise AmountTooLow(f"Withdraw needs {shares} shares, maximum {max_shares_in}")
        self._redeem(shares, receiver, owner, assets=assets, from_request=claiming)
        return shares

    @entry_point
    def safe_redeem(
        self,
        shares: int,
        min_assets_out: int,
        receiver: str,
        owner: str,
        sender: Optional[str] = None,
        from_request: Optional[bool] = None
    ) -> int:
        self._require_owner(owner, sender)
        self._accrue()
        assets = self._redeem(shares, receiver, owner, from_request=from_request)
        if assets < min_assets_out:
            raise AmountTooLow(f"Redeem paid {assets}, minimum {min_assets_out}")
        return assets

    @entry_point
    def request_withdraw(self, shares: int, owner: str, sender: Optional[str] = None) -> WithdrawalRequest:
        """Escrow `shares` into an asynchronous withdrawal request."""
        self._require_owner(owner, sender)
        self._accrue()
        balance_before = self.ledger.balance_of(owner)
        request = self.redemptions.request(owner, shares, self._now())
        self.events.emit(
            ev.WITHDRAW_REQUESTED, self._now(),
            owner=owner, shares=shares, total_shares=request.shares,
            snapshot_share_price=request.snapshot_share_price,
            claimable_after=request.claimable_after,
            balance_before=balance_before, balance_after=self.ledger.balance_of(owner),
        )
        self._refresh_requests()
        return request

    @entry_point
    def cancel_withdraw_request(self, owner: str, sender: Optional[str] = None) -> int:
        """Cancel the owner's request; returns shares given back."""
        self._require_owner(owner, sender)
        balance_before = self.ledger.balance_of(owner)
        shares = self.redemptions.cancel(owner)
        self.events.emit(
            ev.WITHDRAW_REQUEST_CANCELLED, self._now(),
            owner=owner, shares=shares,
            balance_before=balance_before, balance_after=self.ledger.balance_of(owner),
        )
        return shares

    # --- keeper operations ---

    @entry_point
    def invest(
        self,
        amount: int = 0,
        min_iou_out: int = 0,
        swap_instructions: Optional[Sequence[Instruction]] = None,
        *,
        sender: str
    ) -> AllocationResult:
        """
        Allocate idle cash across inputs by weight.

        Args:
            amount: Base to invest; 0 invests all available cash
            min_iou_out: Minimum total position value gained
            swap_instructions: One per input; needed where input != base
            sender: Caller, must hold the keeper role
        """
        self.roles.require(KEEPER, sender)
        return self._invest(amount, min_iou_out, swap_instructions)

    @entry_point
    def liquidate(
        self,
        amount: int = 0,
        min_amount_out: int = 0,
        panic: bool = False,
        swap_instructions: Optional[Sequence[Instruction]] = None,
        *,
        sender: str
    ) -> AllocationResult:
        """
        Unwind positions back into idle cash.

        Args:
            amount: Base wanted; 0 liquidates the shortfall of active requests
            min_amount_out: Minimum base received overall
            panic: Waive slippage checks (emergency exit)
            swap_instructions: One per input; needed where input != base
            sender: Caller, must hold the keeper role
        """
        self.roles.require(KEEPER, sender)
        self._accrue()
        if amount == 0:
            amount = max(0, self.redemptions.pending_assets() - self.idle_cash())
        idle_before, invested_before = self.idle_cash(), self.invested()

        result = self.router.liquidate(amount, panic, swap_instructions)
        if not panic and result.received < min_amount_out:
            raise AmountTooLow(f"Liquidation returned {result.received}, minimum {min_amount_out}")
        self._accrue()

        self.events.emit(
            ev.LIQUIDATION_PERFORMED, self._now(),
            amount=result.amount, received=result.received, panic=panic,
            per_input=[a.received for a in result.allocations],
            idle_before=idle_before, idle_after=self.idle_cash(),
            invested_before=invested_before, invested_after=self.invested(),
        )
        logger.info("Liquidated %d %s, received %d", result.amount, self.asset, result.received)
        self._refresh_requests()
        return result

    @entry_point
    def harvest(self, swap_instructions: Optional[Sequence[Instruction]] = None, *, sender: str) -> int:
        """Claim adapter rewards and swap them to base; returns base harvested."""
        self.roles.require(KEEPER, sender)
        return self._harvest(swap_instructions)

    @entry_point
    def compound(
        self,
        reward_swap_instructions: Optional[Sequence[Instruction]] = None,
        invest_swap_instructions: Optional[Sequence[Instruction]] = None,
        *,
        sender: str
    ) -> int:
        """Harvest, then invest the proceeds; returns base harvested."""
        self.roles.require(KEEPER, sender)
        harvested = self._harvest(reward_swap_instructions)
        if harvested:
            self._invest(min(harvested, self.available()), 0, invest_swap_instructions)
        return harvested

    # --- fees and flash loans ---

    @entry_point
    def collect_fees(self, *, sender: str) -> int:
        """Hand accrued fee shares to the fee collector; returns their base value."""
        self.roles.require(MANAGER, sender)
        self._accrue()
        shares = self.ledger.take_fees(self.config.fee_collector)
        if shares == 0:
            return 0
        assets = self.ledger.convert_to_assets(shares)
        self.events.emit(
            ev.FEES_COLLECTED, self._now(),
            collector=self.config.fee_collector, shares=shares, assets=assets,
        )
        logger.info("Collected %d fee shares (%d %s)", shares, assets, self.asset)
        return assets

    @entry_point
    def flash_loan(self, receiver: Any, amount: int, data: Any = None, sender: Optional[str] = None) -> int:
        """
        Lend available cash to `receiver` for the duration of its
        `on_flash_loan(vault, token, amount, fee, data)` callback.

        Returns:
            Fee earned by the vault
        """
        self._require_not_paused()
        if amount <= 0:
            raise AmountTooLow(f"Flash loan amount must be positive, got {amount}")
        self._accrue()
        if amount > self.available():
            raise InsufficientLiquidity(f"Available cash {self.available()} cannot fund flash loan of {amount}")

        fee = flash_fee(amount, self.config.fees.flash)
        holder = receiver.holder
        self.tokens.transfer(self.asset, self.address, holder, amount)
        receiver.on_flash_loan(self, self.asset, amount, fee, data)
        owed = amount + fee
        balance = self.tokens.balance_of(self.asset, holder)
        if balance < owed:
            raise AmountTooLow(f"Flash loan repayment short: {holder} holds {balance}, owes {owed}")
        self.tokens.transfer(self.asset, holder, self.address, owed)
        self.ledger.total_accounted_assets += fee

        self.events.emit(ev.FLASH_LOAN, self._now(), receiver=holder, amount=amount, fee=fee)
        logger.info("Flash loan of %d %s to %s, fee %d", amount, self.asset, holder, fee)
        return fee

    # --- admin ---

    @entry_point
    def set_fees(self, *, sender: str, **fees: int) -> Fees:
        self.roles.require(ADMIN, sender)
        self._accrue()
        config = self._update_config(fees={**self.config.fees.model_dump(), **fees})
        self.ledger.fees = config.fees
        return config.fees

    @entry_point
    def set_input_weights(self, weights: Sequence[int], *, sender: str) -> List[int]:
        self.roles.require(ADMIN, sender)
        weights = validate_weights(weights)
        if len(weights) != len(self.config.inputs):
            raise InvalidData(f"Expected {len(self.config.inputs)} weights, got {len(weights)}")
        inputs = [
            {**inp.model_dump(), "weight_bps": weight}
            for inp, weight in zip(self.config.inputs, weights)
        ]
        self._update_config(inputs=inputs)
        return weights

    @entry_point
    def update_inputs(
        self,
        inputs: Sequence[Any],
        swap_instructions: Optional[Sequence[Instruction]] = None,
        panic: bool = False,
        *,
        sender: str
    ) -> AllocationResult:
        """
        Replace or reorder the input set.

        Inputs whose token leaves the set are fully unwound to idle cash
        first; positions of kept tokens stay where they are. Reinvesting is
        left to the next `invest`.

        Args:
            inputs: New input list (InputConfig or dicts), one per token
            swap_instructions: Indexed like the current inputs; needed to
                unwind removed inputs whose token is not the base
            panic: Waive slippage checks on the unwind
            sender: Caller, must hold the admin role

        Returns:
            Result of unwinding the removed inputs

        Raises:
            InvalidData: If the list is malformed or the adapter cannot hold it
            MissingOracle: If a new input token has no fresh price
        """
        self.roles.require(ADMIN, sender)
        self._accrue()
        previous = self.config.inputs
        candidate = self._candidate_config(
            inputs=[i.model_dump() if isinstance(i, InputConfig) else dict(i) for i in inputs]
        )
        self.router.check_inputs(candidate.inputs)

        kept = {i.token for i in candidate.inputs}
        removed = [index for index, inp in enumerate(previous) if inp.token not in kept]
        idle_before, invested_before = self.idle_cash(), self.invested()
        result = self.router.unwind(removed, panic, swap_instructions)

        self.config = candidate
        self._accrue()
        self.events.emit(
            ev.INPUTS_UPDATED, self._now(),
            tokens_before=[i.token for i in previous], tokens_after=[i.token for i in candidate.inputs],
            weights_before=[i.weight_bps for i in previous], weights_after=candidate.weights,
            removed=[previous[i].token for i in removed], received=result.received,
            idle_before=idle_before, idle_after=self.idle_cash(),
            invested_before=invested_before, invested_after=self.invested(),
        )
        logger.info(
            "Inputs updated to %s, unwound %s for %d %s",
            [i.token for i in candidate.inputs], [previous[i].token for i in removed], result.received, self.asset
        )
        self._refresh_requests()
        return result

    @entry_point
    def set_exemption(self, account: str, exempt: bool = True, *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self._accrue()
        listed = [a for a in self.config.exemption_list if a != account]
        if exempt:
            listed.append(account)
            self.ledger.exemption_list.add(account)
        else:
            self.ledger.exemption_list.discard(account)
        self._update_config(exemption_list=listed)

    @entry_point
    def set_min_liquidity(self, amount: int, *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self._update_config(min_liquidity=amount)

    @entry_point
    def set_max_total_assets(self, amount: Optional[int], *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self._update_config(max_total_assets=amount)

    @entry_point
    def set_max_slippage(self, bps: int, *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self._update_config(max_slippage_bps=bps)

    @entry_point
    def set_leverage(self, target_leverage: int, haircut_bps: int, *, sender: str) -> None:
        """
        Change leverage bounds, checked against the venue's collateral factor.

        Raises:
            Unauthorized: If target leverage reaches the venue-implied maximum
        """
        self.roles.require(ADMIN, sender)
        self._apply_leverage(target_leverage, haircut_bps)
        self._update_config(leverage={"target_leverage": target_leverage, "haircut_bps": haircut_bps})

    @entry_point
    def request_rescue(self, token: str, *, sender: str) -> RescueRequest:
        """
        Start the timelock for recovering a stray token held by the vault.

        Raises:
            Unauthorized: If the sender is not admin or the token is the base asset
        """
        self.roles.require(ADMIN, sender)
        if token == self.asset:
            raise Unauthorized(f"Base asset {token} backs the shares and cannot be rescued")
        now = self._now()
        request = RescueRequest(
            token=token, receiver=sender, requested_at=now,
            ready_at=now + self.config.rescue_timelock_seconds,
        )
        self.rescue_requests[token] = request
        self.events.emit(
            ev.RESCUE_REQUESTED, now,
            token=token, receiver=sender, ready_at=request.ready_at,
            balance=self.tokens.balance_of(token, self.address),
        )
        return request

    @entry_point
    def rescue(self, token: str, *, sender: str) -> int:
        """
        Send the vault's whole balance of `token` to the admin who requested it.

        Tokens the adapter still counts as position value (carried leverage
        dust) stop counting, so the rescue is marked as a loss.

        Returns:
            Amount of `token` rescued

        Raises:
            Unauthorized: If the sender did not request this rescue
            NotYetClaimable: If the timelock has not elapsed
        """
        self.roles.require(ADMIN, sender)
        request = self.rescue_requests.get(token)
        if request is None or request.receiver != sender:
            raise Unauthorized(f"No rescue of {token} requested by {sender}")
        if self._now() < request.ready_at:
            raise NotYetClaimable(f"Rescue of {token} ready at t={request.ready_at}, now t={self._now()}")
        self._accrue()
        assets_before = self.ledger.total_accounted_assets
        del self.rescue_requests[token]

        amount = self.tokens.balance_of(token, self.address)
        if amount:
            self.tokens.transfer(token, self.address, sender, amount)
            self.adapter.release(token, amount)
        self._accrue()
        self.events.emit(
            ev.RESCUED, self._now(),
            token=token, receiver=sender, amount=amount,
            assets_before=assets_before, assets_after=self.ledger.total_accounted_assets,
        )
        logger.info("Rescued %d %s to %s", amount, token, sender)
        return amount

    @entry_point
    def pause(self, *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self.paused = True
        self.events.emit(ev.PAUSED, self._now(), sender=sender)

    @entry_point
    def unpause(self, *, sender: str) -> None:
        self.roles.require(ADMIN, sender)
        self.paused = False
        self.events.emit(ev.UNPAUSED, self._now(), sender=sender)

    @entry_point
    def grant_role(self, role: str, account: str, *, sender: str) -> None:
        self.roles.grant_role(role, account, sender)

    @entry_point
    def revoke_role(self, role: str, account: str, *, sender: str) -> None:
        self.roles.revoke_role(role, account, sender)
