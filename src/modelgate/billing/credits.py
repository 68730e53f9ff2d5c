"""
Credit ledger gate.

Cost estimation, affordability checks and deduction against an external
credit ledger. Ledger failures never block an answer that has already been
generated: deduction degrades to a local estimate and logs a warning.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from modelgate.core.errors import LedgerError
from modelgate.core.logging import get_logger
from modelgate.llm.registry import ModelSpec, ProviderRegistry, get_registry

logger = get_logger("billing.credits")

PLATFORM_MARKUP = 2.0
LONG_CONTEXT_THRESHOLD = 200_000

# Default per-request estimate when the caller has no better number
DEFAULT_ESTIMATED_INPUT_TOKENS = 1000


@dataclass
class CreditAccount:
    """Ledger view of one user's credits."""

    user_id: str
    balance: int
    monthly_used: int = 0
    monthly_quota: int = 0
    plan: str = "free"


@dataclass
class Affordability:
    allowed: bool
    estimated_cost: int
    remaining_credits: int
    error: str | None = None


@dataclass
class Deduction:
    new_balance: int
    cost: int
    estimated: bool = False


class CreditLedger(ABC):
    """External ledger with atomic increment/decrement.

    Implementations must never let a balance go below zero and must apply a
    deduction with a given ``reference`` at most once.
    """

    @abstractmethod
    async def get_account(self, user_id: str) -> CreditAccount:
        ...

    @abstractmethod
    async def deduct(self, user_id: str, amount: int, reference: str | None = None) -> int:
        """Atomically subtract ``amount``, clamped at zero. Returns the new balance."""
        ...

    @abstractmethod
    async def add(self, user_id: str, amount: int) -> int:
        """Atomically add ``amount``. Returns the new balance."""
        ...


def estimate_cost(
    model: ModelSpec,
    input_tokens: int,
    output_tokens: int,
    using_platform_key: bool,
    long_context_threshold: int = LONG_CONTEXT_THRESHOLD,
    markup: float = PLATFORM_MARKUP,
) -> int:
    """Credits charged for one call.

    Premium rates apply to the whole call, not only the overage, once
    ``input_tokens + output_tokens`` exceeds the threshold and the model
    defines them. The minimum charge is 1 credit whenever the cost is
    non-zero.
    """
    use_premium = (input_tokens + output_tokens) > long_context_threshold and model.has_premium_pricing
    input_rate = model.premium_input_price if use_premium else model.input_price
    output_rate = model.premium_output_price if use_premium else model.output_price

    cost = (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate
    if using_platform_key:
        cost *= markup

    if cost <= 0:
        return 0
    return max(1, math.ceil(cost))


def format_credits(credits: int) -> str:
    """Human-readable credit amount (KRW-style 만 units above 10,000)."""
    if credits >= 10_000:
        return f"{credits / 10_000:.1f}만"
    return f"{credits:,}"


class CreditGate:
    """Balance checks and deductions for remote calls."""

    def __init__(
        self,
        ledger: CreditLedger,
        registry: ProviderRegistry | None = None,
        markup: float = PLATFORM_MARKUP,
        long_context_threshold: int = LONG_CONTEXT_THRESHOLD,
    ):
        self.ledger = ledger
        self.registry = registry or get_registry()
        self.markup = markup
        self.long_context_threshold = long_context_threshold

    def _model(self, model_id: str, provider: str | None = None) -> ModelSpec:
        model = self.registry.get_model(model_id, provider) or self.registry.get_model(model_id)
        if model is None:
            raise LedgerError(f"No pricing for model: {model_id}")
        return model

    def estimate(
        self,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        using_platform_key: bool,
        provider: str | None = None,
    ) -> int:
        return estimate_cost(
            self._model(model_id, provider),
            input_tokens,
            output_tokens,
            using_platform_key,
            long_context_threshold=self.long_context_threshold,
            markup=self.markup,
        )

    async def balance(self, user_id: str) -> int:
        account = await self.ledger.get_account(user_id)
        return account.balance

    async def has_credits(self, user_id: str) -> bool:
        """Whether platform-key calls are possible; ledger failure reads as no credits."""
        try:
            return await self.balance(user_id) > 0
        except Exception as e:
            logger.warning(f"Ledger unavailable for {user_id}, assuming no credits: {e}")
            return False

    async def check_affordability(
        self,
        user_id: str,
        model_id: str,
        own_key: bool = False,
        input_tokens: int = DEFAULT_ESTIMATED_INPUT_TOKENS,
        output_tokens: int | None = None,
        provider: str | None = None,
    ) -> Affordability:
        """Check whether the user can pay for one call.

        Calls with the user's own key cost nothing.
        """
        remaining = await self.balance(user_id)
        if own_key:
            return Affordability(allowed=True, estimated_cost=0, remaining_credits=remaining)

        if output_tokens is None:
            output_tokens = input_tokens * 2
        cost = self.estimate(model_id, input_tokens, output_tokens, True, provider=provider)

        if remaining < cost:
            return Affordability(
                allowed=False,
                estimated_cost=cost,
                remaining_credits=remaining,
                error=f"Not enough credits. Required: {cost}, available: {remaining}",
            )
        return Affordability(allowed=True, estimated_cost=cost, remaining_credits=remaining)

    async def deduct(
        self,
        user_id: str,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        using_platform_key: bool,
        reference: str | None = None,
        provider: str | None = None,
    ) -> Deduction:
        """Charge for a completed call.

        Own-key calls are not charged. When the ledger fails the cost is
        still computed and returned with ``estimated=True``.
        """
        if not using_platform_key:
            try:
                return Deduction(new_balance=await self.balance(user_id), cost=0)
            except Exception as e:
                logger.warning(f"Ledger unavailable for {user_id}: {e}")
                return Deduction(new_balance=0, cost=0, estimated=True)

        try:
            cost = self.estimate(model_id, input_tokens, output_tokens, True, provider=provider)
        except LedgerError as e:
            logger.warning(f"Cannot price {model_id}, charging nothing: {e}")
            return Deduction(new_balance=0, cost=0, estimated=True)

        try:
            new_balance = await self.ledger.deduct(user_id, cost, reference=reference)
        except Exception as e:
            logger.warning(f"Credit deduction failed for {user_id} ({cost} credits): {e}")
            return Deduction(new_balance=0, cost=cost, estimated=True)

        logger.info(f"Charged {user_id} {cost} credits for {model_id}, balance {new_balance}")
        return Deduction(new_balance=new_balance, cost=cost)

    async def add(self, user_id: str, amount: int) -> int:
        """Top up credits. Unlike deduction, failures propagate."""
        if amount <= 0:
            raise LedgerError(f"Top-up amount must be positive: {amount}")
        new_balance = await self.ledger.add(user_id, amount)
        logger.info(f"Added {amount} credits to {user_id}, balance {new_balance}")
        return new_balance
