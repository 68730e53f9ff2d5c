"""Credit ledger gate - cost estimation, affordability, deduction."""

from modelgate.billing.credits import CreditAccount, CreditGate, CreditLedger, estimate_cost

__all__ = ["CreditAccount", "CreditGate", "CreditLedger", "estimate_cost"]
