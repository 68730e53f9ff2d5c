"""
Gatekeeper - local triage before any remote call.

Components:
- classifier: RoutingDecision via the local model or deterministic rules
- privacy: sensitive-content detection and masking
- delegation: triage pipeline and hand-off preparation
- confirmation: per-user pending confirmations with TTL
"""

from modelgate.gatekeeper.classifier import (
    Category,
    Classifier,
    LocalClassifier,
    RoutingDecision,
    RuleBasedClassifier,
    Target,
)
from modelgate.gatekeeper.confirmation import ConfirmationAction, ConfirmationStore
from modelgate.gatekeeper.delegation import Gatekeeper, TriageResult
from modelgate.gatekeeper.privacy import PrivacyLevel, classify_privacy

__all__ = [
    "Category",
    "Classifier",
    "LocalClassifier",
    "RoutingDecision",
    "RuleBasedClassifier",
    "Target",
    "ConfirmationAction",
    "ConfirmationStore",
    "Gatekeeper",
    "TriageResult",
    "PrivacyLevel",
    "classify_privacy",
]
