"""
ModelGate - route conversational requests to the cheapest capable LLM backend.

Package structure:
- core: Settings, logging, errors, shared types
- llm: Provider registry, provider adapters, model resolver
- billing: Credit ledger gate (cost estimation, deduction)
- profiles: Per-user routing profiles and settings commands
- gatekeeper: Local triage classifier, privacy check, delegation prep
- dispatch: Delegation records and remote dispatch
- offline: Offline queue, network monitor, notifications
- storage: Durable SQLite store
- service: End-to-end request pipeline wiring the above
"""

__version__ = "0.1.0"
