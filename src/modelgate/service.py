"""
ModelGate service - the full request pipeline.

inbound message -> gatekeeper -> (local reply) or (delegation -> resolver +
credit gate -> dispatcher) -> (offline: queue, replay on recovery)

Every branch ends in an answer, a queued notice, a confirmation prompt or
an actionable error string; nothing is dropped silently.
"""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from modelgate.billing.credits import DEFAULT_ESTIMATED_INPUT_TOKENS, CreditGate
from modelgate.core.config import Settings
from modelgate.core.errors import LedgerError
from modelgate.core.logging import get_logger
from modelgate.core.types import ChatMessage, last_user_message
from modelgate.dispatch.dispatcher import Dispatcher
from modelgate.dispatch.types import Delegation, DelegationContent, DispatchResult, QueuedTask
from modelgate.gatekeeper.classifier import Category, LocalClassifier, RuleBasedClassifier
from modelgate.gatekeeper.confirmation import (
    ConfirmationAction,
    ConfirmationKind,
    ConfirmationStore,
    PendingConfirmation,
    parse_confirmation_action,
)
from modelgate.gatekeeper.delegation import Gatekeeper
from modelgate.gatekeeper.privacy import privacy_warning
from modelgate.llm.base import LLMProvider
from modelgate.llm.litellm_adapter import LiteLLMAdapter
from modelgate.llm.local import LocalProvider
from modelgate.llm.registry import ProviderRegistry, get_registry
from modelgate.llm.router import (
    ModelResolver,
    ResolvedModel,
    estimate_tokens,
    format_fallback_notice,
    low_credit_warning,
)
from modelgate.offline import notify
from modelgate.offline.monitor import NetworkMonitor, ReachabilityProbe
from modelgate.offline.notify import NotificationSink
from modelgate.offline.queue import DrainReport, OfflineQueue
from modelgate.profiles.profile import InMemorySecretStore, SecretStore, UserRoutingProfile
from modelgate.profiles.settings import RoutingSettings
from modelgate.storage.store import SQLiteStore

logger = get_logger("service")

MODE_COMMAND_PATTERN = re.compile(r"^(?:모드|mode)\s+(.+)$", re.IGNORECASE)

EXHAUSTED_MESSAGE = "\n".join(
    [
        "None of the available models could answer right now.",
        "",
        "Please try again in a moment, or:",
        "- register your own API key for another provider",
        '- switch to "cost_effective" mode to use free models automatically',
    ]
)

TOP_UP_GUIDANCE = "\n".join(
    [
        "Top up credits or register your own API key,",
        'or switch to "cost_effective" mode to use free models automatically.',
    ]
)


def _estimated_input_tokens(message: str, context_summary: str = "") -> int:
    return max(DEFAULT_ESTIMATED_INPUT_TOKENS, estimate_tokens(f"{context_summary}\n{message}"))


class ReplySource(Enum):
    LOCAL = "local"
    REMOTE = "remote"
    QUEUED = "queued"
    CONFIRMATION = "confirmation"
    SETTINGS = "settings"
    ERROR = "error"


@dataclass
class Reply:
    """What the calling application shows the user for one turn."""

    text: str
    source: ReplySource
    delegation_id: str | None = None
    cost: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


class ModelGateService:
    """Wires gatekeeper, resolver, credits, dispatcher and offline queue."""

    def __init__(
        self,
        store: SQLiteStore,
        gatekeeper: Gatekeeper,
        remote: LLMProvider,
        secrets: SecretStore | None = None,
        registry: ProviderRegistry | None = None,
        platform_keys: dict[str, str] | None = None,
        sink: NotificationSink | None = None,
        probe=None,
        poll_interval: float = 30.0,
        dispatch_timeout: float = 30.0,
        max_tokens: int = 2048,
        liveness_timeout: float = 120.0,
        retention: timedelta = timedelta(hours=24),
        markup: float = 2.0,
        long_context_threshold: int = 200_000,
        confirmations: ConfirmationStore | None = None,
    ):
        self.store = store
        self.registry = registry or get_registry()
        self.gatekeeper = gatekeeper
        self.settings = RoutingSettings(store, secrets or InMemorySecretStore(), self.registry)
        self.resolver = ModelResolver(self.registry, platform_keys)
        self.credits = CreditGate(
            store, self.registry, markup=markup, long_context_threshold=long_context_threshold
        )
        self.dispatcher = Dispatcher(
            store,
            remote,
            timeout=dispatch_timeout,
            max_tokens=max_tokens,
            liveness_timeout=liveness_timeout,
            retention=retention,
        )
        self.sink = sink or NotificationSink()
        self.queue = OfflineQueue(store, self.sink)
        self.monitor = NetworkMonitor(
            probe=probe,
            interval=poll_interval,
            on_recovery=self.recover,
            queue=self.queue,
        )
        self.confirmations = confirmations or ConfirmationStore()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        secrets: SecretStore | None = None,
        sink: NotificationSink | None = None,
    ) -> "ModelGateService":
        """Build the default stack: SQLite, LiteLLM remote, local gatekeeper model."""
        registry = get_registry()
        local = LocalProvider(settings.local_llm_url, default_model=settings.local_model)
        classifier = LocalClassifier(local, settings.local_model)
        return cls(
            store=SQLiteStore(settings.db_path, signup_credits=settings.default_signup_credits),
            gatekeeper=Gatekeeper(classifier, local=local, local_model=settings.local_model),
            remote=LiteLLMAdapter(registry, default_timeout=settings.dispatch_timeout),
            secrets=secrets,
            registry=registry,
            platform_keys=settings.platform_keys,
            sink=sink,
            probe=ReachabilityProbe(settings.probe_urls, timeout=settings.probe_timeout),
            poll_interval=settings.poll_interval,
            dispatch_timeout=settings.dispatch_timeout,
            max_tokens=settings.generation_max_tokens,
            liveness_timeout=settings.dispatch_liveness_timeout,
            retention=timedelta(hours=settings.delegation_retention_hours),
            markup=settings.platform_markup,
            long_context_threshold=settings.long_context_threshold,
            confirmations=ConfirmationStore(ttl=timedelta(seconds=settings.confirmation_ttl_seconds)),
        )

    @classmethod
    def offline_capable(cls, store: SQLiteStore, remote: LLMProvider, **kwargs) -> "ModelGateService":
        """Service with the deterministic classifier and no local runtime."""
        return cls(store=store, gatekeeper=Gatekeeper(RuleBasedClassifier()), remote=remote, **kwargs)

    async def start(self, monitor: bool = True) -> None:
        await self.store.connect()
        if monitor:
            await self.monitor.start()
        logger.info("ModelGate service started")

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.store.close()
        logger.info("ModelGate service stopped")

    async def handle_message(self, user_id: str, conversation: list[ChatMessage]) -> Reply:
        """Process the newest user turn of ``conversation``."""
        message = last_user_message(conversation).strip()

        command = await self._handle_command(user_id, message)
        if command is not None:
            return command

        pending = self.confirmations.get(user_id)
        if pending is not None:
            action = parse_confirmation_action(message)
            if action is not None:
                return await self._resolve_confirmation(user_id, conversation, pending, action)

        return await self._process(user_id, conversation)

    async def _handle_command(self, user_id: str, message: str) -> Reply | None:
        """Settings commands embedded in chat; None when the message is not one."""
        found = self.registry.parse_api_key_from_message(message)
        if found:
            provider, key = found
            result = await self.settings.register_key(user_id, key, provider)
            if not result.success:
                return Reply(text=result.error, source=ReplySource.ERROR)
            display = self.registry.provider_display_name(provider)
            return Reply(
                text=f"{display} API key registered. Requests using it are free of credits.",
                source=ReplySource.SETTINGS,
                metadata={"provider": provider},
            )

        change = self.settings.parse_model_change_command(message)
        if change is not None:
            if not change.success:
                return Reply(text=change.error, source=ReplySource.ERROR)
            provider, model = change.data
            result = await self.settings.set_preferred_model(user_id, provider, model)
            if not result.success:
                return Reply(text=result.error, source=ReplySource.ERROR)
            return Reply(
                text=f"Preferred model set to {self.registry.model_display_name(provider, model)}.",
                source=ReplySource.SETTINGS,
                metadata=result.data,
            )

        match = MODE_COMMAND_PATTERN.match(message)
        if match:
            mode = RoutingSettings.parse_mode(match.group(1))
            if mode is None:
                return Reply(
                    text='Unknown mode. Choose "manual", "cost_effective" or "max_performance".',
                    source=ReplySource.ERROR,
                )
            await self.settings.set_mode(user_id, mode)
            return Reply(text=f"Routing mode set to {mode.value}.", source=ReplySource.SETTINGS)

        return None

    async def _resolve_confirmation(
        self,
        user_id: str,
        conversation: list[ChatMessage],
        pending: PendingConfirmation,
        action: ConfirmationAction,
    ) -> Reply:
        self.confirmations.pop(user_id)
        logger.info(f"User {user_id} answered {pending.kind.value} confirmation: {action.value}")

        if action == ConfirmationAction.CANCEL:
            return Reply(text="Cancelled.", source=ReplySource.SETTINGS)
        if action == ConfirmationAction.REGISTER_API_KEY:
            return Reply(text=self.settings.key_guide_message(), source=ReplySource.SETTINGS)

        original = [*conversation[:-1], ChatMessage(role="user", content=pending.original_message)]
        if pending.kind == ConfirmationKind.PRIVACY:
            if action != ConfirmationAction.SEND_ANYWAY:
                return Reply(text="Cancelled.", source=ReplySource.SETTINGS)
            return await self._process(user_id, original, allow_sensitive=True)

        if action == ConfirmationAction.USE_FREE:
            return await self._process(user_id, original, free_only=True)
        return await self._process(user_id, original, premium_confirmed=True)

    async def _process(
        self,
        user_id: str,
        conversation: list[ChatMessage],
        allow_sensitive: bool = False,
        premium_confirmed: bool = False,
        free_only: bool = False,
    ) -> Reply:
        message = last_user_message(conversation)
        triage = await self.gatekeeper.triage(conversation, allow_remote_sensitive=allow_sensitive)

        if triage.blocked:
            self.confirmations.put(
                user_id,
                message,
                ConfirmationKind.PRIVACY,
                analysis={"level": triage.privacy.level.value, "labels": triage.privacy.labels},
            )
            warning = privacy_warning(triage.privacy) or "Sensitive information detected."
            return Reply(
                text=f'{warning}\n\nReply "send anyway" to use a remote model, or "cancel".',
                source=ReplySource.CONFIRMATION,
            )

        if triage.local_reply is not None:
            return Reply(
                text=triage.local_reply.content,
                source=ReplySource.LOCAL,
                metadata={"category": triage.decision.category.value},
            )

        content = triage.delegation
        profile = await self.settings.load(user_id)

        if not self.monitor.online:
            task, created = await self.queue.enqueue(user_id, message, content, profile.mode.value)
            note = "" if created else f" (merged with {task.duplicate_count - 1} identical request(s))"
            return Reply(
                text=(
                    "You are offline. This request was queued and will be answered "
                    f"automatically when the connection is back{note}."
                ),
                source=ReplySource.QUEUED,
                metadata={"task_id": task.id},
            )

        has_credits = await self.credits.has_credits(user_id)
        candidates = self.resolver.candidates(profile, has_credits)
        if free_only:
            candidates = [c for c in candidates if c.is_free]
        if not candidates:
            return Reply(text=self.resolver.error_message(profile, has_credits), source=ReplySource.ERROR)

        input_tokens = _estimated_input_tokens(message, content.context_summary)
        candidates, shortfall = await self._affordable(user_id, candidates, input_tokens)
        if not candidates:
            return Reply(text=f"{shortfall}\n\n{TOP_UP_GUIDANCE}", source=ReplySource.ERROR)

        if (
            triage.decision.category == Category.SPECIALIZED
            and not premium_confirmed
            and not candidates[0].is_free
        ):
            prompt = await self._premium_prompt(user_id, message, candidates[0], input_tokens)
            if prompt is not None:
                return prompt

        delegation = await self.dispatcher.create(user_id, content, message, profile.mode.value)
        outcome = await self.dispatcher.dispatch(delegation, candidates)
        if not outcome.success:
            return Reply(text=EXHAUSTED_MESSAGE, source=ReplySource.ERROR, delegation_id=delegation.id)

        return await self._deliver(profile, delegation, outcome.data)

    async def _affordable(
        self, user_id: str, candidates: list[ResolvedModel], input_tokens: int
    ) -> tuple[list[ResolvedModel], str | None]:
        """Drop charged candidates the user's balance cannot cover.

        Returns the remaining candidates and the shortfall of the first one dropped.
        """
        kept = []
        shortfall = None
        for candidate in candidates:
            if candidate.is_free:
                kept.append(candidate)
                continue
            try:
                check = await self.credits.check_affordability(
                    user_id, candidate.model, input_tokens=input_tokens, provider=candidate.provider
                )
            except LedgerError as e:
                logger.warning(f"No estimate for {candidate.provider}/{candidate.model}: {e}")
                kept.append(candidate)
                continue
            if check.allowed:
                kept.append(candidate)
            else:
                logger.info(f"Skipping {candidate.provider}/{candidate.model} for {user_id}: {check.error}")
                shortfall = shortfall or check.error
        return kept, shortfall

    async def _premium_prompt(
        self, user_id: str, message: str, candidate: ResolvedModel, input_tokens: int
    ) -> Reply | None:
        try:
            check = await self.credits.check_affordability(
                user_id,
                candidate.model,
                input_tokens=input_tokens,
                provider=candidate.provider,
            )
        except LedgerError as e:
            logger.warning(f"Skipping premium confirmation for {user_id}: {e}")
            return None

        self.confirmations.put(
            user_id,
            message,
            ConfirmationKind.PREMIUM,
            analysis={
                "provider": candidate.provider,
                "model": candidate.model,
                "estimated_cost": check.estimated_cost,
            },
        )
        model = self.registry.model_display_name(candidate.provider, candidate.model)
        lines = [
            f"This request needs a premium model ({model}).",
            f"Estimated cost: {check.estimated_cost} credits (balance: {check.remaining_credits}).",
        ]
        lines.append("")
        lines.append('Reply "premium" to continue, "free" to try a free model, or "cancel".')
        return Reply(text="\n".join(lines), source=ReplySource.CONFIRMATION)

    async def _deliver(
        self, profile: UserRoutingProfile, delegation: Delegation, result: DispatchResult
    ) -> Reply:
        deduction = await self.credits.deduct(
            profile.user_id,
            result.model,
            result.input_tokens,
            result.output_tokens,
            using_platform_key=not result.is_free,
            reference=delegation.id,
            provider=result.provider,
        )

        parts = [result.response]
        used = ResolvedModel(
            result.provider, result.model, "", is_fallback=result.is_fallback, is_free=result.is_free
        )
        notice = format_fallback_notice(used, self.registry)
        if notice:
            parts.append(notice)
        if not deduction.estimated:
            warning = low_credit_warning(deduction.new_balance, profile.has_any_key)
            if warning:
                parts.append(warning)

        return Reply(
            text="\n\n".join(parts),
            source=ReplySource.REMOTE,
            delegation_id=delegation.id,
            cost=deduction.cost,
            metadata={"provider": result.provider, "model": result.model},
        )

    async def replay(self, task: QueuedTask) -> bool:
        """Dispatch one queued task; True when it completed."""
        profile = await self.settings.load(task.user_id)
        has_credits = await self.credits.has_credits(task.user_id)
        candidates = self.resolver.candidates(profile, has_credits)
        input_tokens = _estimated_input_tokens(task.user_message, task.context_summary)
        candidates, _ = await self._affordable(task.user_id, candidates, input_tokens)
        if not candidates:
            logger.warning(f"No usable model for queued task {task.id}, keeping it queued")
            return False

        content = DelegationContent(
            context_summary=task.context_summary,
            task_description=task.task_description,
            suggested_question=task.suggested_question,
        )
        delegation = await self.dispatcher.create(task.user_id, content, task.user_message, task.strategy)
        outcome = await self.dispatcher.dispatch(delegation, candidates)
        if not outcome.success:
            return False

        reply = await self._deliver(profile, delegation, outcome.data)
        await self.sink.notify(notify.task_result(task.user_id, task.id, reply.text))
        return True

    async def recover(self) -> DrainReport:
        """Replay the offline queue; the monitor calls this on reconnection."""
        return await self.queue.drain(self.replay)

    async def status(self) -> dict:
        return await self.monitor.status()

    async def maintenance(self) -> dict[str, int]:
        """Liveness and retention sweeps plus expired confirmation cleanup."""
        return {
            "stale_failed": await self.dispatcher.fail_stale(),
            "purged": await self.dispatcher.purge_expired(),
            "confirmations_expired": self.confirmations.purge_expired(),
        }
