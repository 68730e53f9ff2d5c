"""
Gatekeeper triage and delegation preparation.

Every inbound message passes through here before any costly remote call:
complexity classification and the privacy check run concurrently, trivial
requests are answered on-device, sensitive content is kept on-device, and
everything else is packaged as a delegation for a remote model.
"""

import asyncio
from dataclasses import dataclass

from modelgate.core.errors import ClassifierError, ProviderError
from modelgate.core.logging import get_logger
from modelgate.core.types import ChatMessage, last_user_message
from modelgate.dispatch.types import DEFAULT_SUGGESTED_QUESTION, DelegationContent
from modelgate.gatekeeper.classifier import (
    Classifier,
    RoutingDecision,
    Target,
    extract_json_object,
)
from modelgate.gatekeeper.privacy import PrivacyResult, classify_privacy, mask_sensitive_data
from modelgate.llm.base import LLMConfig, LLMProvider, LLMResponse

logger = get_logger("gatekeeper.delegation")

SIMPLE_RESPONSE_PROMPT = """You are a helpful assistant. Respond briefly.
Only handle simple greetings and basic questions.
If unsure, say "One moment, I'll prepare a more accurate answer."

/no_think"""

DELEGATION_PROMPT = """Summarize this conversation for a more capable assistant. Respond ONLY with JSON:

{
  "context_summary": "what the user discussed so far",
  "task_description": "what needs to be done next",
  "suggested_question": "one question to ask the user about how to proceed"
}

/no_think"""

# Turns of history folded into the fallback summary
SUMMARY_TURNS = 6
SUMMARY_CHARS = 200


def redact_history(conversation: list[ChatMessage]) -> list[ChatMessage]:
    """Mask sensitive content in every turn except the newest user turn.

    The newest turn has already passed the privacy check or carries the
    user's consent; earlier turns never did.
    """
    newest = max((i for i, m in enumerate(conversation) if m.role == "user"), default=-1)
    redacted = []
    for i, message in enumerate(conversation):
        if i != newest and classify_privacy(message.content).requires_local:
            message = ChatMessage(role=message.role, content=mask_sensitive_data(message.content))
        redacted.append(message)
    return redacted


def fallback_delegation(conversation: list[ChatMessage]) -> DelegationContent:
    """Deterministic delegation used when the local model is unavailable."""
    lines = []
    for message in redact_history(conversation)[-SUMMARY_TURNS:]:
        content = " ".join(message.content.split())
        if len(content) > SUMMARY_CHARS:
            content = content[:SUMMARY_CHARS] + "..."
        lines.append(f"{message.role}: {content}")

    return DelegationContent(
        context_summary="\n".join(lines),
        task_description=last_user_message(conversation).strip(),
        suggested_question=DEFAULT_SUGGESTED_QUESTION,
    )


async def prepare_delegation(
    conversation: list[ChatMessage],
    local: LLMProvider | None,
    model: str,
    timeout: float = 30.0,
) -> DelegationContent:
    """Build the hand-off package on-device.

    Must work offline: any local failure falls back to a deterministic
    summary of the recent turns.
    """
    conversation = redact_history(conversation)
    if local is None:
        return fallback_delegation(conversation)

    try:
        response = await local.complete(
            [m.to_llm_format() for m in conversation],
            LLMConfig(
                model=model,
                max_tokens=512,
                temperature=0.1,
                system_prompt=DELEGATION_PROMPT,
                timeout=timeout,
            ),
        )
        data = extract_json_object(response.content)
    except (ProviderError, ClassifierError) as e:
        logger.warning(f"Local delegation summary failed, using fallback: {e}")
        return fallback_delegation(conversation)

    fallback = fallback_delegation(conversation)
    return DelegationContent(
        context_summary=str(data.get("context_summary") or fallback.context_summary),
        task_description=str(data.get("task_description") or fallback.task_description),
        suggested_question=str(data.get("suggested_question") or DEFAULT_SUGGESTED_QUESTION),
    )


@dataclass
class TriageResult:
    """Outcome of gatekeeping one request.

    Exactly one of ``local_reply``, ``delegation`` or ``blocked`` is set.
    """

    decision: RoutingDecision
    privacy: PrivacyResult
    local_reply: LLMResponse | None = None
    delegation: DelegationContent | None = None
    blocked: bool = False


class Gatekeeper:
    """Local triage in front of every remote call."""

    def __init__(
        self,
        classifier: Classifier,
        local: LLMProvider | None = None,
        local_model: str = "qwen3:0.6b",
        timeout: float = 30.0,
    ):
        self.classifier = classifier
        self.local = local
        self.local_model = local_model
        self.timeout = timeout

    async def local_available(self) -> bool:
        if self.local is None:
            return False
        return await self.local.health_check()

    async def respond_locally(self, conversation: list[ChatMessage]) -> LLMResponse | None:
        """Answer on-device; None when the local runtime cannot."""
        if self.local is None:
            return None
        try:
            return await self.local.complete(
                [m.to_llm_format() for m in conversation],
                LLMConfig(
                    model=self.local_model,
                    max_tokens=256,
                    temperature=0.7,
                    system_prompt=SIMPLE_RESPONSE_PROMPT,
                    timeout=self.timeout,
                ),
            )
        except ProviderError as e:
            logger.warning(f"Local response failed: {e}")
            return None

    async def triage(
        self,
        conversation: list[ChatMessage],
        allow_remote_sensitive: bool = False,
    ) -> TriageResult:
        """Classify, then answer locally, keep on-device, or prepare a delegation.

        Args:
            conversation: Ordered conversation turns, newest last
            allow_remote_sensitive: The user explicitly agreed to send
                sensitive content to a remote model
        """
        message = last_user_message(conversation)
        decision, privacy = await asyncio.gather(
            self.classifier.classify(message),
            asyncio.to_thread(classify_privacy, message),
        )

        if privacy.requires_local and not allow_remote_sensitive:
            decision.target = Target.LOCAL
            logger.info(f"Sensitive content ({privacy.level.value}), forcing local")
            reply = await self.respond_locally(conversation)
            if reply is None:
                logger.warning("Sensitive content and no local runtime: hard stop")
                return TriageResult(decision=decision, privacy=privacy, blocked=True)
            return TriageResult(decision=decision, privacy=privacy, local_reply=reply)

        if decision.answer_locally:
            reply = await self.respond_locally(conversation)
            if reply is not None:
                return TriageResult(decision=decision, privacy=privacy, local_reply=reply)
            logger.info("Simple request but local runtime unavailable, delegating")

        delegation = await prepare_delegation(conversation, self.local, self.local_model, self.timeout)
        return TriageResult(decision=decision, privacy=privacy, delegation=delegation)
