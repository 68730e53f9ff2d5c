"""Dispatcher - runs a delegation against a remote model and records the outcome."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from modelgate.core.errors import InvalidTransitionError, ProviderError
from modelgate.core.logging import get_logger
from modelgate.core.types import ActionResult
from modelgate.dispatch.types import (
    Delegation,
    DelegationContent,
    DelegationStatus,
    DispatchResult,
    new_delegation_id,
)
from modelgate.llm.base import LLMConfig, LLMProvider
from modelgate.llm.router import ResolvedModel
from modelgate.storage.store import SQLiteStore

logger = get_logger("dispatch.dispatcher")

StartedCallback = Callable[[Delegation, ResolvedModel], Awaitable[None]]
ResponseCallback = Callable[[Delegation, DispatchResult], Awaitable[None]]
ErrorCallback = Callable[[Delegation, str], Awaitable[None]]


def build_cloud_instruction(content: DelegationContent) -> str:
    """System instruction that makes one remote call self-contained."""
    return (
        "You are continuing a task that a local assistant summarized and handed "
        "over to you because it needs a more capable model.\n\n"
        f"[Context summary]\n{content.context_summary}\n\n"
        f"[Task]\n{content.task_description}\n\n"
        "[Request]\n"
        "Review the state of the task above, explain the situation to the user, "
        f'then ask: "{content.suggested_question}"\n\n'
        "Reply in the user's language, keeping a friendly and professional tone."
    )


class Dispatcher:
    """Owns a delegation from pending until a terminal state.

    Status moves are compare-and-swap writes, so two workers can never both
    dispatch the same delegation. The dispatcher walks the given fallback
    candidates but never retries a delegation on its own; re-dispatch is the
    offline queue's job.
    """

    def __init__(
        self,
        store: SQLiteStore,
        remote: LLMProvider,
        timeout: float = 30.0,
        max_tokens: int = 2048,
        liveness_timeout: float = 120.0,
        retention: timedelta = timedelta(hours=24),
        on_started: StartedCallback | None = None,
        on_response: ResponseCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.store = store
        self.remote = remote
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.liveness_timeout = liveness_timeout
        self.retention = retention
        self._on_started = on_started
        self._on_response = on_response
        self._on_error = on_error

    async def create(
        self,
        user_id: str,
        content: DelegationContent,
        user_message: str,
        strategy: str,
    ) -> Delegation:
        """Persist a new pending delegation."""
        delegation = Delegation(
            id=new_delegation_id(),
            user_id=user_id,
            strategy=strategy,
            context_summary=content.context_summary,
            task_description=content.task_description,
            suggested_question=content.suggested_question,
            user_message=user_message,
            cloud_instruction=build_cloud_instruction(content),
        )
        await self.store.insert_delegation(delegation)
        logger.info(f"Delegation {delegation.id} created for {user_id}")
        return delegation

    async def dispatch(self, delegation: Delegation, candidates: list[ResolvedModel]) -> ActionResult:
        """
        Send a pending delegation to the first candidate that answers.

        Args:
            delegation: Delegation in pending status
            candidates: Resolved models in fallback order

        Returns:
            ActionResult with a DispatchResult on success
        """
        try:
            delegation.updated_at = await self.store.transition_delegation(
                delegation.id, DelegationStatus.PENDING, DelegationStatus.DISPATCHING
            )
        except InvalidTransitionError as e:
            logger.warning(f"Skipping dispatch: {e}")
            return ActionResult(success=False, error=str(e))
        delegation.status = DelegationStatus.DISPATCHING

        errors: list[str] = []
        for candidate in candidates:
            await self._notify(self._on_started, delegation, candidate)
            started = datetime.now()
            try:
                response = await asyncio.wait_for(
                    self.remote.complete(
                        [{"role": "user", "content": delegation.user_message}],
                        LLMConfig(
                            model=candidate.model,
                            provider=candidate.provider,
                            api_key=candidate.key,
                            max_tokens=self.max_tokens,
                            system_prompt=delegation.cloud_instruction,
                            timeout=self.timeout,
                        ),
                    ),
                    timeout=self.timeout,
                )
            except (ProviderError, asyncio.TimeoutError) as e:
                reason = str(e) or "timed out"
                logger.warning(
                    f"Delegation {delegation.id}: {candidate.provider}/{candidate.model} failed: {reason}"
                )
                errors.append(f"{candidate.provider}/{candidate.model}: {reason}")
                continue

            result = DispatchResult(
                provider=candidate.provider,
                model=candidate.model,
                response=response.content,
                dispatched_at=started,
                completed_at=datetime.now(),
                latency_ms=response.latency_ms,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                is_free=candidate.is_free,
                is_fallback=candidate.is_fallback or candidate is not candidates[0],
            )
            await self._finish(delegation, DelegationStatus.COMPLETED, result=result)
            logger.info(
                f"Delegation {delegation.id} completed via {candidate.provider}/{candidate.model} "
                f"({result.latency_ms}ms)"
            )
            await self._notify(self._on_response, delegation, result)
            return ActionResult(success=True, data=result)

        error = "; ".join(errors) if errors else "No usable model for this delegation"
        await self._finish(delegation, DelegationStatus.FAILED, error=error)
        logger.error(f"Delegation {delegation.id} failed: {error}")
        await self._notify(self._on_error, delegation, error)
        return ActionResult(success=False, error=error)

    async def fail(self, delegation: Delegation, error: str) -> None:
        """Fail a delegation that never reached dispatch (e.g. no model resolved)."""
        await self._finish(delegation, DelegationStatus.FAILED, error=error)

    async def _finish(
        self,
        delegation: Delegation,
        status: DelegationStatus,
        result: DispatchResult | None = None,
        error: str | None = None,
    ) -> None:
        try:
            delegation.updated_at = await self.store.transition_delegation(
                delegation.id, delegation.status, status, result=result, error=error
            )
        except InvalidTransitionError as e:
            # A liveness sweep may have failed it meanwhile; the answer is still delivered
            logger.warning(f"Could not record {status.value}: {e}")
            return
        delegation.status = status
        delegation.result = result or delegation.result
        delegation.error = error or delegation.error

    async def _notify(self, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"Dispatch callback failed: {e}")

    async def pending(self) -> list[Delegation]:
        return await self.store.list_delegations(status=DelegationStatus.PENDING)

    async def fail_stale(self) -> int:
        """Fail delegations stuck in dispatching past the liveness timeout."""
        cutoff = datetime.now() - timedelta(seconds=self.liveness_timeout)
        count = await self.store.fail_stale_delegations(cutoff, error="liveness timeout")
        if count:
            logger.warning(f"Failed {count} stale delegation(s)")
        return count

    async def purge_expired(self) -> int:
        """Delete terminal delegations older than the retention window."""
        count = await self.store.purge_delegations(datetime.now() - self.retention)
        if count:
            logger.info(f"Purged {count} expired delegation(s)")
        return count
