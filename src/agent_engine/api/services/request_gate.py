"""
Chat request entry point.

Pre-stream checks run in a fixed order and fail with an HTTP error and
no partial output: body size, caller identity (resolved by the route
dependency), body validation, monthly budget. Once they pass, the
engine runs in its own task and the response streams the events it
emits. From then on every failure is reported as an ``error`` event
followed by ``done``.
"""

from __future__ import annotations

import asyncio
import json
import time

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from agent_engine.api.middleware.exception_handlers import (
    BudgetExceededError,
    PayloadTooLargeError,
    ValidationException,
)
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.core.cancellation import CancellationToken
from agent_engine.core.complexity_router import RoutingPolicy, select_model
from agent_engine.core.constants import Settings
from agent_engine.core.context_builder import ContextBuilder
from agent_engine.core.document_preprocessor import DocumentPreprocessor
from agent_engine.core.errors import ProviderError, ProviderRateLimitError
from agent_engine.core.prompts import build_system_instructions
from agent_engine.core.result_compressor import ResultCompressor
from agent_engine.core.retry import RetryGovernor
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.core.tool_loop import ToolLoopEngine, ToolLoopResult
from agent_engine.integrations.provider import ModelProvider
from agent_engine.integrations.tool_registry import ToolRegistry
from agent_engine.models.error_models import ErrorCode, ErrorDetail
from agent_engine.models.schemas.auth import UserInfo
from agent_engine.models.schemas.chat import ChatRequest
from agent_engine.models.session_models import Message, PersistenceGateway, ToolContext, UsageRecorder
from agent_engine.services.conversation_store import generate_session_id, make_title
from agent_engine.utils.logger import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

RATE_LIMITED_MESSAGE = "The AI service is busy right now. Please try again in a minute."
PROVIDER_ERROR_MESSAGE = "The AI service could not complete the response. Please try again."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred while generating the response."


@dataclass(frozen=True)
class ChatTurn:
    """A validated chat request, ready to stream."""

    user: UserInfo
    messages: list[Message]
    session_id: str | None = None
    correlation_id: str | None = None

    @property
    def current(self) -> Message:
        return self.messages[-1]

    @property
    def title(self) -> str:
        first_user = next((m for m in self.messages if m.role == "user" and m.content.strip()), None)
        return make_title(first_user.content if first_user else "")


def stream_error_message(exc: BaseException) -> str:
    """User-facing text for an in-stream failure. Provider details stay in the logs."""
    if isinstance(exc, ProviderRateLimitError):
        return RATE_LIMITED_MESSAGE
    if isinstance(exc, ProviderError):
        return PROVIDER_ERROR_MESSAGE
    return UNEXPECTED_ERROR_MESSAGE


class RequestGate:
    """Validates chat requests and wires the engine into one streamed response."""

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        usage: UsageRecorder,
        store: PersistenceGateway,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.provider = provider
        self.registry = registry
        self.usage = usage
        self.store = store
        self.settings = settings
        self._sleep = sleep
        self._policy = RoutingPolicy.from_settings(settings)

    # ------------------------------------------------------------------
    # Pre-stream checks
    # ------------------------------------------------------------------

    async def parse(self, request: Request, user: UserInfo) -> ChatTurn:
        """Read and validate the body.

        Raises:
            PayloadTooLargeError: Body larger than the ceiling (undeclared length)
            ValidationException: Not JSON, wrong shape, or no messages
        """
        body = await request.body()
        if len(body) > self.settings.max_request_body_size:
            raise PayloadTooLargeError(len(body), self.settings.max_request_body_size)

        try:
            payload = json.loads(body or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationException(message="Body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationException(message="Body must be a JSON object")

        try:
            chat = ChatRequest.model_validate(payload)
        except ValidationError as exc:
            errors = [
                ErrorDetail(field=".".join(str(p) for p in err["loc"]), message=err["msg"], code=err["type"])
                for err in exc.errors()
            ]
            raise ValidationException(message="Request validation failed", errors=errors) from exc

        if not chat.messages:
            raise ValidationException(
                message="At least one message is required",
                code=ErrorCode.VALIDATION_EMPTY_MESSAGES,
            )

        return ChatTurn(
            user=user,
            messages=chat.to_domain(),
            session_id=chat.session_id,
            correlation_id=chat.correlation_id,
        )

    async def check_budget(self) -> None:
        """Reject when the month's spend is at or above the ceiling.

        An unreachable ledger does not block the request.

        Raises:
            BudgetExceededError: Monthly budget exhausted
        """
        try:
            usage = await self.usage.current_monthly_usage()
        except Exception as e:
            logger.warning(f"Budget check skipped, usage ledger unavailable: {e}")
            return

        if usage.exhausted:
            raise BudgetExceededError(usage.cost, usage.limit)

    async def open(self, request: Request, user: UserInfo) -> StreamingResponse:
        """Run the pre-stream checks and start the event stream."""
        turn = await self.parse(request, user)
        await self.check_budget()
        return StreamingResponse(self.stream(turn), media_type="text/event-stream", headers=SSE_HEADERS)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Yield SSE frames while the engine runs in a separate task.

        Closing the generator (client disconnect) cancels the engine.
        """
        token = CancellationToken()
        emitter = StreamEmitter(maxsize=self.settings.stream_buffer_size)
        task = asyncio.create_task(self.run(turn, emitter, token))
        task.add_done_callback(_log_task_failure)
        try:
            async for frame in emitter:
                yield frame
        finally:
            if not task.done():
                logger.info("Client disconnected, cancelling chat request")
                token.cancel("client disconnected")
                task.cancel()

    async def run(self, turn: ChatTurn, emitter: StreamEmitter, token: CancellationToken) -> ToolLoopResult | None:
        """Drive one request to completion on ``emitter``. Always closes the emitter."""
        started = time.perf_counter()
        try:
            session_id, persist = await self._resolve_session(turn)
            update_request_context(session_id=session_id)
            await emitter.conversation_info(session_id, turn.title)

            result = await self._generate(turn, session_id, emitter, token)

            if persist:
                await self._persist(session_id, turn, result)
            await emitter.idle(await self._budget_notice())
            await emitter.done()

            logger.log_conversation_turn(
                user_input=turn.current.content,
                response=result.text,
                session_id=session_id,
                tool_names=result.tool_names,
                rounds=result.rounds,
                duration_ms=(time.perf_counter() - started) * 1000,
                attachments_count=len(turn.current.attachments),
            )
            return result
        except asyncio.CancelledError:
            logger.info("Chat request cancelled", reason=token.cancel_reason)
            raise
        except Exception as e:
            logger.error(f"Chat request failed: {type(e).__name__}: {e}", exc_info=True)
            if not token.is_cancelled:
                await emitter.error(stream_error_message(e))
                await emitter.done()
            return None
        finally:
            emitter.close()

    async def _generate(
        self,
        turn: ChatTurn,
        session_id: str,
        emitter: StreamEmitter,
        token: CancellationToken,
    ) -> ToolLoopResult:
        settings = self.settings
        governor = RetryGovernor(settings.retry_delays, emitter=emitter, token=token, sleep=self._sleep)

        # Routed on the messages as sent, before documents are summarized
        selection = select_model(turn.messages, self._policy)
        logger.debug(f"Model selected: {selection.model} ({selection.reason}, {selection.max_tokens} tokens)")

        preprocessor = DocumentPreprocessor(
            self.provider,
            self.usage,
            emitter,
            model=settings.extraction_model,
            max_tokens=settings.extraction_max_tokens,
            governor=governor,
            token=token,
            session_id=session_id,
        )
        messages = await preprocessor.process(turn.messages)

        engine = ToolLoopEngine(
            self.provider,
            self.registry,
            self.usage,
            emitter,
            governor,
            ResultCompressor(settings.tool_result_max_bytes, settings.tool_result_max_items),
            max_rounds=settings.max_tool_rounds,
            token=token,
            session_id=session_id,
        )
        return await engine.run(
            ContextBuilder(settings.max_history_messages).build(messages),
            selection,
            ToolContext(user_id=turn.user.id, session_id=session_id, correlation_id=turn.correlation_id),
            system=build_system_instructions(turn.correlation_id),
            # Tool groups follow what the user wrote, not the extracted document text
            tools=self.registry.select_definitions(turn.current.content),
        )

    async def _resolve_session(self, turn: ChatTurn) -> tuple[str, bool]:
        """Existing or newly created session id, and whether it can be persisted to."""
        if turn.session_id:
            return turn.session_id, True
        try:
            return await self.store.create_session(turn.user.id, turn.title), True
        except Exception as e:
            logger.error(f"Could not create conversation, continuing unsaved: {e}", exc_info=True)
            return generate_session_id(), False

    async def _persist(self, session_id: str, turn: ChatTurn, result: ToolLoopResult) -> None:
        try:
            await self.store.append_message_pair(session_id, turn.user.id, turn.current, result.to_message())
        except Exception as e:
            logger.error(f"Failed to persist conversation {session_id}: {e}", exc_info=True)

    async def _budget_notice(self) -> str | None:
        """Advisory notice when the month's spend crossed the warning threshold."""
        try:
            usage = await self.usage.current_monthly_usage()
        except Exception as e:
            logger.warning(f"Budget notice skipped, usage ledger unavailable: {e}")
            return None
        if usage.percent_used < self.settings.budget_warning_percent:
            return None
        return f"Monthly AI budget {usage.percent_used:.0f}% used (${usage.cost:.2f} of ${usage.limit:.2f})"


def _log_task_failure(task: asyncio.Task[ToolLoopResult | None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Chat task crashed: {type(exc).__name__}: {exc}")


__all__ = ["ChatTurn", "RequestGate", "SSE_HEADERS", "stream_error_message"]
