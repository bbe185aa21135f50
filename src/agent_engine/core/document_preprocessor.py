"""
Document pre-pass for the tool loop.

PDF attachments are expensive to resend on every round, so before the
loop starts each document on the current message is summarized by one
call to the cheapest model and replaced by that text. A failed document
gets an inline error marker; the other documents and the request go on.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
import time

from dataclasses import replace
from typing import Any

from agent_engine.core.cancellation import CancellationToken
from agent_engine.core.constants import PHASE_ANALYZING_PDF, USAGE_CATEGORY_DOCUMENT_EXTRACTION
from agent_engine.core.context_builder import attachment_part
from agent_engine.core.errors import PreprocessingError
from agent_engine.core.prompts import build_document_extraction_prompt, format_page_estimate
from agent_engine.core.retry import RetryGovernor
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.integrations.provider import ModelProvider, ProviderResponse
from agent_engine.models.session_models import Attachment, Message, UsageRecorder
from agent_engine.utils.logger import logger
from agent_engine.utils.token_utils import count_tokens

# Page objects, not the /Pages tree nodes
_PAGE_PATTERN = re.compile(rb"/Type\s*/Page(?![a-zA-Z])")


def estimate_page_count(data: str | None) -> int:
    """Count page objects in a base64 PDF payload. 0 when unknown."""
    if not data:
        return 0
    if data.startswith("data:"):
        data = data.partition(",")[2]
    try:
        raw = base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError):
        return 0
    return len(_PAGE_PATTERN.findall(raw))


def document_section(name: str, pages: int, body: str) -> str:
    return f"--- Document: {name} ({format_page_estimate(pages)}) ---\n{body.strip()}\n--- End of document: {name} ---"


def error_marker(name: str, reason: str) -> str:
    return f"[Could not analyze document '{name}': {reason}]"


class DocumentPreprocessor:
    """Replaces document attachments on the current message with text summaries."""

    def __init__(
        self,
        provider: ModelProvider,
        usage: UsageRecorder,
        emitter: StreamEmitter,
        *,
        model: str,
        max_tokens: int,
        governor: RetryGovernor | None = None,
        token: CancellationToken | None = None,
        session_id: str | None = None,
    ):
        self._provider = provider
        self._usage = usage
        self._emitter = emitter
        self._model = model
        self._max_tokens = max_tokens
        self._governor = governor
        self._token = token
        self.session_id = session_id

    async def process(self, messages: list[Message]) -> list[Message]:
        """Return ``messages`` with the last message's documents summarized.

        Returns the input list unchanged when there is nothing to do.
        """
        if not messages:
            return messages

        current = messages[-1]
        documents = current.documents_with_payload
        if not documents:
            return messages

        count = len(documents)
        await self._emitter.status(PHASE_ANALYZING_PDF, f"Analyzing {count} document{'s' if count != 1 else ''}")

        sections: list[str] = []
        for document in documents:
            if self._token is not None:
                self._token.check()
            sections.append(await self._summarize(document))

        kept = tuple(a for a in current.attachments if not (a.kind == "document" and a.has_payload))
        text = "\n\n".join(part for part in (current.content.strip(), *sections) if part)
        return [*messages[:-1], replace(current, content=text, attachments=kept)]

    async def _summarize(self, document: Attachment) -> str:
        pages = estimate_page_count(document.data)
        try:
            summary = await self._extract(document, pages)
        except PreprocessingError as e:
            logger.error(f"Document preprocessing failed: {e}", document=document.name)
            return document_section(document.name, pages, error_marker(document.name, e.reason))
        return document_section(document.name, pages, summary)

    async def _extract(self, document: Attachment, pages: int) -> str:
        request: list[dict[str, Any]] = [
            {
                "role": "user",
                "content": [
                    attachment_part(document),
                    {"type": "text", "text": build_document_extraction_prompt(document.name, pages)},
                ],
            }
        ]

        async def call() -> ProviderResponse:
            return await self._provider.complete(model=self._model, messages=request, max_tokens=self._max_tokens)

        started = time.perf_counter()
        try:
            response = await (self._governor.call(call) if self._governor is not None else call())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise PreprocessingError(document.name, str(e) or type(e).__name__) from e

        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        await self._record_usage(response, document.name, pages, duration_ms)

        summary = response.text.strip()
        if not summary:
            raise PreprocessingError(document.name, "empty summary")

        self._log_summary(document.name, summary, pages, duration_ms)
        return summary

    def _log_summary(self, name: str, summary: str, pages: int, duration_ms: float) -> None:
        try:
            tokens = count_tokens(summary, self._model)["exact_tokens"]
        except Exception as e:
            # tiktoken fetches encodings on first use
            logger.debug(f"Token count unavailable: {e}")
            tokens = None
        logger.info(f"Summarized document {name}", pages=pages, summary_tokens=tokens, duration_ms=duration_ms)

    async def _record_usage(self, response: ProviderResponse, name: str, pages: int, duration_ms: float) -> None:
        try:
            await self._usage.record(
                USAGE_CATEGORY_DOCUMENT_EXTRACTION,
                self._model,
                response.usage.input_tokens,
                response.usage.output_tokens,
                session_id=self.session_id,
                metadata={"document": name, "pages": pages, "duration_ms": duration_ms},
            )
        except Exception as e:
            logger.error(f"Usage ledger unavailable, extraction usage not recorded: {e}", exc_info=True)


__all__ = ["DocumentPreprocessor", "document_section", "error_marker", "estimate_page_count"]
