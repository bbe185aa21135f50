from __future__ import annotations

from datetime import UTC, datetime

from agent_engine.core.prompts import (
    SYSTEM_INSTRUCTIONS,
    build_document_extraction_prompt,
    build_system_instructions,
    format_page_estimate,
)


def test_system_instructions_without_correlation() -> None:
    prompt = build_system_instructions(today=datetime(2025, 5, 2, tzinfo=UTC))
    assert prompt.startswith(SYSTEM_INSTRUCTIONS)
    assert "Current Context" not in prompt
    assert prompt.endswith("Today's date is 2025-05-02.")


def test_system_instructions_with_correlation() -> None:
    prompt = build_system_instructions("COT-2025-0042")
    assert "`COT-2025-0042`" in prompt


def test_page_estimate() -> None:
    assert format_page_estimate(0) == "page count unknown"
    assert format_page_estimate(1) == "~1 page"
    assert format_page_estimate(12) == "~12 pages"


def test_extraction_prompt_has_all_sections() -> None:
    prompt = build_document_extraction_prompt("tdr.pdf", 5)
    assert '"tdr.pdf" (~5 pages)' in prompt
    for heading in ("General data", "Technical scope", "Contractual terms", "Ambiguities and open questions"):
        assert heading in prompt
