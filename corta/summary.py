"""
Incremental page summaries.

Notes grow at the top: new thoughts are written above older ones. So when
a page changes, the old text is normally a suffix of the new text and the
difference is a prefix. Only that prefix is sent to the model, together
with the current summary, instead of re-summarizing the whole page.

Edits anywhere else (rewrites in the middle, deletions) are not treated
as changes: the existing summary is kept as it is.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .document import extract_plain_text, is_document, paragraph_doc
from .errors import GenerationError
from .providers.base import PageStore, TextGenerator
from .types import ContentDiff

logger = logging.getLogger(__name__)

SUMMARY_MAX_TOKENS = 500
SUMMARY_TEMPERATURE = 0.3

SUMMARY_UPDATE_SYSTEM_PROMPT = (
    "You maintain short summaries of notes. "
    "Reply with a TipTap JSON document only."
)

_EMPTY_DOC = {"type": "doc", "content": []}

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n(.*?)\n?```$", re.DOTALL)


@dataclass
class SummaryUpdateResult:
    """
    Outcome of a summary update.

    ``summary`` is the summary to show: the new one if ``updated``,
    otherwise the one passed in.
    """
    success: bool
    summary: Optional[dict] = None
    updated: bool = False
    error: Optional[str] = None
    diff: Optional[ContentDiff] = None


def find_content_diff(old_text: str, new_text: str) -> ContentDiff:
    """
    Diff two plain-text snapshots, assuming text is only added at the start.

    >>> find_content_diff("B\\nA", "C\\nB\\nA").added_text
    'C\\n'
    """
    if old_text == new_text:
        return ContentDiff(has_changes=False, old_text=old_text, new_text=new_text)

    if new_text.endswith(old_text):
        added = new_text[:len(new_text) - len(old_text)]
        return ContentDiff(
            has_changes=True, added_text=added, old_text=old_text, new_text=new_text,
        )

    # Not a prepend: leave the summary alone
    return ContentDiff(has_changes=False, old_text=old_text, new_text=new_text)


def find_document_diff(old_content: Optional[dict], new_content: Optional[dict]) -> ContentDiff:
    """find_content_diff() over the plain text of two documents."""
    return find_content_diff(extract_plain_text(old_content), extract_plain_text(new_content))


def build_summary_update_prompt(diff: ContentDiff, current_summary: Optional[dict]) -> str:
    """Build the prompt asking the model to fold new text into the summary."""
    if current_summary:
        summary_json = json.dumps(current_summary, indent=2, ensure_ascii=False)
    else:
        summary_json = "No existing summary"

    return f"""You are updating a page summary based on content changes.

CURRENT SUMMARY (TipTap JSON):
{summary_json}

CONTENT CHANGES:
Added at start: {json.dumps(diff.added_text, ensure_ascii=False)}

INSTRUCTIONS:
1. Update the summary to reflect the new content that was added
2. Keep it concise and focused on the most important points
3. Use the same TipTap JSON structure as the current summary
4. Use bullet points for key insights
5. Bold important terms using TipTap marks
6. Return ONLY the updated TipTap JSON, no other text

Generate the updated summary as TipTap JSON:"""


def parse_summary_response(text: str) -> dict:
    """
    Parse a model reply as a document.

    Accepts bare JSON or JSON in a code fence. Anything that isn't a
    document becomes a single paragraph holding the reply text.
    """
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    candidate = match.group(1) if match else stripped
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        parsed = None

    if is_document(parsed) and parsed.get("type") == "doc":
        return parsed
    logger.warning("Summary reply is not a TipTap document, wrapping it as a paragraph")
    return paragraph_doc(stripped)


async def update_page_summary(
    old_content: Optional[dict],
    new_content: Optional[dict],
    current_summary: Optional[dict] = None,
    *,
    generator: TextGenerator,
    max_tokens: int = SUMMARY_MAX_TOKENS,
    temperature: float = SUMMARY_TEMPERATURE,
) -> SummaryUpdateResult:
    """
    Bring a summary up to date with text prepended since it was made.

    Args:
        old_content: Page content when the summary was last made
        new_content: Current page content
        current_summary: The summary to update, if any
        generator: Text generator used to write the new summary

    Returns:
        SummaryUpdateResult; generation failures give success=False and
        the current summary, never an exception
    """
    logger.debug(
        "Starting page summary update (old content: %s, current summary: %s)",
        old_content is not None, current_summary is not None,
    )
    diff = find_document_diff(old_content, new_content)
    if not diff.has_changes:
        logger.debug("No prepended content, keeping existing summary")
        return SummaryUpdateResult(success=True, summary=current_summary, diff=diff)

    prompt = build_summary_update_prompt(diff, current_summary)
    try:
        # Generators are blocking SDK clients
        text = await asyncio.to_thread(
            generator.generate,
            SUMMARY_UPDATE_SYSTEM_PROMPT,
            prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not text or not text.strip():
            raise GenerationError("No content returned from text generator")
    except Exception as e:
        logger.error("Error updating page summary: %s", e)
        return SummaryUpdateResult(
            success=False, summary=current_summary, error=str(e), diff=diff,
        )

    summary = parse_summary_response(text)
    logger.info("Page summary updated (%d new characters)", len(diff.added_text))
    return SummaryUpdateResult(success=True, summary=summary, updated=True, diff=diff)


async def refresh_stored_summary(
    store: PageStore,
    page_id: str,
    generator: TextGenerator,
) -> SummaryUpdateResult:
    """
    Update the summary stored on a page from its stored snapshot.

    A page that has never been summarized is summarized in full (its
    whole text counts as added). After a regeneration both the summary and
    the snapshot it was made from are written back. After an edit that
    isn't a prepend, the summary is kept and only the snapshot moves
    forward, so later prepends are again diffed against current text.
    """
    page = store.get_page(page_id)
    if page is None:
        return SummaryUpdateResult(success=False, error=f"Page not found: {page_id}")

    old_content = page.last_summary_content or _EMPTY_DOC
    result = await update_page_summary(
        old_content, page.content, page.page_summary, generator=generator,
    )
    if not result.success:
        return result

    diff = result.diff
    if result.updated or (diff is not None and diff.old_text != diff.new_text):
        store.update_summary(page_id, result.summary, page.content)
    return result
