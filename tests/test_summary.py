"""Tests for incremental summary updates."""

import json
import logging

import pytest

from corta.document import paragraph_doc
from corta.summary import (
    build_summary_update_prompt,
    find_content_diff,
    find_document_diff,
    parse_summary_response,
    refresh_stored_summary,
    update_page_summary,
)

from tests.conftest import ScriptedGenerator, make_page


def _doc(*paragraphs: str) -> dict:
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": p}]}
            for p in paragraphs
        ],
    }


SUMMARY = paragraph_doc("Old summary")
NEW_SUMMARY = paragraph_doc("New summary")


class TestContentDiff:
    """Prepend detection on plain text."""

    def test_prepended_line(self):
        diff = find_content_diff("B\nA", "C\nB\nA")
        assert diff.has_changes
        assert diff.added_text == "C\n"

    def test_identical_text(self):
        diff = find_content_diff("A", "A")
        assert not diff.has_changes
        assert diff.added_text == ""

    def test_middle_edit_is_not_a_change(self):
        diff = find_content_diff("A\nB", "A\nC")
        assert not diff.has_changes
        assert diff.added_text == ""

    def test_appended_text_is_not_a_change(self):
        assert not find_content_diff("A", "A\nB").has_changes

    def test_everything_is_added_to_empty_text(self):
        diff = find_content_diff("", "First note")
        assert diff.has_changes
        assert diff.added_text == "First note"

    def test_document_diff_uses_block_text(self):
        diff = find_document_diff(_doc("B", "A"), _doc("C", "B", "A"))
        assert diff.added_text == "C\n"

    def test_document_diff_with_missing_old_content(self):
        diff = find_document_diff(None, _doc("Only"))
        assert diff.has_changes
        assert diff.added_text == "Only"


class TestParseResponse:
    def test_bare_json(self):
        assert parse_summary_response(json.dumps(NEW_SUMMARY)) == NEW_SUMMARY

    def test_fenced_json(self):
        text = "```json\n" + json.dumps(NEW_SUMMARY) + "\n```"
        assert parse_summary_response(text) == NEW_SUMMARY

    def test_plain_text_is_wrapped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="corta.summary"):
            result = parse_summary_response("  Just some prose.  ")
        assert result == paragraph_doc("Just some prose.")
        assert "not a TipTap document" in caplog.text

    def test_json_that_is_not_a_document_is_wrapped(self):
        assert parse_summary_response("[1, 2]") == paragraph_doc("[1, 2]")

    def test_object_with_other_root_type_is_wrapped(self):
        text = '{"type": "error", "message": "rate limited"}'
        assert parse_summary_response(text) == paragraph_doc(text)


class TestPrompt:
    def test_includes_summary_and_escaped_delta(self):
        prompt = build_summary_update_prompt(find_content_diff("A", 'say "hi"\nA'), SUMMARY)
        assert "Old summary" in prompt
        assert 'Added at start: "say \\"hi\\"\\n"' in prompt

    def test_without_summary(self):
        prompt = build_summary_update_prompt(find_content_diff("", "x"), None)
        assert "No existing summary" in prompt


class TestUpdatePageSummary:
    """Generation calls and failure handling."""

    @pytest.mark.asyncio
    async def test_no_change_makes_no_call(self):
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await update_page_summary(_doc("A"), _doc("A"), SUMMARY, generator=generator)

        assert result.success
        assert not result.updated
        assert result.summary == SUMMARY
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_middle_edit_keeps_summary(self):
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await update_page_summary(_doc("A", "B"), _doc("A", "C"), SUMMARY, generator=generator)

        assert result.summary == SUMMARY
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_prepend_regenerates_from_delta_only(self):
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await update_page_summary(
            _doc("B", "A"), _doc("C", "B", "A"), SUMMARY, generator=generator,
        )

        assert result.success and result.updated
        assert result.summary == NEW_SUMMARY
        (system, prompt), = generator.calls
        assert 'Added at start: "C\\n"' in prompt
        assert "TipTap" in system

    @pytest.mark.asyncio
    async def test_unparseable_reply_becomes_paragraph(self):
        generator = ScriptedGenerator("The note now covers C.")

        result = await update_page_summary(_doc("A"), _doc("C", "A"), SUMMARY, generator=generator)

        assert result.success
        assert result.summary == paragraph_doc("The note now covers C.")

    @pytest.mark.asyncio
    async def test_generator_error_keeps_summary(self, caplog):
        generator = ScriptedGenerator(RuntimeError("rate limited"))

        with caplog.at_level(logging.ERROR, logger="corta.summary"):
            result = await update_page_summary(_doc("A"), _doc("C", "A"), SUMMARY, generator=generator)

        assert not result.success
        assert result.summary == SUMMARY
        assert result.error == "rate limited"
        assert "Error updating page summary" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_reply_is_a_failure(self):
        generator = ScriptedGenerator(None)

        result = await update_page_summary(_doc("A"), _doc("C", "A"), SUMMARY, generator=generator)

        assert not result.success
        assert result.summary == SUMMARY
        assert "No content" in result.error


class TestStoredSummary:
    """refresh_stored_summary against the page store."""

    @pytest.mark.asyncio
    async def test_first_summary_covers_whole_page(self, store):
        page = make_page(store, "Note", "Everything so far")
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await refresh_stored_summary(store, page.uuid, generator)

        assert result.updated
        stored = store.get_page(page.uuid)
        assert stored.page_summary == NEW_SUMMARY
        assert stored.last_summary_content == stored.content
        assert 'Added at start: "Everything so far"' in generator.calls[0][1]

    @pytest.mark.asyncio
    async def test_unchanged_page_makes_no_call(self, store):
        page = make_page(store, "Note", "Text")
        await refresh_stored_summary(store, page.uuid, ScriptedGenerator(json.dumps(SUMMARY)))
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await refresh_stored_summary(store, page.uuid, generator)

        assert not result.updated
        assert generator.calls == []
        assert store.get_page(page.uuid).page_summary == SUMMARY

    @pytest.mark.asyncio
    async def test_non_prefix_edit_advances_snapshot(self, store):
        page = make_page(store, "Note", "A")
        await refresh_stored_summary(store, page.uuid, ScriptedGenerator(json.dumps(SUMMARY)))

        edited = store.get_page(page.uuid)
        edited.content = paragraph_doc("B")
        store.save_page(edited)
        generator = ScriptedGenerator(json.dumps(NEW_SUMMARY))

        result = await refresh_stored_summary(store, page.uuid, generator)

        assert not result.updated
        assert generator.calls == []
        stored = store.get_page(page.uuid)
        assert stored.page_summary == SUMMARY
        assert stored.last_summary_content == paragraph_doc("B")

        # A later prepend is diffed against the edited text
        stored.content = _doc("C", "B")
        store.save_page(stored)
        await refresh_stored_summary(store, page.uuid, generator)
        assert 'Added at start: "C\\n"' in generator.calls[0][1]

    @pytest.mark.asyncio
    async def test_failed_generation_leaves_store_alone(self, store):
        page = make_page(store, "Note", "Text")

        result = await refresh_stored_summary(store, page.uuid, ScriptedGenerator(RuntimeError("down")))

        assert not result.success
        stored = store.get_page(page.uuid)
        assert stored.page_summary is None
        assert stored.last_summary_content is None

    @pytest.mark.asyncio
    async def test_missing_page(self, store):
        result = await refresh_stored_summary(store, "missing", ScriptedGenerator())
        assert not result.success
        assert "not found" in result.error
