"""
Tests for prompt assembly.
"""

from context.chunks import ContextChunk
from context.context_builder import (
    CHUNK_SEPARATOR,
    DEFAULT_SYSTEM_PREAMBLE,
    assemble_prompt,
    build_user_prompt,
    format_chunk,
    format_chunk_header,
    format_context_chunks,
    resolve_system_text,
)


class TestChunkFormatting:
    def test_full_header(self):
        chunk = ContextChunk(id="c1", text="t", source="kb", uri="gs://b/f.pdf", score=0.82)
        assert format_chunk_header(chunk, 0) == "[c1] source=kb uri=gs://b/f.pdf score=0.82"

    def test_header_omits_missing_fields(self):
        assert format_chunk_header(ContextChunk(id="c2", text="body"), 0) == "[c2]"

    def test_zero_score_is_shown(self):
        assert format_chunk_header(ContextChunk(id="c3", score=0.0), 0) == "[c3] score=0.0"

    def test_body_follows_header(self):
        assert format_chunk(ContextChunk(id="c2", text="body"), 0) == "[c2]\nbody"

    def test_metadata_is_compact_sorted_json(self):
        chunk = ContextChunk(id="c1", text="t", metadata={"page": 3, "author": "hr"})
        assert format_chunk(chunk, 0) == '[c1]\nt\n(meta: {"author":"hr","page":3})'

    def test_chunks_joined_with_separator(self):
        chunks = [ContextChunk(id="a", text="one"), ContextChunk(id="b", text="two")]
        assert format_context_chunks(chunks) == f"[a]\none{CHUNK_SEPARATOR}[b]\ntwo"
        assert CHUNK_SEPARATOR == "\n\n---\n\n"

    def test_empty_selection_renders_empty_context(self):
        assert format_context_chunks([]) == ""

    def test_rendering_is_deterministic(self):
        chunks = [
            ContextChunk(id=f"c{i}", text=f"text {i}", source="kb", score=i / 10, metadata={"b": i, "a": 1})
            for i in range(5)
        ]
        assert format_context_chunks(chunks) == format_context_chunks(list(chunks))

    def test_chunk_ids_are_visible(self):
        chunks = [ContextChunk(id=f"doc-{i}", text="x") for i in range(3)]
        blob = format_context_chunks(chunks)
        assert all(f"[doc-{i}]" in blob for i in range(3))


class TestPrompt:
    def test_user_prompt_layout(self):
        assert build_user_prompt("Why?", "[a]\nbecause") == "Question:\nWhy?\n\nContext:\n[a]\nbecause"

    def test_system_text_defaults(self):
        assert resolve_system_text(None) == DEFAULT_SYSTEM_PREAMBLE
        assert resolve_system_text("   ") == DEFAULT_SYSTEM_PREAMBLE
        assert resolve_system_text(" Be terse. ") == "Be terse."

    def test_assemble_prompt(self):
        chunks = [ContextChunk(id="a", text="one", score=0.5)]
        prompt = assemble_prompt("Q?", chunks)

        assert prompt.system_instruction == DEFAULT_SYSTEM_PREAMBLE
        assert prompt.context == "[a] score=0.5\none"
        assert prompt.user_prompt == "Question:\nQ?\n\nContext:\n[a] score=0.5\none"
        assert prompt.chunk_ids == ["a"]

    def test_assemble_prompt_custom_preamble_and_empty_selection(self):
        prompt = assemble_prompt("Q?", [], system_preamble="sys")
        assert prompt.context == ""
        assert prompt.user_prompt == "Question:\nQ?\n\nContext:\n"
        assert prompt.system_instruction == "sys"
        assert prompt.chunk_ids == []
