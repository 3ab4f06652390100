"""Tests for tool-status and source metadata embedded in message content."""

from huddle.annotations import (
    SourceCitation,
    ToolCallEntry,
    clean_streaming_content,
    compose_content,
    embed_sources,
    embed_tool_calls,
    inline_citations,
    parse_sources,
    parse_tool_calls,
    render_message,
    strip_metadata,
)


def test_tool_calls_block_is_a_prefix():
    entry = ToolCallEntry(id="call_1", name="list_channels", arguments={}, success=True, result="{}")

    content = compose_content("Here you go", [entry], [])

    assert content.startswith("<!--TOOL_CALLS:")
    assert content.endswith("-->\n\nHere you go")


def test_parse_tool_calls_returns_entries_and_rest():
    entry = ToolCallEntry(id="call_1", name="send_message", arguments={"channel_name": "general"})
    content = embed_tool_calls([entry]) + "Done."

    entries, rest = parse_tool_calls(content)

    assert rest == "Done."
    assert len(entries) == 1
    assert entries[0].name == "send_message"
    assert entries[0].arguments == {"channel_name": "general"}
    assert not entries[0].finished


def test_malformed_tool_calls_payload_is_ignored():
    entries, rest = parse_tool_calls("<!--TOOL_CALLS:[not json-->\n\nStill readable")

    assert entries == []
    assert rest == "Still readable"


def test_content_without_markers_is_untouched():
    assert parse_tool_calls("plain") == ([], "plain")
    assert parse_sources("plain") == ([], "plain")


def test_sources_block_is_a_suffix():
    source = SourceCitation(url="https://example.com", title="Example")

    content = "Answer" + embed_sources([source])

    sources, rest = parse_sources(content)
    assert rest == "Answer"
    assert sources == [source]


def test_strip_metadata_removes_both_blocks():
    content = compose_content(
        "Body text",
        [ToolCallEntry(id="1", name="list_users")],
        [SourceCitation(url="https://example.com")],
    )

    assert strip_metadata(content) == "Body text"


def test_inline_citations_replaces_spans_from_the_end():
    text = "Python and Rust are both popular."
    sources = [
        SourceCitation(url="https://python.org", title="Python", start_index=0, end_index=6),
        SourceCitation(url="https://rust-lang.org", title="Rust", start_index=11, end_index=15),
    ]

    result = inline_citations(text, sources)

    assert result == "[Python](https://python.org) and [Rust](https://rust-lang.org) are both popular."


def test_inline_citations_skips_out_of_range_spans():
    sources = [SourceCitation(url="https://example.com", start_index=5, end_index=500)]

    assert inline_citations("short", sources) == "short"


def test_unpositioned_sources_are_not_inlined():
    sources = [SourceCitation(url="https://example.com", title="Example")]

    assert inline_citations("text", sources) == "text"


def test_citation_round_trip_through_stored_content():
    text = "The launch is on Friday."
    source = SourceCitation(url="https://news.example.com/launch", title="Launch news", start_index=4, end_index=10)
    content = compose_content(text, [ToolCallEntry(id="c", name="list_channels", success=True)], [source])

    rendered = render_message(content)

    assert rendered == "The [Launch news](https://news.example.com/launch) is on Friday."


def test_clean_streaming_hides_partial_link():
    assert clean_streaming_content("See [the docs](https://exa") == "See "
    assert clean_streaming_content("See [the do") == "See "


def test_clean_streaming_keeps_complete_link():
    text = "See [the docs](https://example.com) for details"

    assert clean_streaming_content(text) == text


def test_clean_streaming_removes_citation_markers():
    assert clean_streaming_content("Fact【4:0†source】 more") == "Fact more"
    assert clean_streaming_content("Fact【4:0") == "Fact"
