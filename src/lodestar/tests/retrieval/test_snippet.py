from lodestar.retrieval.snippet import extract_snippet


LINES = [f"line {i} filler text" for i in range(10)]


def test_best_line_is_centred_in_window():
    lines = list(LINES)
    lines[6] = "the tokenizer splits identifiers"
    result = extract_snippet("\n".join(lines), "tokenizer identifiers")

    assert result.snippet.split("\n") == lines[4:9]
    assert set(result.highlights) == {"tokenizer", "identifiers"}


def test_window_is_clamped_at_document_edges():
    lines = list(LINES)
    lines[0] = "parser entry point"
    result = extract_snippet("\n".join(lines), "parser", context_lines=1)

    assert result.snippet.split("\n") == lines[0:2]


def test_short_content_is_returned_whole():
    content = "alpha\nbeta\ngamma"
    result = extract_snippet(content, "beta")

    assert result.snippet == content
    assert result.highlights == ["beta"]


def test_no_match_returns_leading_lines():
    content = "\n".join(LINES)
    result = extract_snippet(content, "nothing matches here")

    assert result.snippet.split("\n") == LINES[:5]
    assert result.highlights == []


def test_short_terms_are_ignored_and_stopwords_rank_last():
    """Terms of two characters or fewer are dropped; stopwords are heavily damped."""
    content = "the parser reads a file\n" * 3
    result = extract_snippet(content, "an the parser of")

    assert result.highlights == ["parser", "the"]


def test_highlights_are_capped_at_five():
    words = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf"]
    content = " ".join(words)
    result = extract_snippet(content, " ".join(words))

    assert len(result.highlights) == 5
