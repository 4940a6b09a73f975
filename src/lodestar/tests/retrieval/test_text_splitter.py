import pytest

from lodestar.retrieval.text_splitter import TextSplitter, split_text


def _reconstruct(text, chunks):
    """Rebuild the source from chunk ranges, dropping overlap-duplicated prefixes."""
    out = ""
    covered = 0
    for chunk in chunks:
        start, end = chunk.range
        assert start <= covered, "chunks must not leave gaps"
        out += text[covered:end] if end > covered else ""
        covered = max(covered, end)
    return out


def test_short_paragraphs_scenario():
    """Three short paragraphs with a 15-character limit split into several in-bounds chunks."""
    text = "First.\n\nSecond.\n\nThird."
    chunks = split_text(text, chunk_size=15, chunk_overlap=0)

    assert len(chunks) >= 2
    assert [c.index for c in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        start, end = chunk.range
        assert 0 <= start < end <= len(text)
        assert chunk.text == text[start:end]
    assert _reconstruct(text, chunks) == text


def test_empty_and_short_inputs():
    assert split_text("") == []

    chunks = split_text("tiny", chunk_size=10, chunk_overlap=2)
    assert len(chunks) == 1
    assert chunks[0].range == (0, 4)
    assert chunks[0].index == 0


@pytest.mark.parametrize(
    "chunk_size,chunk_overlap",
    [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 11)],
)
def test_invalid_sizes_raise(chunk_size, chunk_overlap):
    with pytest.raises(ValueError):
        split_text("some text", chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    with pytest.raises(ValueError):
        TextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)


def test_markdown_headings_are_preferred_boundaries():
    """Sections under separate headings end up in separate chunks, each starting at its heading."""
    section = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 3
    text = f"# Intro\n{section}\n## Usage\n{section}\n## API\n{section}"
    chunks = split_text(text, chunk_size=200, chunk_overlap=0)

    assert len(chunks) == 3
    assert chunks[1].text.startswith("\n## Usage")
    assert chunks[2].text.startswith("\n## API")
    assert "".join(c.text for c in chunks) == text


def test_overlap_round_trip_and_bounds():
    """With overlap, chunks stay within the size limit and still reconstruct the source."""
    words = [f"word{i}" for i in range(400)]
    text = " ".join(words)
    chunks = split_text(text, chunk_size=120, chunk_overlap=30)

    assert len(chunks) > 1
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.range[0] < prev.range[1], "consecutive chunks should overlap"
        assert cur.range[0] > prev.range[0]
    for chunk in chunks:
        start, end = chunk.range
        assert 0 <= start < end <= len(text)
        assert end - start <= 120
    assert _reconstruct(text, chunks) == text


def test_unbroken_text_falls_back_to_character_slices():
    text = "x" * 95
    chunks = split_text(text, chunk_size=40, chunk_overlap=0)

    assert [c.range for c in chunks] == [(0, 40), (40, 80), (80, 95)]


def test_text_splitter_callable_returns_chunks_with_char_ranges():
    splitter = TextSplitter(chunk_size=15, chunk_overlap=0)
    chunks = splitter("First.\n\nSecond.\n\nThird.", id="notes.md")

    assert len(chunks) >= 2
    assert all(c.char_range is not None for c in chunks)
    assert all(c.line_range is None and c.entities == [] for c in chunks)
