import datetime

import pytest

from perseus.errors import ContentParseError
from perseus.extractors import (
    extract_frontmatter,
    extract_toc,
    parse_frontmatter,
    split_frontmatter,
)


def test_frontmatter_round_trip():
    metadata, body = extract_frontmatter(
        "---\ntitle: Test\npublished: true\norder: 5\n---\n# Hello\n"
    )
    assert metadata == {"title": "Test", "published": True, "order": 5}
    assert metadata["published"] is True
    assert type(metadata["order"]) is int
    assert body == "# Hello\n"


def test_metadata_keeps_source_order():
    metadata, _ = extract_frontmatter("---\nz: 1\na: 2\nm: 3\n---\n")
    assert list(metadata) == ["z", "a", "m"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("'5'", "5"),
        ('"true"', "true"),
        ("true", True),
        ("false", False),
        ("-2", -2),
        ("3.5", 3.5),
        ("hello world", "hello world"),
        ("'2024-01-02'", "2024-01-02"),
    ],
)
def test_scalar_values_are_typed(raw, expected):
    value = parse_frontmatter(f"value: {raw}")["value"]
    assert value == expected
    assert type(value) is type(expected)


def test_yaml_structures_are_parsed():
    metadata, body = extract_frontmatter(
        "---\n"
        "title: Post\n"
        "tags: [a, b]\n"
        "description: >\n"
        "  long\n"
        "  text\n"
        "date: 2024-01-02\n"
        "---\n"
        "Body\n"
    )
    assert metadata == {
        "title": "Post",
        "tags": ["a", "b"],
        "date": datetime.date(2024, 1, 2),
        "description": "long text\n",
    }
    assert body == "Body\n"


def test_timestamps_outside_date_key_stay_text():
    metadata = parse_frontmatter("updated: 2024-01-02\ndate: 2024-03-04")
    assert metadata["updated"] == "2024-01-02"
    assert metadata["date"] == datetime.date(2024, 3, 4)


def test_split_without_block_returns_text_unchanged():
    assert split_frontmatter("# Title\n---\n") == (None, "# Title\n---\n")


def test_split_empty_block():
    assert split_frontmatter("---\n---\nbody") == ("", "body")
    assert extract_frontmatter("---\n---\nbody") == ({}, "body")


def test_split_stops_at_first_closing_line():
    block, body = split_frontmatter("---\na: 1\n---\ntext\n---\nmore\n")
    assert block == "a: 1"
    assert body == "text\n---\nmore\n"


def test_parse_skips_blank_and_comment_lines():
    assert parse_frontmatter("# note\n\ntitle: Hi\n  \nurl: http://example.com\n") == {
        "title": "Hi",
        "url": "http://example.com",
    }


def test_parse_reports_yaml_error_line():
    with pytest.raises(ContentParseError) as excinfo:
        parse_frontmatter("title: ok\ntags: [a, b\n")
    assert excinfo.value.line is not None
    assert "Invalid metadata" in str(excinfo.value)


def test_parse_rejects_non_mapping():
    with pytest.raises(ContentParseError, match="mapping"):
        parse_frontmatter("- a\n- b\n")


def test_parse_rejects_empty_key():
    with pytest.raises(ContentParseError):
        parse_frontmatter(": value")


def test_extract_frontmatter_tolerates_invalid_block():
    assert extract_frontmatter("---\nnot valid\n---\nBody") == ({}, "Body")
    assert extract_frontmatter("---\ntitle: [unclosed\n---\nBody") == ({}, "Body")


def test_extract_toc_filters_levels_and_strips_markup():
    markup = (
        '<h1 id="top">Top</h1>'
        '<h2 id="intro">Intro <code>x</code></h2>'
        '<h3 id="c-d">C &amp; D</h3>'
        '<h5 id="deep">Deep</h5>'
        "<h2>No id</h2>"
    )
    items = extract_toc(markup)
    assert [(i.level, i.id, i.text) for i in items] == [
        (2, "intro", "Intro x"),
        (3, "c-d", "C & D"),
    ]


def test_extract_toc_custom_range():
    markup = '<h1 id="a">A</h1><h2 id="b">B</h2><h6 id="f">F</h6>'
    assert [i.id for i in extract_toc(markup, 1, 6)] == ["a", "b", "f"]
    assert [i.id for i in extract_toc(markup, 6, 6)] == ["f"]
