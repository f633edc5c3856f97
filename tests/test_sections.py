"""Tests for council/sections.py."""

from council.sections import describe_sections, format_section, parse_sections, sections_by_name


def test_parse_complete_sections():
    text = """Preamble the parser ignores.
===SECTION: executive_summary===
Short answer.
===END: executive_summary===
===SECTION: conflicts===
None.
===END: conflicts===
"""
    sections = parse_sections(text)
    assert [(s.name, s.content, s.complete) for s in sections] == [
        ("executive_summary", "Short answer.", True),
        ("conflicts", "None.", True),
    ]


def test_parse_truncated_last_section():
    text = "===SECTION: a===\nfull\n===END: a===\n===SECTION: b===\ncut off mid-sent"
    sections = parse_sections(text)
    assert sections[1].name == "b"
    assert sections[1].content == "cut off mid-sent"
    assert sections[1].complete is False


def test_parse_missing_end_before_next_section():
    text = "===SECTION: a===\nno end marker\n===SECTION: b===\nbody\n===END: b==="
    a, b = parse_sections(text)
    assert (a.content, a.complete) == ("no end marker", False)
    assert (b.content, b.complete) == ("body", True)


def test_parse_tolerates_spacing_in_delimiters():
    text = "  === SECTION : notes ===\nx\n=== END : notes ===  "
    [section] = parse_sections(text)
    assert (section.name, section.content, section.complete) == ("notes", "x", True)


def test_end_marker_must_match_name():
    text = "===SECTION: a===\nbody\n===END: b==="
    [section] = parse_sections(text)
    assert section.complete is False


def test_parse_no_sections():
    assert parse_sections("just prose") == []


def test_format_section_round_trip():
    text = format_section("revised_draft", "  The draft.  ")
    [section] = parse_sections(text)
    assert (section.name, section.content, section.complete) == ("revised_draft", "The draft.", True)


def test_sections_by_name_prefers_complete_copy():
    text = (
        "===SECTION: a===\nfirst\n===END: a===\n"
        "===SECTION: a===\nsecond, truncated"
    )
    assert sections_by_name(parse_sections(text))["a"].content == "first"


def test_sections_by_name_later_complete_copy_wins():
    text = "===SECTION: a===\nfirst\n===END: a===\n===SECTION: a===\nsecond\n===END: a==="
    assert sections_by_name(parse_sections(text))["a"].content == "second"


def test_describe_sections_lists_every_delimiter():
    block = describe_sections(["x", "y"])
    for marker in ("===SECTION: x===", "===END: x===", "===SECTION: y===", "===END: y==="):
        assert marker in block
