"""Delimited section format used by the chairman passes.

A section looks like::

    ===SECTION: executive_summary===
    ...content...
    ===END: executive_summary===

A section whose end marker is missing (the output was cut off) is still
returned, flagged ``complete=False``.
"""

import re

from council.models import ParsedSection

_START = re.compile(r"^[ \t]*===\s*SECTION\s*:\s*([A-Za-z0-9_\-]+)\s*===[ \t]*$", re.MULTILINE)
_END_TEMPLATE = r"^[ \t]*===\s*END\s*:\s*{name}\s*===[ \t]*$"


def section_start(name: str) -> str:
    return f"===SECTION: {name}==="


def section_end(name: str) -> str:
    return f"===END: {name}==="


def format_section(name: str, content: str) -> str:
    return f"{section_start(name)}\n{content.strip()}\n{section_end(name)}"


def describe_sections(names: list[str]) -> str:
    """Instruction block telling an agent which delimited sections to emit."""
    lines = ["Wrap every section in delimiters exactly like this:", ""]
    for name in names:
        lines.append(section_start(name))
        lines.append(f"<{name} content>")
        lines.append(section_end(name))
        lines.append("")
    lines.append("Emit the sections in this order and always close each one.")
    return "\n".join(lines)


def parse_sections(text: str) -> list[ParsedSection]:
    starts = list(_START.finditer(text))
    sections: list[ParsedSection] = []
    for i, start in enumerate(starts):
        name = start.group(1)
        body_end = starts[i + 1].start() if i + 1 < len(starts) else len(text)
        body = text[start.end():body_end]
        end = re.search(_END_TEMPLATE.format(name=re.escape(name)), body, re.MULTILINE)
        if end:
            sections.append(ParsedSection(name=name, content=body[:end.start()].strip(), complete=True))
        else:
            sections.append(ParsedSection(name=name, content=body.strip(), complete=False))
    return sections


def sections_by_name(sections: list[ParsedSection]) -> dict[str, ParsedSection]:
    """Later duplicates win, unless they are truncated and an earlier copy is complete."""
    by_name: dict[str, ParsedSection] = {}
    for section in sections:
        existing = by_name.get(section.name)
        if existing is not None and existing.complete and not section.complete:
            continue
        by_name[section.name] = section
    return by_name
