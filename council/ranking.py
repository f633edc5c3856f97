"""Anonymous labels for peer ranking, and tolerant parsing of ranking text."""

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from council.models import RunRecord, RunStatus, Stage1Result, Stage2Result

logger = logging.getLogger(__name__)

LABEL_PREFIX = "Response"
RANKING_MARKER = "FINAL RANKING:"

_MARKER_PATTERN = re.compile(r"FINAL RANKING\s*:", re.IGNORECASE)
_LABEL_PATTERN = re.compile(rf"{LABEL_PREFIX} [A-Z]+\b")
_NUMBERED_LINE = re.compile(r"^\s*\d+\s*[.)]")


def label_letters(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB, ..."""
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


@dataclass(frozen=True)
class LabelMap:
    """Immutable label -> agent mapping, in label order."""

    pairs: tuple[tuple[str, str], ...]

    def agent_for(self, label: str) -> str | None:
        for lbl, agent in self.pairs:
            if lbl == label:
                return agent
        return None

    def label_for(self, agent: str) -> str | None:
        for lbl, name in self.pairs:
            if name.lower() == agent.lower():
                return lbl
        return None

    @property
    def labels(self) -> list[str]:
        return [lbl for lbl, _ in self.pairs]

    @property
    def agents(self) -> list[str]:
        return [agent for _, agent in self.pairs]

    def as_dict(self) -> dict[str, str]:
        return dict(self.pairs)

    @classmethod
    def from_dict(cls, mapping: dict[str, str]) -> "LabelMap":
        return cls(pairs=tuple(mapping.items()))

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.pairs)


def build_label_map(stage1: Sequence[Stage1Result]) -> LabelMap:
    """Label responses A, B, C... in the order the Stage 1 results are given."""
    return LabelMap(
        pairs=tuple((f"{LABEL_PREFIX} {label_letters(i)}", r.agent) for i, r in enumerate(stage1))
    )


def _dedupe(labels: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for label in labels:
        if label not in seen:
            seen.add(label)
            ordered.append(label)
    return ordered


def _first_label_per_line(lines: Iterable[str]) -> list[str]:
    found: list[str] = []
    for line in lines:
        match = _LABEL_PATTERN.search(line)
        if match:
            found.append(match.group(0))
    return found


def parse_ranking_from_text(text: str) -> list[str]:
    """Extract an ordered list of labels from free-form ranking text.

    Tried in order:
      1. numbered lines after the last ``FINAL RANKING:`` marker
      2. any lines after the marker that carry a label
      3. every label anywhere in the text, first-seen order

    Returns an empty list when nothing matches.
    """
    markers = list(_MARKER_PATTERN.finditer(text))
    if markers:
        lines = text[markers[-1].end():].splitlines()

        numbered = _first_label_per_line(ln for ln in lines if _NUMBERED_LINE.match(ln))
        if numbered:
            return _dedupe(numbered)

        unnumbered = _first_label_per_line(lines)
        if unnumbered:
            return _dedupe(unnumbered)

    return _dedupe(m.group(0) for m in _LABEL_PATTERN.finditer(text))


def extract_stage2(records: Sequence[RunRecord]) -> list[Stage2Result]:
    """Parse the ranking of every evaluator that completed."""
    results: list[Stage2Result] = []
    for rec in records:
        if rec.status is not RunStatus.COMPLETED:
            continue
        raw = rec.output.strip()
        parsed = parse_ranking_from_text(raw)
        if not parsed:
            logger.warning("No ranking could be parsed from evaluator %s", rec.spec.name)
        results.append(Stage2Result(agent=rec.spec.name, ranking_raw=raw, parsed_ranking=parsed))
    return results
