"""JSON checkpoints written at stage boundaries, so a rerun can skip finished stages."""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from council.models import AggregateRank, Stage1Result, Stage2Result, Stage3Result
from council.ranking import LabelMap

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
DEFAULT_CHECKPOINT_NAME = "council-checkpoint"
CHECKPOINT_STAGES = ("stage1", "stage2", "complete")


@dataclass
class Checkpoint:
    question: str
    completed_stage: str                       # one of CHECKPOINT_STAGES
    timestamp: str
    stage1: list[Stage1Result]
    stage2: list[Stage2Result] | None = None
    label_to_agent: dict[str, str] | None = None
    aggregate: list[AggregateRank] | None = None
    stage3: Stage3Result | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "version": CHECKPOINT_VERSION,
            "timestamp": self.timestamp,
            "question": self.question,
            "completedStage": self.completed_stage,
            "stage1": [asdict(r) for r in self.stage1],
        }
        if self.stage2 is not None:
            d["stage2"] = [asdict(r) for r in self.stage2]
        if self.label_to_agent is not None:
            d["labelToAgent"] = self.label_to_agent
        if self.aggregate is not None:
            d["aggregate"] = [asdict(a) for a in self.aggregate]
        if self.stage3 is not None:
            d["stage3"] = asdict(self.stage3)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Checkpoint":
        if d.get("version") != CHECKPOINT_VERSION:
            raise ValueError(f"Unsupported checkpoint version: {d.get('version')}")
        stage = d.get("completedStage")
        if stage not in CHECKPOINT_STAGES:
            raise ValueError(f"Unknown checkpoint stage: {stage}")
        stage2 = d.get("stage2")
        aggregate = d.get("aggregate")
        stage3 = d.get("stage3")
        return cls(
            question=d["question"],
            completed_stage=stage,
            timestamp=d.get("timestamp", ""),
            stage1=[Stage1Result(**r) for r in d.get("stage1", [])],
            stage2=[Stage2Result(**r) for r in stage2] if stage2 is not None else None,
            label_to_agent=d.get("labelToAgent"),
            aggregate=[AggregateRank(**a) for a in aggregate] if aggregate is not None else None,
            stage3=Stage3Result(**stage3) if stage3 is not None else None,
        )


def checkpoint_path(checkpoint_dir: Path, name: str = DEFAULT_CHECKPOINT_NAME) -> Path:
    return checkpoint_dir / f"{name}.json"


def save_checkpoint(path: Path, checkpoint: Checkpoint) -> None:
    """Atomic write: temp file in the same directory, fsync, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(checkpoint.to_dict(), f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    logger.debug("Checkpoint (%s) saved to %s", checkpoint.completed_stage, path)


def load_checkpoint(path: Path) -> Checkpoint | None:
    """Return the checkpoint at ``path``, or None if missing or unreadable."""
    if not path.exists():
        return None
    try:
        return Checkpoint.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Ignoring invalid checkpoint %s: %s", path, exc)
        return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckpointWriter:
    """Stage-boundary callbacks that persist pipeline progress to one file."""

    def __init__(self, path: Path, question: str) -> None:
        self.path = path
        self._checkpoint = Checkpoint(question=question, completed_stage="stage1", timestamp="", stage1=[])

    def on_stage1_complete(self, stage1: list[Stage1Result]) -> None:
        self._checkpoint.stage1 = list(stage1)
        self._save("stage1")

    def on_stage2_complete(
        self,
        stage2: list[Stage2Result],
        aggregate: list[AggregateRank],
        label_map: LabelMap,
    ) -> None:
        self._checkpoint.stage2 = list(stage2)
        self._checkpoint.aggregate = list(aggregate)
        self._checkpoint.label_to_agent = label_map.as_dict()
        self._save("stage2")

    def on_stage3_complete(self, stage3: Stage3Result) -> None:
        self._checkpoint.stage3 = stage3
        self._save("complete")

    def _save(self, stage: str) -> None:
        self._checkpoint.completed_stage = stage
        self._checkpoint.timestamp = _utc_now_iso()
        save_checkpoint(self.path, self._checkpoint)
