"""
Run Recorder

Optional, best-effort recording of per-stage snapshots for inspecting how a
run reached its result (which links were seen, what the oracle was asked,
what each unit produced).

Design Considerations:
- Recording never blocks or fails the pipeline; every error is logged and dropped
- File writes run in worker threads as fire-and-forget tasks
- Draining pending writes at the end of a run is bounded by a timeout
- Old run folders are pruned to keep the debug directory small
"""

import asyncio
import dataclasses
import json
import logging
import shutil
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG

logger = logging.getLogger(__name__)


class SnapshotEncoder(json.JSONEncoder):
    """JSON encoder for pipeline objects: dataclasses, pydantic models, enums, datetimes, sets."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        return super().default(obj)


def serialize_snapshot(snapshot: Any) -> str:
    """Serialize a snapshot to indented JSON."""
    return json.dumps(snapshot, cls=SnapshotEncoder, indent=2, ensure_ascii=False)


class RunRecorder(ABC):
    """
    Receiver of structured per-stage snapshots.

    record() must return immediately; implementations that do I/O schedule
    it in the background and finish it in drain().
    """

    @abstractmethod
    def record(self, run_id: str, stage: str, snapshot: Dict[str, Any]) -> None:
        """Accept one snapshot for a run."""
        pass

    def finalize(self, run_id: str, summary: Dict[str, Any]) -> None:
        """Accept the complete run data once the run has finished."""
        self.record(run_id, "complete-run-data", summary)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait, at most timeout seconds, for pending writes."""
        return None


class InMemoryRunRecorder(RunRecorder):
    """Keeps snapshots in memory; useful for tests and in-process inspection."""

    def __init__(self):
        self.snapshots: List[Tuple[str, str, Dict[str, Any]]] = []

    def record(self, run_id: str, stage: str, snapshot: Dict[str, Any]) -> None:
        self.snapshots.append((run_id, stage, deepcopy(snapshot)))

    def stages(self, run_id: Optional[str] = None) -> List[str]:
        """Stage names recorded, in order, optionally for one run."""
        return [stage for rid, stage, _ in self.snapshots if run_id is None or rid == run_id]

    def get(self, stage: str, run_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Most recent snapshot recorded for a stage."""
        for rid, recorded_stage, snapshot in reversed(self.snapshots):
            if recorded_stage == stage and (run_id is None or rid == run_id):
                return snapshot
        return None


class FileRunRecorder(RunRecorder):
    """
    Writes each snapshot to <base_dir>/<run_id>/<NN>-<stage>.json.

    The final call also writes a short SUMMARY.md. Only the newest max_runs
    run folders are kept.
    """

    def __init__(self, base_dir: str = "debug-analysis-runs", max_runs: int = 10,
                 drain_timeout: Optional[float] = None):
        self.base_dir = Path(base_dir)
        self.max_runs = max_runs
        self.drain_timeout = drain_timeout or ANALYZER_CONFIG["pipeline"]["recorder_drain_timeout"]
        self._step_counters: Dict[str, int] = {}
        self._pending: Set[asyncio.Task] = set()

    def record(self, run_id: str, stage: str, snapshot: Dict[str, Any]) -> None:
        step = self._step_counters.get(run_id, 0)
        self._step_counters[run_id] = step + 1
        path = self.base_dir / run_id / f"{step:02d}-{stage}.json"

        try:
            payload = serialize_snapshot(snapshot)
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not serialize {stage} snapshot for run {run_id}: {e}")
            return

        self._submit(path, payload)

    def finalize(self, run_id: str, summary: Dict[str, Any]) -> None:
        try:
            payload = serialize_snapshot(summary)
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not serialize final data for run {run_id}: {e}")
            return

        run_dir = self.base_dir / run_id
        self._submit(run_dir / "99-complete-run-data.json", payload)
        self._submit(run_dir / "SUMMARY.md", self._render_summary(run_id, summary))
        self._step_counters.pop(run_id, None)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._pending:
            return
        timeout = timeout or self.drain_timeout
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} run snapshot writes still pending after {timeout}s")
        await asyncio.to_thread(self._prune_old_runs)

    def _submit(self, path: Path, payload: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(path, payload)
            return

        task = loop.create_task(asyncio.to_thread(self._write, path, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
            logger.debug(f"Recorded {path}")
        except OSError as e:
            logger.warning(f"Failed to write run snapshot {path}: {e}")

    def _prune_old_runs(self) -> None:
        try:
            if not self.base_dir.exists():
                return
            runs = sorted((p for p in self.base_dir.iterdir() if p.is_dir()), key=lambda p: p.name, reverse=True)
            for old in runs[self.max_runs:]:
                shutil.rmtree(old, ignore_errors=True)
        except OSError as e:
            logger.warning(f"Failed to prune old debug runs: {e}")

    @staticmethod
    def _render_summary(run_id: str, summary: Dict[str, Any]) -> str:
        result = summary.get("result") or {}
        lines = [
            "# Email Analysis Run Summary",
            "",
            f"- **Run ID**: {run_id}",
            f"- **Email ID**: {summary.get('emailId', '')}",
            f"- **Subject**: {summary.get('emailSubject', '')}",
            f"- **Matched**: {result.get('matched', False)}",
            f"- **Overall confidence**: {result.get('overallConfidence', 0)}",
            f"- **Links found**: {len(result.get('allLinksFound', []))}",
            f"- **Pages retrieved**: {len(result.get('scrapedUrls', []))}",
            f"- **Skipped stages**: {', '.join(result.get('skippedStages', [])) or 'none'}",
        ]
        if result.get("error"):
            lines.append(f"- **Error**: {result['error']}")
        lines += ["", "## Sources", ""]
        for sourced in result.get("dataBySource", []):
            lines.append(f"- {sourced.get('source')} (confidence {sourced.get('confidence')})")
        return "\n".join(lines) + "\n"
