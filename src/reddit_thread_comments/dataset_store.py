import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import PUSH_BATCH_SIZE
from .models import FlatComment


COMMENT_COLUMNS: List[str] = [
    "id",
    "author",
    "body",
    "score",
    "created_utc",
    "parent_id",
    "permalink",
]


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


class CsvAppendWriter:
    def __init__(self, path: Path, fieldnames: List[str]):
        self.path = path
        self.fieldnames = fieldnames
        ensure_dir(path.parent)

        file_exists = path.exists() and path.stat().st_size > 0
        self._fh = path.open("a", newline="", encoding="utf-8-sig")
        self._writer = csv.DictWriter(
            self._fh,
            fieldnames=self.fieldnames,
            lineterminator="\n",
            quoting=csv.QUOTE_MINIMAL,
        )
        if not file_exists:
            self._writer.writeheader()
            self._fh.flush()

    def append_rows(self, rows: Iterable[Dict]):
        for row in rows:
            filtered = {k: _csv_value(row.get(k)) for k in self.fieldnames}
            self._writer.writerow(filtered)
        self._fh.flush()

    def close(self):
        self._fh.close()


class DatasetStore:
    """
    Append-only comment dataset: comments.jsonl (exact values) and
    comments.csv (one record per line).

    Records are buffered and written in batches of `batch_size`; call
    flush() (or close()) to write whatever is still buffered. With
    fresh=True, files left by an earlier run are removed first.
    """

    def __init__(
        self,
        output_dir: Path,
        *,
        batch_size: int = PUSH_BATCH_SIZE,
        fresh: bool = False,
        log_callback=None,
    ):
        self.output_dir = Path(output_dir)
        self.batch_size = max(1, int(batch_size))
        self.jsonl_path = self.output_dir / "comments.jsonl"
        self.csv_path = self.output_dir / "comments.csv"
        self.meta_path = self.output_dir / "run_meta.json"
        self.saved = 0
        self._log = log_callback or (lambda msg, lvl="info": None)
        self._buffer: List[Dict[str, Any]] = []
        self._csv_writer: Optional[CsvAppendWriter] = None
        ensure_dir(self.output_dir)
        if fresh:
            for p in (self.jsonl_path, self.csv_path, self.meta_path):
                p.unlink(missing_ok=True)

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def push(self, comment: FlatComment) -> None:
        self._buffer.append(comment.to_dict())
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def push_many(self, comments: Iterable[FlatComment]) -> None:
        for c in comments:
            self.push(c)

    def flush(self) -> None:
        if not self._buffer:
            return
        rows, self._buffer = self._buffer, []
        with self.jsonl_path.open("a", encoding="utf-8") as f:
            for row in rows:
                f.write(json.dumps(row, ensure_ascii=False) + "\n")
        if self._csv_writer is None:
            self._csv_writer = CsvAppendWriter(self.csv_path, COMMENT_COLUMNS)
        self._csv_writer.append_rows(rows)
        self.saved += len(rows)
        self._log(f"pushed batch of {len(rows)} comments (total saved: {self.saved})")

    def close(self) -> None:
        self.flush()
        if self._csv_writer is not None:
            self._csv_writer.close()
            self._csv_writer = None

    def iter_records(self):
        if not self.jsonl_path.exists():
            return
        with self.jsonl_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def write_run_meta(self, payload: Dict[str, Any]) -> None:
        data = dict(payload)
        data.setdefault("written_at_iso", utc_now_iso())
        self.meta_path.write_text(
            json.dumps(data, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )


def _csv_value(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, str):
        return _sanitize_csv_text(v)
    return v


def _sanitize_csv_text(s: str) -> str:
    """
    Make CSV "one record per line" friendly:
    - Convert real newlines to literal "\\n"
    - Strip NUL bytes
    """
    if not s:
        return ""
    s = s.replace("\x00", "")
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    return s.replace("\n", "\\n")
