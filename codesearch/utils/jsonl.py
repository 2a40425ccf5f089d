"""JSONL writing helpers with durability guarantees."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import IO, Any, cast

logger = logging.getLogger(__name__)


def _normalize_record(record: Any) -> str:
    """Convert supported record types into a JSON string."""
    typed_payload: dict[str, Any]
    if isinstance(record, str):
        line = record.rstrip("\n")
        if not line:
            raise ValueError("Blank string provided to JSONL writer.")
        return line

    if hasattr(record, "model_dump"):
        payload = cast(Any, record).model_dump(mode="json")
        if not isinstance(payload, dict):
            raise TypeError("Pydantic model_dump did not return a mapping.")
        typed_payload = dict(payload)
    elif is_dataclass(record) and not isinstance(record, type):
        typed_payload = dict(asdict(record))
    elif isinstance(record, dict):
        typed_payload = dict(record)
    else:
        raise TypeError(
            "Unsupported record type for JSONL serialization: "
            f"{type(record)!r}. Provide dict, dataclass, or Pydantic model."
        )

    return json.dumps(typed_payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def atomic_write_jsonl(path: Path, records: Iterable[Any]) -> int:
    """Write ``records`` to ``path`` atomically as JSONL.

    The write is performed via a temporary file followed by an ``os.replace``
    once the contents are flushed and fsynced, ensuring durability even if the
    process crashes mid-write.

    Returns:
        Number of records written
    """
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: str | None = None
    written = 0

    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(destination.parent),
            prefix=destination.name,
            suffix=".tmp",
            text=True,
        )

        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            fd = None  # Ownership transferred to file object
            for record in records:
                handle.write(_normalize_record(record))
                handle.write("\n")
                written += 1
            handle.flush()
            os.fsync(handle.fileno())

        os.replace(tmp_path, destination)
        tmp_path = None
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass

    return written


def append_jsonl(handle: IO[str], record: Any, *, fsync: bool = True) -> None:
    """Append a single record to an open JSONL handle and flush it to disk."""
    handle.write(_normalize_record(record) + "\n")
    handle.flush()
    if fsync:
        os.fsync(handle.fileno())


def read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    """Yield JSON objects from ``path``, tolerating a torn final line.

    A line that fails to decode is skipped with a warning only when it is the
    last line of the file (an interrupted append). Corruption anywhere else
    raises ``ValueError``.
    """
    if not path.exists():
        return

    # Split as bytes: a torn append may end inside a multibyte character.
    segments = path.read_bytes().split(b"\n")

    last_index = len(segments) - 1
    for line_num, raw_line in enumerate(segments):
        line = raw_line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line.decode("utf-8"))
        except ValueError as exc:
            if line_num == last_index:
                logger.warning(
                    "Ignoring torn trailing record at line %d in %s", line_num + 1, path
                )
                return
            raise ValueError(f"Invalid record at line {line_num + 1} in {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Record at line {line_num + 1} in {path} is not an object")
        yield payload
