"""Source discovery and line-window chunking for the ingest command."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

from codesearch.app.ports.document import Document

logger = logging.getLogger(__name__)

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".java": "java",
    ".js": "javascript",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".php": "php",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".scala": "scala",
    ".sh": "shell",
    ".sql": "sql",
    ".swift": "swift",
    ".ts": "typescript",
    ".tsx": "typescript",
}

SKIP_DIRECTORIES = {".git", ".hg", ".svn", "node_modules", "target", "__pycache__", ".venv", "venv"}

MAX_FILE_BYTES = 1_000_000


def detect_language(path: Path) -> str | None:
    return LANGUAGE_BY_EXTENSION.get(path.suffix.lower())


def discover_source_files(root: Path) -> Iterator[Path]:
    """Yield source files under ``root`` in sorted order.

    A file root is yielded as-is when its extension is recognised.

    Raises:
        FileNotFoundError: If root path does not exist
    """
    if not root.exists():
        raise FileNotFoundError(f"Path not found: {root}")

    if root.is_file():
        if detect_language(root) is not None:
            yield root
        return

    for path in sorted(root.rglob("*")):
        if any(part in SKIP_DIRECTORIES for part in path.relative_to(root).parts[:-1]):
            continue
        if path.is_symlink() or not path.is_file():
            continue
        if detect_language(path) is None:
            continue
        yield path


def chunk_lines(
    text: str, *, window: int = 40, overlap: int = 10
) -> Iterator[tuple[int, int, str]]:
    """Split ``text`` into ``(start_line, end_line, chunk)`` windows (1-based, inclusive)."""
    if window < 1:
        raise ValueError("window must be >= 1")
    if not 0 <= overlap < window:
        raise ValueError("overlap must be within [0, window)")

    lines = text.splitlines()
    step = window - overlap
    start = 0
    while start < len(lines):
        end = min(start + window, len(lines))
        chunk = "\n".join(lines[start:end])
        if chunk.strip():
            yield start + 1, end, chunk
        if end == len(lines):
            break
        start += step


def iter_source_documents(
    root: Path,
    *,
    window: int = 40,
    overlap: int = 10,
    repo: str | None = None,
) -> Iterator[Document]:
    """Discover files under ``root`` and yield one document per line window.

    Document ids are ``<relative path>:<start>-<end>``.
    """
    root = Path(root)
    base = root if root.is_dir() else root.parent
    for path in discover_source_files(root):
        try:
            if path.stat().st_size > MAX_FILE_BYTES:
                logger.warning("Skipping %s: larger than %d bytes", path, MAX_FILE_BYTES)
                continue
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping %s: not valid UTF-8", path)
            continue

        relative = path.relative_to(base).as_posix()
        lang = detect_language(path)
        for start, end, chunk in chunk_lines(text, window=window, overlap=overlap):
            metadata: dict[str, object] = {
                "path": relative,
                "lang": lang,
                "start_line": start,
                "end_line": end,
            }
            if repo:
                metadata["repo"] = repo
            yield Document(id=f"{relative}:{start}-{end}", text=chunk, metadata=metadata)


def read_document_jsonl(path: Path) -> Iterator[Document]:
    """Read documents from a JSONL file of ``{"id", "text", "metadata"}`` objects."""
    with open(path, encoding="utf-8") as fh:
        for line_num, raw_line in enumerate(fh, start=1):
            line = raw_line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
                identifier, text = payload["id"], payload["text"]
                if not isinstance(identifier, str) or not isinstance(text, str):
                    raise TypeError("id and text must be strings")
                document = Document(
                    id=identifier,
                    text=text,
                    metadata=dict(payload.get("metadata") or {}),
                )
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Invalid document at line {line_num} in {path}: {exc}") from exc
            yield document
