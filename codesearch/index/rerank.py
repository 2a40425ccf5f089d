"""Result diversification for semantic hits.

Two passes run over an over-fetched candidate list:

1. ``filter_overlapping_snippets`` drops hits whose line range overlaps an
   earlier hit from the same file.
2. ``deduplicate_with_mmr`` picks ``k`` hits by maximal marginal relevance,
   with small bonuses for languages and paths not yet represented.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from codesearch.app.ports.similarity_index import SearchHit

logger = logging.getLogger(__name__)

DEFAULT_LAMBDA = 0.5
LANGUAGE_DECAY = 0.5
PATH_DECAY = 0.75


def _line(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def filter_overlapping_snippets(hits: Sequence[SearchHit]) -> list[SearchHit]:
    """Drop hits whose line range overlaps a preceding hit in the same file.

    Hits are walked in ``(path, start_line)`` order; a hit is dropped when the
    last kept hit for that path ends at or after its start line. Hits without
    a path or line range are kept. The survivors are returned best first.
    """
    spans: list[tuple[str, int, int, SearchHit]] = []
    passthrough: list[SearchHit] = []
    for hit in hits:
        path = hit.metadata.get("path")
        start = _line(hit.metadata.get("start_line"))
        end = _line(hit.metadata.get("end_line"))
        if not isinstance(path, str) or start is None or end is None:
            passthrough.append(hit)
            continue
        spans.append((path, start, end, hit))

    spans.sort(key=lambda item: (item[0], item[1], item[3].identifier))

    kept: list[SearchHit] = list(passthrough)
    previous: tuple[str, int] | None = None
    for path, start, end, hit in spans:
        if previous is not None and previous[0] == path and previous[1] >= start:
            logger.debug(
                "Filtering overlapping snippet %s (%s:%d-%d)", hit.identifier, path, start, end
            )
            continue
        kept.append(hit)
        previous = (path, end)

    kept.sort(key=lambda hit: (-hit.score, hit.identifier))
    return kept


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b)) / denom


def deduplicate_with_mmr(
    query: np.ndarray,
    vectors: Sequence[np.ndarray],
    languages: Sequence[str],
    paths: Sequence[str],
    *,
    lambda_: float = DEFAULT_LAMBDA,
    k: int,
) -> list[int]:
    """Return the indices of ``vectors`` to keep, in selection order.

    Each round picks the candidate maximising::

        lambda * cos(query, v) - (1 - lambda) * max cos(v, selected)
            + 0.5 ** times_language_selected
            + 0.75 ** times_path_selected

    When there are no more than ``k`` candidates all of them are kept.
    """
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError("lambda_ must be within [0, 1]")
    if not (len(vectors) == len(languages) == len(paths)):
        raise ValueError("vectors, languages and paths must have the same length")
    if len(vectors) <= k:
        return list(range(len(vectors)))

    q = np.asarray(query, dtype=np.float64)
    candidates = [np.asarray(vector, dtype=np.float64) for vector in vectors]
    relevance = [_cosine(q, vector) for vector in candidates]
    # Highest similarity of each candidate to anything already selected.
    redundancy = [0.0] * len(candidates)

    selected: list[int] = []
    chosen: set[int] = set()
    lang_counts: Counter[str] = Counter()
    path_counts: Counter[str] = Counter()

    while len(selected) < k:
        best_score = float("-inf")
        best_idx: int | None = None
        for i in range(len(candidates)):
            if i in chosen:
                continue
            score = lambda_ * relevance[i] - (1.0 - lambda_) * redundancy[i]
            score += LANGUAGE_DECAY ** lang_counts[languages[i]]
            score += PATH_DECAY ** path_counts[paths[i]]
            if score > best_score:
                best_score = score
                best_idx = i

        if best_idx is None:
            break

        selected.append(best_idx)
        chosen.add(best_idx)
        lang_counts[languages[best_idx]] += 1
        path_counts[paths[best_idx]] += 1
        for i in range(len(candidates)):
            if i not in chosen:
                redundancy[i] = max(redundancy[i], _cosine(candidates[i], candidates[best_idx]))

    return selected
