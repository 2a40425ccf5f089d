"""CLI JSON output wrapper.

Every ``--json`` payload carries schema metadata (schema_id,
schema_version, producer, produced_at) so downstream tooling can detect
format changes.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from codesearch import __version__


def json_response(
    schema_id: str,
    schema_version: int,
    **data: Any,
) -> str:
    """Create schema-wrapped JSON response for CLI output.

    Example:
        >>> json_response("query_results", 1, query="parse config", results=[])
        {
          "schema_id": "query_results",
          "schema_version": 1,
          "producer": "code-search-0.1.0",
          "produced_at": "2026-10-19T10:30:00+00:00",
          "query": "parse config",
          "results": []
        }
    """
    wrapped = {
        "schema_id": schema_id,
        "schema_version": schema_version,
        "producer": f"code-search-{__version__}",
        "produced_at": datetime.now(timezone.utc).isoformat(),
        **data,
    }
    return json.dumps(wrapped, indent=2, default=str)
