"""Per-run state, passed explicitly instead of living in module globals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from fabricsync.canonical.dates import utc_now
from fabricsync.config import IngestConfig
from fabricsync.models import SourceSpec


@dataclass
class RunContext:
    """Everything one supplier run needs to know.

    Concurrent runs for different suppliers each get their own context, so
    nothing leaks between them.
    """

    supplier_id: str
    supplier_name: str
    kind: str
    source: SourceSpec
    settings: IngestConfig = field(default_factory=IngestConfig)
    base_currency: str = "RUB"

    # Explicit "parser data is newer" signal: active overrides are retired
    parser_supersedes_overrides: bool = False
    # When the document was produced (e.g. email received time), if known
    source_timestamp: datetime | None = None

    previous_signature: str | None = None
    run_id: str = field(default_factory=lambda: uuid4().hex[:12])
    started_at: datetime = field(default_factory=utc_now)
