"""Plain-text stock list adapter (lists pasted from emails or messengers)."""

from __future__ import annotations

import re

from fabricsync.sources.grid import Sheet, SourceGrid

# Tabs, semicolons or runs of two or more spaces separate columns
_SEPARATORS = re.compile(r"\t|;|\s{2,}")


def parse_text_list(text: str, name: str = "text") -> SourceGrid:
    rows = [
        [part.strip() for part in _SEPARATORS.split(line.strip())]
        if line.strip()
        else []
        for line in text.splitlines()
    ]
    return SourceGrid(sheets=[Sheet(name=name, rows=rows)], available_names=[name])
