"""
Optional JSON record of a run: the options, and every population snapshot
taken at the start of each cycle, keyed by ``out{j}_pop{i}``.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Mapping

RecordType = Dict[str, Any]


def recursive_merge(left: Mapping[str, Any], right: Mapping[str, Any]) -> RecordType:
    """Merge ``right`` into a copy of ``left``; nested mappings merge key by key."""
    merged: RecordType = dict(left)
    for key, value in right.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = recursive_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def write_record(record: Mapping[str, Any], path: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(record, handle, default=str)
    os.replace(tmp_path, path)
