from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional


log = logging.getLogger("nexus_agent.files")


def list_directory(path: str, *, logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
    """List one directory level.

    Returns {"files": [...]} and adds an "error" key when the path cannot be
    listed. Entries that vanish or cannot be stat'ed mid-listing are skipped.
    """
    lg = logger or log
    result: Dict[str, Any] = {"files": []}
    p = Path(path or ".")

    if not p.exists():
        result["error"] = "Path does not exist"
        return result
    if not p.is_dir():
        result["error"] = "Path is not a directory"
        return result

    files: List[Dict[str, Any]] = []
    try:
        entries = sorted(p.iterdir(), key=lambda e: e.name)
    except OSError as e:
        lg.error("Filesystem error listing %s: %s", p, e)
        result["error"] = f"Access denied or FS error: {e}"
        return result

    for entry in entries:
        try:
            is_dir = entry.is_dir()
            size = entry.stat().st_size if entry.is_file() else 0
        except OSError as e:
            lg.warning("Error processing file entry %s: %s", entry, e)
            continue
        files.append(
            {
                "name": entry.name,
                "path": str(entry),
                "type": "folder" if is_dir else "file",
                "size": int(size),
            }
        )

    result["files"] = files
    return result
