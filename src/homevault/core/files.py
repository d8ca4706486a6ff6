# HomeVault - Atomic JSON Files
#
# Small JSON documents (object store, session record) are replaced
# atomically: write a sibling temp file with mode 600, then os.replace().

import json
import os
from pathlib import Path
from typing import Any, Union


def write_json_atomic(path: Union[str, Path], data: Any) -> None:
    """Serialize ``data`` to ``path`` so readers see the old or the new file, never half."""
    path = str(path)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    tmp_path = path + ".tmp"
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def read_json(path: Union[str, Path], default: Any = None) -> Any:
    """Load a JSON file, or return ``default`` when it does not exist."""
    if not os.path.exists(path):
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
