from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

JSON_FILENAME = "appointments.json"
MD5_FILENAME = "appointments.md5"
META_KEY = "_meta"


@dataclass(frozen=True)
class WrittenInventory:
    json_path: str
    md5_path: str
    digest: str
    # Availability differs from the previous file (the _meta timestamp is ignored).
    changed: bool


def render_inventory(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def inventory_digest(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def _without_meta(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k != META_KEY}


def load_previous_inventory(path: str) -> dict[str, Any] | None:
    if not os.path.exists(path):
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError:
        # A corrupted file just counts as "changed".
        logger.warning("Previous inventory %s is not valid JSON, ignoring it", path)
        return None
    return raw if isinstance(raw, dict) else None


def _atomic_write(path: str, text: str) -> None:
    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        tf.write(text)
        tmp_name = tf.name

    os.replace(tmp_name, path)


def write_inventory(output_dir: str, payload: dict[str, Any]) -> WrittenInventory:
    """Write appointments.json and the MD5 of its exact text next to it.

    The JSON goes first so a reader that sees a new hash always finds the matching file.
    """
    json_path = os.path.join(output_dir, JSON_FILENAME)
    md5_path = os.path.join(output_dir, MD5_FILENAME)

    text = render_inventory(payload)
    digest = inventory_digest(text)

    previous = load_previous_inventory(json_path)
    # Round-trip through JSON so tuples/lists compare the same way they were stored.
    changed = previous is None or _without_meta(previous) != _without_meta(json.loads(text))

    _atomic_write(json_path, text)
    _atomic_write(md5_path, digest)

    return WrittenInventory(json_path=json_path, md5_path=md5_path, digest=digest, changed=changed)
