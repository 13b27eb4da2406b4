"""Registry of the backends shipped with the package."""

from __future__ import annotations

import json
from dataclasses import dataclass
from importlib import resources
from typing import Any

from ..exceptions import BackendError
from ..models import BackendInfo

BACKEND_IDS = ("firebase", "memory")
MANIFEST_FILENAME = "manifest.json"


@dataclass(frozen=True, slots=True)
class BackendManifest:
    """Static facts about a backend, read from its ``manifest.json``."""

    id: str
    name: str
    realtime: bool


def parse_manifest(data: Any, backend_id: str) -> BackendManifest:
    if not isinstance(data, dict) or data.get("id") != backend_id:
        raise BackendError(f"Manifest of backend {backend_id} does not describe it.")
    name = data.get("name")
    realtime = data.get("realtime")
    if not isinstance(name, str) or not name:
        raise BackendError(f"Manifest of backend {backend_id} needs a name.")
    # realtime: change notifications are pushed rather than polled.
    if not isinstance(realtime, bool):
        raise BackendError(f"Manifest of backend {backend_id} needs a boolean realtime flag.")
    return BackendManifest(id=backend_id, name=name, realtime=realtime)


def read_manifest(backend_id: str) -> BackendManifest:
    if backend_id not in BACKEND_IDS:
        raise BackendError(f"Unknown backend {backend_id!r}.")
    path = resources.files("evchargenet.backend") / backend_id / MANIFEST_FILENAME
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise BackendError(f"Manifest of backend {backend_id} could not be read.") from exc
    return parse_manifest(data, backend_id)


def list_backends() -> list[BackendInfo]:
    return [
        BackendInfo(id=manifest.id, realtime=manifest.realtime)
        for manifest in map(read_manifest, BACKEND_IDS)
    ]
