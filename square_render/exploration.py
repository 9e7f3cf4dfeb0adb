from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import requests

from common.logging_setup import get_logger
from common.types import QuadrantId, QuadrantStatus, SquareId


log = get_logger(__name__)


@dataclass
class SquareRecord:
    """
    Raw exploration record for one square as held by the external store.

    Attributes:
        quadrants: quadrant id -> raw status string (unvalidated).
        path_image_url: optional override for the base layer image.
    """
    quadrants: Dict[str, Any] = field(default_factory=dict)
    path_image_url: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "SquareRecord":
        """
        Accepts the store's document shape:
            {"pathImageUrl": "...", "quadrants": [{"quadrantId": "Q1", "status": "explored"}, ...]}
        A mapping {"Q1": "explored", ...} is accepted for `quadrants` too.
        """
        raw_q = doc.get("quadrants") or []
        quadrants: Dict[str, Any] = {}
        if isinstance(raw_q, Mapping):
            quadrants = {str(k): v for k, v in raw_q.items()}
        elif isinstance(raw_q, list):
            for q in raw_q:
                if isinstance(q, Mapping) and q.get("quadrantId"):
                    quadrants[str(q["quadrantId"])] = q.get("status")
        url = doc.get("pathImageUrl") or doc.get("path_image_url")
        return cls(quadrants=quadrants, path_image_url=str(url) if url else None)


@dataclass
class QuadrantSnapshot:
    """Per-request view of a square's exploration state."""
    statuses: Dict[QuadrantId, QuadrantStatus]
    path_image_url: Optional[str] = None
    from_store: bool = False

    @classmethod
    def default(cls) -> "QuadrantSnapshot":
        return cls(statuses={q: QuadrantStatus.UNEXPLORED for q in QuadrantId})


# -------------------------
# Stores (read side only)
# -------------------------
class ExplorationStore:
    """Read-only lookup of exploration records. Implementations may raise; callers fall back."""
    name = "base"

    def lookup(self, square: SquareId) -> Optional[SquareRecord]:
        raise NotImplementedError


class MemoryExplorationStore(ExplorationStore):
    name = "memory"

    def __init__(self, records: Optional[Mapping[str, SquareRecord]] = None):
        self._records: Dict[str, SquareRecord] = {k.upper(): v for k, v in (records or {}).items()}

    def put(self, square: SquareId | str, record: SquareRecord) -> None:
        self._records[str(square).upper()] = record

    def lookup(self, square: SquareId) -> Optional[SquareRecord]:
        return self._records.get(str(square).upper())


class JsonExplorationStore(ExplorationStore):
    """
    JSON file keyed by square id:
        { "H8": {"pathImageUrl": null, "quadrants": [{"quadrantId": "Q1", "status": "explored"}]} }
    The file is re-read whenever its mtime changes.
    """
    name = "json"

    def __init__(self, path: str = "data/exploration.json"):
        self.path = Path(path)
        self._docs: Dict[str, Any] = {}
        self._mtime: Optional[float] = None
        self._lock = threading.Lock()

    def _reload_if_changed(self) -> None:
        mtime = self.path.stat().st_mtime
        with self._lock:
            if mtime == self._mtime:
                return
            docs = json.loads(self.path.read_text())
            if not isinstance(docs, dict):
                raise ValueError("exploration file must hold an object keyed by square id")
            self._docs = {str(k).strip().upper(): v for k, v in docs.items()}
            self._mtime = mtime

    def lookup(self, square: SquareId) -> Optional[SquareRecord]:
        self._reload_if_changed()
        doc = self._docs.get(str(square).upper())
        if doc is None:
            return None
        return SquareRecord.from_document(doc)


class HttpExplorationStore(ExplorationStore):
    """GET {base_url}/squares/{id} -> JSON document; 404 means no record."""
    name = "http"

    def __init__(self, base_url: str, timeout_s: float = 2.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.session = session or requests.Session()

    def lookup(self, square: SquareId) -> Optional[SquareRecord]:
        r = self.session.get(f"{self.base_url}/squares/{square}", timeout=self.timeout_s)
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return SquareRecord.from_document(r.json())


# -------------------------
# Resolver
# -------------------------
def resolve_quadrant_statuses(store: Optional[ExplorationStore], square: SquareId) -> QuadrantSnapshot:
    """
    Start from all-unexplored and overlay whatever the store reports.
    Any store error or malformed record yields the default snapshot.
    """
    snapshot = QuadrantSnapshot.default()
    if store is None:
        return snapshot
    try:
        record = store.lookup(square)
        if record is None:
            return snapshot
        statuses = dict(snapshot.statuses)
        for raw_id, raw_status in record.quadrants.items():
            qid = QuadrantId.parse(raw_id)
            if qid is not None:
                statuses[qid] = QuadrantStatus.normalize(raw_status)
        return QuadrantSnapshot(statuses=statuses, path_image_url=record.path_image_url, from_store=True)
    except Exception as e:
        log.warning(
            "Exploration lookup failed; rendering with default mask: %s",
            e,
            extra={"extra": {"square": str(square), "store": store.name}},
        )
        return QuadrantSnapshot.default()
