"""
Unit tests for exploration stores and the quadrant status resolver
"""

import json
import os
from unittest.mock import Mock

import pytest
import requests

from common.types import QuadrantId, QuadrantStatus
from square_render.exploration import (
    ExplorationStore,
    HttpExplorationStore,
    JsonExplorationStore,
    MemoryExplorationStore,
    QuadrantSnapshot,
    SquareRecord,
    resolve_quadrant_statuses,
)


ALL_UNEXPLORED = {q: QuadrantStatus.UNEXPLORED for q in QuadrantId}


class TestSquareRecord:
    def test_from_list_document(self):
        """List-shaped quadrant documents are parsed"""
        rec = SquareRecord.from_document({
            "pathImageUrl": "https://cdn.example/h8.png",
            "quadrants": [
                {"quadrantId": "Q1", "status": "explored"},
                {"quadrantId": "Q2"},
                {"status": "secured"},
                "garbage",
            ],
        })
        assert rec.quadrants == {"Q1": "explored", "Q2": None}
        assert rec.path_image_url == "https://cdn.example/h8.png"

    def test_from_mapping_document(self):
        """Mapping-shaped quadrant documents are parsed"""
        rec = SquareRecord.from_document({"quadrants": {"Q3": "secured"}})
        assert rec.quadrants == {"Q3": "secured"}
        assert rec.path_image_url is None


class TestResolveQuadrantStatuses:
    def test_no_store_is_default(self, h8):
        """No store yields the default snapshot"""
        snap = resolve_quadrant_statuses(None, h8)
        assert snap.statuses == ALL_UNEXPLORED
        assert snap.from_store is False

    def test_missing_record_is_default(self, h8):
        """Unknown square yields the default snapshot"""
        snap = resolve_quadrant_statuses(MemoryExplorationStore(), h8)
        assert snap.statuses == ALL_UNEXPLORED

    def test_overlays_store_values(self, h8):
        """Store values overwrite defaults; bad values normalise"""
        store = MemoryExplorationStore({
            "h8": SquareRecord(
                quadrants={"q1": "EXPLORED ", "Q2": "secured", "Q3": "bogus", "Q4": 7, "Q9": "explored"},
                path_image_url="https://cdn.example/override.png",
            )
        })
        snap = resolve_quadrant_statuses(store, h8)
        assert snap.statuses == {
            QuadrantId.Q1: QuadrantStatus.EXPLORED,
            QuadrantId.Q2: QuadrantStatus.SECURED,
            QuadrantId.Q3: QuadrantStatus.UNEXPLORED,
            QuadrantId.Q4: QuadrantStatus.UNEXPLORED,
        }
        assert snap.path_image_url == "https://cdn.example/override.png"
        assert snap.from_store is True

    def test_store_error_falls_back(self, h8):
        """Store exception yields the default snapshot"""
        store = Mock(spec=ExplorationStore)
        store.name = "mock"
        store.lookup.side_effect = RuntimeError("store outage")
        snap = resolve_quadrant_statuses(store, h8)
        assert snap.statuses == ALL_UNEXPLORED
        assert snap.path_image_url is None

    def test_malformed_record_falls_back(self, h8):
        """Malformed record yields the default snapshot"""
        store = Mock(spec=ExplorationStore)
        store.name = "mock"
        store.lookup.return_value = SquareRecord(quadrants=None)  # type: ignore[arg-type]
        assert resolve_quadrant_statuses(store, h8).statuses == ALL_UNEXPLORED

    def test_default_snapshot_is_fresh(self):
        """Default snapshots do not share state"""
        a = QuadrantSnapshot.default()
        a.statuses[QuadrantId.Q1] = QuadrantStatus.EXPLORED
        assert QuadrantSnapshot.default().statuses[QuadrantId.Q1] is QuadrantStatus.UNEXPLORED


class TestJsonExplorationStore:
    def test_lookup_case_insensitive(self, tmp_path, h8):
        """JSON store keys are matched case-insensitively"""
        path = tmp_path / "exploration.json"
        path.write_text(json.dumps({"h8": {"quadrants": [{"quadrantId": "Q2", "status": "explored"}]}}))
        store = JsonExplorationStore(str(path))
        rec = store.lookup(h8)
        assert rec is not None and rec.quadrants == {"Q2": "explored"}

    def test_reloads_when_file_changes(self, tmp_path, h8):
        """JSON store re-reads the file after it changes"""
        path = tmp_path / "exploration.json"
        path.write_text(json.dumps({"H8": {"quadrants": {"Q1": "explored"}}}))
        store = JsonExplorationStore(str(path))
        assert store.lookup(h8).quadrants == {"Q1": "explored"}

        path.write_text(json.dumps({"H8": {"quadrants": {"Q1": "secured"}}}))
        st = path.stat()
        os.utime(path, (st.st_atime, st.st_mtime + 10))
        assert store.lookup(h8).quadrants == {"Q1": "secured"}

    def test_missing_file_falls_back(self, tmp_path, h8):
        """Missing JSON file falls back to the default"""
        store = JsonExplorationStore(str(tmp_path / "nope.json"))
        with pytest.raises(FileNotFoundError):
            store.lookup(h8)
        assert resolve_quadrant_statuses(store, h8).statuses == ALL_UNEXPLORED

    def test_corrupt_file_falls_back(self, tmp_path, h8):
        """Corrupt JSON file falls back to the default"""
        path = tmp_path / "exploration.json"
        path.write_text("{not json")
        snap = resolve_quadrant_statuses(JsonExplorationStore(str(path)), h8)
        assert snap.statuses == ALL_UNEXPLORED


class TestHttpExplorationStore:
    def test_lookup_document(self, h8):
        """HTTP store fetches and parses the square document"""
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value={"quadrants": {"Q4": "secured"}}))
        store = HttpExplorationStore("http://store.local/", session=session)
        rec = store.lookup(h8)
        assert rec.quadrants == {"Q4": "secured"}
        session.get.assert_called_once_with("http://store.local/squares/H8", timeout=2.0)

    def test_not_found(self, h8):
        """HTTP 404 means no record"""
        session = Mock()
        session.get.return_value = Mock(status_code=404)
        assert HttpExplorationStore("http://store.local", session=session).lookup(h8) is None

    def test_server_error_falls_back(self, h8):
        """HTTP 5xx falls back to the default"""
        resp = Mock(status_code=503)
        resp.raise_for_status.side_effect = requests.HTTPError("503")
        session = Mock()
        session.get.return_value = resp
        store = HttpExplorationStore("http://store.local", session=session)
        assert resolve_quadrant_statuses(store, h8).statuses == ALL_UNEXPLORED
