"""
JSON file repository, one document per student.

Layout:
    <data_dir>/<quoted student id>.json
    {"cards": {"<card id>": {...}}, "last_updated": "<ISO-8601>"}
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from revisit.domain.clock import utc_now
from revisit.domain.errors import NotFoundError, StorageError
from revisit.domain.models import Card
from revisit.domain.ports import CardRepository

from .codec import card_from_dict, card_to_dict

logger = logging.getLogger(__name__)


class JsonCardRepository(CardRepository):
    """
    Stores cards as JSON on disk.

    A card-id -> student-id index is built lazily on the first lookup by id
    and kept current on every save.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()
        self._index: dict[str, str] | None = None

    def _path_for(self, student_id: str) -> Path:
        return self.data_dir / f"{quote(student_id, safe='')}.json"

    def _read_document(self, student_id: str) -> dict[str, Any]:
        path = self._path_for(student_id)
        if not path.exists():
            return {"cards": {}}
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read {path}: {e}") from e
        if not isinstance(doc, dict) or not isinstance(doc.get("cards"), dict):
            raise StorageError(f"Unexpected document layout in {path}")
        return doc

    def _write_document(self, student_id: str, doc: dict[str, Any]) -> None:
        path = self._path_for(student_id)
        doc["last_updated"] = utc_now().isoformat()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            # Write to a temp file and swap it in so a crash never leaves half a document
            fd, tmp = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"Could not write {path}: {e}") from e

    def _build_index(self) -> dict[str, str]:
        index: dict[str, str] = {}
        if self.data_dir.exists():
            for path in self.data_dir.glob("*.json"):
                student_id = unquote(path.stem)
                try:
                    doc = self._read_document(student_id)
                except StorageError as e:
                    logger.warning(f"Skipping unreadable store file: {e}")
                    continue
                for card_id in doc["cards"]:
                    index[card_id] = student_id
        return index

    def load_cards(self, student_id: str) -> list[Card]:
        with self._lock:
            doc = self._read_document(student_id)
        return [card_from_dict(record) for record in doc["cards"].values()]

    def load_card(self, card_id: str) -> Card:
        with self._lock:
            if self._index is None or card_id not in self._index:
                self._index = self._build_index()
            student_id = self._index.get(card_id)
            if student_id is None:
                raise NotFoundError(f"Card {card_id} not found")
            record = self._read_document(student_id)["cards"].get(card_id)
        if record is None:
            raise NotFoundError(f"Card {card_id} not found")
        return card_from_dict(record)

    def save_card(self, card: Card) -> None:
        with self._lock:
            doc = self._read_document(card.student_id)
            doc["cards"][card.id] = card_to_dict(card)
            self._write_document(card.student_id, doc)
            if self._index is not None:
                self._index[card.id] = card.student_id
