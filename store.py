"""In-memory extraction store keyed by generated document id.

Entries live for the lifetime of the process: there is no update, delete,
eviction or enumeration.
"""

import itertools
import logging
import threading
import time

from models import ExtractionResult

logger = logging.getLogger(__name__)


class IdCollision(RuntimeError):
    """A freshly generated id was already present in the store."""


class ExtractionStore:
    """Insert-only mapping from document id to ExtractionResult.

    Ids are ``<process-start-ms>-<sequence>``: the sequence comes from a
    counter advanced under the same lock that guards the insert, so two
    concurrent extractions can never be handed the same id.
    """

    def __init__(self, id_prefix: str | None = None):
        self._entries: dict[str, ExtractionResult] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._prefix = id_prefix if id_prefix is not None else str(int(time.time() * 1000))

    def put(self, result: ExtractionResult) -> str:
        """Store ``result`` under a new id and return the id."""
        with self._lock:
            doc_id = f"{self._prefix}-{next(self._sequence)}"
            if doc_id in self._entries:
                raise IdCollision(f"Generated id already in use: {doc_id}")
            self._entries[doc_id] = result

        logger.info(
            "Stored extraction: id=%s fields=%d",
            doc_id,
            len(result.extracted_fields),
        )
        return doc_id

    def get(self, doc_id: str) -> ExtractionResult | None:
        return self._entries.get(doc_id)

    def __len__(self) -> int:
        return len(self._entries)
