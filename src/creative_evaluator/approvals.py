from __future__ import annotations

import hashlib
import logging
from typing import Any, Callable

from creative_evaluator.datastore import APPROVALS_TABLE, execute, get_client, iso, now_utc, rows

logger = logging.getLogger(__name__)


def creative_fingerprint(filename: str, image_data: str) -> str:
    """SHA-256 over the filename and the full encoded image."""
    h = hashlib.sha256()
    h.update(filename.encode("utf-8"))
    h.update(b"\0")
    h.update(image_data.encode("utf-8"))
    return h.hexdigest()


class ApprovalStore:
    """Per-session reviewer sign-off, keyed by (session id, creative fingerprint). Last write wins."""

    def __init__(self, client: Any | None = None, clock: Callable = now_utc) -> None:
        self._client = client
        self._clock = clock

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_client()
        return self._client

    def save(self, session_id: str, filename: str, image_data: str, approved: bool) -> str:
        creative_hash = creative_fingerprint(filename, image_data)
        # One row per (session, creative); a repeat save overwrites the decision.
        execute(
            self.client.table(APPROVALS_TABLE).upsert(
                {
                    "session_id": session_id,
                    "creative_hash": creative_hash,
                    "creative_filename": filename,
                    "is_approved": approved,
                    "updated_at": iso(self._clock()),
                },
                on_conflict="session_id,creative_hash",
            )
        )
        logger.info("Approval for %s set to %s (session %s)", filename, approved, session_id)
        return creative_hash

    def load(self, session_id: str, creatives: list[tuple[str, str]]) -> dict[int, bool]:
        """Indices of `(filename, image_data)` pairs that are stored as approved."""
        if not creatives:
            return {}
        hashes = [creative_fingerprint(f, d) for f, d in creatives]
        data = rows(
            execute(
                self.client.table(APPROVALS_TABLE)
                .select("creative_hash, is_approved")
                .eq("session_id", session_id)
                .in_("creative_hash", list(set(hashes)))
            )
        )
        approved_hashes = {r["creative_hash"] for r in data if r.get("is_approved")}
        return {idx: True for idx, h in enumerate(hashes) if h in approved_hashes}
