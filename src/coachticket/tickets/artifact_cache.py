from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from coachticket.db.repositories import TicketArtifactRepository
from coachticket.errors import CacheIntegrityError
from coachticket.models.booking import ArtifactKind

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
ZIP_MAGIC = b"PK\x03\x04"
MIN_PDF_BYTES = 800
MIN_ZIP_BYTES = 22

_COLUMNS = {
    ArtifactKind.HOLD: "hold_pdf",
    ArtifactKind.FINAL: "final_pdf",
    ArtifactKind.FINAL_ZIP: "final_zip",
}


@dataclass(frozen=True)
class TicketArtifact:
    pnr: str
    kind: ArtifactKind
    content: bytes
    content_hash: str
    url: str | None = None
    booked_by: str | None = None
    updated_at: str | None = None


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def check_artifact(kind: ArtifactKind, content: bytes | None) -> None:
    """Raise CacheIntegrityError unless `content` is a structurally valid artifact of `kind`."""
    if not content:
        raise CacheIntegrityError(f"empty {kind.value} artifact")
    if kind == ArtifactKind.FINAL_ZIP:
        if not content.startswith(ZIP_MAGIC) or len(content) < MIN_ZIP_BYTES:
            raise CacheIntegrityError(f"{kind.value} artifact is not a zip archive")
        return
    if not content.startswith(PDF_MAGIC):
        raise CacheIntegrityError(f"{kind.value} artifact does not start with the PDF signature")
    if len(content) < MIN_PDF_BYTES:
        raise CacheIntegrityError(f"{kind.value} artifact is too short ({len(content)} bytes)")


class ArtifactCache:
    """Durable cache of rendered tickets, one `tickets` row per PNR."""

    def __init__(self, repository: TicketArtifactRepository | None = None) -> None:
        self.repository = repository or TicketArtifactRepository()

    def get(self, pnr: str, kind: ArtifactKind) -> bytes | None:
        return self._decode(self.repository.get(pnr), pnr, kind)

    @staticmethod
    def _decode(row: dict | None, pnr: str, kind: ArtifactKind) -> bytes | None:
        if not row:
            return None
        encoded = row.get(f"{_COLUMNS[kind]}_base64")
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("undecodable %s artifact stored for %s", kind.value, pnr)
            return None

    def lookup(self, pnr: str, kind: ArtifactKind) -> TicketArtifact | None:
        """Stored artifact for (pnr, kind), or None when absent or failing validation."""
        row = self.repository.get(pnr)
        content = self._decode(row, pnr, kind)
        if content is None:
            return None
        try:
            check_artifact(kind, content)
        except CacheIntegrityError as exc:
            logger.warning("ignoring cached %s artifact for %s: %s", kind.value, pnr, exc)
            return None
        column = _COLUMNS[kind]
        return TicketArtifact(
            pnr=pnr,
            kind=kind,
            content=content,
            content_hash=row.get(f"{column}_sha256") or content_hash(content),
            url=row.get("url"),
            booked_by=row.get("booked_by"),
            updated_at=row.get(f"{column}_updated_at"),
        )

    def preferred(self, pnr: str) -> TicketArtifact | None:
        return self.lookup(pnr, ArtifactKind.FINAL) or self.lookup(pnr, ArtifactKind.HOLD)

    def put(
        self,
        pnr: str,
        kind: ArtifactKind,
        content: bytes,
        url: str | None = None,
        booked_by: str | None = None,
    ) -> TicketArtifact:
        check_artifact(kind, content)
        column = _COLUMNS[kind]
        digest = content_hash(content)
        updated_at = datetime.now(timezone.utc).isoformat()
        row = {
            "pnr": pnr,
            f"{column}_base64": base64.b64encode(content).decode("ascii"),
            f"{column}_sha256": digest,
            f"{column}_updated_at": updated_at,
        }
        if url:
            row["url"] = url
        if booked_by:
            row["booked_by"] = booked_by
        self.repository.upsert(row)
        return TicketArtifact(
            pnr=pnr,
            kind=kind,
            content=content,
            content_hash=digest,
            url=url,
            booked_by=booked_by,
            updated_at=updated_at,
        )
