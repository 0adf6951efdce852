"""
Claim Resolution Engine - Legal Package Builder

Bundles the rendered discrepancy report with the claim's confirmed
contractor photos into one ZIP archive:

    Discrepancy-Report.pdf
    photos/photo_001.jpg
    photos/photo_002.png
    ...

Every photo is downloaded before the archive is written. Any failure
raises ArtifactAssemblyError and no archive is produced.
"""
from __future__ import annotations
import hashlib
import io
import logging
import mimetypes
import os
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

import requests

from ...models.db_models import DocumentDB
from ..errors import ArtifactAssemblyError, StorageError
from ..storage import SupabaseStorage
from .report_renderer import REPORT_FILENAME

logger = logging.getLogger(__name__)

PHOTO_FOLDER = "photos"
DEFAULT_PHOTO_EXTENSION = ".jpg"

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass
class LegalPackage:
    """Transient archive handed to the notification cascade. Never persisted."""
    filename: str
    content: bytes
    photo_count: int
    sha256: str
    entries: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.content)


def package_filename(claim_number: Optional[str], fallback: str, on: date) -> str:
    label = _UNSAFE_FILENAME.sub("-", (claim_number or "").strip()).strip("-")
    if not label:
        label = _UNSAFE_FILENAME.sub("-", fallback)[:8]
    return f"Legal-Package-{label}-{on.isoformat()}.zip"


def photo_extension(doc: DocumentDB) -> str:
    ext = os.path.splitext(doc.file_name or "")[1].lower()
    if ext and len(ext) <= 5:
        return ext
    if doc.mime_type:
        guessed = mimetypes.guess_extension(doc.mime_type.split(";")[0].strip())
        if guessed:
            return ".jpg" if guessed == ".jpe" else guessed
    return DEFAULT_PHOTO_EXTENSION


class PackageBuilder:
    def __init__(
        self,
        storage: SupabaseStorage,
        http_session: Optional[requests.Session] = None,
        download_timeout_seconds: int = 30,
    ):
        self.storage = storage
        self.http = http_session or requests.Session()
        self.download_timeout_seconds = download_timeout_seconds

    def download_photo(self, doc: DocumentDB) -> bytes:
        """Fetch one photo through a short-lived signed URL."""
        try:
            url = self.storage.generate_download_url(doc.file_url)
            resp = self.http.get(url, timeout=self.download_timeout_seconds)
        except (StorageError, requests.RequestException) as e:
            raise ArtifactAssemblyError(
                f"Failed to download photo {doc.file_name}: {e}",
                details={"document_id": doc.id},
            ) from e

        if resp.status_code >= 400:
            raise ArtifactAssemblyError(
                f"Photo download returned {resp.status_code} for {doc.file_name}",
                details={"document_id": doc.id, "status_code": resp.status_code},
            )
        return resp.content

    def download_photos(self, photos: Sequence[DocumentDB]) -> List[Tuple[str, bytes]]:
        """All-or-nothing: (archive name, bytes) for every photo, in order."""
        downloaded = []
        for index, doc in enumerate(photos, start=1):
            name = f"{PHOTO_FOLDER}/photo_{index:03d}{photo_extension(doc)}"
            downloaded.append((name, self.download_photo(doc)))
        return downloaded

    def build(
        self,
        claim_id: str,
        claim_number: Optional[str],
        report_pdf: bytes,
        photos: Sequence[DocumentDB],
        on: date,
    ) -> LegalPackage:
        photo_files = self.download_photos(photos)

        buffer = io.BytesIO()
        entries = [REPORT_FILENAME]
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr(REPORT_FILENAME, report_pdf)
                for name, data in photo_files:
                    archive.writestr(name, data)
                    entries.append(name)
        except (zipfile.BadZipFile, OSError, ValueError) as e:
            raise ArtifactAssemblyError(f"Failed to write legal package archive: {e}") from e

        content = buffer.getvalue()
        package = LegalPackage(
            filename=package_filename(claim_number, claim_id, on),
            content=content,
            photo_count=len(photo_files),
            sha256=hashlib.sha256(content).hexdigest(),
            entries=entries,
        )
        logger.info(
            f"Built legal package {package.filename} for claim {claim_id}: "
            f"{package.photo_count} photos, {package.size} bytes"
        )
        return package
