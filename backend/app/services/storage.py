"""
Claim Resolution Engine - Object Storage Client

Supabase Storage access for previously uploaded claim documents.
Only short-lived signed download URLs are issued; nothing is made public.
"""
from __future__ import annotations
import logging
from typing import Optional
from urllib.parse import quote

import requests

from ..config import Settings, get_settings
from .errors import StorageError

logger = logging.getLogger(__name__)


class SupabaseStorage:
    def __init__(
        self,
        base_url: Optional[str],
        service_key: Optional[str],
        bucket: str = "claim-documents",
        signed_url_ttl_seconds: int = 300,
        download_timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.signed_url_ttl_seconds = signed_url_ttl_seconds
        self.download_timeout_seconds = download_timeout_seconds
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SupabaseStorage":
        settings = settings or get_settings()
        return cls(
            base_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.storage_bucket,
            signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
            download_timeout_seconds=settings.download_timeout_seconds,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key or "",
            "Content-Type": "application/json",
        }

    def generate_download_url(self, file_path: str) -> str:
        """Signed download URL valid for signed_url_ttl_seconds."""
        if not self.base_url or not self.service_key:
            raise StorageError("Object storage is not configured")

        url = f"{self.base_url}/storage/v1/object/sign/{self.bucket}/{quote(file_path.lstrip('/'))}"
        try:
            resp = self.session.post(
                url,
                headers=self._headers(),
                json={"expiresIn": self.signed_url_ttl_seconds},
                timeout=self.download_timeout_seconds,
            )
        except requests.RequestException as e:
            raise StorageError(f"Failed to sign download URL for {file_path}: {e}") from e

        if resp.status_code >= 400:
            raise StorageError(
                f"Storage returned {resp.status_code} signing {file_path}",
                details={"status_code": resp.status_code, "file_path": file_path},
            )

        signed = (resp.json() or {}).get("signedURL")
        if not signed:
            raise StorageError(f"Storage returned no signed URL for {file_path}")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"
