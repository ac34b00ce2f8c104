"""Sanity CMS -> search index sync.

The webhook body is only trusted for `_id`, `_rev` and `_type`; the document
itself is re-fetched from the Sanity API before indexing.
"""
import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.timeutil import utcnow
from app.models.cms_event import CmsWebhookEvent
from app.services.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = {
    "helpArticle": "help_articles",
    "changelog": "changelogs",
    "roadmapItem": "roadmap_items",
    "professional": "professionals",
}

SIGNATURE_HEADER = "sanity-webhook-signature"


def verify_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    """Hex HMAC-SHA256 of the raw body, compared in constant time."""
    secret = secret if secret is not None else settings.SANITY_WEBHOOK_SECRET
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    received = signature.strip()
    if received.startswith("sha256="):
        received = received[len("sha256="):]
    return hmac.compare_digest(expected, received)


class SanityClient:
    def __init__(self, project_id: str, dataset: str, api_version: str, token: str = "", timeout: int = 15):
        self.project_id = project_id
        self.dataset = dataset
        self.api_version = api_version
        self.token = token
        self.timeout = timeout

    def fetch_document(self, document_id: str) -> dict | None:
        if not self.project_id:
            raise UpstreamError("Sanity is not configured (missing SANITY_PROJECT_ID)")
        url = f"https://{self.project_id}.api.sanity.io/v{self.api_version}/data/doc/{self.dataset}/{document_id}"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            r = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Sanity fetch failed: {e}") from e
        if r.status_code >= 400:
            raise UpstreamError(f"Sanity {r.status_code}: {r.text[:200]}")
        docs = r.json().get("documents") or []
        return docs[0] if docs else None


class SearchIndexClient:
    """Meilisearch-style document API: PUT/DELETE /indexes/<index>/documents."""

    def __init__(self, base_url: str, api_key: str = "", timeout: int = 15):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _call(self, method: str, path: str, payload=None) -> None:
        if not self.base_url:
            raise UpstreamError("Search index is not configured (missing SEARCH_API_URL)")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            r = requests.request(method, f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Search index {method} failed: {e}") from e
        if r.status_code >= 400:
            raise UpstreamError(f"Search index {r.status_code}: {r.text[:200]}")

    def upsert(self, index: str, document: dict) -> None:
        self._call("PUT", f"/indexes/{index}/documents?primaryKey=id", [document])

    def delete(self, index: str, document_id: str) -> None:
        self._call("DELETE", f"/indexes/{index}/documents/{document_id}")


def get_sanity_client() -> SanityClient:
    return SanityClient(settings.SANITY_PROJECT_ID, settings.SANITY_DATASET, settings.SANITY_API_VERSION, settings.SANITY_API_TOKEN)


def get_search_client() -> SearchIndexClient:
    return SearchIndexClient(settings.SEARCH_API_URL, settings.SEARCH_API_KEY)


def to_search_document(doc: dict) -> dict:
    slug = doc.get("slug")
    if isinstance(slug, dict):
        slug = slug.get("current")
    out = {k: v for k, v in doc.items() if not k.startswith("_")}
    out.update({"id": doc["_id"], "type": doc.get("_type"), "slug": slug, "updatedAt": doc.get("_updatedAt")})
    return out


@dataclass
class SyncResult:
    ok: bool = True
    ignored: bool = False
    duplicate: bool = False
    action: str | None = None

    def to_dict(self) -> dict:
        out = {"ok": self.ok}
        if self.ignored:
            out["ignored"] = True
        if self.duplicate:
            out["duplicate"] = True
        if self.action:
            out["action"] = self.action
        return out


def handle_webhook(db: Session, payload: dict, sanity: SanityClient | None = None, search: SearchIndexClient | None = None) -> SyncResult:
    doc_id = payload.get("_id")
    doc_type = payload.get("_type")
    if not doc_id or not doc_type:
        raise ValidationError("Webhook payload must include _id and _type")
    if doc_type not in SUPPORTED_TYPES:
        logger.info("Sanity webhook for unsupported type %s ignored", doc_type)
        return SyncResult(ignored=True)
    revision = str(payload.get("_rev") or "")

    event = db.query(CmsWebhookEvent).filter_by(document_id=doc_id, revision=revision).first()
    if event and event.status == "processed":
        return SyncResult(duplicate=True)
    if not event:
        event = CmsWebhookEvent(id=str(uuid.uuid4()), document_id=doc_id, revision=revision, document_type=doc_type, status="received")
        db.add(event)
        db.commit()

    index = SUPPORTED_TYPES[doc_type]
    sanity = sanity or get_sanity_client()
    search = search or get_search_client()
    try:
        doc = sanity.fetch_document(doc_id)
        if doc is None:
            search.delete(index, doc_id)
            action = "deleted"
        else:
            search.upsert(index, to_search_document(doc))
            action = "indexed"
    except UpstreamError as e:
        event.status = "failed"
        event.error = e.message
        db.commit()
        logger.error("Sanity sync of %s@%s failed: %s", doc_id, revision, e.message)
        raise

    event.status = "processed"
    event.error = None
    event.processed_at = utcnow()
    db.commit()
    logger.info("Sanity document %s (%s) %s in %s", doc_id, doc_type, action, index)
    return SyncResult(action=action)
