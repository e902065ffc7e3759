"""HTTP fetcher for API description documents.

All network I/O goes through a single Fetcher instance shared across tool
calls. The Fetcher receives an httpx.AsyncClient via constructor injection;
the lifespan owns the client lifecycle.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx
import structlog
import yaml

from apidex.document import parse_api_description
from apidex.errors import ApidexError, ErrorCode
from apidex.models.index import FetchedDocument, Validator

if TYPE_CHECKING:
    from apidex.config import FetcherSettings

log = structlog.get_logger()

# Checked in order when a configured URL does not serve an API description
COMMON_DOCUMENT_PATHS: tuple[str, ...] = (
    "/openapi.json",
    "/openapi.yaml",
    "/swagger.json",
    "/swagger.yaml",
    "/v3/api-docs",
    "/v2/api-docs",
    "/api-docs",
    "/api-docs/swagger.json",
    "/api/openapi.json",
    "/api/swagger.json",
    "/docs/openapi.json",
    "/swagger/v1/swagger.json",
)


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=settings.max_redirects,
        timeout=httpx.Timeout(settings.document_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def hash_url(url: str) -> str:
    """Short stable identifier for a source URL, used in cache keys."""
    return hashlib.sha256(url.encode()).hexdigest()[:16]


def content_hash(body: Any) -> str:
    """``sha256:<hex>`` of the canonical JSON form of a parsed document."""
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_document_body(text: str) -> Any:
    """Parse a JSON or YAML document body. Raises ValueError on failure."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"body is neither JSON nor YAML: {exc}") from exc


def discovery_candidates(url: str) -> list[str]:
    """Common document URLs beside ``url``, then at its origin.

    A trailing file name (``index.html``) is dropped before the common paths
    are appended. ``url`` itself is never a candidate.
    """
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    directory = parsed.path.rstrip("/")
    if "." in directory.rsplit("/", 1)[-1]:
        directory = directory.rsplit("/", 1)[0]

    bases = [origin + directory, origin] if directory else [origin]
    candidates: dict[str, None] = {}
    for base in bases:
        for path in COMMON_DOCUMENT_PATHS:
            if base + path != url:
                candidates.setdefault(base + path)
    return list(candidates)


def _validator_from_headers(headers: httpx.Headers) -> Validator:
    return Validator(
        etag=headers.get("etag"),
        last_modified=headers.get("last-modified"),
    )


class Fetcher:
    """Fetches API descriptions and performs conditional freshness checks."""

    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings) -> None:
        self._client = client
        self._settings = settings

    async def fetch_document(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> FetchedDocument:
        """GET a document and return its parsed body plus validators.

        Raises ApidexError with TIMEOUT, UPSTREAM_FETCH_FAILED, NOT_FOUND or
        INVALID_DOCUMENT (unparseable body).
        """
        effective_timeout = timeout or self._settings.document_timeout_seconds
        try:
            response = await self._client.get(
                url,
                headers=headers or {},
                timeout=httpx.Timeout(effective_timeout),
            )
        except httpx.TimeoutException as exc:
            raise ApidexError(
                code=ErrorCode.TIMEOUT,
                message=f"Timed out after {effective_timeout}s fetching {url}",
                suggestion="The document source is slow or unreachable. Try again later.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ApidexError(
                code=ErrorCode.UPSTREAM_FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                suggestion="The document source may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            if response.status_code == 404:
                raise ApidexError(
                    code=ErrorCode.NOT_FOUND,
                    message=f"HTTP 404 fetching {url}",
                    suggestion="Check the document URL configured for the session.",
                    recoverable=False,
                )
            raise ApidexError(
                code=ErrorCode.UPSTREAM_FETCH_FAILED,
                message=f"HTTP {response.status_code} fetching {url}",
                suggestion="The document source may be temporarily unavailable.",
                recoverable=True,
            )

        try:
            body = parse_document_body(response.text)
        except ValueError as exc:
            raise ApidexError(
                code=ErrorCode.INVALID_DOCUMENT,
                message=f"Could not parse document at {url}: {exc}",
                suggestion="Point the session at a JSON or YAML OpenAPI document.",
                recoverable=False,
            ) from exc

        if not isinstance(body, dict):
            raise ApidexError(
                code=ErrorCode.INVALID_DOCUMENT,
                message=f"Document at {url} is not a JSON/YAML object",
                suggestion="Point the session at a JSON or YAML OpenAPI document.",
                recoverable=False,
            )

        validator = _validator_from_headers(response.headers)
        log.info(
            "fetch_complete",
            url=url,
            status_code=response.status_code,
            content_length=len(response.content),
            etag=validator.etag,
            last_modified=validator.last_modified,
        )
        return FetchedDocument(
            url=url,
            body=body,
            validator=validator,
            content_hash=content_hash(body),
        )

    async def is_unmodified(
        self,
        url: str,
        validator: Validator,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> bool:
        """Send a conditional HEAD request. True only on ``304 Not Modified``.

        Raises ApidexError (TIMEOUT / UPSTREAM_FETCH_FAILED) on transport errors.
        """
        conditional = dict(headers or {})
        if validator.etag:
            conditional["If-None-Match"] = validator.etag
        if validator.last_modified:
            conditional["If-Modified-Since"] = validator.last_modified

        effective_timeout = timeout or self._settings.conditional_timeout_seconds
        try:
            response = await self._client.head(
                url,
                headers=conditional,
                timeout=httpx.Timeout(effective_timeout),
            )
        except httpx.TimeoutException as exc:
            raise ApidexError(
                code=ErrorCode.TIMEOUT,
                message=f"Timed out after {effective_timeout}s checking {url}",
                suggestion="The document source is slow or unreachable. Try again later.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ApidexError(
                code=ErrorCode.UPSTREAM_FETCH_FAILED,
                message=f"Network error checking {url}: {exc}",
                suggestion="The document source may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        log.debug("conditional_check_complete", url=url, status_code=response.status_code)
        return response.status_code == 304

    async def discover_document(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> FetchedDocument | None:
        """Try each of ``discovery_candidates(url)`` in order.

        Returns the first candidate whose body is an OpenAPI or Swagger
        description, or None when no candidate is. Never raises ApidexError.
        """
        effective_timeout = timeout or self._settings.discovery_timeout_seconds
        candidates = discovery_candidates(url)
        for candidate in candidates:
            try:
                document = await self.fetch_document(
                    candidate, headers, timeout=effective_timeout
                )
                parse_api_description(document.body, source_url=candidate)
            except ApidexError as exc:
                log.debug("discovery_candidate_rejected", url=candidate, code=exc.code)
                continue
            log.info("document_discovered", source_url=url, document_url=candidate)
            return document

        log.info("document_discovery_failed", source_url=url, attempted=len(candidates))
        return None
