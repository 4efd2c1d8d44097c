from __future__ import annotations

from typing import Optional


class CrawlerError(Exception):
    """Base class for every error raised by the crawl engine."""

    kind = "CrawlerError"


class NetworkError(CrawlerError):
    """Transport-level failure: connection reset, EOF, timeout or HTTP >= 400."""

    kind = "TransientNetwork"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(CrawlerError):
    """The response body could not be decoded as JSON."""

    kind = "TransientNetwork"


class SoftBlockError(CrawlerError):
    """A well-formed response in which the target refused to answer (success=false)."""

    kind = "TransientNetwork"

    def __init__(self, message: str = "", code: Optional[int] = None) -> None:
        super().__init__(message or "server refused the request")
        self.code = code


class PayloadError(CrawlerError):
    """Valid JSON that does not have the shape of a search response."""

    kind = "SubcategoryFatal"


class SchemaDriftError(CrawlerError):
    """The category page no longer carries the embedded category tree."""

    kind = "SchemaDrift"


class TransportError(CrawlerError):
    """Session handshake or identity provider failure. Fatal to the owning worker."""

    kind = "TransportFatal"


class SinkError(CrawlerError):
    """A result sink rejected a batch."""

    kind = "SinkFailure"


class RetriesExhausted(CrawlerError):
    kind = "RetriesExhausted"

    def __init__(self, name: str, attempts: int, last_error: Optional[BaseException] = None) -> None:
        msg = f"{name}: giving up after {attempts} attempts"
        if last_error is not None:
            msg += f" (last error: {last_error})"
        super().__init__(msg)
        self.name = name
        self.attempts = attempts
        self.last_error = last_error


class SubcategoryFatalError(CrawlerError):
    """A subcategory could not be crawled to completion; its output is discarded."""

    kind = "SubcategoryFatal"

    def __init__(self, subcategory_id: int, page: int, cause: BaseException) -> None:
        super().__init__(f"sub-category {subcategory_id} page {page}: {cause}")
        self.subcategory_id = subcategory_id
        self.page = page
        self.cause = cause
