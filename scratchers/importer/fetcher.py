"""Fetch CSV payloads from own storage or external URLs."""

from __future__ import annotations

import logging
import os
import re
import time

import requests

from scratchers.importer.errors import InvalidPayloadError, SourceFetchError
from scratchers.importer.storage import LocalObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_READ_TIMEOUT_SECONDS = float(os.getenv("CSV_FETCH_TIMEOUT_SECONDS", "60"))
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 0.5
DEFAULT_USER_AGENT = "scratchers-importer/1.0"
SNIFF_LENGTH = 1000
PREVIEW_LENGTH = 500

_HTML_MARKERS = (
    "<html",
    "<!doctype",
    "</html>",
    "<head>",
    "</head>",
    "<body>",
    "</body>",
    "<title>",
    "</title>",
    "<center>",
    "<h1>",
)
_ERROR_PAGE_PHRASES = (
    "bad gateway",
    "not found",
    "forbidden",
    "unauthorized",
    "service unavailable",
)
_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def looks_like_html(text: str) -> bool:
    """Content sniff over the first SNIFF_LENGTH characters."""

    preview = text[:SNIFF_LENGTH].strip().lower()
    if any(marker in preview for marker in _HTML_MARKERS):
        return True
    if "<" in preview:
        return any(phrase in preview for phrase in _ERROR_PAGE_PHRASES)
    return False


def extract_html_title(text: str) -> str | None:
    match = _TITLE_RE.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def _decode(content: bytes) -> str:
    return content.decode("utf-8-sig", errors="replace")


def check_payload(text: str, content_type: str | None, url: str) -> None:
    """Raise InvalidPayloadError if an HTTP body is an HTML page rather than CSV."""

    if looks_like_html(text):
        title = extract_html_title(text) or "Unknown HTML page"
        logger.error("HTML detected instead of CSV url=%s title=%s", url, title)
        raise InvalidPayloadError(
            f'CSV import blocked: the URL returned an HTML page: "{title}". '
            f"URL: {url}. Response preview: {text[:PREVIEW_LENGTH]}"
        )
    if content_type and "text/html" in content_type.lower():
        logger.error("HTML content-type instead of CSV url=%s content_type=%s", url, content_type)
        raise InvalidPayloadError(
            f"Invalid content type {content_type!r}; expected text/csv, text/plain "
            f"or application/csv. The URL is serving a web page, not a CSV file. URL: {url}"
        )


def fetch_url_text(url: str, auth_token: str | None = None) -> str:
    """GET an external CSV, validate it is not HTML, and return its text."""

    headers = {
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/csv, text/plain, */*",
    }
    if auth_token:
        headers["Authorization"] = f"Bearer {auth_token}"

    response = None
    last_exception: requests.RequestException | None = None
    for attempt in range(DEFAULT_RETRIES):
        try:
            response = requests.get(
                url,
                headers=headers,
                timeout=(DEFAULT_CONNECT_TIMEOUT_SECONDS, DEFAULT_READ_TIMEOUT_SECONDS),
            )
            break
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_exception = exc
            logger.warning("CSV fetch attempt=%s failed url=%s error=%s", attempt + 1, url, exc)
            if attempt < DEFAULT_RETRIES - 1:
                time.sleep(DEFAULT_BACKOFF_SECONDS * (2**attempt))
        except requests.RequestException as exc:
            raise SourceFetchError(f"Failed to download CSV: {exc}") from exc

    if response is None:
        raise SourceFetchError(
            f"Failed to download CSV after {DEFAULT_RETRIES} attempts: {last_exception}"
        ) from last_exception

    content_type = response.headers.get("content-type")
    logger.info(
        "CSV response status=%s content_type=%s url=%s",
        response.status_code,
        content_type,
        url,
    )
    if response.status_code >= 400:
        raise SourceFetchError(
            f"Failed to download CSV: {response.status_code} {response.reason or ''}".rstrip()
        )

    text = _decode(response.content)
    logger.info("CSV downloaded size=%s", len(text))
    check_payload(text, content_type, url)
    return text


def fetch_csv_text(
    locator: str,
    storage: LocalObjectStorage,
    auth_token: str | None = None,
) -> str:
    """Resolve *locator* to CSV text.

    Own-storage locators are read directly from the object store and raise
    StorageFetchError on failure; anything else is fetched over HTTP.
    """

    target = storage.parse_locator(locator)
    if target is not None:
        bucket, path = target
        logger.info("Reading CSV from storage bucket=%s path=%s", bucket, path)
        text = _decode(storage.download(bucket, path))
        logger.info("CSV read from storage size=%s", len(text))
        return text

    logger.info("Fetching CSV over HTTP url=%s", locator)
    return fetch_url_text(locator, auth_token=auth_token)
