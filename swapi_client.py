"""
External reference feed readers.

Both readers expose `fetch_all(kind) -> list[dict]` returning every raw record
of one kind; pagination is handled here so the sync pipeline always receives a
fully materialized list.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from db import APP_DIR
from errors import FeedError

logger = logging.getLogger(__name__)

FEED_SOURCE = os.environ.get("FEED_SOURCE", "http").strip().lower()
FEED_BASE_URL = os.environ.get("FEED_BASE_URL", "https://swapi.dev/api").rstrip("/")
FEED_TIMEOUT_S = float(os.environ.get("FEED_TIMEOUT_S", "20"))
FEED_RETRIES = int(os.environ.get("FEED_RETRIES", "2"))
FEED_SNAPSHOT_DIR = Path(os.environ.get("FEED_SNAPSHOT_DIR", str(APP_DIR / "data" / "feed_snapshot")))

MAX_PAGES_PER_KIND = 500
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "Accept": "application/json",
        "User-Agent": "starship-registry catalog sync",
    })
    return session


def _retry_after_seconds(response: Any, attempt: int) -> float:
    raw = (getattr(response, "headers", None) or {}).get("Retry-After", "")
    try:
        return float(max(1, int(str(raw).strip())))
    except ValueError:
        return min(30.0, 2.0 * attempt)


class HttpFeedSource:
    """Reads the paged feed API, following `next` links until exhausted."""

    def __init__(
        self,
        base_url: str = FEED_BASE_URL,
        timeout_s: float = FEED_TIMEOUT_S,
        session: Optional[requests.Session] = None,
        retries: int = FEED_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.retries = max(0, int(retries))
        self.session = session or _build_session()

    def describe(self) -> str:
        return self.base_url

    def _get_page(self, url: str) -> Dict[str, Any]:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout_s)
            except requests.RequestException as exc:
                if attempt == attempts:
                    raise FeedError(f"Feed request failed for {url}: {exc}") from exc
                logger.warning("Feed request failed for %s (attempt %d/%d): %s", url, attempt, attempts, exc)
                time.sleep(min(8.0, 1.2 * attempt))
                continue

            if response.status_code in RETRYABLE_STATUS and attempt < attempts:
                wait_s = _retry_after_seconds(response, attempt)
                logger.warning("Feed returned HTTP %d for %s; retrying in %.0fs", response.status_code, url, wait_s)
                time.sleep(wait_s)
                continue
            if response.status_code != 200:
                raise FeedError(f"Feed returned HTTP {response.status_code} for {url}")
            try:
                payload = response.json()
            except ValueError as exc:
                raise FeedError(f"Feed returned invalid JSON for {url}") from exc
            if not isinstance(payload, dict):
                raise FeedError(f"Feed page for {url} is not an object")
            return payload

        raise FeedError(f"Feed request failed for {url}")

    def fetch_all(self, kind: str) -> List[Dict[str, Any]]:
        url: Optional[str] = f"{self.base_url}/{kind}/"
        records: List[Dict[str, Any]] = []
        seen_urls = set()
        pages = 0

        while url:
            if url in seen_urls or pages >= MAX_PAGES_PER_KIND:
                raise FeedError(f"Feed pagination for {kind} does not terminate (at {url})")
            seen_urls.add(url)
            pages += 1

            payload = self._get_page(url)
            results = payload.get("results") or []
            if not isinstance(results, list):
                raise FeedError(f"Feed page {url} has no results list")
            records.extend(r for r in results if isinstance(r, dict))
            url = payload.get("next") or None

        logger.info("Fetched %d %s records from feed in %d page(s)", len(records), kind, pages)
        return records


class SnapshotFeedSource:
    """Reads pre-captured feed records from `<snapshot_dir>/<kind>.json`."""

    def __init__(self, snapshot_dir: Path = FEED_SNAPSHOT_DIR):
        self.snapshot_dir = Path(snapshot_dir)

    def describe(self) -> str:
        return f"snapshot:{self.snapshot_dir}"

    def fetch_all(self, kind: str) -> List[Dict[str, Any]]:
        path = self.snapshot_dir / f"{kind}.json"
        if not path.exists():
            raise FeedError(f"Snapshot file not found: {path}")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise FeedError(f"Invalid JSON in snapshot {path}: {exc}") from exc

        items = raw.get("results") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            raise FeedError(f"Snapshot {path} must be a list or contain 'results'")
        logger.info("Loaded %d %s records from snapshot %s", len(items), kind, path)
        return [r for r in items if isinstance(r, dict)]


def build_feed_source(source: Optional[str] = None):
    choice = (source or FEED_SOURCE).strip().lower()
    if choice == "snapshot":
        return SnapshotFeedSource()
    if choice == "http":
        return HttpFeedSource()
    raise ValueError(f"Unknown FEED_SOURCE '{choice}' (expected 'http' or 'snapshot')")
