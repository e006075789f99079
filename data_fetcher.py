#!/usr/bin/env python3
"""
Data Fetcher Module for Readwise Triage
Handles fetching inbox items from the Reader API with cursor pagination and
pushing triage decisions back with rate-limited batch updates.
"""

import os
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING
import requests
from requests import Session

from data_parser import parse_reader_item, format_timestamp
from http_retry import HTTPRequestError, execute_with_retry
from models import Item, UpdateRequest, BatchUpdateResult, BatchUpdateProgress

if TYPE_CHECKING:
    from tasks import ProgressChannel

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://readwise.io/api/v3"
AUTH_URL = "https://readwise.io/api/v2/auth/"
DEFAULT_DAYS_AGO = 7
DEFAULT_LOCATION = "new"  # inbox
REQUEST_TIMEOUT = 30


class ReaderAPIError(HTTPRequestError):
    """Raised for Reader responses the caller cannot use."""


class SyncProgress:
    """Track and display batch update progress in real-time."""

    def __init__(self, total_updates: int, verbose: bool = True):
        self.start_time = time.time()
        self.total_updates = total_updates
        self.current = 0
        self.succeeded = 0
        self.failed = 0
        self.verbose = verbose

    def update(self, event: BatchUpdateProgress) -> None:
        """Record one progress event from the batch worker."""
        self.current = event.current
        if event.success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.verbose:
            self._display_status(event.item_id)

    def _display_status(self, item_id: str) -> None:
        elapsed_time = time.time() - self.start_time
        percentage = (
            (self.current / self.total_updates) * 100 if self.total_updates else 100.0
        )
        print(
            f"\r🔄 Updating {self.current}/{self.total_updates} ({percentage:.0f}%) | "
            f"✅ {self.succeeded} ❌ {self.failed} | "
            f"Last: {item_id} | Elapsed: {self._format_time(elapsed_time)}",
            end="",
        )
        print(" " * 10, end="\r")

    def _format_time(self, seconds: float) -> str:
        """Elapsed time as 42s, 2m05s or 1h03m."""
        minutes, secs = divmod(int(seconds), 60)
        if not minutes:
            return f"{secs}s"
        hours, minutes = divmod(minutes, 60)
        if not hours:
            return f"{minutes}m{secs:02d}s"
        return f"{hours}h{minutes:02d}m"

    def finish(self) -> None:
        """Display final completion status."""
        if self.verbose:
            total_time = time.time() - self.start_time
            print(
                f"\n✅ Sync finished! {self.succeeded} updated, {self.failed} failed "
                f"in {self._format_time(total_time)}"
            )


class ReaderClient:
    """Talks to the Readwise Reader API: inbox listing and document updates."""

    def __init__(
        self,
        token: str = "",
        session: Optional[Session] = None,
        base_url: str = DEFAULT_BASE_URL,
        auth_url: str = AUTH_URL,
    ):
        if not token:
            token = os.getenv("READWISE_TOKEN", "")
        if not token:
            raise ReaderAPIError("READWISE_TOKEN environment variable not set")

        self.token = token
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.auth_url = auth_url
        self.timeout = REQUEST_TIMEOUT
        self.update_interval = 2.0  # seconds between batch updates

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.token}",
            "Content-Type": "application/json",
        }

    def _send(self, method: str, url: str, label: str, **kwargs) -> requests.Response:
        def perform() -> requests.Response:
            return self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )

        return execute_with_retry(perform, label=label)

    def verify_token(self) -> bool:
        """
        Check the token against the auth endpoint.

        Returns:
            True only for a 204 response; any other status is False.

        Raises:
            ReaderAPIError: If the request could not be sent at all.
        """
        try:
            response = self.session.get(
                self.auth_url,
                headers={"Authorization": f"Token {self.token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ReaderAPIError(f"token check could not be sent: {e}") from e

        try:
            valid = response.status_code == 204
        finally:
            response.close()
        if not valid:
            logger.warning(f"Token check returned status {response.status_code}")
        return valid

    def fetch_inbox_items(
        self, days_ago: int = 0, location: str = ""
    ) -> List[Item]:
        """
        Fetch every item updated in the last ``days_ago`` days at ``location``.

        Args:
            days_ago: Lookback window in days (0 means the 7-day default)
            location: Reader location, e.g. "new" or "feed" ("" means "new")

        Returns:
            Items from all pages, in page order.

        Raises:
            ReaderAPIError / HTTPRequestError: If any page fails. Partial
            results are discarded.
        """
        if not days_ago:
            days_ago = DEFAULT_DAYS_AGO
        if not location:
            location = DEFAULT_LOCATION

        cutoff = datetime.now(timezone.utc) - timedelta(days=days_ago)
        updated_after = format_timestamp(cutoff)

        logger.info(
            f"Starting inbox fetch (location: {location}, updated after: {updated_after})"
        )

        all_items: List[Item] = []
        cursor: Optional[str] = None
        page = 0

        while True:
            page += 1
            items, cursor = self._fetch_page(updated_after, location, cursor)
            all_items.extend(items)
            logger.debug(f"Page {page}: {len(items)} items (next cursor: {cursor!r})")

            if not cursor:
                break

        logger.info(f"Inbox fetch completed. Total items: {len(all_items)}")
        return all_items

    def _fetch_page(
        self, updated_after: str, location: str, cursor: Optional[str]
    ) -> Tuple[List[Item], Optional[str]]:
        params = {"location": location, "updatedAfter": updated_after}
        if cursor:
            params["pageCursor"] = cursor

        response = self._send(
            "GET", f"{self.base_url}/list/", label="list", params=params
        )
        try:
            if response.status_code != 200:
                raise ReaderAPIError(f"API request failed: {response.status_code}")
            try:
                data = response.json()
            except ValueError as e:
                raise ReaderAPIError(f"Invalid JSON response: {e}") from e
        finally:
            response.close()

        if not isinstance(data, dict):
            raise ReaderAPIError("Unexpected response shape: page is not a JSON object")
        results = data.get("results") or []
        if not isinstance(results, list):
            raise ReaderAPIError("Unexpected response shape: results is not a list")
        items = [parse_reader_item(raw) for raw in results if isinstance(raw, dict)]
        next_cursor = data.get("nextPageCursor") or None
        return items, next_cursor

    def update_document(self, update: UpdateRequest) -> None:
        """
        PATCH one document. Only the fields that are set go in the body.

        Raises:
            ReaderAPIError / HTTPRequestError: On any non-200 outcome.
        """
        response = self._send(
            "PATCH",
            f"{self.base_url}/update/{update.document_id}/",
            label=f"update {update.document_id}",
            json=update.to_payload(),
        )
        try:
            if response.status_code != 200:
                raise ReaderAPIError(
                    f"update failed with status {response.status_code}"
                )
        finally:
            response.close()

    def batch_update(
        self,
        updates: List[UpdateRequest],
        progress: Optional["ProgressChannel"] = None,
    ) -> BatchUpdateResult:
        """
        Apply updates one at a time, paced by ``update_interval``.

        A failed update is recorded and the batch carries on. When a progress
        channel is given, one BatchUpdateProgress is sent per update. The
        channel is not closed here; its producer owns that.
        """
        result = BatchUpdateResult(total=len(updates))

        logger.info(f"Starting batch update of {len(updates)} documents")

        for index, update in enumerate(updates):
            if index > 0:
                time.sleep(self.update_interval)

            error: Optional[Exception] = None
            try:
                self.update_document(update)
            except HTTPRequestError as e:
                error = e

            if error is None:
                result.success += 1
            else:
                result.failed += 1
                result.errors.append(
                    ReaderAPIError(f"update {update.document_id}: {error}")
                )
                logger.error(f"Update {update.document_id} failed: {error}")

            if progress is not None:
                progress.send(
                    BatchUpdateProgress(
                        current=index + 1,
                        total=len(updates),
                        item_id=update.document_id,
                        success=error is None,
                    )
                )

        logger.info(
            f"Batch update complete: {result.success} succeeded, {result.failed} failed"
        )
        return result


def create_reader_client(config) -> ReaderClient:
    """
    Create a Reader client from loaded configuration.

    Raises:
        ReaderAPIError: If no token is configured.
    """
    if not config.readwise_token:
        raise ReaderAPIError(
            "READWISE_TOKEN not configured. Set it in the environment or config file."
        )
    return ReaderClient(token=config.readwise_token)
