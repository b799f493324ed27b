from pydantic import ValidationError
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import backoff
import logging
import requests
import time

import config
from models.hotspots import Hotspot
from models.transactions.poc_receipts_v1 import PocReceiptsV1, MalformedChallengeError


logger = logging.getLogger(__name__)


class HeliumApiError(Exception):
    pass


class InvalidAddressError(HeliumApiError):
    pass


class ServerError(HeliumApiError):
    """5xx or an unreadable body, worth retrying"""
    pass


def backoff_delay(attempt: int, base_delay: float = config.RETRY_DELAY) -> float:
    """linear backoff: the nth retry waits n * base_delay seconds"""
    return attempt * base_delay


def linear(base_delay: float = config.RETRY_DELAY):
    """backoff wait generator yielding base_delay, 2 * base_delay, ..."""
    # advance past the initial send() from backoff
    yield
    attempt = 0
    while True:
        attempt += 1
        yield backoff_delay(attempt, base_delay)


def parse_come_back(response) -> Optional[float]:
    """
    Reads the wait hint the API sends with a 429.
    :return: seconds to wait, or None if the body can't be understood
    """
    try:
        body = response.json()
        if body.get("error") == "Too Busy":
            return float(body["come_back_in_ms"]) / 1000.0
    except (ValueError, KeyError, TypeError, AttributeError):
        pass
    return None


def _rate_limited(response) -> bool:
    return response.status_code == 429


def _log_retry(details):
    logger.error("Error from server. Backing off attempt %d and trying again in %.1fs...", details["tries"], details["wait"])
    logger.debug("%s", details.get("exception"))


class HeliumClient:
    def __init__(self,
                 base_url: str = config.HELIUM_API_URL,
                 session: Optional[requests.Session] = None,
                 retry_attempts: int = config.RETRY_ATTEMPTS,
                 retry_delay: float = config.RETRY_DELAY,
                 rate_limit_delay: float = config.RATE_LIMIT_DELAY,
                 page_sleep: float = config.PAGE_SLEEP,
                 hotspot_page_sleep: float = config.HOTSPOT_PAGE_SLEEP,
                 timeout: float = config.REQUEST_TIMEOUT,
                 sleep: Callable[[float], None] = time.sleep):
        """
        :param retry_attempts: retries after the first try, for server errors and for 429s separately
        :param sleep: used between pages; retry waits go through backoff
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.rate_limit_delay = rate_limit_delay
        self.page_sleep = page_sleep
        self.hotspot_page_sleep = hotspot_page_sleep
        self.timeout = timeout
        self.sleep = sleep

        send = backoff.on_predicate(backoff.runtime,
                                    predicate=_rate_limited,
                                    value=self._rate_limit_wait,
                                    max_tries=retry_attempts + 1,
                                    jitter=None)(self._send)
        self._send_with_retry = backoff.on_exception(linear,
                                                     (requests.RequestException, ServerError),
                                                     max_tries=retry_attempts + 1,
                                                     jitter=None,
                                                     on_backoff=_log_retry,
                                                     base_delay=retry_delay)(self._fetch(send))

    def _rate_limit_wait(self, response) -> float:
        delay = parse_come_back(response)
        if delay is None:
            logger.error("Using default %.1fsec delay. error was: %d: %s", self.rate_limit_delay, response.status_code, response.text)
            return self.rate_limit_delay
        logger.info("Server is too busy. Asked to wait %.3fs.", delay)
        return delay

    def _send(self, url: str, params: Optional[dict]):
        return self.session.get(url, params=params, headers={"Accept": "application/json"}, timeout=self.timeout)

    @staticmethod
    def _fetch(send):
        def fetch(url: str, params: Optional[dict]) -> dict:
            resp = send(url, params)
            if resp.status_code >= 500:
                raise ServerError(f"Error {resp.status_code}: {resp.text}")
            if resp.status_code >= 400:
                raise HeliumApiError(f"Error {resp.status_code}: {resp.text}")
            try:
                return resp.json()
            except ValueError as e:
                raise ServerError(f"Invalid JSON from {url}: {e}") from e
        return fetch

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            return self._send_with_retry(url, params)
        except (requests.RequestException, ServerError) as e:
            raise HeliumApiError(f"Unable to load {url}: {e}") from e

    def get_current_height(self) -> int:
        body = self._get("/blocks/height")
        try:
            return int(body["data"]["height"])
        except (KeyError, TypeError, ValueError):
            raise HeliumApiError("Missing height in API response")

    def fetch_hotspot(self, address: str) -> Hotspot:
        body = self._get(f"/hotspots/{address}")
        try:
            return Hotspot.model_validate(body["data"])
        except (KeyError, ValidationError) as e:
            raise HeliumApiError(f"Invalid hotspot response for {address}: {e}") from e

    def fetch_hotspots(self) -> List[Hotspot]:
        hotspots = []
        cursor = None
        last_size = 0
        while True:
            params = {"cursor": cursor} if cursor else None
            body = self._get("/hotspots", params)
            for entry in body.get("data") or []:
                try:
                    hotspots.append(Hotspot.model_validate(entry))
                except ValidationError as e:
                    logger.warning("Skipping invalid hotspot entry: %s", e)
            if len(hotspots) - last_size > 250:
                logger.info("Loaded %d hotspots", len(hotspots))
                last_size = len(hotspots)

            cursor = body.get("cursor")
            if not cursor:
                break
            self.sleep(self.hotspot_page_sleep)

        logger.debug("found %d hotspots", len(hotspots))
        return hotspots

    def fetch_page(self, address: str, cursor: Optional[str] = None) -> Tuple[List[PocReceiptsV1], Optional[str]]:
        if cursor:
            logger.debug("Using Challenge Helium API Cursor: %s", cursor)
            body = self._get(f"/hotspots/{address}/challenges", {"cursor": cursor})
        else:
            logger.debug("First Challenge Helium API request (no cursor)")
            body = self._get(f"/hotspots/{address}/challenges")

        records = []
        for entry in body.get("data") or []:
            try:
                records.append(PocReceiptsV1.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping invalid challenge entry: %s", e)
        return records, body.get("cursor") or None

    def fetch_challenges(self, address: str, not_before: datetime) -> List[PocReceiptsV1]:
        """
        Downloads challenges newest first until a page reaches back past not_before or the data runs out.
        :param address: hotspot address
        :param not_before: oldest event time to keep
        :return: challenges in the order the API returned them (LIFO)
        """
        challenges = []
        cursor = None
        first_request = True

        while True:
            records, next_cursor = self.fetch_page(address, cursor)

            if not records:
                if next_cursor and next_cursor != cursor:
                    # sometimes we get 0 results, but a cursor for "more"
                    logger.debug("Empty page with cursor, continuing")
                    cursor = next_cursor
                    first_request = False
                    self.sleep(self.page_sleep)
                    continue
                if first_request:
                    raise InvalidAddressError(f"0 challenges fetched for {address}. Invalid address?")
                break
            first_request = False

            # pages are not guaranteed sorted at the boundary so the whole page is scanned
            reached_start = False
            for record in records:
                try:
                    record_time = record.get_time()
                except MalformedChallengeError as e:
                    logger.warning("%s", e)
                    continue
                if record_time < not_before:
                    reached_start = True
                    continue
                challenges.append(record)
                if len(challenges) % 100 == 0:
                    logger.info("Retrieved %d challenges, last challenge time: %s", len(challenges), record_time.isoformat())

            if reached_start:
                break
            if not next_cursor:
                logger.debug("API server returned no cursor in response! No more queries.")
                break
            if next_cursor == cursor:
                logger.warning("API server returned the same cursor as last time!")
                break
            cursor = next_cursor
            self.sleep(self.page_sleep)

        logger.info("Found %d challenges for %s", len(challenges), address)
        return challenges
