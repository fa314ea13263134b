"""
USDA FoodData Central fetcher with pacing, throttling and retry handling.

Every request:
- waits its turn on the shared RateLimiter
- on HTTP 429 waits the provider's retry hint, unless it exceeds the ceiling
- on 401/403 fails immediately with FatalAuthError
- on any other failure retries with a flat delay, then raises
  TransientNetworkError
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from core.config import Settings
from core.exceptions import (
    ExtractionError,
    FatalAuthError,
    ThrottledError,
    TransientNetworkError,
)
from ingestion.rate_limiter import RateLimiter, Sleep
from ingestion.transformers.tables import (
    DEFAULT_FALLBACK_ITEM_COUNT,
    FALLBACK_ITEM_COUNTS,
    NUTRIENT_NUMBER_TABLE,
    NutrientCodeTable,
)
from schemas.fdc import SourceRecord

logger = logging.getLogger(__name__)

LIST_PATH = "/foods/list"
SEARCH_PATH = "/foods/search"
DETAIL_PATH = "/food/{fdc_id}"


class FDCFetcher:
    """
    Paginated reader of the FDC list and detail endpoints.

    Attributes:
        page_size: Records requested per list page
        max_retries: Attempts per request, throttled attempts included
        retry_delay: Flat pause between failed attempts (seconds)
        max_retry_delay: Throttling ceiling; longer hints abort the run
        default_retry_after: Throttle wait when the provider sends no hint
        fetch_details: Replace each listed food by its detail payload
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        page_size: int,
        rate_limiter: RateLimiter,
        nutrient_table: NutrientCodeTable = NUTRIENT_NUMBER_TABLE,
        max_retries: int = 3,
        retry_delay: float = 30.0,
        timeout: float = 30.0,
        max_retry_delay: int = 7200,
        default_retry_after: int = 3600,
        fetch_details: bool = False,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.api_key = api_key
        self.base_url = base_url
        self.page_size = page_size
        self.rate_limiter = rate_limiter
        self.nutrient_table = nutrient_table
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.max_retry_delay = max_retry_delay
        self.default_retry_after = default_retry_after
        self.fetch_details = fetch_details
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        nutrient_table: NutrientCodeTable = NUTRIENT_NUMBER_TABLE,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "FDCFetcher":
        return cls(
            api_key=settings.FDC_API_KEY,
            base_url=settings.FDC_BASE_URL,
            page_size=settings.effective_page_size,
            rate_limiter=RateLimiter(settings.request_delay_seconds, sleep=sleep),
            nutrient_table=nutrient_table,
            max_retries=settings.MAX_RETRIES,
            retry_delay=settings.RETRY_DELAY_SECONDS,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            max_retry_delay=settings.MAX_RETRY_DELAY_SECONDS,
            default_retry_after=settings.DEFAULT_RETRY_AFTER_SECONDS,
            fetch_details=settings.FETCH_DETAILS,
            sleep=sleep,
            transport=transport,
        )

    async def __aenter__(self) -> "FDCFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def fetch(self, data_type: str, page: int) -> List[SourceRecord]:
        """
        Fetch one page of a data type, sorted by fdcId ascending.

        An empty list means the data type is exhausted.

        Raises:
            ThrottledError: Throttled beyond the ceiling or the retry bound
            TransientNetworkError: Request failed after every attempt
            FatalAuthError: Credential rejected
        """
        logger.info(f"Fetching {data_type} page {page} ({self.page_size} items)")
        data = await self._request_with_retry(
            LIST_PATH,
            {
                "dataType": data_type,
                "pageNumber": page,
                "pageSize": self.page_size,
                "sortBy": "fdcId",
                "sortOrder": "asc",
            },
        )

        if isinstance(data, list):
            payloads = data
        elif isinstance(data, dict):
            payloads = data.get("foods") or []
        else:
            payloads = []

        records = []
        for payload in payloads:
            if self.fetch_details:
                payload = await self._detail_or_listed(payload)
            record = self._parse(payload)
            if record is not None:
                records.append(record)

        logger.debug(f"Fetched {len(records)} records from {data_type} page {page}")
        return records

    async def fetch_food_details(self, fdc_id: int) -> Dict[str, Any]:
        """Full detail payload of one food"""
        data = await self._request_with_retry(DETAIL_PATH.format(fdc_id=fdc_id), {})
        if not isinstance(data, dict):
            raise TransientNetworkError(
                "Unexpected detail response shape",
                context={"fdc_id": fdc_id, "response_type": type(data).__name__},
            )
        return data

    async def count_items(self, data_type: str) -> int:
        """
        Approximate number of foods in a data type.

        Only feeds the ETA, so any failure but a rejected credential falls
        back to a fixed estimate.
        """
        try:
            data = await self._request_with_retry(
                SEARCH_PATH,
                {"query": "*", "dataType": data_type, "pageSize": 1},
            )
            total = int(data["totalHits"])
        except FatalAuthError:
            raise
        except (ExtractionError, KeyError, TypeError, ValueError) as e:
            estimate = FALLBACK_ITEM_COUNTS.get(data_type, DEFAULT_FALLBACK_ITEM_COUNT)
            logger.warning(f"Could not count {data_type} foods, estimating {estimate}: {e}")
            return estimate

        logger.info(f"{data_type}: {total} foods")
        return total

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _detail_or_listed(self, payload: Any) -> Any:
        fdc_id = payload.get("fdcId") if isinstance(payload, dict) else None
        if fdc_id is None:
            return payload
        try:
            return await self.fetch_food_details(fdc_id)
        except TransientNetworkError as e:
            logger.warning(f"Detail fetch failed for food {fdc_id}, using listed record: {e.message}")
            return payload

    def _parse(self, payload: Any) -> Optional[SourceRecord]:
        if not isinstance(payload, dict):
            logger.warning(f"Skipping non-object food entry: {payload!r:.100}")
            return None
        try:
            return SourceRecord.from_payload(payload, code_field=self.nutrient_table.source_field)
        except ValidationError as e:
            logger.warning(f"Skipping malformed food {payload.get('fdcId')!r}: {e.error_count()} errors")
            return None

    def _retry_after(self, response: httpx.Response) -> int:
        hint = response.headers.get("retry-after")
        if hint is None:
            return self.default_retry_after
        try:
            return max(0, int(float(hint)))
        except ValueError:
            return self.default_retry_after

    async def _request_with_retry(self, path: str, params: Dict[str, Any]) -> Any:
        """
        GET a provider endpoint and return its decoded JSON body.

        Throttled attempts count toward max_retries; running out of attempts
        while still throttled raises ThrottledError so the run halts
        resumably instead of skipping the page.
        """
        params = {**params, "api_key": self.api_key}
        context = {"path": path, "params": {k: v for k, v in params.items() if k != "api_key"}}
        self.rate_limiter.start_request()
        last_error: Optional[str] = None
        last_exception: Optional[Exception] = None
        status_code: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            await self.rate_limiter.acquire()
            self.rate_limiter.record_attempt()
            logger.debug(f"Request attempt {attempt}/{self.max_retries} to {path}")

            try:
                response = await self._client.get(path, params=params, timeout=self.timeout)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_exception = e
                status_code = None
            else:
                self.rate_limiter.observe(response.headers)
                status_code = response.status_code

                if status_code in (401, 403):
                    raise FatalAuthError(
                        f"Provider rejected the API key (HTTP {status_code})",
                        context={**context, "status_code": status_code},
                    )

                if status_code == 429:
                    wait = self._retry_after(response)
                    self.rate_limiter.state.retry_after = wait
                    if wait > self.max_retry_delay:
                        logger.error(
                            f"Throttled for {wait}s, above the {self.max_retry_delay}s ceiling; halting"
                        )
                        raise ThrottledError(
                            "Retry hint exceeds the throttling ceiling",
                            context={**context, "ceiling": self.max_retry_delay},
                            retry_after=wait,
                        )
                    if attempt >= self.max_retries:
                        raise ThrottledError(
                            f"Still throttled after {attempt} attempts",
                            context={**context, "retry_count": attempt},
                            retry_after=wait,
                        )
                    logger.warning(
                        f"Throttled by provider, waiting {wait}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    await self._sleep(wait)
                    continue

                if status_code < 400:
                    try:
                        return response.json()
                    except ValueError as e:
                        last_error = "Failed to parse JSON response"
                        last_exception = e
                elif status_code < 500:
                    # Client errors other than auth and throttling will not
                    # succeed on a second try
                    raise TransientNetworkError(
                        f"Provider returned HTTP {status_code}",
                        context={**context, "status_code": status_code, "retry_count": attempt,
                                 "response_body": response.text[:500]},
                    )
                else:
                    last_error = f"HTTP {status_code}"
                    last_exception = None

            if attempt < self.max_retries:
                logger.warning(
                    f"Request to {path} failed ({last_error}). Retrying in "
                    f"{self.retry_delay}s (attempt {attempt}/{self.max_retries})"
                )
                await self._sleep(self.retry_delay)

        raise TransientNetworkError(
            f"Request failed after {self.max_retries} attempts: {last_error}",
            context={**context, "status_code": status_code, "retry_count": self.max_retries},
            original_exception=last_exception,
        )
