"""
Availability Source.

Answers one question: given a permit, a division, and candidate date ranges
in priority order, which range (if any) has remaining capacity on every night?

Selection rule:
- Ranges are tested in list order
- A range qualifies only if every night has remaining > 0
- Nights missing from the data count as unavailable
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Mapping, Optional, Sequence

import httpx

from .config import AVAILABILITY_TIMEOUT_SECONDS, RECGOV_BASE_URL
from .entities import DateRange
from .errors import AvailabilityError


logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


def spanning_window(ranges: Sequence[DateRange]) -> tuple[date, date]:
    """
    Smallest query window covering every range.

    The end is extended one day past the latest exit date.
    """
    if not ranges:
        raise ValueError("At least one date range is required")
    start = min(r.start_date for r in ranges)
    end = max(r.end_date for r in ranges) + timedelta(days=1)
    return start, end


def select_available_range(
    remaining_by_date: Mapping[date, int],
    ranges: Sequence[DateRange],
) -> Optional[DateRange]:
    """Return the first range whose every night has remaining capacity."""
    for candidate in ranges:
        if all(remaining_by_date.get(night, 0) > 0 for night in candidate.nights()):
            return candidate
    return None


class AvailabilitySource(ABC):
    """Capability: query remaining capacity for a division."""

    @abstractmethod
    def query(
        self,
        permit_id: str,
        division_id: str,
        ranges: Sequence[DateRange],
    ) -> Optional[DateRange]:
        """
        Find the first fully available range.

        Raises:
            AvailabilityError: On any upstream failure (treated as transient)
        """
        ...

    def close(self) -> None:
        """Release underlying resources."""
        pass


class RecGovAvailabilitySource(AvailabilitySource):
    """
    Availability source backed by the recreation.gov permit availability API.

    GET {base}/api/permits/{permit_id}/availability
        ?start_date=YYYY-MM-DDT00:00:00.000Z&end_date=...&commercial_acct=false

    Response shape used:
        {"payload": {"availability": {<division_id>: {"date_availability":
            {<iso timestamp>: {"remaining": int, "total": int}}}}}}
    """

    def __init__(
        self,
        base_url: str = RECGOV_BASE_URL,
        timeout: float = AVAILABILITY_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    def query(
        self,
        permit_id: str,
        division_id: str,
        ranges: Sequence[DateRange],
    ) -> Optional[DateRange]:
        remaining = self.fetch_remaining(permit_id, division_id, ranges)
        if remaining is None:
            return None
        return select_available_range(remaining, ranges)

    def fetch_remaining(
        self,
        permit_id: str,
        division_id: str,
        ranges: Sequence[DateRange],
    ) -> Optional[dict[date, int]]:
        """
        Fetch remaining capacity per night for one division.

        Returns:
            Mapping of night -> remaining, or None if the division is absent
        """
        start, end = spanning_window(ranges)
        url = f"{self.base_url}/api/permits/{permit_id}/availability"
        params = {
            "start_date": f"{start.isoformat()}T00:00:00.000Z",
            "end_date": f"{end.isoformat()}T00:00:00.000Z",
            "commercial_acct": "false",
        }

        try:
            response = self._client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise AvailabilityError(f"Timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise AvailabilityError(f"Request error: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise AvailabilityError(f"HTTP {response.status_code}")

        try:
            data = response.json()
            availability = data["payload"]["availability"]
        except (ValueError, KeyError, TypeError) as e:
            raise AvailabilityError(f"Unexpected availability payload: {e}") from e

        division = availability.get(division_id) if isinstance(availability, dict) else None
        if not division:
            logger.debug(f"Division {division_id} not present for permit {permit_id}")
            return None

        remaining: dict[date, int] = {}
        for iso_date, slot in (division.get("date_availability") or {}).items():
            try:
                night = date.fromisoformat(iso_date[:10])
                remaining[night] = int(slot.get("remaining", 0))
            except (ValueError, TypeError, AttributeError):
                logger.debug(f"Skipping malformed availability entry {iso_date!r}")
        return remaining

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
