"""HTTP client fetching schedule feeds."""
import logging
import time

import requests

from reconcile.errors import ScheduleRequestError

logger = logging.getLogger(__name__)


class ScheduleClient:
    """Fetches the raw schedule document published at a feed URL."""

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30, session: requests.Session = None):
        """
        Initialize the schedule client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str) -> bytes:
        """
        Fetch the schedule document with retry logic.

        Args:
            url: Feed URL of the schedule source

        Returns:
            Raw response body

        Raises:
            ScheduleRequestError: If all retry attempts fail, whether by
                connection error, timeout or non-2xx status
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching schedule (attempt {attempt + 1}/{self.MAX_RETRIES})",
                    extra={'url': url}
                )
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.content

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise ScheduleRequestError(str(e)) from e
