"""HTTP client for downloading the toolchain pin.

Issues a plain GET against the resolved resource URL and writes the response
body into the working directory, replacing any previous copy.
"""
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import requests

from .config import FetchConfig
from .errors import FetchError

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of a successful fetch."""

    url: str
    destination: Path
    bytes_written: int
    status_code: int
    duration_ms: float


class ResourceFetcher:
    """Downloads a single remote file to a local path."""

    def __init__(self, config: FetchConfig, session: Optional[requests.Session] = None):
        """Initialize the fetcher.

        Args:
            config: Fetch configuration
            session: Optional pre-built session (a fresh one is created otherwise)
        """
        self.config = config
        self.session = session or requests.Session()

    def fetch(self, url: str, destination: Union[str, Path]) -> FetchResult:
        """Download ``url`` and write the body to ``destination``.

        The destination is created or truncated. Nothing is written when the
        server answers with a non-2xx status.

        Args:
            url: Fully resolved resource URL
            destination: Target file, relative to the working directory

        Returns:
            FetchResult describing the written file

        Raises:
            ValueError: If url or destination is empty
            FetchError: On network errors, non-2xx responses or write failures
        """
        if not url:
            raise ValueError("url must not be empty")
        if not str(destination):
            raise ValueError("destination must not be empty")

        path = Path(destination)
        start_time = time.time()
        logger.info(f"Fetching {url} -> {path}")

        try:
            response = self.session.get(
                url,
                timeout=self.config.timeout_seconds,
                verify=self.config.verify_tls,
            )
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Fetch failed: {type(e).__name__}: {e}")
            raise FetchError(f"Could not fetch {url}: {e}", url=url) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Fetch failed: HTTP {response.status_code} for {url}")
            raise FetchError(
                f"Could not fetch {url}: HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        body = response.content
        try:
            path.write_bytes(body)
        except OSError as e:
            logger.error(f"Could not write {path}: {e}")
            raise FetchError(
                f"Could not write {path}: {e}",
                url=url,
                status_code=response.status_code,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"Wrote {len(body)} bytes to {path} in {duration_ms:.2f}ms")

        return FetchResult(
            url=url,
            destination=path,
            bytes_written=len(body),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

    def close(self) -> None:
        self.session.close()
