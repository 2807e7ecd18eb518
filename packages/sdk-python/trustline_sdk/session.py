"""Explicit HTTP session state for the Trustline client."""

from dataclasses import dataclass, field
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

RETRY_STATUSES = (502, 503, 504)


@dataclass
class SessionContext:
    """
    Everything a client needs to talk to the API.

    Owned by exactly one client. ``open()`` builds the underlying
    ``requests.Session`` and ``close()`` releases it; nothing is kept at
    module level.
    """

    api_key: str
    base_url: str = "http://localhost:8000"
    timeout: float = 10.0
    max_retries: int = 3
    backoff_factor: float = 0.5
    http: Optional[requests.Session] = field(default=None, repr=False)

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")

    @property
    def is_open(self) -> bool:
        return self.http is not None

    def open(self) -> requests.Session:
        if self.http is None:
            retry = Retry(
                total=self.max_retries,
                backoff_factor=self.backoff_factor,
                status_forcelist=RETRY_STATUSES,
                respect_retry_after_header=True,
                raise_on_status=False,
            )
            http = requests.Session()
            adapter = HTTPAdapter(max_retries=retry)
            http.mount("http://", adapter)
            http.mount("https://", adapter)
            http.headers.update({"x-api-key": self.api_key})
            self.http = http
        return self.http

    def close(self) -> None:
        if self.http is not None:
            self.http.close()
            self.http = None

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"
