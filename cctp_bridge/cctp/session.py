"""HTTP session for Circle's Iris attestation API.

The Iris API allows 35 requests per second. Exceeding it blocks the caller
IP for 5 minutes, so all polling goes through a rate limited session.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter
from urllib3.util.retry import Retry

from cctp_bridge.cctp.constants import IRIS_API_SANDBOX_URL, IRIS_REQUESTS_PER_SECOND

logger = logging.getLogger(__name__)

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5


class IrisSession(Session):
    """A :py:class:`requests.Session` that carries the Iris API base URL.

    Use :py:func:`create_iris_session` to create instances.
    """

    #: Iris API base URL, e.g. ``https://iris-api-sandbox.circle.com``
    api_url: str

    def __init__(self, api_url: str = IRIS_API_SANDBOX_URL):
        super().__init__()
        self.api_url = api_url.rstrip("/")

    def __repr__(self) -> str:
        return f"<IrisSession api_url={self.api_url!r}>"


def create_iris_session(
    api_url: str = IRIS_API_SANDBOX_URL,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: int = IRIS_REQUESTS_PER_SECOND,
    pool_maxsize: int = 16,
) -> IrisSession:
    """Create a rate limited :py:class:`IrisSession`.

    - Requests are throttled below the Iris limit
    - 429 and 5xx responses on GET are retried with exponential backoff

    :param api_url:
        Iris base URL. Sandbox for testnets, :py:data:`~cctp_bridge.cctp.constants.IRIS_API_BASE_URL` for mainnet.

    :param requests_per_second:
        Throttle for all threads sharing this session.

    :param pool_maxsize:
        Connection pool size. Should match the number of polling threads.
    """
    session = IrisSession(api_url=api_url)

    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    logger.debug("Created Iris session for %s at %d req/s", api_url, requests_per_second)
    return session
