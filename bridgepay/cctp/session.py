"""HTTP session for Circle's Iris attestation API.

The Iris API allows 35 requests per second and blocks a caller that
exceeds this for 5 minutes (HTTP 429). The session throttles locally so a
pool of pollers sharing it stays well under the limit.

Transport level retries cover connection errors and 5xx answers only.
HTTP 429 is passed through untouched so
:py:class:`~bridgepay.cctp.attestation.AttestationPoller` can apply its own
long cooldown.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter
from urllib3.util.retry import Retry

from bridgepay.cctp.constants import IRIS_API_BASE_URL

logger = logging.getLogger(__name__)

#: Default number of transport retries
DEFAULT_RETRIES = 3

#: Default backoff factor for transport retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Stay comfortably below Iris's 35 requests/second
DEFAULT_REQUESTS_PER_SECOND = 10.0


class AttestationSession(Session):
    """A :py:class:`requests.Session` that carries the Iris API base URL.

    Use :py:func:`create_attestation_session` to create instances.
    """

    #: Iris API base URL, e.g. ``https://iris-api.circle.com``
    api_url: str

    def __init__(self, api_url: str = IRIS_API_BASE_URL):
        super().__init__()
        self.api_url = api_url

    def __repr__(self) -> str:
        return f"<AttestationSession api_url={self.api_url!r}>"


def create_attestation_session(
    api_url: str = IRIS_API_BASE_URL,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
    pool_maxsize: int = 32,
) -> AttestationSession:
    """Create a rate limited :py:class:`AttestationSession`.

    Example::

        from bridgepay.cctp.constants import IRIS_API_SANDBOX_URL
        from bridgepay.cctp.session import create_attestation_session

        session = create_attestation_session(api_url=IRIS_API_SANDBOX_URL)

    :param api_url:
        Iris API base URL.

    :param retries:
        Transport retries for connection errors and 5xx responses.

    :param backoff_factor:
        Exponential backoff factor between transport retries.

    :param requests_per_second:
        Local throttle shared by every thread using the session.

    :param pool_maxsize:
        Connection pool size. At least the number of parallel pollers.
    """
    session = AttestationSession(api_url=api_url)

    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
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
    logger.debug("Created Iris session for %s, %.1f req/s", api_url, requests_per_second)
    return session
