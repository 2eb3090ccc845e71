"""Circle CCTP V2 attestation service client.

Poll Circle's Iris API for the attestation of a ``depositForBurn()``
transaction. The attested message is the proof the destination chain's
MessageTransmitterV2 needs before it mints.

The Iris ``/v2/messages/{sourceDomain}?transactionHash=`` endpoint answers:

- **404**: burn not yet indexed by Circle
- **200, status pending_confirmations**: burn seen, waiting for block finality
- **200, status complete**: attestation signed and ready
- **429**: rate limit tripped, Circle blocks the caller for 5 minutes

Every wait counts against one overall deadline, so :py:meth:`AttestationPoller.poll`
always returns or raises :py:class:`~bridgepay.cctp.errors.AttestationTimeout`
within ``max_wait`` seconds (plus at most one request timeout).

Example::

    from bridgepay.cctp.attestation import AttestationPoller
    from bridgepay.cctp.config import AttestationConfig, create_route

    route = create_route(11155111, 43113)
    poller = AttestationPoller(AttestationConfig.for_route(route))
    attestation = poller.poll("0xabc...")

    # attestation.message and attestation.attestation go to receiveMessage()
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from bridgepay.cctp.config import AttestationConfig
from bridgepay.cctp.constants import CCTP_DOMAIN_NAMES
from bridgepay.cctp.errors import AttestationTimeout, TransferCancelled
from bridgepay.cctp.session import create_attestation_session

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating the burn is not indexed yet
HTTP_NOT_FOUND = 404

#: HTTP 429 status code indicating rate limit exceeded
HTTP_TOO_MANY_REQUESTS = 429


class AttestationStatus(enum.Enum):
    """Whether Iris has signed the burn message."""

    pending = "pending"

    complete = "complete"


@dataclass(slots=True)
class Attestation:
    """Attestation of one CCTP burn.

    When :py:attr:`status` is ``complete``, :py:attr:`message` and
    :py:attr:`attestation` are passed verbatim to ``receiveMessage()``.
    """

    #: CCTP message bytes to relay to the destination chain
    message: bytes

    #: Signed attestation bytes from Iris
    attestation: bytes

    #: Pending or complete
    status: AttestationStatus

    #: Event nonce reported by Iris, if any
    nonce: str | None = None

    #: Why Iris holds the transfer, e.g. ``"insufficient_fee"``
    delay_reason: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status == AttestationStatus.complete and bool(self.message) and bool(self.attestation)

    def to_dict(self) -> dict:
        """JSON friendly form, bytes as ``0x`` hex."""
        return {
            "message": "0x" + self.message.hex(),
            "attestation": "0x" + self.attestation.hex(),
            "status": self.status.value,
            "nonce": self.nonce,
            "delayReason": self.delay_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attestation":
        return cls(
            message=_decode_hex(data.get("message")),
            attestation=_decode_hex(data.get("attestation")),
            status=AttestationStatus(data["status"]),
            nonce=data.get("nonce"),
            delay_reason=data.get("delayReason"),
        )


def _decode_hex(value: str | None) -> bytes:
    if not value or value in ("0x", "PENDING"):
        return b""
    return bytes.fromhex(value.removeprefix("0x"))


def _normalise_tx_hash(transaction_hash: str) -> str:
    # Iris requires 0x-prefixed transaction hashes
    if not transaction_hash.startswith("0x"):
        return f"0x{transaction_hash}"
    return transaction_hash


def parse_attestation_message(msg: dict) -> Attestation:
    """Parse one entry of the ``messages`` array of an Iris V2 response."""
    attestation_bytes = _decode_hex(msg.get("attestation"))
    message_bytes = _decode_hex(msg.get("message"))

    if msg.get("status") == "complete" and attestation_bytes and message_bytes:
        status = AttestationStatus.complete
    else:
        status = AttestationStatus.pending

    return Attestation(
        message=message_bytes,
        attestation=attestation_bytes,
        status=status,
        nonce=msg.get("eventNonce"),
        delay_reason=msg.get("delayReason"),
    )


class AttestationPoller:
    """Bounded polling of the Iris API for one source domain.

    The poller holds no per-transfer state, one instance can serve many
    threads polling different burns.

    ``clock`` and ``sleep`` are injectable so tests can run the full
    timing logic against a fake clock.
    """

    def __init__(
        self,
        config: AttestationConfig,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        :param config:
            Polling configuration, including the source CCTP domain.

        :param session:
            HTTP session. Defaults to :py:func:`~bridgepay.cctp.session.create_attestation_session`.

        :param clock:
            Monotonic clock in seconds.

        :param sleep:
            Blocking sleep in seconds.
        """
        self.config = config
        self.session = session if session is not None else create_attestation_session(api_url=config.api_base_url)
        self.clock = clock
        self.sleep = sleep
        self.domain_name = CCTP_DOMAIN_NAMES.get(config.source_domain, f"domain-{config.source_domain}")

    def __repr__(self) -> str:
        return f"<AttestationPoller {self.domain_name} {self.config.api_base_url}>"

    def get_url(self, transaction_hash: str) -> str:
        return f"{self.config.api_base_url}/v2/messages/{self.config.source_domain}?transactionHash={_normalise_tx_hash(transaction_hash)}"

    def fetch(self, transaction_hash: str) -> Attestation | None:
        """One-shot attestation lookup.

        Does not block or retry.

        :return:
            :py:class:`Attestation`, or ``None`` if the burn is not indexed yet.

        :raises requests.HTTPError:
            Any non-404 error answer, including 429.
        """
        response = self.session.get(self.get_url(transaction_hash), timeout=self.config.request_timeout)

        if response.status_code == HTTP_NOT_FOUND:
            return None

        response.raise_for_status()
        messages = response.json().get("messages", [])
        if not messages:
            return None

        return parse_attestation_message(messages[0])

    def poll(
        self,
        transaction_hash: str,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        should_stop: Callable[[], bool] | None = None,
        on_phase_change: Callable[[str, int], None] | None = None,
    ) -> Attestation:
        """Poll until the attestation is complete or the budget runs out.

        - Not indexed or pending: wait ``poll_interval`` and retry
        - Rate limited: wait ``rate_limit_cooldown`` and retry, never surfaced
        - Transport or server error: wait ``poll_interval`` and retry
        - Complete: return at once

        :param transaction_hash:
            ``depositForBurn()`` transaction hash on the source chain.

        :param poll_interval:
            Override of ``config.poll_interval``.

        :param max_wait:
            Override of ``config.max_wait``. Covers every kind of wait.

        :param should_stop:
            Checked before each request. Returning ``True`` aborts polling.

        :param on_phase_change:
            Progress callback receiving ``(phase, attempt)``. Phase is one of
            ``"waiting_for_indexing"``, ``"pending_confirmations"``, ``"rate_limited"``,
            ``"transport_error"`` or ``"complete"``.

        :return:
            Complete :py:class:`Attestation`. Pending answers are never returned.

        :raises AttestationTimeout:
            Deadline passed without a complete attestation.

        :raises TransferCancelled:
            ``should_stop`` returned ``True``.
        """
        if poll_interval is None:
            poll_interval = self.config.poll_interval
        if max_wait is None:
            max_wait = self.config.max_wait

        transaction_hash = _normalise_tx_hash(transaction_hash)
        url = self.get_url(transaction_hash)

        logger.info(
            "Waiting for CCTP attestation on %s: tx=%s, max_wait=%.0fs\n  Iris API: %s",
            self.domain_name,
            transaction_hash,
            max_wait,
            url,
        )

        start = self.clock()
        deadline = start + max_wait
        attempt = 0

        def _notify(phase: str):
            if on_phase_change is not None:
                on_phase_change(phase, attempt)

        while True:
            elapsed = self.clock() - start
            if elapsed >= max_wait:
                raise AttestationTimeout(
                    f"CCTP attestation not ready after {max_wait}s for tx {transaction_hash} on {self.domain_name} ({attempt} attempts)",
                    transaction_hash=transaction_hash,
                    attempts=attempt,
                )

            if should_stop is not None and should_stop():
                raise TransferCancelled(f"Attestation polling stopped for tx {transaction_hash}")

            attempt += 1
            log_level = logging.INFO if attempt == 1 else logging.DEBUG
            logger.log(
                log_level,
                "Polling CCTP attestation: %s, tx=%s, attempt=%d, elapsed=%.1fs",
                self.domain_name,
                transaction_hash,
                attempt,
                elapsed,
            )

            wait = poll_interval

            try:
                response = self.session.get(url, timeout=self.config.request_timeout)
            except requests.RequestException as e:
                _notify("transport_error")
                logger.warning("Iris request failed for tx %s: %s, retrying in %.1fs", transaction_hash, e, wait)
            else:
                if response.status_code == HTTP_TOO_MANY_REQUESTS:
                    wait = self.config.rate_limit_cooldown
                    _notify("rate_limited")
                    logger.warning("Iris rate limit hit (429), cooling down for %.0fs", wait)
                elif response.status_code == HTTP_NOT_FOUND:
                    _notify("waiting_for_indexing")
                    logger.debug("Attestation not yet indexed (404) for tx %s", transaction_hash)
                elif response.status_code >= 400:
                    _notify("transport_error")
                    logger.warning("Iris answered HTTP %d for tx %s, retrying in %.1fs", response.status_code, transaction_hash, wait)
                else:
                    attestation = self._parse_response(response, transaction_hash)
                    if attestation is None:
                        _notify("waiting_for_indexing")
                    elif attestation.is_complete:
                        _notify("complete")
                        logger.info(
                            "Attestation complete on %s after %d attempts (%.1fs): tx=%s",
                            self.domain_name,
                            attempt,
                            self.clock() - start,
                            transaction_hash,
                        )
                        return attestation
                    else:
                        _notify("pending_confirmations")
                        logger.debug(
                            "Attestation pending for tx %s, delay_reason=%s",
                            transaction_hash,
                            attestation.delay_reason,
                        )

            remaining = deadline - self.clock()
            if remaining > 0:
                self.sleep(min(wait, remaining))

    def _parse_response(self, response, transaction_hash: str) -> Attestation | None:
        try:
            messages = response.json().get("messages", [])
        except ValueError:
            logger.warning("Iris returned a non-JSON body for tx %s", transaction_hash)
            return None

        if not messages:
            return None

        return parse_attestation_message(messages[0])
