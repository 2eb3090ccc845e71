"""Send and confirm transactions on one chain.

The transfer orchestrator only needs three things from a chain, captured by
the :py:class:`LedgerClient` protocol:

- turn an opaque credential reference into an address
- sign and broadcast a transaction
- block until the transaction is mined

:py:class:`Web3LedgerClient` implements it with :py:mod:`web3` and
:py:mod:`eth_account` local accounts. Tests substitute in-memory fakes.

Credential references
---------------------

Keys never travel through transfer requests or bill records. A request
carries a reference such as ``"payer"``, which the ledger client resolves
through the callable it was constructed with.

Example::

    from eth_account import Account
    from web3 import Web3, HTTPProvider

    from bridgepay.cctp.config import get_cctp_chain
    from bridgepay.cctp.ledger_client import LocalAccountResolver, Web3LedgerClient

    resolver = LocalAccountResolver({"payer": Account.from_key(os.environ["PRIVATE_KEY"])})
    source = Web3LedgerClient(
        Web3(HTTPProvider(os.environ["JSON_RPC_SEPOLIA"])),
        get_cctp_chain(11155111),
        resolver,
    )
"""

import logging
import threading
from typing import Callable, Protocol

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted

from bridgepay.cctp.config import CCTPChain
from bridgepay.cctp.errors import TransactionReverted

logger = logging.getLogger(__name__)

#: Multiplier applied on top of ``eth_estimateGas``
DEFAULT_GAS_BUFFER = 1.2


class LedgerClient(Protocol):
    """What the orchestrator needs from a chain."""

    #: Chain this client talks to
    chain: CCTPChain

    def derive_address(self, credential_ref: str) -> HexAddress:
        """Address controlled by the referenced credential."""

    def send_transaction(self, credential_ref: str, to: HexAddress, data: bytes) -> str:
        """Sign and broadcast a contract call, return its ``0x`` transaction hash."""

    def wait_for_confirmation(self, tx_hash: str, timeout: float | None = None) -> dict:
        """Block until mined.

        :raises TimeoutError:
            Not mined within the timeout.

        :raises TransactionReverted:
            Mined but failed.
        """


class LocalAccountResolver:
    """Resolve credential references to in-process :py:class:`LocalAccount` signers."""

    def __init__(self, accounts: dict[str, LocalAccount]):
        self._accounts = dict(accounts)

    def __call__(self, credential_ref: str) -> LocalAccount:
        try:
            return self._accounts[credential_ref]
        except KeyError:
            raise KeyError(f"Unknown credential reference: {credential_ref}") from None

    def __repr__(self) -> str:
        # Never print the keys
        return f"<LocalAccountResolver refs={sorted(self._accounts)}>"


class Web3LedgerClient:
    """:py:class:`LedgerClient` backed by a JSON-RPC node.

    Each :py:meth:`send_transaction` signs exactly one transaction. It never
    re-sends with a fresh nonce: if a broadcast fails the caller must first
    find out whether the original transaction landed.

    Nonces are allocated per sender under a lock, from the higher of the
    node's pending count and the last nonce this client broadcast plus one.
    Threads paying from the same account through one client therefore never
    sign two transactions with the same nonce, even when the node has not
    yet seen the previous one in its pending pool.
    """

    def __init__(
        self,
        web3: Web3,
        chain: CCTPChain,
        resolve_credential: Callable[[str], LocalAccount],
        gas_buffer: float = DEFAULT_GAS_BUFFER,
    ):
        """
        :param web3:
            Connection to ``chain``.

        :param chain:
            Chain configuration. ``chain.gas_limit`` skips estimation when set.

        :param resolve_credential:
            Maps a credential reference to a signer.

        :param gas_buffer:
            Multiplier on estimated gas.
        """
        connected_chain_id = web3.eth.chain_id
        assert connected_chain_id == chain.chain_id, f"Web3 is connected to chain {connected_chain_id}, expected {chain.chain_id} ({chain.name})"
        assert gas_buffer >= 1.0, f"Gas buffer must not shrink the estimate: {gas_buffer}"
        self.web3 = web3
        self.chain = chain
        self.resolve_credential = resolve_credential
        self.gas_buffer = gas_buffer
        self._sender_locks: dict[str, threading.Lock] = {}
        self._sender_locks_guard = threading.Lock()
        #: Next nonce per sender, as far as this client knows
        self._next_nonce: dict[str, int] = {}

    def __repr__(self) -> str:
        return f"<Web3LedgerClient {self.chain.name} ({self.chain.chain_id})>"

    def derive_address(self, credential_ref: str) -> HexAddress:
        return self.resolve_credential(credential_ref).address

    def _fill_fees(self, tx: dict):
        # EIP-1559 where the chain has a base fee, legacy gas price elsewhere
        latest = self.web3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            priority_fee = self.web3.eth.max_priority_fee
            tx["maxPriorityFeePerGas"] = priority_fee
            tx["maxFeePerGas"] = base_fee * 2 + priority_fee
        else:
            tx["gasPrice"] = self.web3.eth.gas_price

    def _sender_lock(self, address: str) -> threading.Lock:
        with self._sender_locks_guard:
            lock = self._sender_locks.get(address)
            if lock is None:
                lock = self._sender_locks[address] = threading.Lock()
            return lock

    def send_transaction(self, credential_ref: str, to: HexAddress, data: bytes) -> str:
        account = self.resolve_credential(credential_ref)
        web3 = self.web3

        # Nonce allocation and broadcast happen as one step per sender
        with self._sender_lock(account.address):
            pending_nonce = web3.eth.get_transaction_count(account.address, "pending")
            nonce = max(pending_nonce, self._next_nonce.get(account.address, 0))

            tx = {
                "from": account.address,
                "to": Web3.to_checksum_address(to),
                "data": HexBytes(data),
                "value": 0,
                "chainId": self.chain.chain_id,
                "nonce": nonce,
            }

            if self.chain.gas_limit is not None:
                tx["gas"] = self.chain.gas_limit
            else:
                tx["gas"] = int(web3.eth.estimate_gas(tx) * self.gas_buffer)

            self._fill_fees(tx)

            signed = account.sign_transaction(tx)
            tx_hash = Web3.to_hex(web3.eth.send_raw_transaction(signed.raw_transaction))
            self._next_nonce[account.address] = nonce + 1

        logger.info(
            "Broadcast on %s: to=%s, from=%s, nonce=%d, gas=%d, tx=%s",
            self.chain.name,
            tx["to"],
            account.address,
            tx["nonce"],
            tx["gas"],
            tx_hash,
        )
        return tx_hash

    def wait_for_confirmation(self, tx_hash: str, timeout: float | None = None) -> dict:
        if timeout is None:
            timeout = self.chain.confirmation_timeout

        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise TimeoutError(f"Transaction {tx_hash} not mined on {self.chain.name} within {timeout}s") from e

        receipt = dict(receipt)
        if receipt.get("status") != 1:
            raise TransactionReverted(tx_hash, receipt)

        logger.info("Confirmed on %s in block %s: %s", self.chain.name, receipt.get("blockNumber"), tx_hash)
        return receipt
