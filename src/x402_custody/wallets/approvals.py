"""Drive a custodial wallet transaction from creation to a terminal status.

The flow moves through :class:`ApprovalState`::

    CREATED -> PENDING_APPROVAL -> SIGNED -> SUBMITTED -> SUCCESS | FAILED

Polling uses a fixed interval and a hard attempt ceiling. Running out of
attempts is not an error: the last observed record comes back with
``exhausted=True``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from ..errors import NoApprovalFoundError, PollingError, ProtocolViolationError
from ..keys import EXTERNAL_WALLET_SIGNER_TYPE, KeyMaterial
from ..signing import sign_message
from ..types import ChainFamily, PendingApproval, TransactionRecord, TransactionStatus
from .client import WalletApiClient
from .extractors import TX_ID_EXTRACTORS, Extractor, first_match

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ApprovalState(str, Enum):
    CREATED = "created"
    PENDING_APPROVAL = "pending-approval"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PollingConfig:
    """Polling cadence.

    ``interval``/``max_attempts`` bound the wait for a terminal status;
    ``approval_interval``/``approval_max_attempts`` bound the search for an
    on-chain id right after an approval is submitted.
    """

    interval: float = 5.0
    max_attempts: int = 60
    approval_interval: float = 1.0
    approval_max_attempts: int = 10


@dataclass
class ApprovalResult:
    transaction_id: str
    state: ApprovalState
    signature: Optional[str] = None
    tx_id: Optional[str] = None
    record: Optional[TransactionRecord] = None
    history: list[ApprovalState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is ApprovalState.SUCCESS


def signer_address_of(signer: Any) -> Optional[str]:
    """Signer address from ``signer.address``, else the last colon segment
    of ``signer.locator`` (or of a plain string signer)."""
    if isinstance(signer, dict):
        address = signer.get("address")
        if isinstance(address, str) and address:
            return address
        signer = signer.get("locator")
    if isinstance(signer, str) and signer:
        return signer.rsplit(":", 1)[-1]
    return None


def extract_pending_approval(response: dict[str, Any]) -> Optional[PendingApproval]:
    """Read the single pending approval of a transaction response.

    Returns None when nothing is pending.

    Raises:
        ProtocolViolationError: If more than one approval is pending.
        NoApprovalFoundError: If the pending approval has no message or signer.
    """
    approvals = response.get("approvals") if isinstance(response, dict) else None
    pending = approvals.get("pending") if isinstance(approvals, dict) else None
    if not pending:
        return None
    if len(pending) > 1:
        raise ProtocolViolationError(
            f"Expected exactly one pending approval, got {len(pending)}"
        )

    entry = pending[0] if isinstance(pending[0], dict) else {}
    message = entry.get("message")
    if not isinstance(message, str) or not message:
        raise NoApprovalFoundError("Transaction message not found in pending approvals")
    address = signer_address_of(entry.get("signer"))
    if not address:
        raise NoApprovalFoundError("Signer not found in pending approvals")

    return PendingApproval(
        transaction_id=str(response.get("id", "")),
        message=message,
        signer_address=address,
    )


def to_record(response: dict[str, Any], attempts: int = 0, exhausted: bool = False) -> TransactionRecord:
    return TransactionRecord(
        id=str(response.get("id", "")),
        status=response.get("status"),
        on_chain_tx_id=first_match(response),
        attempts=attempts,
        exhausted=exhausted,
        raw=response,
    )


def _same_signer(address: str, key: KeyMaterial) -> bool:
    # Base58 is case sensitive, hex addresses are not
    if key.chain_family is ChainFamily.SOLANA_ED25519:
        return address == key.address
    return address.lower() == key.address.lower()


class ApprovalFlow:
    """Creates, signs, submits and follows custodial wallet transactions.

    Args:
        client: Wallet API client.
        polling: Polling cadence; defaults to :class:`PollingConfig`.
        sleep: Awaitable sleep, injectable for tests.
        extractors: On-chain id extractors in the order they are tried.
        logger: Logger; defaults to this module's logger.
    """

    def __init__(
        self,
        client: WalletApiClient,
        polling: Optional[PollingConfig] = None,
        sleep: Sleep = asyncio.sleep,
        extractors: tuple[Extractor, ...] = TX_ID_EXTRACTORS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._polling = polling or PollingConfig()
        self._sleep = sleep
        self._extractors = extractors
        self._logger = logger or logging.getLogger(__name__)

    # =========================================================================
    # Steps
    # =========================================================================

    def sign(self, approval: PendingApproval, key: KeyMaterial) -> str:
        """Sign a pending approval's message.

        Raises:
            ProtocolViolationError: If the approval names a different signer
                than ``key``.
        """
        if key.address and not _same_signer(approval.signer_address, key):
            raise ProtocolViolationError(
                f"Pending approval for {approval.transaction_id} expects signer "
                f"{approval.signer_address}, not {key.address}"
            )
        return sign_message(approval.message, key)

    @staticmethod
    def approval_signer(approval: PendingApproval, key: KeyMaterial) -> str:
        if key.chain_family is ChainFamily.EVM_P256:
            return key.signer_locator
        return f"{EXTERNAL_WALLET_SIGNER_TYPE}:{approval.signer_address}"

    async def _poll(self, wallet: str, transaction_id: str) -> dict[str, Any]:
        try:
            return await self._client.get_transaction(wallet, transaction_id)
        except httpx.HTTPError as e:
            raise PollingError(
                f"Failed to get transaction status during polling: {e}",
                transaction_id=transaction_id,
            ) from e

    async def resolve_tx_id(
        self, wallet: str, transaction_id: str, response: dict[str, Any]
    ) -> tuple[Optional[str], Optional[dict[str, Any]]]:
        """Find the on-chain id in an approval response, polling if needed.

        Returns:
            The id (or None) and the last status response seen while
            polling (or None when no poll was needed).
        """
        tx_id = first_match(response, self._extractors)
        if tx_id:
            return tx_id, None

        latest: Optional[dict[str, Any]] = None
        for attempt in range(1, self._polling.approval_max_attempts + 1):
            await self._sleep(self._polling.approval_interval)
            latest = await self._poll(wallet, transaction_id)
            tx_id = first_match(latest, self._extractors)
            if tx_id:
                self._logger.debug("Found on-chain id for %s after %d poll(s)", transaction_id, attempt)
                return tx_id, latest
            if TransactionStatus.is_terminal(latest.get("status")):
                break
        self._logger.info("No on-chain id yet for %s", transaction_id)
        return None, latest

    async def wait_for_completion(
        self,
        wallet: str,
        transaction_id: str,
        initial: Optional[dict[str, Any]] = None,
    ) -> TransactionRecord:
        """Poll until the transaction is ``success`` or ``failed``.

        Any other status is retried every ``interval`` seconds, at most
        ``max_attempts`` times. When attempts run out the last record is
        returned with ``exhausted=True``.

        Raises:
            PollingError: If a status request fails at the transport level.
            UpstreamServiceError: If the backend answers with an error.
        """
        if initial is not None and TransactionStatus.is_terminal(initial.get("status")):
            return to_record(initial)

        latest = initial or {"id": transaction_id}
        for attempt in range(1, self._polling.max_attempts + 1):
            await self._sleep(self._polling.interval)
            latest = await self._poll(wallet, transaction_id)
            status = latest.get("status")
            self._logger.debug(
                "Transaction %s status %s (attempt %d/%d)",
                transaction_id,
                status,
                attempt,
                self._polling.max_attempts,
            )
            if TransactionStatus.is_terminal(status):
                return to_record(latest, attempts=attempt)

        self._logger.warning(
            "Transaction %s still %s after %d attempts",
            transaction_id,
            latest.get("status"),
            self._polling.max_attempts,
        )
        return to_record(latest, attempts=self._polling.max_attempts, exhausted=True)

    # =========================================================================
    # Whole flow
    # =========================================================================

    async def sign_and_submit(
        self,
        wallet: str,
        approval: PendingApproval,
        key: KeyMaterial,
        wait: bool = True,
        history: Optional[list[ApprovalState]] = None,
    ) -> ApprovalResult:
        """Sign a pending approval, submit it and follow the transaction."""
        history = history if history is not None else [ApprovalState.PENDING_APPROVAL]
        signature = self.sign(approval, key)
        history.append(ApprovalState.SIGNED)

        response = await self._client.submit_approval(
            wallet, approval.transaction_id, self.approval_signer(approval, key), signature
        )
        history.append(ApprovalState.SUBMITTED)
        self._logger.info("Submitted approval for transaction %s", approval.transaction_id)

        return await self._follow(
            wallet, approval.transaction_id, response, wait, history, signature=signature
        )

    async def _follow(
        self,
        wallet: str,
        transaction_id: str,
        response: dict[str, Any],
        wait: bool,
        history: list[ApprovalState],
        signature: Optional[str] = None,
    ) -> ApprovalResult:
        tx_id, latest = await self.resolve_tx_id(wallet, transaction_id, response)
        current = latest or response
        record = to_record(current)

        if wait:
            record = await self.wait_for_completion(wallet, transaction_id, initial=current)
            tx_id = tx_id or record.on_chain_tx_id

        state = ApprovalState.SUBMITTED
        if record.status == TransactionStatus.SUCCESS.value:
            state = ApprovalState.SUCCESS
        elif record.status == TransactionStatus.FAILED.value:
            state = ApprovalState.FAILED
        if state is not ApprovalState.SUBMITTED:
            history.append(state)

        return ApprovalResult(
            transaction_id=transaction_id,
            state=state,
            signature=signature,
            tx_id=tx_id,
            record=record,
            history=history,
        )

    async def execute(
        self,
        wallet: str,
        create: Callable[[], Awaitable[dict[str, Any]]],
        key: KeyMaterial,
        wait: bool = True,
        require_approval: bool = True,
    ) -> ApprovalResult:
        """Run the whole flow for a transaction produced by ``create``.

        Args:
            wallet: Wallet locator the transaction belongs to
            create: Coroutine factory that creates the transaction
            key: Key of the external signer
            wait: Poll until a terminal status
            require_approval: Treat a response with nothing pending as a
                protocol error instead of an already executed transaction

        Raises:
            NoApprovalFoundError: If nothing is pending and an approval was
                required.
        """
        response = await create()
        history = [ApprovalState.CREATED]
        transaction_id = str(response.get("id", ""))
        self._logger.info("Created transaction %s (status %s)", transaction_id, response.get("status"))

        approval = extract_pending_approval(response)
        if approval is None:
            if require_approval:
                raise NoApprovalFoundError(
                    f"No pending approvals found for transaction {transaction_id}"
                )
            history.append(ApprovalState.SUBMITTED)
            return await self._follow(wallet, transaction_id, response, wait, history)

        history.append(ApprovalState.PENDING_APPROVAL)
        return await self.sign_and_submit(wallet, approval, key, wait=wait, history=history)

    async def transfer(
        self,
        wallet: str,
        token: str,
        recipient: str,
        amount: Union[str, int, float],
        key: KeyMaterial,
        wait: bool = True,
    ) -> ApprovalResult:
        """Create a token transfer and drive it through approval."""
        return await self.execute(
            wallet,
            lambda: self._client.create_transfer(wallet, token, recipient, str(amount)),
            key,
            wait=wait,
        )

    async def submit_transaction(
        self,
        wallet: str,
        transaction: Union[str, dict[str, Any]],
        key: KeyMaterial,
        wait: bool = True,
    ) -> ApprovalResult:
        """Create a transaction from serialized bytes or call params and
        drive it through approval."""
        return await self.execute(
            wallet,
            lambda: self._client.create_transaction(wallet, transaction),
            key,
            wait=wait,
            require_approval=False,
        )
