"""
Solana blockchain operations for Agent Casino.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

import base58
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from agent_casino.errors import TransactionFailed

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

ALREADY_PROCESSED_MARKERS = ("already been processed", "AlreadyProcessed")

# Raised when the node cannot be reached at all
TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError)


def keypair_from_base58(secret: str) -> Keypair:
    """Create keypair from base58 secret key."""
    secret_bytes = base58.b58decode(secret)
    return Keypair.from_bytes(secret_bytes)


def _rpc_error_logs(error: RPCException) -> List[str]:
    """Pull program logs out of a preflight failure, if the node sent any."""
    payload = error.args[0] if error.args else None
    data = getattr(payload, "data", None)
    logs = getattr(data, "logs", None)
    return list(logs) if logs else []


def _rpc_error_message(error: RPCException) -> str:
    payload = error.args[0] if error.args else None
    return getattr(payload, "message", None) or str(error)


class SolanaChain:
    """Thin async wrapper over the Solana RPC for one signing wallet.

    Every method opens its own client; nothing is cached between calls so
    state is always re-read from the chain. Transport failures (node
    unreachable, HTTP errors) surface as TransactionFailed like any other
    rejection.
    """

    def __init__(self, rpc_url: str, payer: Keypair, retry_delay: float = 1.0):
        self.rpc_url = rpc_url
        self.payer = payer
        self.retry_delay = retry_delay

    @property
    def address(self) -> Pubkey:
        return self.payer.pubkey()

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        """Fetch raw account data, or None if the account does not exist.

        IMPORTANT: Raises on RPC failure (a missing account and a failed read
        are different things).
        """
        max_retries = 3
        last_error = None

        for attempt in range(max_retries):
            try:
                async with AsyncClient(self.rpc_url) as client:
                    resp = await client.get_account_info(address, commitment=Confirmed)
                    if resp.value is None:
                        return None
                    return bytes(resp.value.data)
            except Exception as e:
                last_error = e
                logger.warning(f"[RPC] Account read {attempt + 1}/{max_retries} failed for {address}: {e}")
                if attempt < max_retries - 1:
                    await asyncio.sleep(self.retry_delay)

        logger.error(f"[RPC] All retries failed reading {address}: {last_error}")
        raise TransactionFailed(f"Failed to read account {address}: {last_error}")

    async def send_and_confirm(
        self,
        instructions: Sequence[Instruction],
        extra_signers: Sequence[Keypair] = (),
        compute_unit_price: Optional[int] = None,
        compute_unit_limit: Optional[int] = None,
    ) -> str:
        """Sign with the payer (plus extra signers), send, and wait for confirmation.

        Returns:
            Transaction signature. Raises TransactionFailed on rejection.
        """
        ixs: List[Instruction] = []
        if compute_unit_price is not None:
            ixs.append(set_compute_unit_price(compute_unit_price))
        if compute_unit_limit is not None:
            ixs.append(set_compute_unit_limit(compute_unit_limit))
        ixs.extend(instructions)

        signature = None
        try:
            async with AsyncClient(self.rpc_url) as client:
                blockhash_resp = await client.get_latest_blockhash(Confirmed)
                recent_blockhash = blockhash_resp.value.blockhash

                tx = Transaction.new_signed_with_payer(
                    ixs,
                    self.payer.pubkey(),
                    [self.payer, *extra_signers],
                    recent_blockhash,
                )
                signature = tx.signatures[0]

                try:
                    await client.send_raw_transaction(
                        bytes(tx),
                        opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
                    )
                except RPCException as e:
                    raise TransactionFailed(
                        _rpc_error_message(e),
                        logs=_rpc_error_logs(e),
                        signature=str(signature),
                    ) from e

                await self._confirm(client, signature)
        except TRANSPORT_ERRORS as e:
            logger.warning(f"[RPC] Transport error sending transaction: {e}")
            raise TransactionFailed(
                f"RPC transport error: {e}",
                signature=str(signature) if signature is not None else None,
            ) from e

        logger.debug(f"[TX] Confirmed {signature}")
        return str(signature)

    async def submit_raw_transaction(self, raw: bytes, signature: str) -> str:
        """Submit a transaction signed elsewhere (e.g. an x402 payment).

        Raises TransactionFailed with ``already_processed`` set when the node
        reports the transaction has landed before.
        """
        try:
            async with AsyncClient(self.rpc_url) as client:
                resp = await client.send_raw_transaction(
                    raw,
                    opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
                )
                return str(resp.value)
        except RPCException as e:
            message = _rpc_error_message(e)
            already = any(marker in message for marker in ALREADY_PROCESSED_MARKERS)
            raise TransactionFailed(
                message,
                logs=_rpc_error_logs(e),
                already_processed=already,
                signature=signature,
            ) from e
        except TRANSPORT_ERRORS as e:
            logger.warning(f"[RPC] Transport error submitting {signature}: {e}")
            raise TransactionFailed(f"RPC transport error: {e}", signature=signature) from e

    async def confirm(self, signature: str) -> None:
        """Wait for confirmation; raises TransactionFailed if the tx failed on chain."""
        try:
            async with AsyncClient(self.rpc_url) as client:
                await self._confirm(client, Signature.from_string(signature))
        except TRANSPORT_ERRORS as e:
            logger.warning(f"[RPC] Transport error confirming {signature}: {e}")
            raise TransactionFailed(f"RPC transport error: {e}", signature=signature) from e

    async def _confirm(self, client: AsyncClient, signature: Signature) -> None:
        try:
            resp = await client.confirm_transaction(signature, Confirmed)
        except UnconfirmedTxError as e:
            raise TransactionFailed(f"Transaction {signature} was not confirmed: {e}", signature=str(signature)) from e

        status = resp.value[0] if resp.value else None
        if status is None:
            raise TransactionFailed(f"Transaction {signature} not found", signature=str(signature))
        if status.err is not None:
            raise TransactionFailed(f"Transaction {signature} failed: {status.err}", signature=str(signature))
