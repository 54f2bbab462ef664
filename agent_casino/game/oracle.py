"""
Randomness oracle client.

The oracle network is an opaque service: it hands out the instructions that
create a randomness account, commit it to a queue and, once an oracle has
produced the value, reveal it. Instructions travel as base64 of their
bincode serialization.
"""
import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from solders.instruction import Instruction
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)


class OracleClient(ABC):
    """Operations the settlement flow needs from the oracle network."""

    @abstractmethod
    async def create_round(self, randomness: Pubkey, queue: Pubkey, authority: Pubkey) -> Instruction:
        """Instruction creating the randomness account (signed by ``randomness``)."""

    @abstractmethod
    async def commit(self, randomness: Pubkey, queue: Pubkey, authority: Pubkey) -> Instruction:
        """Instruction binding the account to a future oracle output."""

    @abstractmethod
    async def build_reveal_instruction(self, randomness: Pubkey, authority: Pubkey) -> Optional[Instruction]:
        """Reveal instruction, or None while the oracle has not produced the value."""


def _decode_instruction(payload: dict) -> Instruction:
    try:
        return Instruction.from_bytes(base64.b64decode(payload["instruction"]))
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Oracle gateway returned a malformed instruction: {e}") from e


class SwitchboardGateway(OracleClient):
    """Oracle client backed by a Switchboard on-demand gateway over HTTP."""

    def __init__(self, base_url: str, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _post(self, path: str, body: dict) -> httpx.Response:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            return await client.post(path, json=body)

    async def create_round(self, randomness: Pubkey, queue: Pubkey, authority: Pubkey) -> Instruction:
        response = await self._post("/randomness/create", {
            "randomness": str(randomness),
            "queue": str(queue),
            "authority": str(authority),
        })
        response.raise_for_status()
        logger.debug(f"[ORACLE] Create instruction for {randomness}")
        return _decode_instruction(response.json())

    async def commit(self, randomness: Pubkey, queue: Pubkey, authority: Pubkey) -> Instruction:
        response = await self._post("/randomness/commit", {
            "randomness": str(randomness),
            "queue": str(queue),
            "authority": str(authority),
        })
        response.raise_for_status()
        logger.debug(f"[ORACLE] Commit instruction for {randomness}")
        return _decode_instruction(response.json())

    async def build_reveal_instruction(self, randomness: Pubkey, authority: Pubkey) -> Optional[Instruction]:
        response = await self._post("/randomness/reveal", {
            "randomness": str(randomness),
            "authority": str(authority),
        })
        # 202 / 404: the oracle has not produced a value for this slot yet
        if response.status_code in (202, 404):
            return None
        response.raise_for_status()
        return _decode_instruction(response.json())
