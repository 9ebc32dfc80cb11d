"""Solana provider: JSON-RPC over httpx, transactions built with solders."""

from __future__ import annotations

import base64
import itertools
import logging
from datetime import datetime, timezone
from typing import Any

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction as SolanaTransaction

from agent_vault.errors import ProviderError, SigningFailedError
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.key_derivation import derive_from_private_key
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest, TxStatus
from agent_vault.wallet.providers.base import BaseWalletProvider

logger = logging.getLogger("agent_vault.wallet.providers.solana")

BASE_FEE_SOL = "0.000005"
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


class SolanaProvider(BaseWalletProvider):
    chain = Chain.SOLANA

    _ids = itertools.count(1)

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        data = await self._post_json("", payload)
        if not isinstance(data, dict):
            raise ProviderError(f"solana {method}: malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise ProviderError(f"solana {method} failed: {message}")
        return data.get("result")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Balance:
        result = await self._rpc("getBalance", [address])
        return Balance(
            amount=self.format_amount(result["value"]),
            denomination="SOL",
            chain=self.chain,
            address=address,
            block_number=result.get("context", {}).get("slot"),
        )

    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]:
        entries = await self._rpc("getSignaturesForAddress", [address, {"limit": limit}]) or []
        history = []
        for entry in entries[:limit]:
            block_time = entry.get("blockTime")
            history.append(
                Transaction(
                    hash=entry["signature"],
                    from_address=address,
                    to="",
                    amount="0",
                    chain=self.chain,
                    timestamp=(
                        datetime.fromtimestamp(block_time, tz=timezone.utc)
                        if block_time
                        else datetime.now(timezone.utc)
                    ),
                    status=TxStatus.FAILED if entry.get("err") else TxStatus.CONFIRMED,
                    data={"slot": entry.get("slot"), "memo": entry.get("memo")},
                )
            )
        return history

    async def get_block_number(self) -> int:
        return int(await self._rpc("getSlot"))

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        result = await self._rpc(
            "getTransaction",
            [tx_hash, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}],
        )
        if not result:
            return None
        meta = result.get("meta") or {}
        source, destination, lamports = "", "", 0
        for ix in result.get("transaction", {}).get("message", {}).get("instructions", []):
            parsed = ix.get("parsed") if isinstance(ix, dict) else None
            if isinstance(parsed, dict) and parsed.get("type") == "transfer":
                info = parsed.get("info", {})
                source = info.get("source", "")
                destination = info.get("destination", "")
                lamports = int(info.get("lamports", 0))
                break
        block_time = result.get("blockTime")
        return Transaction(
            hash=tx_hash,
            from_address=source,
            to=destination,
            amount=self.format_amount(lamports),
            chain=self.chain,
            timestamp=(
                datetime.fromtimestamp(block_time, tz=timezone.utc)
                if block_time
                else datetime.now(timezone.utc)
            ),
            status=TxStatus.FAILED if meta.get("err") else TxStatus.CONFIRMED,
            fee=self.format_amount(meta.get("fee", 0)),
        )

    def validate_address(self, address: str) -> bool:
        try:
            return len(bytes(Pubkey.from_string(address))) == 32
        except (ValueError, TypeError):
            return False

    async def estimate_fee(self, request: TransactionRequest) -> str:
        return BASE_FEE_SOL

    # ------------------------------------------------------------------
    # Signing / sending
    # ------------------------------------------------------------------

    async def _recent_blockhash(self) -> Hash:
        if not self._connected:
            # Offline signing: the transaction must be re-signed before broadcast.
            return Hash.default()
        result = await self._rpc("getLatestBlockhash", [{"commitment": "finalized"}])
        return Hash.from_string(result["value"]["blockhash"])

    async def sign_transaction(self, request: TransactionRequest, private_key: str) -> SignedTransaction:
        seed = bytes.fromhex(derive_from_private_key(self.chain, private_key).private_key[2:])
        keypair = Keypair.from_seed(seed)
        if not self.validate_address(request.to):
            raise SigningFailedError(f"Invalid solana recipient: {request.to}")
        try:
            lamports = self.parse_amount(request.amount)
        except ValueError as exc:
            raise SigningFailedError(str(exc)) from exc

        instructions = [
            transfer(
                TransferParams(
                    from_pubkey=keypair.pubkey(),
                    to_pubkey=Pubkey.from_string(request.to),
                    lamports=lamports,
                )
            )
        ]
        if request.memo:
            instructions.append(Instruction(MEMO_PROGRAM_ID, request.memo.encode("utf-8"), []))

        blockhash = await self._recent_blockhash()
        message = Message.new_with_blockhash(instructions, keypair.pubkey(), blockhash)
        tx = SolanaTransaction([keypair], message, blockhash)
        signature = str(tx.signatures[0])
        return SignedTransaction(
            signed_tx=base64.b64encode(bytes(tx)).decode("ascii"),
            signature=signature,
            tx_hash=signature,
            request=request,
        )

    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        if signed is None:
            raise ProviderError("solana send requires a signed transaction")
        signature = await self._rpc(
            "sendTransaction", [signed.signed_tx, {"encoding": "base64"}]
        )
        logger.info(f"solana transfer of {request.amount} SOL from {from_address} sent")
        return str(signature)
