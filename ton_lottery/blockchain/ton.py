"""TON ledger client implementation.

Reads account state and history from toncenter (HTTP API v2/v3, via httpx)
and builds signed wallet v4r2 messages with tonsdk. USDT is handled as a
TEP-74 jetton: transfers are internal messages to the signing wallet's own
jetton wallet, deposits arrive as transfer notifications from the deposit
account's jetton wallet.
"""

import asyncio
import base64
import logging
import time
from decimal import Decimal
from typing import Any

import httpx
from tonsdk.boc import Cell
from tonsdk.contract.token.ft import JettonWallet
from tonsdk.contract.wallet import Wallets, WalletVersionEnum
from tonsdk.utils import Address, bytes_to_b64str

from ton_lottery.blockchain.base import (
    BlockchainService,
    IncomingTransfer,
    IncomingTransfers,
    PreparedTransfer,
    TransactionResult,
    TransactionStatus,
)
from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import ADDRESS_LENGTH, ADDRESS_PREFIXES, TON_DECIMALS, Currency
from ton_lottery.core.exceptions import ChainError, ValidationError, WalletError

logger = logging.getLogger(__name__)

JETTON_TRANSFER_NOTIFICATION_OP = 0x7362D09C
TEXT_COMMENT_OP = 0

# A jetton transfer body leaves roughly this much room for an inline comment
MAX_JETTON_COMMENT_BYTES = 24


def is_valid_ton_address(address: Any) -> bool:
    """Check user-friendly (48 chars, EQ/UQ/0Q/kQ) or raw (wc:hex) TON addresses."""
    if not isinstance(address, str) or not address:
        return False
    if len(address) == ADDRESS_LENGTH:
        if not address.startswith(ADDRESS_PREFIXES):
            return False
    elif ":" not in address:
        return False
    try:
        Address(address)
    except Exception:
        return False
    return True


def normalize_address(address: str | None) -> str | None:
    """Raw ``wc:hex`` form of an address, for comparisons across formats."""
    if not address:
        return None
    try:
        return Address(address).to_string(False).lower()
    except Exception:
        return None


class _BitReader:
    """Sequential reader over the data bits of one cell."""

    def __init__(self, cell: Cell):
        self._data = bytes(cell.bits.array)
        self._length = cell.bits.cursor
        self._pos = 0
        self.refs = list(cell.refs)

    @property
    def remaining(self) -> int:
        return self._length - self._pos

    def read_bit(self) -> int:
        if self._pos >= self._length:
            raise ValueError("cell underflow")
        byte = self._data[self._pos // 8]
        bit = (byte >> (7 - self._pos % 8)) & 1
        self._pos += 1
        return bit

    def read_uint(self, bits: int) -> int:
        value = 0
        for _ in range(bits):
            value = (value << 1) | self.read_bit()
        return value

    def read_coins(self) -> int:
        length = self.read_uint(4)
        return self.read_uint(length * 8)

    def read_address(self) -> str | None:
        tag = self.read_uint(2)
        if tag == 0:
            return None
        if tag != 2 or self.read_bit():
            raise ValueError("unsupported address encoding")
        workchain = self.read_uint(8)
        if workchain > 127:
            workchain -= 256
        return f"{workchain}:{self.read_uint(256):064x}"

    def read_rest_bytes(self) -> bytes:
        return bytes(self.read_uint(8) for _ in range(self.remaining // 8))


def _read_text(reader: _BitReader) -> str:
    """Read a snake-encoded text comment starting at the reader position."""
    data = reader.read_rest_bytes()
    while reader.refs:
        reader = _BitReader(reader.refs[0])
        data += reader.read_rest_bytes()
    return data.decode("utf-8", errors="replace")


def decode_comment(body_b64: str) -> str | None:
    """Decode a text comment (op 0) from a base64 BOC message body."""
    reader = _BitReader(Cell.one_from_boc(base64.b64decode(body_b64)))
    if reader.remaining < 32 or reader.read_uint(32) != TEXT_COMMENT_OP:
        return None
    return _read_text(reader)


class TonService(BlockchainService):
    """TON ledger client.

    One signing wallet (v4r2, from the configured mnemonic) sends every
    outbound transfer. Callers serialize sends through SigningWalletLock; this
    class does not lock by itself.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize with network configuration.

        Args:
            settings: Settings override (defaults to get_settings())
            transport: httpx transport override, used by tests
        """
        self._settings = settings or get_settings()
        self._transport = transport
        self._wallet = None
        self._jetton_wallets: dict[str, str] = {}

    @property
    def chain_code(self) -> str:
        return "TON"

    @property
    def wallet_address(self) -> str:
        """User-friendly address of the signing wallet."""
        return self._get_wallet().address.to_string(True, True, False)

    @property
    def deposit_address(self) -> str:
        return self._settings.ton_deposit_address or self.wallet_address

    def _get_wallet(self):
        if self._wallet is None:
            words = self._settings.ton_payout_mnemonic.split()
            if not words:
                raise WalletError("TON payout mnemonic is not configured")
            try:
                _mnemonics, _pub_k, _priv_k, wallet = Wallets.from_mnemonics(
                    words, WalletVersionEnum.v4r2, 0
                )
            except Exception as e:
                raise WalletError("TON payout mnemonic is invalid") from e
            self._wallet = wallet
        return self._wallet

    def validate_address(self, address: str) -> bool:
        return is_valid_ton_address(address)

    def _friendly(self, address: str, bounceable: bool) -> str:
        is_test_only = self._settings.ton_network == "testnet"
        return Address(address).to_string(True, True, bounceable, is_test_only)

    # ============ HTTP ============

    async def _request(
        self,
        method: str,
        base_url: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Call toncenter, retrying 429/5xx and network errors with backoff."""
        headers = {"Accept": "application/json"}
        if self._settings.ton_api_key:
            headers["X-API-Key"] = self._settings.ton_api_key

        attempts = max(1, self._settings.http_max_retries)
        last_error = ""
        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    base_url=base_url, headers=headers, timeout=30.0, transport=self._transport
                ) as client:
                    response = await client.request(method, path, params=params, json=json)
            except httpx.HTTPError as e:
                last_error = str(e)
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    raise ChainError(
                        f"toncenter {path} rejected the request",
                        {"status": response.status_code, "body": response.text[:500]},
                    )
                else:
                    return response.json()

            if attempt < attempts - 1:
                await asyncio.sleep(self._settings.http_backoff_seconds * 2**attempt)

        raise ChainError(f"toncenter {path} unavailable: {last_error}", {"path": path})

    async def _v2(
        self, api_method: str, params: dict[str, Any] | None = None, body: dict[str, Any] | None = None
    ) -> Any:
        http_method = "POST" if body is not None else "GET"
        data = await self._request(http_method, self._settings.toncenter_v2, f"/{api_method}", params=params, json=body)
        if not data.get("ok"):
            raise ChainError(f"toncenter {api_method} failed: {data.get('error')}", {"code": data.get("code")})
        return data["result"]

    async def _v3(self, path: str, params: dict[str, Any]) -> Any:
        return await self._request("GET", self._settings.toncenter_v3, path, params=params)

    # ============ Balance Operations ============

    async def get_native_balance(self, address: str) -> Decimal:
        """Get TON balance."""
        result = await self._v2("getAddressBalance", {"address": address})
        return self.from_smallest_unit(int(result), TON_DECIMALS)

    async def get_jetton_wallet_address(self, owner_address: str) -> str:
        """Raw address of the USDT jetton wallet owned by ``owner_address``."""
        owner = normalize_address(owner_address) or owner_address
        if owner not in self._jetton_wallets:
            data = await self._v3(
                "/jetton/wallets",
                {
                    "owner_address": owner_address,
                    "jetton_address": self._settings.usdt_jetton_master,
                    "limit": 1,
                },
            )
            wallets = data.get("jetton_wallets") or []
            if not wallets:
                raise ChainError("No USDT jetton wallet for owner", {"owner": owner_address})
            self._jetton_wallets[owner] = normalize_address(wallets[0]["address"])
        return self._jetton_wallets[owner]

    async def get_token_balance(self, owner_address: str) -> Decimal:
        """Get USDT balance held by ``owner_address``."""
        data = await self._v3(
            "/jetton/wallets",
            {
                "owner_address": owner_address,
                "jetton_address": self._settings.usdt_jetton_master,
                "limit": 1,
            },
        )
        wallets = data.get("jetton_wallets") or []
        if not wallets:
            return Decimal("0")
        return self.from_smallest_unit(int(wallets[0]["balance"]), self._settings.usdt_decimals)

    async def get_seqno(self) -> int:
        """Current seqno of the signing wallet (0 when not deployed)."""
        result = await self._v2("getWalletInformation", {"address": self.wallet_address})
        return int(result.get("seqno") or 0)

    # ============ Transaction Operations ============

    async def _jetton_transfer(
        self, to_address: str, amount: Decimal, comment: str | None
    ) -> tuple[str, int, Cell]:
        """Destination, attached TON and body of a USDT transfer via our jetton wallet."""
        jetton_wallet = await self.get_jetton_wallet_address(self.wallet_address)
        forward_payload = None
        if comment:
            encoded = comment.encode("utf-8")[:MAX_JETTON_COMMENT_BYTES]
            forward_payload = TEXT_COMMENT_OP.to_bytes(4, "big") + encoded
        body = JettonWallet().create_transfer_body(
            to_address=Address(to_address),
            jetton_amount=self.to_smallest_unit(amount, self._settings.usdt_decimals),
            forward_amount=self.to_smallest_unit(self._settings.jetton_forward_ton, TON_DECIMALS),
            forward_payload=forward_payload,
            response_address=Address(self.wallet_address),
            query_id=int(time.time() * 1000),
        )
        return (
            self._friendly(jetton_wallet, bounceable=True),
            self.to_smallest_unit(self._settings.jetton_transfer_ton, TON_DECIMALS),
            body,
        )

    async def prepare_transfer(
        self, currency: str, to_address: str, amount: Decimal, comment: str | None = None
    ) -> PreparedTransfer:
        """Sign a TON or USDT transfer against the current wallet seqno."""
        if currency not in (Currency.TON.value, Currency.USDT.value):
            raise ValidationError(f"Unsupported currency: {currency}", {"currency": currency})
        if not self.validate_address(to_address):
            raise ValidationError(f"Invalid address: {to_address}", {"address": to_address})

        wallet = self._get_wallet()
        if currency == Currency.USDT.value:
            destination, amount_nano, payload = await self._jetton_transfer(to_address, amount, comment)
        else:
            destination = self._friendly(to_address, bounceable=False)
            amount_nano = self.to_smallest_unit(amount, TON_DECIMALS)
            payload = comment
        seqno = await self.get_seqno()

        try:
            query = wallet.create_transfer_message(
                to_addr=destination, amount=amount_nano, seqno=seqno, payload=payload
            )
        except Exception as e:
            logger.exception(f"Failed to sign {amount} {currency} to {to_address}")
            raise WalletError(f"Failed to sign transfer: {e}") from e

        message = query["message"]
        return PreparedTransfer(
            currency=currency,
            to_address=to_address,
            amount=amount,
            message_hash=base64.b64encode(message.bytes_hash()).decode(),
            comment=comment,
            payload=message,
            seqno=seqno,
        )

    async def submit_transfer(self, prepared: PreparedTransfer) -> TransactionResult:
        """Submit a signed message and confirm it.

        The wallet seqno must advance within the confirmation window. Every
        outcome carries the message hash computed at signing time.
        """
        message_hash = prepared.message_hash
        try:
            result = await self._v2(
                "sendBocReturnHash", body={"boc": bytes_to_b64str(prepared.payload.to_boc(False))}
            )
        except ChainError as e:
            return TransactionResult(
                success=False, error=e.message, status=TransactionStatus.FAILED, message_hash=message_hash
            )
        if result.get("hash") and result["hash"] != message_hash:
            logger.warning(f"toncenter reported hash {result['hash']} for message {message_hash}")
        logger.info(
            f"Submitted message {message_hash} (seqno {prepared.seqno}): "
            f"{prepared.amount} {prepared.currency} to {prepared.to_address}"
        )

        if not await self._wait_for_seqno(prepared.seqno or 0):
            return TransactionResult(
                success=False,
                error="Timed out waiting for the wallet seqno to advance",
                status=TransactionStatus.PENDING,
                message_hash=message_hash,
            )

        tx_hash = await self._resolve_tx_hash(message_hash)
        if tx_hash:
            return TransactionResult(
                success=True,
                tx_hash=tx_hash,
                confirmations=1,
                status=TransactionStatus.CONFIRMED,
                message_hash=message_hash,
            )

        logger.warning(f"Seqno advanced but transaction for message {message_hash} not visible yet")
        return TransactionResult(
            success=True,
            tx_hash=message_hash,
            confirmations=1,
            status=TransactionStatus.CONFIRMED,
            message_hash=message_hash,
            provisional=True,
        )

    async def _wait_for_seqno(self, sent_seqno: int) -> bool:
        deadline = time.monotonic() + self._settings.send_confirm_timeout_seconds
        while time.monotonic() < deadline:
            await asyncio.sleep(self._settings.send_poll_interval_seconds)
            try:
                if await self.get_seqno() > sent_seqno:
                    return True
            except ChainError as e:
                logger.warning(f"Seqno poll failed: {e.message}")
        return False

    async def _resolve_tx_hash(self, message_hash: str, tries: int = 3) -> str | None:
        for attempt in range(tries):
            try:
                tx_hash = await self.find_transaction_by_message_hash(message_hash)
            except ChainError as e:
                logger.warning(f"History lookup failed: {e.message}")
                tx_hash = None
            if tx_hash:
                return tx_hash
            if attempt < tries - 1:
                await asyncio.sleep(self._settings.send_poll_interval_seconds)
        return None

    # ============ History ============

    async def _get_transactions(self, address: str, limit: int, **cursor: Any) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"address": address, "limit": limit, "archival": "true"}
        params.update({k: v for k, v in cursor.items() if v is not None})
        return await self._v2("getTransactions", params)

    async def find_transaction_by_message_hash(self, message_hash: str) -> str | None:
        """Search recent signing wallet history for the transaction created by ``message_hash``."""
        for tx in await self._get_transactions(self.wallet_address, limit=30):
            in_msg = tx.get("in_msg") or {}
            if message_hash in (in_msg.get("hash"), in_msg.get("hash_norm")):
                return tx["transaction_id"]["hash"]
        return None

    async def get_incoming_transfers(
        self, since_lt: int = 0, before_lt: int | None = None, before_hash: str | None = None
    ) -> IncomingTransfers:
        """Read deposit account history newer than ``since_lt``.

        toncenter returns newest first; pages are walked backwards until the
        cursor is reached or the page budget is spent. An incomplete walk
        reports the oldest transaction it read as the resume point, and a
        later call passes it back as ``before_lt``/``before_hash``.
        """
        account = self.deposit_address
        page_size = self._settings.deposit_page_size
        collected: list[dict[str, Any]] = []
        lt = str(before_lt) if before_lt else None
        tx_hash = before_hash if before_lt else None
        complete = False

        for _ in range(self._settings.deposit_max_pages):
            page = await self._get_transactions(
                account, page_size, lt=lt, hash=tx_hash, to_lt=since_lt or None
            )
            raw_count = len(page)
            if lt is not None and page and page[0]["transaction_id"]["lt"] == lt:
                page = page[1:]
            fresh = [tx for tx in page if int(tx["transaction_id"]["lt"]) > since_lt]
            collected.extend(fresh)
            if len(fresh) < len(page) or raw_count < page_size or not fresh:
                complete = True
                break
            lt = fresh[-1]["transaction_id"]["lt"]
            tx_hash = fresh[-1]["transaction_id"]["hash"]

        if not complete:
            logger.warning(f"Deposit history page budget exhausted after {len(collected)} transactions")

        jetton_wallet = None
        if collected:
            try:
                jetton_wallet = await self.get_jetton_wallet_address(account)
            except ChainError:
                logger.debug("Deposit account has no USDT jetton wallet yet")

        transfers = []
        for tx in reversed(collected):
            transfer = self._parse_incoming(tx, jetton_wallet)
            if transfer is not None:
                transfers.append(transfer)

        latest = collected[0]["transaction_id"] if collected else {}
        oldest = collected[-1]["transaction_id"] if collected and not complete else {}
        return IncomingTransfers(
            transfers=transfers,
            latest_lt=int(latest["lt"]) if latest else None,
            latest_hash=latest.get("hash"),
            complete=complete,
            resume_lt=int(oldest["lt"]) if oldest else None,
            resume_hash=oldest.get("hash"),
        )

    def _parse_incoming(self, tx: dict[str, Any], jetton_wallet: str | None) -> IncomingTransfer | None:
        in_msg = tx.get("in_msg") or {}
        source = in_msg.get("source")
        if not source:
            # External message: our own outgoing transfer
            return None

        tx_id = tx["transaction_id"]
        msg_data = in_msg.get("msg_data") or {}
        body = msg_data.get("body") if msg_data.get("@type") == "msg.dataRaw" else None

        try:
            if body and jetton_wallet and normalize_address(source) == jetton_wallet:
                return self._parse_jetton_notification(body, tx)

            value = int(in_msg.get("value") or 0)
            if value <= 0:
                return None
            comment = in_msg.get("message") or None
            if comment is None and body:
                comment = decode_comment(body)
        except Exception as e:
            logger.warning(f"Unparseable inbound message in {tx_id.get('hash')}: {e}")
            return None

        return IncomingTransfer(
            tx_hash=tx_id["hash"],
            lt=int(tx_id["lt"]),
            amount=self.from_smallest_unit(value, TON_DECIMALS),
            currency=Currency.TON.value,
            comment=comment.strip() if comment else None,
            from_address=source,
            timestamp=tx.get("utime"),
        )

    def _parse_jetton_notification(self, body_b64: str, tx: dict[str, Any]) -> IncomingTransfer | None:
        reader = _BitReader(Cell.one_from_boc(base64.b64decode(body_b64)))
        if reader.remaining < 32 or reader.read_uint(32) != JETTON_TRANSFER_NOTIFICATION_OP:
            return None
        reader.read_uint(64)  # query_id
        amount = reader.read_coins()
        sender = reader.read_address()

        comment = None
        if reader.remaining >= 1:
            in_ref = reader.read_bit()
            payload = _BitReader(reader.refs[0]) if in_ref and reader.refs else (None if in_ref else reader)
            if payload is not None and payload.remaining >= 32 and payload.read_uint(32) == TEXT_COMMENT_OP:
                comment = _read_text(payload).strip() or None

        return IncomingTransfer(
            tx_hash=tx["transaction_id"]["hash"],
            lt=int(tx["transaction_id"]["lt"]),
            amount=self.from_smallest_unit(amount, self._settings.usdt_decimals),
            currency=Currency.USDT.value,
            comment=comment,
            from_address=self._friendly(sender, bounceable=False) if sender else None,
            timestamp=tx.get("utime"),
        )
