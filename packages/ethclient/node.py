from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from hexbytes import HexBytes
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncIPCProvider, AsyncWeb3, WebSocketProvider
from web3.providers import PersistentConnectionProvider
from web3.types import BlockIdentifier, FilterParams, TxParams

from packages.common.errors import RpcConnectionError
from packages.ethclient.base import Address, ChainClient, Hash32, Subscription


PENDING = "pending"
LATEST = "latest"


class SubscriptionsNotSupported(RuntimeError):
    pass


def _block_id(number: Optional[BlockIdentifier]) -> BlockIdentifier:
    return LATEST if number is None else number


class _NodeSubscription(Subscription):
    def __init__(self, node: "NodeClient", sub_id: str, queue: asyncio.Queue):
        self._node = node
        self.sub_id = sub_id
        self.queue = queue
        self._err: Optional[BaseException] = None
        self._closed = False

    def _fail(self, exc: BaseException) -> None:
        if self._err is None:
            self._err = exc

    def err(self) -> Optional[BaseException]:
        return self._err

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._node._subs.pop(self.sub_id, None)
        if self._err is None:
            await self._node.w3.eth.unsubscribe(self.sub_id)


class NodeClient(ChainClient):
    """
    One physical connection: each method is a single eth_*/net_* call on AsyncWeb3.
    """

    def __init__(self, url: str, w3: AsyncWeb3):
        self.url = url
        self.w3 = w3
        self._subs: Dict[str, _NodeSubscription] = {}
        self._pump: Optional[asyncio.Task] = None

    @property
    def persistent(self) -> bool:
        return isinstance(self.w3.provider, PersistentConnectionProvider)

    def _addr(self, account: Address) -> Address:
        return self.w3.to_checksum_address(account)

    # ---- chain reader
    async def block_by_hash(self, block_hash: Hash32) -> Any:
        return await self.w3.eth.get_block(block_hash, full_transactions=True)

    async def block_by_number(self, number: Optional[BlockIdentifier] = None) -> Any:
        return await self.w3.eth.get_block(_block_id(number), full_transactions=True)

    async def header_by_hash(self, block_hash: Hash32) -> Any:
        return await self.w3.eth.get_block(block_hash, full_transactions=False)

    async def header_by_number(self, number: Optional[BlockIdentifier] = None) -> Any:
        return await self.w3.eth.get_block(_block_id(number), full_transactions=False)

    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    async def subscribe_new_head(self, queue: asyncio.Queue) -> Subscription:
        return await self._subscribe(queue, "newHeads")

    # ---- transaction reader
    async def transaction_by_hash(self, tx_hash: Hash32) -> Tuple[Any, bool]:
        tx = await self.w3.eth.get_transaction(tx_hash)
        return tx, tx.get("blockNumber") is None

    async def transaction_count(self, block_hash: Hash32) -> int:
        return await self.w3.eth.get_block_transaction_count(block_hash)

    async def transaction_in_block(self, block_hash: Hash32, index: int) -> Any:
        return await self.w3.eth.get_transaction_by_block(block_hash, index)

    async def transaction_receipt(self, tx_hash: Hash32) -> Any:
        return await self.w3.eth.get_transaction_receipt(tx_hash)

    async def transaction_sender(self, tx_hash: Hash32, block_hash: Hash32, index: int) -> Address:
        tx = await self.w3.eth.get_transaction_by_block(block_hash, index)
        if HexBytes(tx["hash"]) != HexBytes(tx_hash):
            raise ValueError(f"wrong inclusion block/index: tx at {index} is {HexBytes(tx['hash']).to_0x_hex()}")
        return tx["from"]

    # ---- chain state
    async def balance_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int:
        return await self.w3.eth.get_balance(self._addr(account), _block_id(block_number))

    async def code_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> bytes:
        return bytes(await self.w3.eth.get_code(self._addr(account), _block_id(block_number)))

    async def nonce_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int:
        return await self.w3.eth.get_transaction_count(self._addr(account), _block_id(block_number))

    async def storage_at(
        self, account: Address, key: Union[int, Hash32], block_number: Optional[BlockIdentifier] = None
    ) -> bytes:
        return bytes(await self.w3.eth.get_storage_at(self._addr(account), key, _block_id(block_number)))

    # ---- network / sync
    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def network_id(self) -> int:
        return int(await self.w3.net.version)

    async def peer_count(self) -> int:
        return await self.w3.net.peer_count

    async def sync_progress(self) -> Optional[Any]:
        # eth_syncing returns false when the node is in sync
        progress = await self.w3.eth.syncing
        return progress or None

    # ---- contract calls / gas
    async def call_contract(self, msg: TxParams, block_number: Optional[BlockIdentifier] = None) -> bytes:
        return bytes(await self.w3.eth.call(msg, _block_id(block_number)))

    async def call_contract_at_hash(self, msg: TxParams, block_hash: Hash32) -> bytes:
        return bytes(await self.w3.eth.call(msg, block_hash))

    async def estimate_gas(self, msg: TxParams) -> int:
        return await self.w3.eth.estimate_gas(msg)

    async def suggest_gas_price(self) -> int:
        return await self.w3.eth.gas_price

    async def suggest_gas_tip_cap(self) -> int:
        return await self.w3.eth.max_priority_fee

    # ---- logs
    async def filter_logs(self, query: FilterParams) -> Sequence[Any]:
        return await self.w3.eth.get_logs(query)

    async def subscribe_filter_logs(self, query: FilterParams, queue: asyncio.Queue) -> Subscription:
        return await self._subscribe(queue, "logs", query)

    # ---- pending state
    async def pending_balance_at(self, account: Address) -> int:
        return await self.w3.eth.get_balance(self._addr(account), PENDING)

    async def pending_code_at(self, account: Address) -> bytes:
        return bytes(await self.w3.eth.get_code(self._addr(account), PENDING))

    async def pending_nonce_at(self, account: Address) -> int:
        return await self.w3.eth.get_transaction_count(self._addr(account), PENDING)

    async def pending_storage_at(self, account: Address, key: Union[int, Hash32]) -> bytes:
        return bytes(await self.w3.eth.get_storage_at(self._addr(account), key, PENDING))

    async def pending_transaction_count(self) -> int:
        return await self.w3.eth.get_block_transaction_count(PENDING)

    async def pending_call_contract(self, msg: TxParams) -> bytes:
        return bytes(await self.w3.eth.call(msg, PENDING))

    # ---- sending
    async def send_transaction(self, raw_tx: Union[bytes, str]) -> Any:
        return await self.w3.eth.send_raw_transaction(raw_tx)

    # ---- subscriptions
    async def _subscribe(self, queue: asyncio.Queue, kind: str, params: Any = None) -> Subscription:
        if not self.persistent:
            raise SubscriptionsNotSupported(f"{self.url}: subscriptions need a websocket or ipc endpoint")

        if params is None:
            sub_id = await self.w3.eth.subscribe(kind)
        else:
            sub_id = await self.w3.eth.subscribe(kind, params)

        sub = _NodeSubscription(self, str(sub_id), queue)
        self._subs[sub.sub_id] = sub
        if self._pump is None or self._pump.done():
            self._pump = asyncio.create_task(self._pump_loop())
        logger.debug("subscribed {} on {} (id={})", kind, self.url, sub.sub_id)
        return sub

    async def _pump_loop(self) -> None:
        # Single reader for the socket; fans messages out by subscription id.
        try:
            async for msg in self.w3.socket.process_subscriptions():
                sub = self._subs.get(str(msg.get("subscription")))
                if sub is None:
                    continue
                await sub.queue.put(msg.get("result"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("subscription stream on {} ended: {}", self.url, e)
            self._fail_all(e)
            return
        logger.warning("subscription stream on {} closed", self.url)
        self._fail_all(ConnectionError("subscription stream closed"))

    def _fail_all(self, exc: BaseException) -> None:
        for sub in list(self._subs.values()):
            sub._fail(exc)
        self._subs.clear()

    async def close(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        self._fail_all(ConnectionError("client closed"))

        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is None:
            return
        try:
            await disconnect()
        except NotImplementedError:
            pass


async def dial(url: str) -> NodeClient:
    """
    Open a connection to url.

    http(s) endpoints are not contacted until the first call.
    ws(s) and ipc endpoints are connected here.
    """
    u = url.strip()
    scheme = u.split("://", 1)[0].lower() if "://" in u else ""

    try:
        if scheme in ("http", "https"):
            return NodeClient(u, AsyncWeb3(AsyncHTTPProvider(u)))

        if scheme in ("ws", "wss"):
            w3 = AsyncWeb3(WebSocketProvider(u))
            await w3.provider.connect()
            return NodeClient(u, w3)

        if scheme == "" and u:
            w3 = AsyncWeb3(AsyncIPCProvider(u))
            await w3.provider.connect()
            return NodeClient(u, w3)
    except RpcConnectionError:
        raise
    except Exception as e:
        raise RpcConnectionError(f"dial {u!r} failed: {e}") from e

    raise RpcConnectionError(f"no known transport for URL scheme {scheme!r} ({u!r})")
