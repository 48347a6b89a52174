from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence, Tuple, TypeVar, Union

from loguru import logger
from prometheus_client import CollectorRegistry
from web3.types import BlockIdentifier, FilterParams, TxParams

from packages.common.config import FailoverConfig
from packages.common.errors import RpcConnectionError
from packages.ethclient.base import Address, ChainClient, Hash32, Subscription
from packages.ethclient.metrics import RpcMetrics
from packages.ethclient.node import dial as dial_node
from packages.ethclient.policy import FailoverDecision, classify

if TYPE_CHECKING:
    from loguru import Logger


T = TypeVar("T")

Dialer = Callable[[str], Awaitable[ChainClient]]


class FailoverClient(ChainClient):
    """
    ChainClient backed by two connections.

    Every operation runs on the primary first. If that raises anything other
    than caller cancellation, the same operation runs once on the failover
    connection and its outcome (value or exception) is final. Each attempt is
    recorded as one metrics observation labeled with the endpoint's name.
    """

    def __init__(
        self,
        cfg: FailoverConfig,
        primary: ChainClient,
        secondary: ChainClient,
        *,
        metrics: Optional[RpcMetrics] = None,
        log: Optional[Logger] = None,
    ):
        self.cfg = cfg
        self._primary = primary
        self._secondary = secondary
        self._metrics = metrics
        self._log = log if log is not None else logger

    @property
    def primary_name(self) -> str:
        return self.cfg.rpc_name

    @property
    def failover_name(self) -> str:
        return self.cfg.failover_rpc_name

    @property
    def metrics(self) -> Optional[RpcMetrics]:
        return self._metrics

    def _observe(self, method: str, started_at: float, client: str, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.observe(method, started_at, client, success)

    async def _dispatch(
        self,
        method: str,
        primary: Callable[[], Awaitable[T]],
        secondary: Callable[[], Awaitable[T]],
    ) -> T:
        t = time.perf_counter()
        try:
            result = await primary()
        except (asyncio.CancelledError, Exception) as e:
            self._observe(method, t, self.primary_name, False)
            if classify(e) is FailoverDecision.NO_FAILOVER:
                raise
            self._log.warning(
                "{} failed on {} ({}: {}); failing over to {}",
                method,
                self.primary_name,
                type(e).__name__,
                e,
                self.failover_name,
            )
        else:
            self._observe(method, t, self.primary_name, True)
            return result

        t = time.perf_counter()
        try:
            result = await secondary()
        except (asyncio.CancelledError, Exception):
            self._observe(method, t, self.failover_name, False)
            raise
        self._observe(method, t, self.failover_name, True)
        return result

    def _call(self, method: str, op: Callable[[ChainClient], Awaitable[T]]) -> Awaitable[T]:
        return self._dispatch(method, lambda: op(self._primary), lambda: op(self._secondary))

    # ---- chain reader
    async def block_by_hash(self, block_hash: Hash32) -> Any:
        return await self._call("BlockByHash", lambda c: c.block_by_hash(block_hash))

    async def block_by_number(self, number: Optional[BlockIdentifier] = None) -> Any:
        return await self._call("BlockByNumber", lambda c: c.block_by_number(number))

    async def header_by_hash(self, block_hash: Hash32) -> Any:
        return await self._call("HeaderByHash", lambda c: c.header_by_hash(block_hash))

    async def header_by_number(self, number: Optional[BlockIdentifier] = None) -> Any:
        return await self._call("HeaderByNumber", lambda c: c.header_by_number(number))

    async def block_number(self) -> int:
        return await self._call("BlockNumber", lambda c: c.block_number())

    async def subscribe_new_head(self, queue: asyncio.Queue) -> Subscription:
        return await self._call("SubscribeNewHead", lambda c: c.subscribe_new_head(queue))

    # ---- transaction reader
    async def transaction_by_hash(self, tx_hash: Hash32) -> Tuple[Any, bool]:
        return await self._call("TransactionByHash", lambda c: c.transaction_by_hash(tx_hash))

    async def transaction_count(self, block_hash: Hash32) -> int:
        return await self._call("TransactionCount", lambda c: c.transaction_count(block_hash))

    async def transaction_in_block(self, block_hash: Hash32, index: int) -> Any:
        return await self._call("TransactionInBlock", lambda c: c.transaction_in_block(block_hash, index))

    async def transaction_receipt(self, tx_hash: Hash32) -> Any:
        return await self._call("TransactionReceipt", lambda c: c.transaction_receipt(tx_hash))

    async def transaction_sender(self, tx_hash: Hash32, block_hash: Hash32, index: int) -> Address:
        return await self._call("TransactionSender", lambda c: c.transaction_sender(tx_hash, block_hash, index))

    # ---- chain state
    async def balance_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int:
        return await self._call("BalanceAt", lambda c: c.balance_at(account, block_number))

    async def code_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> bytes:
        return await self._call("CodeAt", lambda c: c.code_at(account, block_number))

    async def nonce_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int:
        return await self._call("NonceAt", lambda c: c.nonce_at(account, block_number))

    async def storage_at(
        self, account: Address, key: Union[int, Hash32], block_number: Optional[BlockIdentifier] = None
    ) -> bytes:
        return await self._call("StorageAt", lambda c: c.storage_at(account, key, block_number))

    # ---- network / sync
    async def chain_id(self) -> int:
        return await self._call("ChainID", lambda c: c.chain_id())

    async def network_id(self) -> int:
        return await self._call("NetworkID", lambda c: c.network_id())

    async def peer_count(self) -> int:
        return await self._call("PeerCount", lambda c: c.peer_count())

    async def sync_progress(self) -> Optional[Any]:
        return await self._call("SyncProgress", lambda c: c.sync_progress())

    # ---- contract calls / gas
    async def call_contract(self, msg: TxParams, block_number: Optional[BlockIdentifier] = None) -> bytes:
        return await self._call("CallContract", lambda c: c.call_contract(msg, block_number))

    async def call_contract_at_hash(self, msg: TxParams, block_hash: Hash32) -> bytes:
        return await self._call("CallContractAtHash", lambda c: c.call_contract_at_hash(msg, block_hash))

    async def estimate_gas(self, msg: TxParams) -> int:
        return await self._call("EstimateGas", lambda c: c.estimate_gas(msg))

    async def suggest_gas_price(self) -> int:
        return await self._call("SuggestGasPrice", lambda c: c.suggest_gas_price())

    async def suggest_gas_tip_cap(self) -> int:
        return await self._call("SuggestGasTipCap", lambda c: c.suggest_gas_tip_cap())

    # ---- logs
    async def filter_logs(self, query: FilterParams) -> Sequence[Any]:
        return await self._call("FilterLogs", lambda c: c.filter_logs(query))

    async def subscribe_filter_logs(self, query: FilterParams, queue: asyncio.Queue) -> Subscription:
        return await self._call("SubscribeFilterLogs", lambda c: c.subscribe_filter_logs(query, queue))

    # ---- pending state
    async def pending_balance_at(self, account: Address) -> int:
        return await self._call("PendingBalanceAt", lambda c: c.pending_balance_at(account))

    async def pending_code_at(self, account: Address) -> bytes:
        return await self._call("PendingCodeAt", lambda c: c.pending_code_at(account))

    async def pending_nonce_at(self, account: Address) -> int:
        return await self._call("PendingNonceAt", lambda c: c.pending_nonce_at(account))

    async def pending_storage_at(self, account: Address, key: Union[int, Hash32]) -> bytes:
        return await self._call("PendingStorageAt", lambda c: c.pending_storage_at(account, key))

    async def pending_transaction_count(self) -> int:
        return await self._call("PendingTransactionCount", lambda c: c.pending_transaction_count())

    async def pending_call_contract(self, msg: TxParams) -> bytes:
        return await self._call("PendingCallContract", lambda c: c.pending_call_contract(msg))

    # ---- sending
    async def send_transaction(self, raw_tx: Union[bytes, str]) -> Any:
        return await self._call("SendTransaction", lambda c: c.send_transaction(raw_tx))

    # ---- lifecycle
    async def close(self) -> None:
        results = await asyncio.gather(
            self._primary.close(),
            self._secondary.close(),
            return_exceptions=True,
        )
        if self._metrics is not None:
            self._metrics.unregister()

        errors = []
        for name, res in zip((self.primary_name, self.failover_name), results):
            if isinstance(res, BaseException):
                self._log.opt(exception=res).error("closing rpc client {} failed", name)
                errors.append(res)
        if errors:
            raise errors[0]

    async def __aenter__(self) -> "FailoverClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def new_client(
    app_name: str,
    chain: str,
    cfg: FailoverConfig,
    *,
    log: Optional[Logger] = None,
    registry: Optional[CollectorRegistry] = None,
    dial: Dialer = dial_node,
) -> FailoverClient:
    """
    Validate cfg, dial both endpoints and (optionally) register metrics.

    Both dials must succeed; there is no primary-only mode. On any failure
    nothing stays open and nothing is registered.
    """
    log = log if log is not None else logger.bind(app=app_name, chain=chain)
    log.info("setting up rpc client for app {} on chain {}", app_name, chain)

    cfg.ensure_valid()

    primary = await _dial(dial, cfg.rpc_url, cfg.rpc_name)
    try:
        secondary = await _dial(dial, cfg.failover_rpc_url, cfg.failover_rpc_name)
    except BaseException:
        await asyncio.gather(primary.close(), return_exceptions=True)
        raise

    metrics: Optional[RpcMetrics] = None
    if cfg.enable_prometheus:
        log.info("enabling rpc metrics")
        metrics = RpcMetrics(app_name, chain, registry=registry)
        try:
            metrics.register()
        except BaseException:
            await asyncio.gather(primary.close(), secondary.close(), return_exceptions=True)
            raise

    return FailoverClient(cfg, primary, secondary, metrics=metrics, log=log)


async def _dial(dial: Dialer, url: str, name: str) -> ChainClient:
    try:
        return await dial(url)
    except RpcConnectionError:
        raise
    except Exception as e:
        raise RpcConnectionError(f"dial {name} ({url}) failed: {e}") from e
