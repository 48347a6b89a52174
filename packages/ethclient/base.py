from __future__ import annotations

import abc
import asyncio
from typing import Any, Optional, Sequence, Tuple, Union

from web3.types import BlockIdentifier, FilterParams, TxParams


Address = str
Hash32 = Union[str, bytes]

# Metric method labels, one per logical operation.
OPERATIONS: Tuple[str, ...] = (
    "BalanceAt",
    "BlockByHash",
    "BlockByNumber",
    "BlockNumber",
    "CallContract",
    "CallContractAtHash",
    "ChainID",
    "CodeAt",
    "EstimateGas",
    "FilterLogs",
    "HeaderByHash",
    "HeaderByNumber",
    "NetworkID",
    "NonceAt",
    "PeerCount",
    "PendingBalanceAt",
    "PendingCallContract",
    "PendingCodeAt",
    "PendingNonceAt",
    "PendingStorageAt",
    "PendingTransactionCount",
    "SendTransaction",
    "StorageAt",
    "SubscribeFilterLogs",
    "SubscribeNewHead",
    "SuggestGasPrice",
    "SuggestGasTipCap",
    "SyncProgress",
    "TransactionByHash",
    "TransactionCount",
    "TransactionInBlock",
    "TransactionReceipt",
    "TransactionSender",
)


class Subscription(abc.ABC):
    """
    Live server-side subscription. Items are pushed into the queue the caller
    handed to subscribe_*; the delivery loop stops on unsubscribe() or on the
    first error, which err() then returns.
    """

    @abc.abstractmethod
    async def unsubscribe(self) -> None: ...

    @abc.abstractmethod
    def err(self) -> Optional[BaseException]: ...


class ChainClient(abc.ABC):
    """
    Everything a caller can ask of a node. block_number=None means "latest".
    """

    # ---- chain reader
    @abc.abstractmethod
    async def block_by_hash(self, block_hash: Hash32) -> Any: ...

    @abc.abstractmethod
    async def block_by_number(self, number: Optional[BlockIdentifier] = None) -> Any: ...

    @abc.abstractmethod
    async def header_by_hash(self, block_hash: Hash32) -> Any: ...

    @abc.abstractmethod
    async def header_by_number(self, number: Optional[BlockIdentifier] = None) -> Any: ...

    @abc.abstractmethod
    async def block_number(self) -> int: ...

    @abc.abstractmethod
    async def subscribe_new_head(self, queue: asyncio.Queue) -> Subscription: ...

    # ---- transaction reader
    @abc.abstractmethod
    async def transaction_by_hash(self, tx_hash: Hash32) -> Tuple[Any, bool]: ...

    @abc.abstractmethod
    async def transaction_count(self, block_hash: Hash32) -> int: ...

    @abc.abstractmethod
    async def transaction_in_block(self, block_hash: Hash32, index: int) -> Any: ...

    @abc.abstractmethod
    async def transaction_receipt(self, tx_hash: Hash32) -> Any: ...

    @abc.abstractmethod
    async def transaction_sender(self, tx_hash: Hash32, block_hash: Hash32, index: int) -> Address: ...

    # ---- chain state
    @abc.abstractmethod
    async def balance_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int: ...

    @abc.abstractmethod
    async def code_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> bytes: ...

    @abc.abstractmethod
    async def nonce_at(self, account: Address, block_number: Optional[BlockIdentifier] = None) -> int: ...

    @abc.abstractmethod
    async def storage_at(
        self, account: Address, key: Union[int, Hash32], block_number: Optional[BlockIdentifier] = None
    ) -> bytes: ...

    # ---- network / sync
    @abc.abstractmethod
    async def chain_id(self) -> int: ...

    @abc.abstractmethod
    async def network_id(self) -> int: ...

    @abc.abstractmethod
    async def peer_count(self) -> int: ...

    @abc.abstractmethod
    async def sync_progress(self) -> Optional[Any]: ...

    # ---- contract calls / gas
    @abc.abstractmethod
    async def call_contract(self, msg: TxParams, block_number: Optional[BlockIdentifier] = None) -> bytes: ...

    @abc.abstractmethod
    async def call_contract_at_hash(self, msg: TxParams, block_hash: Hash32) -> bytes: ...

    @abc.abstractmethod
    async def estimate_gas(self, msg: TxParams) -> int: ...

    @abc.abstractmethod
    async def suggest_gas_price(self) -> int: ...

    @abc.abstractmethod
    async def suggest_gas_tip_cap(self) -> int: ...

    # ---- logs
    @abc.abstractmethod
    async def filter_logs(self, query: FilterParams) -> Sequence[Any]: ...

    @abc.abstractmethod
    async def subscribe_filter_logs(self, query: FilterParams, queue: asyncio.Queue) -> Subscription: ...

    # ---- pending state
    @abc.abstractmethod
    async def pending_balance_at(self, account: Address) -> int: ...

    @abc.abstractmethod
    async def pending_code_at(self, account: Address) -> bytes: ...

    @abc.abstractmethod
    async def pending_nonce_at(self, account: Address) -> int: ...

    @abc.abstractmethod
    async def pending_storage_at(self, account: Address, key: Union[int, Hash32]) -> bytes: ...

    @abc.abstractmethod
    async def pending_transaction_count(self) -> int: ...

    @abc.abstractmethod
    async def pending_call_contract(self, msg: TxParams) -> bytes: ...

    # ---- sending
    @abc.abstractmethod
    async def send_transaction(self, raw_tx: Union[bytes, str]) -> Any: ...

    @abc.abstractmethod
    async def close(self) -> None: ...
