from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from packages.ethclient.base import ChainClient, Subscription


class FakeSubscription(Subscription):
    def __init__(self, owner: str):
        self.owner = owner
        self.unsubscribed = False

    async def unsubscribe(self) -> None:
        self.unsubscribed = True

    def err(self) -> Optional[BaseException]:
        return None


class FakeNode(ChainClient):
    """
    In-memory node. Every call is recorded as (method_label, args); the
    answer is errors[label] (raised), results[label], or "<name>:<label>".
    """

    def __init__(
        self,
        name: str,
        *,
        results: Optional[Dict[str, Any]] = None,
        errors: Optional[Dict[str, BaseException]] = None,
        fail_all: Optional[BaseException] = None,
        delay_s: float = 0.0,
    ):
        self.name = name
        self.results = dict(results or {})
        self.errors = dict(errors or {})
        self.fail_all = fail_all
        self.delay_s = delay_s
        self.calls: List[Tuple[str, tuple]] = []
        self.closed = False
        self.close_error: Optional[BaseException] = None

    def labels_called(self) -> List[str]:
        return [c[0] for c in self.calls]

    async def _op(self, label: str, *args: Any) -> Any:
        self.calls.append((label, args))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        err = self.errors.get(label, self.fail_all)
        if err is not None:
            raise err
        if label in self.results:
            return self.results[label]
        if label.startswith("Subscribe"):
            return FakeSubscription(self.name)
        return f"{self.name}:{label}"

    async def block_by_hash(self, block_hash):
        return await self._op("BlockByHash", block_hash)

    async def block_by_number(self, number=None):
        return await self._op("BlockByNumber", number)

    async def header_by_hash(self, block_hash):
        return await self._op("HeaderByHash", block_hash)

    async def header_by_number(self, number=None):
        return await self._op("HeaderByNumber", number)

    async def block_number(self):
        return await self._op("BlockNumber")

    async def subscribe_new_head(self, queue):
        return await self._op("SubscribeNewHead", queue)

    async def transaction_by_hash(self, tx_hash):
        return await self._op("TransactionByHash", tx_hash)

    async def transaction_count(self, block_hash):
        return await self._op("TransactionCount", block_hash)

    async def transaction_in_block(self, block_hash, index):
        return await self._op("TransactionInBlock", block_hash, index)

    async def transaction_receipt(self, tx_hash):
        return await self._op("TransactionReceipt", tx_hash)

    async def transaction_sender(self, tx_hash, block_hash, index):
        return await self._op("TransactionSender", tx_hash, block_hash, index)

    async def balance_at(self, account, block_number=None):
        return await self._op("BalanceAt", account, block_number)

    async def code_at(self, account, block_number=None):
        return await self._op("CodeAt", account, block_number)

    async def nonce_at(self, account, block_number=None):
        return await self._op("NonceAt", account, block_number)

    async def storage_at(self, account, key, block_number=None):
        return await self._op("StorageAt", account, key, block_number)

    async def chain_id(self):
        return await self._op("ChainID")

    async def network_id(self):
        return await self._op("NetworkID")

    async def peer_count(self):
        return await self._op("PeerCount")

    async def sync_progress(self):
        return await self._op("SyncProgress")

    async def call_contract(self, msg, block_number=None):
        return await self._op("CallContract", msg, block_number)

    async def call_contract_at_hash(self, msg, block_hash):
        return await self._op("CallContractAtHash", msg, block_hash)

    async def estimate_gas(self, msg):
        return await self._op("EstimateGas", msg)

    async def suggest_gas_price(self):
        return await self._op("SuggestGasPrice")

    async def suggest_gas_tip_cap(self):
        return await self._op("SuggestGasTipCap")

    async def filter_logs(self, query):
        return await self._op("FilterLogs", query)

    async def subscribe_filter_logs(self, query, queue):
        return await self._op("SubscribeFilterLogs", query, queue)

    async def pending_balance_at(self, account):
        return await self._op("PendingBalanceAt", account)

    async def pending_code_at(self, account):
        return await self._op("PendingCodeAt", account)

    async def pending_nonce_at(self, account):
        return await self._op("PendingNonceAt", account)

    async def pending_storage_at(self, account, key):
        return await self._op("PendingStorageAt", account, key)

    async def pending_transaction_count(self):
        return await self._op("PendingTransactionCount")

    async def pending_call_contract(self, msg):
        return await self._op("PendingCallContract", msg)

    async def send_transaction(self, raw_tx):
        return await self._op("SendTransaction", raw_tx)

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error
