from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


LABEL_APP = "app"
LABEL_CHAIN = "chain"
LABEL_METHOD = "method"
LABEL_CLIENT = "client"
LABEL_SUCCESS = "success"

LABELS = (LABEL_APP, LABEL_CHAIN, LABEL_METHOD, LABEL_CLIENT, LABEL_SUCCESS)

LATENCY_BUCKETS_MS = (2, 4, 8, 16, 32, 64, 128, 256, 512, 1024, 2048)


@dataclass
class _Collectors:
    requests: Counter
    latency: Histogram
    owners: Set[Tuple[str, str]] = field(default_factory=set)


# One collector pair per registry, shared by every (app, chain) using it.
_shared: Dict[CollectorRegistry, _Collectors] = {}
_shared_lock = threading.Lock()


def _new_collectors() -> _Collectors:
    return _Collectors(
        requests=Counter(
            "rpc_request_total",
            "RPC requests counts",
            LABELS,
            registry=None,
        ),
        latency=Histogram(
            "rpc_latency_milliseconds",
            "RPC request latency in milliseconds",
            LABELS,
            buckets=LATENCY_BUCKETS_MS,
            registry=None,
        ),
    )


class RpcMetrics:
    """
    Request counter + latency histogram for one (app, chain) pair.

    prometheus_client has no const labels, so app/chain are ordinary labels
    that this instance always fills with the same values. Series are keyed
    by (method, client, success) on top of that.

    register() attaches the shared collectors (the first owner on a registry
    registers them); unregister() drops this pair's series and detaches the
    collectors once the last owner is gone. Observations made while not
    registered are dropped.
    """

    def __init__(self, app_name: str, chain: str, registry: Optional[CollectorRegistry] = None):
        self.app_name = app_name
        self.chain = chain
        self._registry = registry if registry is not None else REGISTRY
        self._collectors: Optional[_Collectors] = None
        self._series: Set[Tuple[str, ...]] = set()

    @property
    def registered(self) -> bool:
        return self._collectors is not None

    def register(self) -> None:
        if self._collectors is not None:
            return
        owner = (self.app_name, self.chain)
        with _shared_lock:
            c = _shared.get(self._registry)
            if c is None:
                c = _new_collectors()
                self._registry.register(c.requests)
                try:
                    self._registry.register(c.latency)
                except ValueError:
                    self._registry.unregister(c.requests)
                    raise
                _shared[self._registry] = c
            elif owner in c.owners:
                raise ValueError(f"rpc metrics already registered for app={self.app_name!r} chain={self.chain!r}")
            c.owners.add(owner)
        self._collectors = c

    def unregister(self) -> None:
        c = self._collectors
        if c is None:
            return
        self._collectors = None
        with _shared_lock:
            for key in self._series:
                c.requests.remove(*key)
                c.latency.remove(*key)
            self._series.clear()
            c.owners.discard((self.app_name, self.chain))
            if not c.owners:
                self._registry.unregister(c.requests)
                self._registry.unregister(c.latency)
                _shared.pop(self._registry, None)

    def observe(self, method: str, started_at: float, client: str, success: bool) -> None:
        """started_at is a time.perf_counter() reading taken before the attempt."""
        c = self._collectors
        if c is None:
            return
        elapsed_ms = int((time.perf_counter() - started_at) * 1000)
        key = (self.app_name, self.chain, method, client, "true" if success else "false")
        self._series.add(key)
        c.requests.labels(*key).inc()
        c.latency.labels(*key).observe(elapsed_ms)
