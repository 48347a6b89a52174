# apps/rpc_check/main.py

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from loguru import logger
from prometheus_client import start_http_server

from packages.common.config import DEFAULT_ENV_PREFIX, FailoverConfig, config_from_env, load_failover_config
from packages.common.errors import ConfigError, RpcConnectionError
from packages.ethclient.failover import new_client


EXIT_OK = 0
EXIT_CONNECT = 1
EXIT_CONFIG = 2


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Failover RPC check (query a primary/backup node pair)")

    # Config sources: yaml file wins over env
    p.add_argument("--config", default=None, help="YAML file with rpc_url/rpc_name/failover_rpc_url/failover_rpc_name")
    p.add_argument("--env-prefix", default=DEFAULT_ENV_PREFIX, help="Env var prefix, e.g. ethclient -> ETHCLIENT_RPC_URL")

    p.add_argument("--app", default="rpc_check", help="app label for metrics")
    p.add_argument("--chain", default="mainnet", help="chain label for metrics")
    p.add_argument("--rounds", type=int, default=1, help="How many times to query the node pair")
    p.add_argument("--interval", type=float, default=1.0, help="Seconds between rounds")
    p.add_argument("--metrics-port", type=int, default=0, help="Serve /metrics on this port (0 = off)")

    return p.parse_args(argv)


def _load_config(args: argparse.Namespace) -> FailoverConfig:
    if args.config:
        return load_failover_config(Path(args.config))
    return config_from_env(args.env_prefix)


async def _check(args: argparse.Namespace, cfg: FailoverConfig) -> None:
    async with await new_client(args.app, args.chain, cfg) as client:
        for i in range(max(args.rounds, 1)):
            if i:
                await asyncio.sleep(args.interval)
            chain_id = await client.chain_id()
            head = await client.block_number()
            gas_price = await client.suggest_gas_price()
            logger.info(
                "round={} chain_id={} head={} gas_price_gwei={:.3f}",
                i + 1,
                chain_id,
                head,
                gas_price / 1e9,
            )


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        cfg = _load_config(args)
    except (ConfigError, FileNotFoundError) as e:
        logger.error("config error: {}", e)
        return EXIT_CONFIG

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info("metrics on :{}/metrics", args.metrics_port)

    try:
        asyncio.run(_check(args, cfg))
    except ConfigError as e:
        logger.error("config error: {}", e)
        return EXIT_CONFIG
    except RpcConnectionError as e:
        logger.error("connection error: {}", e)
        return EXIT_CONNECT
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
