"""
Default dependency catalog of the arbitrage engine.

Exchanges, blockchain RPCs, price feeds, DeFi data services and
infrastructure. API keys are read from the environment at build
time; without them the public demo keys are used and the probes
will typically fail validation, which is the correct signal.
"""

import os
from typing import Any, Dict, List

from .registry import DependencyRegistry


_JSON = {"Content-Type": "application/json"}


def _rpc_body(method: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": [], "id": 1}


def _hex_result() -> Dict[str, Any]:
    return {"type": "json_path", "path": "result", "op": "startswith", "operand": "0x"}


def default_dependencies() -> List[Dict[str, Any]]:
    """Catalog entries in registry dict form."""
    infura_key = os.getenv("INFURA_PROJECT_ID", "demo")
    alchemy_key = os.getenv("ALCHEMY_API_KEY", "demo")
    cmc_key = os.getenv("CMC_API_KEY", "demo")
    dune_key = os.getenv("DUNE_API_KEY", "demo")

    return [
        # ---------------------------------------------------------
        # Exchanges
        # ---------------------------------------------------------
        {
            "id": "binance",
            "name": "Binance API",
            "category": "exchange",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "ticker_price",
                    "url": "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT",
                    "timeout_ms": 5000,
                    "assertion": {"type": "all_of", "assertions": [
                        {"type": "json_path_equals", "path": "symbol", "value": "BTCUSDT"},
                        {"type": "json_path", "path": "price", "op": "gt", "operand": 0},
                    ]},
                },
                {
                    "name": "server_time",
                    "url": "https://api.binance.com/api/v3/time",
                    "timeout_ms": 3000,
                    "assertion": {"type": "json_path", "path": "serverTime", "op": "gt", "operand": 0},
                },
            ],
        },
        {
            "id": "coinbase",
            "name": "Coinbase Exchange API",
            "category": "exchange",
            "criticality": "high",
            "endpoints": [
                {
                    "name": "btc_ticker",
                    "url": "https://api.exchange.coinbase.com/products/BTC-USD/ticker",
                    "timeout_ms": 5000,
                    "assertion": {"type": "json_path", "path": "price", "op": "gt", "operand": 0},
                },
            ],
        },
        {
            "id": "kraken",
            "name": "Kraken API",
            "category": "exchange",
            "criticality": "medium",
            "endpoints": [
                {
                    "name": "btc_ticker",
                    "url": "https://api.kraken.com/0/public/Ticker?pair=XBTUSD",
                    "timeout_ms": 5000,
                    "assertion": {"type": "all_of", "assertions": [
                        {"type": "json_path_equals", "path": "error", "value": []},
                        {"type": "json_path", "path": "result", "op": "nonempty"},
                    ]},
                },
            ],
        },
        # ---------------------------------------------------------
        # Blockchain RPCs
        # ---------------------------------------------------------
        {
            "id": "infura_ethereum",
            "name": "Infura Ethereum RPC",
            "category": "blockchain_rpc",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "latest_block",
                    "url": f"https://mainnet.infura.io/v3/{infura_key}",
                    "method": "POST",
                    "headers": _JSON,
                    "body": _rpc_body("eth_blockNumber"),
                    "timeout_ms": 8000,
                    "assertion": _hex_result(),
                },
            ],
        },
        {
            "id": "alchemy_polygon",
            "name": "Alchemy Polygon RPC",
            "category": "blockchain_rpc",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "chain_id",
                    "url": f"https://polygon-mainnet.g.alchemy.com/v2/{alchemy_key}",
                    "method": "POST",
                    "headers": _JSON,
                    "body": _rpc_body("eth_chainId"),
                    "timeout_ms": 8000,
                    "assertion": {"type": "json_path_equals", "path": "result", "value": "0x89"},
                },
            ],
        },
        {
            "id": "arbitrum_rpc",
            "name": "Arbitrum One RPC",
            "category": "blockchain_rpc",
            "criticality": "high",
            "endpoints": [
                {
                    "name": "network_check",
                    "url": "https://arb1.arbitrum.io/rpc",
                    "method": "POST",
                    "headers": _JSON,
                    "body": _rpc_body("net_version"),
                    "timeout_ms": 8000,
                    "assertion": {"type": "json_path_equals", "path": "result", "value": "42161"},
                },
            ],
        },
        {
            "id": "optimism_rpc",
            "name": "Optimism Mainnet RPC",
            "category": "blockchain_rpc",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "latest_block",
                    "url": "https://mainnet.optimism.io",
                    "method": "POST",
                    "headers": _JSON,
                    "body": _rpc_body("eth_blockNumber"),
                    "timeout_ms": 8000,
                    "assertion": _hex_result(),
                },
            ],
        },
        {
            "id": "base_rpc",
            "name": "Base Mainnet RPC",
            "category": "blockchain_rpc",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "latest_block",
                    "url": "https://mainnet.base.org",
                    "method": "POST",
                    "headers": _JSON,
                    "body": _rpc_body("eth_blockNumber"),
                    "timeout_ms": 8000,
                    "assertion": _hex_result(),
                },
            ],
        },
        # ---------------------------------------------------------
        # Price feeds
        # ---------------------------------------------------------
        {
            "id": "coingecko",
            "name": "CoinGecko API",
            "category": "price_feed",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "btc_price",
                    "url": "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd",
                    "timeout_ms": 5000,
                    "assertion": {"type": "json_path", "path": "bitcoin.usd", "op": "gt", "operand": 0},
                },
                {
                    "name": "ping",
                    "url": "https://api.coingecko.com/api/v3/ping",
                    "timeout_ms": 3000,
                    "assertion": {
                        "type": "json_path_equals",
                        "path": "gecko_says",
                        "value": "(V3) To the Moon!",
                    },
                },
            ],
        },
        {
            "id": "coinmarketcap",
            "name": "CoinMarketCap API",
            "category": "price_feed",
            "criticality": "high",
            "endpoints": [
                {
                    "name": "btc_quote",
                    "url": "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest?symbol=BTC",
                    "headers": {"X-CMC_PRO_API_KEY": cmc_key},
                    "timeout_ms": 5000,
                    "assertion": {
                        "type": "json_path",
                        "path": "data.BTC.quote.USD.price",
                        "op": "gt",
                        "operand": 0,
                    },
                },
            ],
        },
        # ---------------------------------------------------------
        # DeFi data services
        # ---------------------------------------------------------
        {
            "id": "the_graph",
            "name": "The Graph Protocol",
            "category": "defi_data",
            "criticality": "medium",
            "endpoints": [
                {
                    "name": "uniswap_subgraph",
                    "url": "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3",
                    "method": "POST",
                    "headers": _JSON,
                    "body": {"query": "{ factories(first: 1) { id totalValueLockedUSD } }"},
                    "timeout_ms": 10000,
                    "assertion": {"type": "json_path", "path": "data.factories", "op": "nonempty"},
                },
            ],
        },
        {
            "id": "dune_analytics",
            "name": "Dune Analytics API",
            "category": "defi_data",
            "criticality": "low",
            "endpoints": [
                {
                    "name": "api_status",
                    "url": "https://api.dune.com/api/v1/query/1/status",
                    "headers": {"X-Dune-API-Key": dune_key},
                    "timeout_ms": 8000,
                    "assertion": {"type": "json_path", "path": "state", "op": "exists"},
                },
            ],
        },
        # ---------------------------------------------------------
        # Infrastructure
        # ---------------------------------------------------------
        {
            "id": "cloudflare_dns",
            "name": "Cloudflare DNS",
            "category": "infrastructure",
            "criticality": "critical",
            "endpoints": [
                {
                    "name": "dns_resolve",
                    "url": "https://cloudflare-dns.com/dns-query?name=google.com&type=A",
                    "headers": {"Accept": "application/dns-json"},
                    "timeout_ms": 3000,
                    "assertion": {"type": "all_of", "assertions": [
                        {"type": "json_path_equals", "path": "Status", "value": 0},
                        {"type": "json_path", "path": "Answer", "op": "nonempty"},
                    ]},
                },
            ],
        },
        {
            "id": "ipfs_gateway",
            "name": "IPFS Gateway",
            "category": "infrastructure",
            "criticality": "low",
            "endpoints": [
                {
                    "name": "gateway_test",
                    "url": "https://ipfs.io/ipfs/QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG/readme",
                    "timeout_ms": 10000,
                    "assertion": {"type": "json_path", "path": "", "op": "contains", "operand": "IPFS"},
                },
            ],
        },
    ]


def build_default_registry() -> DependencyRegistry:
    """Registry of the default catalog."""
    return DependencyRegistry.from_dicts(default_dependencies())
