"""
Configuration globale pytest pour tous les tests.

Ajoute le répertoire racine du projet au PYTHONPATH
pour permettre les imports relatifs (ex: from services.xxx import ...)
et fournit un nœud JSON-RPC simulé servi par httpx.MockTransport.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode

# Ajouter le répertoire racine du projet au sys.path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import (  # noqa: E402
    AggregatorConfig,
    CacheConfig,
    ContractsConfig,
    LoggingConfig,
    RefreshConfig,
    RouteConfig,
    Settings,
)
from constants.app_constants import ONE_TOKEN, PRICE_PRECISION  # noqa: E402
from services.rpc.abi import encode_collateral_info, selector  # noqa: E402
from services.scheduling import ManualClock  # noqa: E402

# ============================================================================
# Adresses de test (minuscules: acceptées telles quelles par eth_abi)
# ============================================================================

DIAMOND = "0x" + "d1" * 20
POOL = "0x" + "c0" * 20
LUSD = "0x" + "11" * 20
UUSD = "0x" + "22" * 20
UBQ = "0x" + "33" * 20
PRICE_FEED = "0x" + "44" * 20
ACCOUNT = "0x" + "aa" * 20
RPC_URL = "http://node.test/rpc"

SIGNATURES = (
    "collateralRatio()",
    "getDollarPriceUsd()",
    "getGovernancePriceUsd()",
    "allCollaterals()",
    "collateralInformation(address)",
    "balanceOf(address)",
    "get_dy(int128,int128,uint256)",
    "coins(uint256)",
)
SELECTORS = {"0x" + selector(sig).hex(): sig for sig in SIGNATURES}


def uint_hex(value: int) -> str:
    return "0x" + abi_encode(["uint256"], [value]).hex()


def default_collateral(**overrides) -> Dict[str, Any]:
    info = {
        "index": 0,
        "symbol": "LUSD",
        "collateral_address": LUSD,
        "price_feed": PRICE_FEED,
        "staleness_threshold": 86400,
        "is_enabled": True,
        "missing_decimals": 0,
        "price": PRICE_PRECISION,
        "pool_ceiling": 10_000_000 * ONE_TOKEN,
        "is_mint_paused": False,
        "is_redeem_paused": False,
        "is_borrow_paused": False,
        "minting_fee": 2000,
        "redemption_fee": 2000,
    }
    info.update(overrides)
    return info


class NodeError(Exception):
    def __init__(self, message: str, code: int = -32000):
        super().__init__(message)
        self.message = message
        self.code = code


class FakeNode:
    """
    Nœud Ethereum simulé: diamond Ubiquity, pool Curve et tokens ERC20.

    L'état est modifiable directement par les tests. ``errors`` associe une
    signature (ou un nom de méthode RPC) à un message d'erreur JSON-RPC;
    ``down`` fait échouer le transport.
    """

    def __init__(self, contracts: ContractsConfig):
        self.contracts = contracts
        self.block_number = 19_000_000
        self.genesis_time = 1_438_269_973
        self.collateral_ratio = PRICE_PRECISION
        self.dollar_price = PRICE_PRECISION
        self.governance_price = 500_000
        self.collaterals = [LUSD]
        self.collateral = default_collateral()
        self.mint_threshold = PRICE_PRECISION
        self.redeem_threshold = PRICE_PRECISION
        # sortie get_dy pour 1 token en entrée, par direction (i, j)
        self.rates = {(0, 1): ONE_TOKEN, (1, 0): ONE_TOKEN}
        self.quotes: Dict[Tuple[int, int, int], int] = {}
        self.history_rates: Dict[int, int] = {}
        self.missing_blocks: set = set()
        self.balances: Dict[str, int] = {}
        self.coins = [LUSD, UUSD]
        self.errors: Dict[str, str] = {}
        self.down = False
        self.http_requests = 0
        self.calls: List[str] = []
        self.payloads: List[Any] = []

    # ---------------- Transport ----------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.http_requests += 1
        if self.down:
            raise httpx.ConnectError("node unreachable", request=request)
        payload = json.loads(request.content)
        self.payloads.append(payload)
        if isinstance(payload, list):
            body = [self._answer(item) for item in payload]
        else:
            body = self._answer(payload)
        return httpx.Response(200, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _answer(self, item: Dict[str, Any]) -> Dict[str, Any]:
        envelope = {"jsonrpc": "2.0", "id": item["id"]}
        try:
            envelope["result"] = self._dispatch(item["method"], item.get("params", []))
        except NodeError as e:
            envelope["error"] = {"code": e.code, "message": e.message}
        return envelope

    def _fail_if_configured(self, name: str) -> None:
        if name in self.errors:
            raise NodeError(self.errors[name])

    # ---------------- Méthodes RPC ----------------

    def _dispatch(self, method: str, params: List[Any]) -> Any:
        self.calls.append(method)
        self._fail_if_configured(method)
        if method == "eth_blockNumber":
            return hex(self.block_number)
        if method == "eth_getBlockByNumber":
            number = int(params[0], 16)
            if number in self.missing_blocks:
                return None
            return {"number": params[0], "timestamp": hex(self.genesis_time + number * 12)}
        if method == "eth_getStorageAt":
            slot = int(params[1], 16)
            if slot == self.contracts.mint_threshold_slot:
                return uint_hex(self.mint_threshold)
            if slot == self.contracts.redeem_threshold_slot:
                return uint_hex(self.redeem_threshold)
            return uint_hex(0)
        if method == "eth_call":
            call, block = params[0], params[1] if len(params) > 1 else "latest"
            return self._eth_call(call["to"].lower(), call["data"], block)
        raise NodeError(f"method {method} not supported", code=-32601)

    def _eth_call(self, to: str, data: str, block: str) -> str:
        signature = SELECTORS.get(data[:10])
        if signature is None:
            raise NodeError("execution reverted: unknown selector")
        self.calls.append(signature)
        self._fail_if_configured(signature)
        args = bytes.fromhex(data[10:])

        if to == self.contracts.diamond.lower():
            if signature == "collateralRatio()":
                return uint_hex(self.collateral_ratio)
            if signature == "getDollarPriceUsd()":
                return uint_hex(self.dollar_price)
            if signature == "getGovernancePriceUsd()":
                return uint_hex(self.governance_price)
            if signature == "allCollaterals()":
                return "0x" + abi_encode(["address[]"], [self.collaterals]).hex()
            if signature == "collateralInformation(address)":
                return encode_collateral_info(self.collateral)
        if to == self.contracts.curve_pool.lower():
            if signature == "get_dy(int128,int128,uint256)":
                i, j, amount = abi_decode(["int128", "int128", "uint256"], args)
                return uint_hex(self.get_dy(i, j, amount, block))
            if signature == "coins(uint256)":
                (index,) = abi_decode(["uint256"], args)
                return "0x" + abi_encode(["address"], [self.coins[index]]).hex()
        if signature == "balanceOf(address)":
            return uint_hex(self.balances.get(to, 0))
        raise NodeError("execution reverted")

    def get_dy(self, i: int, j: int, amount: int, block: str = "latest") -> int:
        if (i, j, amount) in self.quotes:
            return self.quotes[(i, j, amount)]
        rate = self.rates[(i, j)]
        if block != "latest" and (i, j) == (0, 1):
            rate = self.history_rates.get(int(block, 16), rate)
        return amount * rate // ONE_TOKEN

    def count(self, name: str) -> int:
        return self.calls.count(name)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def manual_clock():
    """Horloge virtuelle pilotée par les tests."""
    return ManualClock()


@pytest.fixture
def contracts_config():
    return ContractsConfig(
        diamond=DIAMOND,
        dollar_token=UUSD,
        governance_token=UBQ,
        collateral_token=LUSD,
        curve_pool=POOL,
    )


@pytest.fixture
def node(contracts_config):
    return FakeNode(contracts_config)


@pytest.fixture
def settings(contracts_config, tmp_path):
    return Settings(
        environment="development",
        rpc={"url": RPC_URL, "timeout_sec": 5.0},
        contracts=contracts_config,
        cache=CacheConfig(persist_enabled=False, persist_path=tmp_path / "cache.json"),
        refresh=RefreshConfig(enabled=False),
        aggregator=AggregatorConfig(debounce_sec=0.01),
        route=RouteConfig(),
        logging=LoggingConfig(log_format="text"),
    )


@pytest.fixture
def rpc_client(node):
    from services.rpc.client import JsonRpcClient
    return JsonRpcClient(RPC_URL, transport=node.transport())


@pytest.fixture
def container(settings, node, manual_clock):
    """Conteneur complet branché sur le nœud simulé et l'horloge virtuelle."""
    from services.container import build_container
    return build_container(settings, clock=manual_clock, transport=node.transport())


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests")
