"""
ABI helpers - encodage des appels et décodage des retours via eth_abi.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from shared.exceptions import InvalidDataError

# Diamond.collateralInformation(address) return tuple
COLLATERAL_INFO_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("index", "uint256"),
    ("symbol", "string"),
    ("collateral_address", "address"),
    ("price_feed", "address"),
    ("staleness_threshold", "uint256"),
    ("is_enabled", "bool"),
    ("missing_decimals", "uint256"),
    ("price", "uint256"),
    ("pool_ceiling", "uint256"),
    ("is_mint_paused", "bool"),
    ("is_redeem_paused", "bool"),
    ("is_borrow_paused", "bool"),
    ("minting_fee", "uint256"),
    ("redemption_fee", "uint256"),
)
COLLATERAL_INFO_TYPE = "(" + ",".join(t for _, t in COLLATERAL_INFO_FIELDS) + ")"


@lru_cache(maxsize=128)
def selector(signature: str) -> bytes:
    """4-byte function selector, e.g. ``get_dy(int128,int128,uint256)`` -> 0x5e0d443f."""
    return function_signature_to_4byte_selector(signature)


def _argument_types(signature: str) -> List[str]:
    inner = signature[signature.index("(") + 1:signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


def encode_call(signature: str, *args: Any) -> str:
    """Calldata hex pour ``signature`` appliquée à ``args``."""
    types = _argument_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} attend {len(types)} arguments, reçu {len(args)}")
    payload = selector(signature)
    if types:
        payload += abi_encode(types, list(args))
    return "0x" + payload.hex()


def to_bytes(result: str) -> bytes:
    text = result[2:] if result.startswith(("0x", "0X")) else result
    if len(text) % 2:
        text = "0" + text
    return bytes.fromhex(text)


def _decode(types: List[str], result: str, field: str):
    data = to_bytes(result)
    if not data:
        raise InvalidDataError(f"Empty return data for {field}", field=field)
    try:
        return abi_decode(types, data)
    except DecodingError as e:
        raise InvalidDataError(f"Cannot decode {field}: {e}", field=field) from e


def decode_uint(result: str, field: str = "uint256") -> int:
    return int(_decode(["uint256"], result, field)[0])


def decode_word(result: str) -> int:
    """Raw storage word as an unsigned integer ('0x' reads as 0)."""
    data = to_bytes(result)
    return int.from_bytes(data, "big") if data else 0


def decode_address(result: str, field: str = "address") -> str:
    return to_checksum_address(_decode(["address"], result, field)[0])


def decode_address_list(result: str, field: str = "address[]") -> List[str]:
    return [to_checksum_address(a) for a in _decode(["address[]"], result, field)[0]]


def decode_collateral_info(result: str) -> Dict[str, Any]:
    values = _decode([COLLATERAL_INFO_TYPE], result, "collateralInformation")[0]
    info = {name: value for (name, _), value in zip(COLLATERAL_INFO_FIELDS, values)}
    info["collateral_address"] = to_checksum_address(info["collateral_address"])
    info["price_feed"] = to_checksum_address(info["price_feed"])
    return info


def encode_collateral_info(info: Dict[str, Any]) -> str:
    """Inverse de decode_collateral_info (utilisé pour simuler un nœud)."""
    values = tuple(info[name] for name, _ in COLLATERAL_INFO_FIELDS)
    return "0x" + abi_encode([COLLATERAL_INFO_TYPE], [values]).hex()
