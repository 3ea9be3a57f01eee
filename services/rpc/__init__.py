"""
JSON-RPC access layer.

Usage:
    from services.rpc import JsonRpcClient, RpcCall, encode_call

    client = JsonRpcClient("https://rpc.ubq.fi/1")
    ratio = decode_uint(await client.eth_call(diamond, encode_call("collateralRatio()")))
"""
from services.rpc.abi import (
    decode_address,
    decode_address_list,
    decode_collateral_info,
    decode_uint,
    decode_word,
    encode_call,
    selector,
)
from services.rpc.client import JsonRpcClient, RpcCall, RpcResponse

__all__ = [
    "JsonRpcClient",
    "RpcCall",
    "RpcResponse",
    "encode_call",
    "selector",
    "decode_uint",
    "decode_word",
    "decode_address",
    "decode_address_list",
    "decode_collateral_info",
]
