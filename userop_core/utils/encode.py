from functools import cache
from typing import Any

from eth_abi import encode
from eth_utils import keccak

from userop_core.typing import Address

PACKED_USER_OPERATION_TUPLE = (
    "(address,uint256,bytes,bytes,bytes32,uint256,bytes32,bytes,bytes)"
)


@cache
def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def encode_function_call(
    signature: str, types: list[str], args: list[Any]
) -> bytes:
    return function_selector(signature) + encode(types, args)


def encode_execute_calldata(
    target: Address, value: int, data: bytes
) -> bytes:
    return encode_function_call(
        "execute(address,uint256,bytes)",
        ["address", "uint256", "bytes"],
        [target, value, data],
    )


def encode_create_account_calldata(owner: Address, salt: int) -> bytes:
    return encode_function_call(
        "createAccount(address,uint256)",
        ["address", "uint256"],
        [owner, salt],
    )


def encode_initialize_calldata(owner: Address) -> bytes:
    return encode_function_call(
        "initialize(address)", ["address"], [owner])


def encode_get_user_op_hash_calldata(
    packed_user_operation: list[Any]
) -> bytes:
    return encode_function_call(
        f"getUserOpHash({PACKED_USER_OPERATION_TUPLE})",
        [PACKED_USER_OPERATION_TUPLE],
        [packed_user_operation],
    )


def encode_validate_user_op_calldata(
    packed_user_operation: list[Any],
    user_operation_hash: bytes,
    missing_account_funds: int,
) -> bytes:
    return encode_function_call(
        f"validateUserOp({PACKED_USER_OPERATION_TUPLE},bytes32,uint256)",
        [PACKED_USER_OPERATION_TUPLE, "bytes32", "uint256"],
        [packed_user_operation, user_operation_hash, missing_account_funds],
    )
