from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from userop_core.typing import Address

# FailedOp(uint256,string)
FAILED_OP_SELECTOR = "220266b6"
# FailedOpWithRevert(uint256,string,bytes)
FAILED_OP_WITH_REVERT_SELECTOR = "65c8fd4d"
# Error(string)
ERROR_SELECTOR = "08c379a0"


def decode_failed_op_event(solidity_error_params: str) -> tuple[int, str]:
    FAILED_OP_PARAMS_API = ["uint256", "string"]
    failed_op_params_res = decode(
        FAILED_OP_PARAMS_API, bytes.fromhex(solidity_error_params)
    )
    operation_index = failed_op_params_res[0]
    reason = failed_op_params_res[1]

    return operation_index, reason


def decode_revert_reason(revert_data_hex: str) -> str | None:
    """Best effort decoding of EntryPoint / account revert data."""
    selector = revert_data_hex[2:10]
    params = revert_data_hex[10:]
    try:
        if selector == FAILED_OP_SELECTOR:
            _, reason = decode_failed_op_event(params)
            return reason
        elif selector == FAILED_OP_WITH_REVERT_SELECTOR:
            _, reason, _ = decode(
                ["uint256", "string", "bytes"], bytes.fromhex(params)
            )
            return reason
        elif selector == ERROR_SELECTOR:
            return decode(["string"], bytes.fromhex(params))[0]
    except (DecodingError, ValueError):
        return None
    return None


def decode_uint_result(raw_result: bytes) -> int:
    return decode(["uint256"], raw_result)[0]


def decode_address_result(raw_result: bytes) -> Address:
    return Address(to_checksum_address(decode(["address"], raw_result)[0]))


def decode_bool_result(raw_result: bytes) -> bool:
    return decode(["bool"], raw_result)[0]


def decode_bytes32_result(raw_result: bytes) -> bytes:
    return decode(["bytes32"], raw_result)[0]
