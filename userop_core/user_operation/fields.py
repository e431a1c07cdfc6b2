import re

from eth_utils import to_checksum_address

from userop_core.exceptions import EncodingException, EncodingExceptionCode
from userop_core.typing import Address

MAX_UINT256 = 2**256 - 1


def verify_and_get_address(field_name: str, value: Address | None) -> Address:
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if isinstance(value, str) and re.match(address_pattern, value) is not None:
        return Address(to_checksum_address(value))
    else:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid address value : {value} in field {field_name}",
        )


def verify_and_get_uint(field_name: str, value: str | None) -> int:
    if value is None:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid uint hex value in field {field_name}",
        )

    if value == "0x":
        return 0
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return verify_uint256(field_name, int(value, 16))
        except ValueError:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                f"Invalid uint hex value : {value} in field {field_name}",
            )
    else:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid uint hex value : {value} in field {field_name}",
        )


def verify_uint256(field_name: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid uint256 value : {value!r} in field {field_name}",
        )
    if value < 0 or value > MAX_UINT256:
        raise EncodingException(
            EncodingExceptionCode.ValueOutOfRange,
            f"{field_name} value {value} does not fit in 256 bits",
        )
    return value


def verify_and_get_bytes(field_name: str, value: str | None) -> bytes:
    if value is None:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid bytes hex value in field {field_name}",
        )

    if isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                f"Invalid bytes hex value : {value} in field {field_name}",
            )
    else:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid bytes hex value : {value} in field {field_name}",
        )


def is_user_operation_hash(user_operation_hash: str) -> bool:
    hash_pattern = "^0x[0-9a-fA-F]{64}$"
    return (
        isinstance(user_operation_hash, str)
        and re.match(hash_pattern, user_operation_hash) is not None
    )
