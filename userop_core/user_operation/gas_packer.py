from userop_core.exceptions import EncodingException, EncodingExceptionCode

MAX_UINT128 = 2**128 - 1


def verify_uint128(field_name: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Invalid uint128 value : {value!r} in field {field_name}",
        )
    if value < 0 or value > MAX_UINT128:
        raise EncodingException(
            EncodingExceptionCode.ValueOutOfRange,
            f"{field_name} value {value} does not fit in 128 bits "
            f"(max {MAX_UINT128})",
        )
    return value


def pack_uint(
    high: int,
    low: int,
    high_field_name: str = "high",
    low_field_name: str = "low",
) -> bytes:
    """
    Pack two uint128 values into one big-endian bytes32 word: high || low.

    Used for accountGasLimits (verificationGasLimit, callGasLimit),
    gasFees (maxPriorityFeePerGas, maxFeePerGas) and the paymaster gas limits
    inside paymasterAndData.
    """
    verify_uint128(high_field_name, high)
    verify_uint128(low_field_name, low)
    return ((high << 128) | low).to_bytes(32, "big")


def unpack_uint(word: bytes) -> tuple[int, int]:
    if len(word) != 32:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"Packed gas word must be 32 bytes, got {len(word)} bytes",
        )
    value = int.from_bytes(word, "big")
    return value >> 128, value & MAX_UINT128
