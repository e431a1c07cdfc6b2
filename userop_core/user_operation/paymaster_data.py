from dataclasses import dataclass

from eth_utils import to_checksum_address

from userop_core.exceptions import EncodingException, EncodingExceptionCode
from userop_core.typing import Address
from .fields import verify_and_get_address
from .gas_packer import pack_uint, unpack_uint

PAYMASTER_ADDRESS_LENGTH = 20
PAYMASTER_GAS_LIMITS_LENGTH = 32
# paymaster (20) + packed (paymasterVerificationGasLimit, paymasterPostOpGasLimit) (32)
PAYMASTER_DATA_OFFSET = PAYMASTER_ADDRESS_LENGTH + PAYMASTER_GAS_LIMITS_LENGTH


@dataclass(frozen=True)
class PaymasterData:
    paymaster: Address
    verification_gas_limit: int
    post_op_gas_limit: int
    paymaster_data: bytes


def encode_paymaster_and_data(
    paymaster: Address,
    verification_gas_limit: int,
    post_op_gas_limit: int,
    paymaster_data: bytes = b"",
) -> bytes:
    paymaster_bytes = bytes.fromhex(
        verify_and_get_address("paymaster", paymaster)[2:])
    return (
        paymaster_bytes +
        pack_uint(
            verification_gas_limit,
            post_op_gas_limit,
            "paymasterVerificationGasLimit",
            "paymasterPostOpGasLimit",
        ) +
        paymaster_data
    )


def decode_paymaster_and_data(paymaster_and_data: bytes) -> PaymasterData:
    if len(paymaster_and_data) < PAYMASTER_DATA_OFFSET:
        raise EncodingException(
            EncodingExceptionCode.MalformedPaymasterData,
            f"paymasterAndData must be at least {PAYMASTER_DATA_OFFSET} "
            f"bytes, got {len(paymaster_and_data)} bytes",
        )
    verification_gas_limit, post_op_gas_limit = unpack_uint(
        paymaster_and_data[PAYMASTER_ADDRESS_LENGTH:PAYMASTER_DATA_OFFSET]
    )
    return PaymasterData(
        paymaster=Address(to_checksum_address(
            paymaster_and_data[:PAYMASTER_ADDRESS_LENGTH])),
        verification_gas_limit=verification_gas_limit,
        post_op_gas_limit=post_op_gas_limit,
        paymaster_data=paymaster_and_data[PAYMASTER_DATA_OFFSET:],
    )
