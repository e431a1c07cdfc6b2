from dataclasses import dataclass
from enum import Enum
from typing import Any

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from userop_core.exceptions import (EncodingException, EncodingExceptionCode,
                                    HashMismatchException, Stage)
from userop_core.typing import Address
from .user_operation import UserOperation


class UserOperationVariant(Enum):
    # initCode, callData and paymasterAndData declared as bytes32 and
    # pre-hashed by the caller before struct encoding
    UNPACKED_LEGACY = "unpacked_legacy"
    # the same fields declared as bytes, hashed by the EIP-712 encoder;
    # matches EntryPoint v0.8 getUserOpHash
    PACKED = "packed"

    def __str__(self):
        return self.value


DOMAIN_NAME = "ERC4337"
DOMAIN_VERSION = "1"
EIP712_DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,"
    "address verifyingContract)"
)
DOMAIN_TYPE_HASH = keccak(text=EIP712_DOMAIN_TYPE)
HASHED_NAME = keccak(text=DOMAIN_NAME)
HASHED_VERSION = keccak(text=DOMAIN_VERSION)

PRIMARY_TYPE = "PackedUserOperation"
HASHED_FIELDS = ("initCode", "callData", "paymasterAndData")

USER_OPERATION_FIELD_TYPES: dict[UserOperationVariant, list[tuple[str, str]]] = {
    UserOperationVariant.PACKED: [
        ("sender", "address"),
        ("nonce", "uint256"),
        ("initCode", "bytes"),
        ("callData", "bytes"),
        ("accountGasLimits", "bytes32"),
        ("preVerificationGas", "uint256"),
        ("gasFees", "bytes32"),
        ("paymasterAndData", "bytes"),
    ],
    UserOperationVariant.UNPACKED_LEGACY: [
        ("sender", "address"),
        ("nonce", "uint256"),
        ("initCode", "bytes32"),
        ("callData", "bytes32"),
        ("accountGasLimits", "bytes32"),
        ("preVerificationGas", "uint256"),
        ("gasFees", "bytes32"),
        ("paymasterAndData", "bytes32"),
    ],
}


def get_type_string(variant: UserOperationVariant) -> str:
    members = ",".join(
        f"{field_type} {name}"
        for name, field_type in USER_OPERATION_FIELD_TYPES[variant]
    )
    return f"{PRIMARY_TYPE}({members})"


USER_OPERATION_TYPE_HASHES: dict[UserOperationVariant, bytes] = {
    variant: keccak(text=get_type_string(variant))
    for variant in UserOperationVariant
}


@dataclass(frozen=True)
class SigningView:
    """
    The typed-data message of a UserOperation for one variant.

    For PACKED the hashed fields hold raw bytes, for UNPACKED_LEGACY they
    hold the keccak256 of the raw bytes.
    """
    variant: UserOperationVariant
    sender: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    account_gas_limits: bytes
    pre_verification_gas: int
    gas_fees: bytes
    paymaster_and_data: bytes

    def get_message(self) -> dict[str, Any]:
        return {
            "sender": self.sender,
            "nonce": self.nonce,
            "initCode": self.init_code,
            "callData": self.call_data,
            "accountGasLimits": self.account_gas_limits,
            "preVerificationGas": self.pre_verification_gas,
            "gasFees": self.gas_fees,
            "paymasterAndData": self.paymaster_and_data,
        }


def get_signing_view(
    user_operation: UserOperation, variant: UserOperationVariant
) -> SigningView:
    init_code = user_operation.init_code
    call_data = user_operation.call_data
    paymaster_and_data = user_operation.paymaster_and_data
    if variant == UserOperationVariant.UNPACKED_LEGACY:
        init_code = keccak(init_code)
        call_data = keccak(call_data)
        paymaster_and_data = keccak(paymaster_and_data)

    return SigningView(
        variant=variant,
        sender=user_operation.sender_address,
        nonce=user_operation.nonce,
        init_code=init_code,
        call_data=call_data,
        account_gas_limits=user_operation.account_gas_limits,
        pre_verification_gas=user_operation.pre_verification_gas,
        gas_fees=user_operation.gas_fees,
        paymaster_and_data=paymaster_and_data,
    )


def domain_separator(chain_id: int, entrypoint: Address) -> bytes:
    return keccak(
        encode(
            ["bytes32", "bytes32", "bytes32", "uint256", "address"],
            [
                DOMAIN_TYPE_HASH,
                HASHED_NAME,
                HASHED_VERSION,
                chain_id,
                to_checksum_address(entrypoint),
            ],
        )
    )


def struct_hash(
    signing_view: SigningView, variant: UserOperationVariant
) -> bytes:
    _verify_variant(signing_view, variant)
    if variant == UserOperationVariant.PACKED:
        init_code_hash = keccak(signing_view.init_code)
        call_data_hash = keccak(signing_view.call_data)
        paymaster_and_data_hash = keccak(signing_view.paymaster_and_data)
    else:
        init_code_hash = signing_view.init_code
        call_data_hash = signing_view.call_data
        paymaster_and_data_hash = signing_view.paymaster_and_data

    return keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "bytes32",
                "uint256",
                "bytes32",
                "bytes32",
            ],
            [
                USER_OPERATION_TYPE_HASHES[variant],
                signing_view.sender,
                signing_view.nonce,
                init_code_hash,
                call_data_hash,
                signing_view.account_gas_limits,
                signing_view.pre_verification_gas,
                signing_view.gas_fees,
                paymaster_and_data_hash,
            ],
        )
    )


def final_hash(domain_separator_hash: bytes, struct_hash_value: bytes) -> bytes:
    return keccak(b"\x19\x01" + domain_separator_hash + struct_hash_value)


def get_user_operation_hash(
    user_operation: UserOperation,
    variant: UserOperationVariant,
    chain_id: int,
    entrypoint: Address,
) -> bytes:
    return final_hash(
        domain_separator(chain_id, entrypoint),
        struct_hash(get_signing_view(user_operation, variant), variant),
    )


def get_typed_data(
    signing_view: SigningView, chain_id: int, entrypoint: Address
) -> dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            PRIMARY_TYPE: [
                {"name": name, "type": field_type}
                for name, field_type
                in USER_OPERATION_FIELD_TYPES[signing_view.variant]
            ],
        },
        "primaryType": PRIMARY_TYPE,
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": to_checksum_address(entrypoint),
        },
        "message": signing_view.get_message(),
    }


def verify_user_operation_hash(
    computed_hash: bytes, entrypoint_hash: bytes
) -> None:
    if computed_hash != entrypoint_hash:
        raise HashMismatchException(
            expected="0x" + entrypoint_hash.hex(),
            computed="0x" + computed_hash.hex(),
        )


def _verify_variant(
    signing_view: SigningView, variant: UserOperationVariant
) -> None:
    if not isinstance(variant, UserOperationVariant):
        raise EncodingException(
            EncodingExceptionCode.VariantMismatch,
            f"Unknown UserOperation variant {variant!r}",
            Stage.HASH,
        )
    if signing_view.variant != variant:
        raise EncodingException(
            EncodingExceptionCode.VariantMismatch,
            f"Signing view built for {signing_view.variant} "
            f"hashed as {variant}",
            Stage.HASH,
        )
    if variant == UserOperationVariant.UNPACKED_LEGACY:
        for name, value in zip(
            HASHED_FIELDS,
            (
                signing_view.init_code,
                signing_view.call_data,
                signing_view.paymaster_and_data,
            ),
        ):
            if len(value) != 32:
                raise EncodingException(
                    EncodingExceptionCode.VariantMismatch,
                    f"{name} must be a 32 byte keccak256 digest for the "
                    f"{variant} variant, got {len(value)} bytes",
                    Stage.HASH,
                )
