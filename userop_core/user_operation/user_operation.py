from dataclasses import dataclass, replace
from enum import Enum

from userop_core.exceptions import EncodingException, EncodingExceptionCode
from userop_core.typing import Address
from .fields import (verify_and_get_address, verify_and_get_bytes,
                     verify_and_get_uint, verify_uint256)
from .gas_packer import pack_uint, unpack_uint, verify_uint128
from .paymaster_data import (decode_paymaster_and_data,
                             encode_paymaster_and_data)


class WireFormat(Enum):
    # eth_sendUserOperation shape for EntryPoint v0.6
    V6 = "v6"
    # eth_sendUserOperation shape for EntryPoint v0.7 / v0.8
    V7 = "v7"
    # the on-chain PackedUserOperation struct, hex encoded
    PACKED = "packed"

    def __str__(self):
        return self.value


V6_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
]

V7_REQUIRED_FIELDS = [
    "sender",
    "nonce",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "signature",
]

V7_OPTIONAL_FIELDS = [
    "factory",
    "factoryData",
    "paymaster",
    "paymasterVerificationGasLimit",
    "paymasterPostOpGasLimit",
    "paymasterData",
]

PACKED_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "accountGasLimits",
    "preVerificationGas",
    "gasFees",
    "paymasterAndData",
    "signature",
]


@dataclass(frozen=True)
class UserOperation:
    """
    Canonical UserOperation.

    Gas values are held unpacked; accountGasLimits, gasFees, initCode and
    paymasterAndData are derived on access so every wire format and every
    signing view comes from the same fields. Instances are immutable, use
    dataclasses.replace (or with_signature) to derive a new operation.
    """
    sender_address: Address
    nonce: int
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    factory: Address | None = None
    factory_data: bytes | None = None
    paymaster: Address | None = None
    paymaster_verification_gas_limit: int | None = None
    paymaster_post_op_gas_limit: int | None = None
    paymaster_data: bytes | None = None
    signature: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "sender_address",
            verify_and_get_address("sender", self.sender_address),
        )
        verify_uint256("nonce", self.nonce)
        verify_uint256("preVerificationGas", self.pre_verification_gas)
        verify_uint128("verificationGasLimit", self.verification_gas_limit)
        verify_uint128("callGasLimit", self.call_gas_limit)
        verify_uint128("maxPriorityFeePerGas", self.max_priority_fee_per_gas)
        verify_uint128("maxFeePerGas", self.max_fee_per_gas)

        if self.factory is not None:
            object.__setattr__(
                self, "factory", verify_and_get_address("factory", self.factory))
        elif self.factory_data:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                'Invalid UserOperation, '
                '"factoryData" has to be empty if "factory" is null',
            )

        if self.paymaster is not None:
            object.__setattr__(
                self,
                "paymaster",
                verify_and_get_address("paymaster", self.paymaster),
            )
            if (
                self.paymaster_verification_gas_limit is None or
                self.paymaster_post_op_gas_limit is None
            ):
                raise EncodingException(
                    EncodingExceptionCode.InvalidFields,
                    "Invalid UserOperation, "
                    '"paymasterVerificationGasLimit" and '
                    '"paymasterPostOpGasLimit" are required with "paymaster"',
                )
            verify_uint128(
                "paymasterVerificationGasLimit",
                self.paymaster_verification_gas_limit,
            )
            verify_uint128(
                "paymasterPostOpGasLimit", self.paymaster_post_op_gas_limit)
            if self.paymaster_data is None:
                object.__setattr__(self, "paymaster_data", b"")
        elif (
            self.paymaster_verification_gas_limit is not None or
            self.paymaster_post_op_gas_limit is not None or
            self.paymaster_data
        ):
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                "Invalid UserOperation, "
                '"paymasterVerificationGasLimit", "paymasterPostOpGasLimit" '
                'and "paymasterData" have to be null if "paymaster" is null',
            )

    @property
    def init_code(self) -> bytes:
        if self.factory is None:
            return bytes(0)
        factory_data = self.factory_data if self.factory_data else bytes(0)
        return bytes.fromhex(self.factory[2:]) + factory_data

    @property
    def account_gas_limits(self) -> bytes:
        return pack_uint(
            self.verification_gas_limit,
            self.call_gas_limit,
            "verificationGasLimit",
            "callGasLimit",
        )

    @property
    def gas_fees(self) -> bytes:
        return pack_uint(
            self.max_priority_fee_per_gas,
            self.max_fee_per_gas,
            "maxPriorityFeePerGas",
            "maxFeePerGas",
        )

    @property
    def paymaster_and_data(self) -> bytes:
        if self.paymaster is None:
            return bytes(0)
        return encode_paymaster_and_data(
            self.paymaster,
            self.paymaster_verification_gas_limit,  # type: ignore
            self.paymaster_post_op_gas_limit,  # type: ignore
            self.paymaster_data,  # type: ignore
        )

    @property
    def is_deployment(self) -> bool:
        return self.factory is not None

    def with_signature(self, signature: bytes) -> "UserOperation":
        return replace(self, signature=signature)

    def to_packed_list(self) -> list[Address | int | bytes]:
        return [
            self.sender_address,
            self.nonce,
            self.init_code,
            self.call_data,
            self.account_gas_limits,
            self.pre_verification_gas,
            self.gas_fees,
            self.paymaster_and_data,
            self.signature,
        ]

    def get_user_operation_json(
        self, wire_format: WireFormat
    ) -> dict[str, str]:
        if wire_format == WireFormat.V6:
            return {
                "sender": self.sender_address,
                "nonce": hex(self.nonce),
                "initCode": "0x" + self.init_code.hex(),
                "callData": "0x" + self.call_data.hex(),
                "callGasLimit": hex(self.call_gas_limit),
                "verificationGasLimit": hex(self.verification_gas_limit),
                "preVerificationGas": hex(self.pre_verification_gas),
                "maxFeePerGas": hex(self.max_fee_per_gas),
                "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
                "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
                "signature": "0x" + self.signature.hex(),
            }
        elif wire_format == WireFormat.V7:
            user_operation_json = {
                "sender": self.sender_address,
                "nonce": hex(self.nonce),
                "callData": "0x" + self.call_data.hex(),
                "callGasLimit": hex(self.call_gas_limit),
                "verificationGasLimit": hex(self.verification_gas_limit),
                "preVerificationGas": hex(self.pre_verification_gas),
                "maxFeePerGas": hex(self.max_fee_per_gas),
                "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
                "signature": "0x" + self.signature.hex(),
            }
            if self.factory is not None:
                user_operation_json["factory"] = self.factory
                user_operation_json["factoryData"] = (
                    "0x" + (self.factory_data or bytes(0)).hex())
            if self.paymaster is not None:
                user_operation_json.update({
                    "paymaster": self.paymaster,
                    "paymasterVerificationGasLimit":
                    hex(self.paymaster_verification_gas_limit),  # type: ignore
                    "paymasterPostOpGasLimit":
                    hex(self.paymaster_post_op_gas_limit),  # type: ignore
                    "paymasterData":
                    "0x" + self.paymaster_data.hex(),  # type: ignore
                })
            return user_operation_json
        else:
            return {
                "sender": self.sender_address,
                "nonce": hex(self.nonce),
                "initCode": "0x" + self.init_code.hex(),
                "callData": "0x" + self.call_data.hex(),
                "accountGasLimits": "0x" + self.account_gas_limits.hex(),
                "preVerificationGas": hex(self.pre_verification_gas),
                "gasFees": "0x" + self.gas_fees.hex(),
                "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
                "signature": "0x" + self.signature.hex(),
            }

    @classmethod
    def from_packed(
        cls,
        sender_address: Address,
        nonce: int,
        init_code: bytes,
        call_data: bytes,
        account_gas_limits: bytes,
        pre_verification_gas: int,
        gas_fees: bytes,
        paymaster_and_data: bytes,
        signature: bytes = b"",
    ) -> "UserOperation":
        verification_gas_limit, call_gas_limit = unpack_uint(account_gas_limits)
        max_priority_fee_per_gas, max_fee_per_gas = unpack_uint(gas_fees)
        return cls(
            sender_address=sender_address,
            nonce=nonce,
            call_data=call_data,
            call_gas_limit=call_gas_limit,
            verification_gas_limit=verification_gas_limit,
            pre_verification_gas=pre_verification_gas,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            signature=signature,
            **_split_init_code(init_code),
            **_split_paymaster_and_data(paymaster_and_data),
        )

    @classmethod
    def from_json(
        cls,
        json_request_dict: dict[str, str | None],
        wire_format: WireFormat,
    ) -> "UserOperation":
        if wire_format == WireFormat.V6:
            verify_fields_exist(json_request_dict, V6_FIELDS)
            return cls(
                sender_address=verify_and_get_address(
                    "sender", json_request_dict["sender"]),
                nonce=verify_and_get_uint("nonce", json_request_dict["nonce"]),
                call_data=verify_and_get_bytes(
                    "callData", json_request_dict["callData"]),
                call_gas_limit=verify_and_get_uint(
                    "callGasLimit", json_request_dict["callGasLimit"]),
                verification_gas_limit=verify_and_get_uint(
                    "verificationGasLimit",
                    json_request_dict["verificationGasLimit"]),
                pre_verification_gas=verify_and_get_uint(
                    "preVerificationGas",
                    json_request_dict["preVerificationGas"]),
                max_fee_per_gas=verify_and_get_uint(
                    "maxFeePerGas", json_request_dict["maxFeePerGas"]),
                max_priority_fee_per_gas=verify_and_get_uint(
                    "maxPriorityFeePerGas",
                    json_request_dict["maxPriorityFeePerGas"]),
                signature=verify_and_get_bytes(
                    "signature", json_request_dict["signature"]),
                **_split_init_code(verify_and_get_bytes(
                    "initCode", json_request_dict["initCode"])),
                **_split_paymaster_and_data(verify_and_get_bytes(
                    "paymasterAndData",
                    json_request_dict["paymasterAndData"])),
            )
        elif wire_format == WireFormat.V7:
            verify_fields_exist(json_request_dict, V7_REQUIRED_FIELDS)
            optional: dict[str, str | None] = {
                field: json_request_dict.get(field)
                for field in V7_OPTIONAL_FIELDS
            }
            paymaster = optional["paymaster"]
            return cls(
                sender_address=verify_and_get_address(
                    "sender", json_request_dict["sender"]),
                nonce=verify_and_get_uint("nonce", json_request_dict["nonce"]),
                factory=optional["factory"],  # type: ignore
                factory_data=None if optional["factoryData"] is None
                else verify_and_get_bytes(
                    "factoryData", optional["factoryData"]),
                call_data=verify_and_get_bytes(
                    "callData", json_request_dict["callData"]),
                call_gas_limit=verify_and_get_uint(
                    "callGasLimit", json_request_dict["callGasLimit"]),
                verification_gas_limit=verify_and_get_uint(
                    "verificationGasLimit",
                    json_request_dict["verificationGasLimit"]),
                pre_verification_gas=verify_and_get_uint(
                    "preVerificationGas",
                    json_request_dict["preVerificationGas"]),
                max_fee_per_gas=verify_and_get_uint(
                    "maxFeePerGas", json_request_dict["maxFeePerGas"]),
                max_priority_fee_per_gas=verify_and_get_uint(
                    "maxPriorityFeePerGas",
                    json_request_dict["maxPriorityFeePerGas"]),
                paymaster=paymaster,  # type: ignore
                paymaster_verification_gas_limit=None
                if optional["paymasterVerificationGasLimit"] is None
                else verify_and_get_uint(
                    "paymasterVerificationGasLimit",
                    optional["paymasterVerificationGasLimit"]),
                paymaster_post_op_gas_limit=None
                if optional["paymasterPostOpGasLimit"] is None
                else verify_and_get_uint(
                    "paymasterPostOpGasLimit",
                    optional["paymasterPostOpGasLimit"]),
                paymaster_data=None if optional["paymasterData"] is None
                else verify_and_get_bytes(
                    "paymasterData", optional["paymasterData"]),
                signature=verify_and_get_bytes(
                    "signature", json_request_dict["signature"]),
            )
        else:
            verify_fields_exist(json_request_dict, PACKED_FIELDS)
            return cls.from_packed(
                sender_address=verify_and_get_address(
                    "sender", json_request_dict["sender"]),
                nonce=verify_and_get_uint("nonce", json_request_dict["nonce"]),
                init_code=verify_and_get_bytes(
                    "initCode", json_request_dict["initCode"]),
                call_data=verify_and_get_bytes(
                    "callData", json_request_dict["callData"]),
                account_gas_limits=verify_and_get_bytes(
                    "accountGasLimits", json_request_dict["accountGasLimits"]),
                pre_verification_gas=verify_and_get_uint(
                    "preVerificationGas",
                    json_request_dict["preVerificationGas"]),
                gas_fees=verify_and_get_bytes(
                    "gasFees", json_request_dict["gasFees"]),
                paymaster_and_data=verify_and_get_bytes(
                    "paymasterAndData", json_request_dict["paymasterAndData"]),
                signature=verify_and_get_bytes(
                    "signature", json_request_dict["signature"]),
            )


def verify_fields_exist(
    json_request_dict: dict[str, str | None], field_list: list[str]
) -> None:
    for field in field_list:
        if field not in json_request_dict:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                f"UserOperation missing {field} field",
            )


def _split_init_code(init_code: bytes) -> dict[str, Address | bytes | None]:
    if len(init_code) == 0:
        return {"factory": None, "factory_data": None}
    if len(init_code) < 20:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"initCode must be empty or at least 20 bytes, "
            f"got {len(init_code)} bytes",
        )
    return {
        "factory": Address("0x" + init_code[:20].hex()),
        "factory_data": init_code[20:],
    }


def _split_paymaster_and_data(
    paymaster_and_data: bytes
) -> dict[str, Address | int | bytes | None]:
    if len(paymaster_and_data) == 0:
        return {
            "paymaster": None,
            "paymaster_verification_gas_limit": None,
            "paymaster_post_op_gas_limit": None,
            "paymaster_data": None,
        }
    paymaster = decode_paymaster_and_data(paymaster_and_data)
    return {
        "paymaster": paymaster.paymaster,
        "paymaster_verification_gas_limit": paymaster.verification_gas_limit,
        "paymaster_post_op_gas_limit": paymaster.post_op_gas_limit,
        "paymaster_data": paymaster.paymaster_data,
    }
