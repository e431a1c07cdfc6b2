from dataclasses import dataclass, field
from typing import Any

from userop_core.typing import Address, UserOperationHash


def _to_int(value: str | int | None) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


@dataclass
class UserOperationReceipt:
    user_operation_hash: UserOperationHash
    entrypoint: Address | None
    sender: Address | None
    nonce: int
    paymaster: Address | None
    actual_gas_cost: int
    actual_gas_used: int
    success: bool
    reason: str | None
    transaction_hash: str | None
    block_number: int | None
    logs: list[Any] = field(default_factory=list)
    receipt: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, receipt_json: dict[str, Any]) -> "UserOperationReceipt":
        transaction_receipt = receipt_json.get("receipt") or {}
        block_number = transaction_receipt.get("blockNumber")
        return cls(
            user_operation_hash=UserOperationHash(receipt_json["userOpHash"]),
            entrypoint=receipt_json.get("entryPoint"),
            sender=receipt_json.get("sender"),
            nonce=_to_int(receipt_json.get("nonce")),
            paymaster=receipt_json.get("paymaster"),
            actual_gas_cost=_to_int(receipt_json.get("actualGasCost")),
            actual_gas_used=_to_int(receipt_json.get("actualGasUsed")),
            success=bool(receipt_json.get("success")),
            reason=receipt_json.get("reason"),
            transaction_hash=transaction_receipt.get("transactionHash"),
            block_number=None if block_number is None
            else _to_int(block_number),
            logs=receipt_json.get("logs") or [],
            receipt=transaction_receipt,
        )


@dataclass
class Confirmed:
    receipt: UserOperationReceipt


@dataclass
class Rejected:
    receipt: UserOperationReceipt
    reason: str


@dataclass
class TimedOut:
    user_operation_hash: UserOperationHash
    elapsed: float
    last_error: str | None = None


PollResult = Confirmed | Rejected | TimedOut
