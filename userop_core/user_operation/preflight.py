import logging
from dataclasses import dataclass
from typing import Any, Protocol

from userop_core.exceptions import (PreflightException,
                                    PreflightExceptionCode)
from userop_core.typing import Address
from userop_core.utils.import_key import recover_signer
from .eip712 import get_user_operation_hash, verify_user_operation_hash
from .lifecycle import UserOperationEnvelope
from .user_operation import UserOperation


class EntryPoint(Protocol):
    async def get_user_op_hash(self, user_operation: UserOperation) -> bytes:
        ...

    async def balance_of(self, account: Address) -> int:
        ...


class AccountFactory(Protocol):
    async def is_registered_account(self, account: Address) -> bool:
        ...


class SmartAccount(Protocol):
    async def simulate_validate_user_op(
        self,
        user_operation: UserOperation,
        user_operation_hash: bytes,
        entrypoint: Address,
        missing_account_funds: int = 0,
    ) -> int:
        ...


async def verify_against_entrypoint(
    envelope: UserOperationEnvelope, entrypoint: EntryPoint
) -> None:
    """Raise HashMismatchException unless getUserOpHash agrees."""
    entrypoint_hash = await entrypoint.get_user_op_hash(
        envelope.user_operation)
    verify_user_operation_hash(envelope.user_operation_hash, entrypoint_hash)


def verify_signer(envelope: UserOperationEnvelope, owner: Address) -> None:
    recovered = recover_signer(
        envelope.user_operation_hash, envelope.user_operation.signature)
    if recovered.lower() != owner.lower():
        raise PreflightException(
            PreflightExceptionCode.SignatureMismatch,
            f"signature recovers {recovered}, expected owner {owner}",
            {"expected": owner, "recovered": recovered},
        )


async def run_preflight_checks(
    envelope: UserOperationEnvelope,
    owner: Address,
    entrypoint: EntryPoint,
    account_factory: AccountFactory | None = None,
    smart_account: SmartAccount | None = None,
) -> None:
    """
    Checks run on a signed operation before it is handed to a bundler.

    - the local hash equals the EntryPoint getUserOpHash
    - the signature recovers the owner
    - a sponsored sender is registered in the factory, unless this
      operation deploys it (deployment through the factory registers it)
    - the paymaster has an EntryPoint deposit
    - validateUserOp simulated from the EntryPoint returns success
    """
    user_operation = envelope.user_operation
    await verify_against_entrypoint(envelope, entrypoint)
    verify_signer(envelope, owner)

    if user_operation.paymaster is not None:
        if account_factory is not None and not user_operation.is_deployment:
            is_registered = await account_factory.is_registered_account(
                user_operation.sender_address)
            if not is_registered:
                raise PreflightException(
                    PreflightExceptionCode.UnregisteredAccount,
                    f"account {user_operation.sender_address} is not "
                    "registered in the factory, the paymaster will reject it",
                    {"account": user_operation.sender_address},
                )
        deposit = await entrypoint.balance_of(user_operation.paymaster)
        if deposit == 0:
            raise PreflightException(
                PreflightExceptionCode.PaymasterDepositTooLow,
                f"paymaster {user_operation.paymaster} has no EntryPoint "
                "deposit",
                {"paymaster": user_operation.paymaster, "deposit": deposit},
            )

    if smart_account is not None and not user_operation.is_deployment:
        validation_data = await smart_account.simulate_validate_user_op(
            user_operation, envelope.user_operation_hash, envelope.entrypoint)
        if validation_data != 0:
            raise PreflightException(
                PreflightExceptionCode.ValidationFailed,
                f"validateUserOp returned validationData {validation_data}",
                {"validation_data": validation_data},
            )
    logging.info(
        f"Preflight checks passed for {envelope.user_operation_hash_hex}")


@dataclass
class EchoCheck:
    constructed_hash: bytes
    echoed_hash: bytes
    signature_matches_constructed: bool
    signature_matches_echoed: bool
    differing_fields: list[str]

    @property
    def hashes_match(self) -> bool:
        return self.constructed_hash == self.echoed_hash


def check_echoed_user_operation(
    envelope: UserOperationEnvelope,
    echoed_user_operation_json: dict[str, Any],
    owner: Address,
) -> EchoCheck:
    """
    Compare the operation as constructed with the copy a bundler echoes back
    from eth_getUserOperationByHash, and check the signature against both
    hashes. A bundler that rewrites paymasterAndData shows up here.
    """
    echoed = UserOperation.from_json(
        echoed_user_operation_json, envelope.wire_format)
    echoed_hash = get_user_operation_hash(
        echoed, envelope.variant, envelope.chain_id, envelope.entrypoint)
    constructed_json = envelope.user_operation.get_user_operation_json(
        envelope.wire_format)
    echoed_json = echoed.get_user_operation_json(envelope.wire_format)
    differing_fields = [
        field for field in constructed_json
        if str(constructed_json[field]).lower() !=
        str(echoed_json.get(field)).lower()
    ]
    signature = envelope.user_operation.signature
    check = EchoCheck(
        constructed_hash=envelope.user_operation_hash,
        echoed_hash=echoed_hash,
        signature_matches_constructed=(
            recover_signer(envelope.user_operation_hash, signature).lower() ==
            owner.lower()
        ),
        signature_matches_echoed=(
            recover_signer(echoed_hash, signature).lower() == owner.lower()
        ),
        differing_fields=differing_fields,
    )
    if not check.hashes_match:
        logging.warning(
            "bundler-echoed UserOperation hashes differently - "
            f"constructed: 0x{check.constructed_hash.hex()} "
            f"echoed: 0x{check.echoed_hash.hex()} "
            f"differing fields: {differing_fields}"
        )
    return check
