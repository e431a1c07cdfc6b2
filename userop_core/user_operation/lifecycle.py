import logging
from enum import Enum
from typing import Any, Callable

from userop_core.exceptions import (InvalidStateTransitionException,
                                    Stage)
from userop_core.typing import Address, UserOperationHash
from .eip712 import (SigningView, UserOperationVariant, domain_separator,
                     final_hash, get_signing_view, struct_hash)
from .user_operation import UserOperation, WireFormat

Signer = Callable[[bytes], bytes]


class UserOperationState(Enum):
    DRAFT = "draft"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"

    def __str__(self):
        return self.value


ALLOWED_TRANSITIONS: dict[UserOperationState, set[UserOperationState]] = {
    UserOperationState.DRAFT: {UserOperationState.SIGNED},
    UserOperationState.SIGNED: {UserOperationState.SUBMITTED},
    UserOperationState.SUBMITTED: {
        UserOperationState.CONFIRMED,
        UserOperationState.REJECTED,
        UserOperationState.TIMED_OUT,
    },
    UserOperationState.CONFIRMED: set(),
    UserOperationState.REJECTED: set(),
    UserOperationState.TIMED_OUT: set(),
}


class UserOperationEnvelope:
    """
    A UserOperation bound to its hashing domain and lifecycle state.

    The hash is computed once from the operation when the envelope is created.
    The operation and its domain are read-only. sign() only swaps in a signed
    copy, which leaves the hash valid since the signature is not part of it;
    any other change goes through with_user_operation and starts a new Draft.
    """
    bundler_user_operation_hash: UserOperationHash | None
    result: Any

    def __init__(
        self,
        user_operation: UserOperation,
        variant: UserOperationVariant,
        wire_format: WireFormat,
        chain_id: int,
        entrypoint: Address,
    ):
        self._user_operation = user_operation
        self._variant = variant
        self._wire_format = wire_format
        self._chain_id = chain_id
        self._entrypoint = entrypoint
        self._signing_view = get_signing_view(user_operation, variant)
        self._domain_separator = domain_separator(chain_id, entrypoint)
        self._struct_hash = struct_hash(self._signing_view, variant)
        self._user_operation_hash = final_hash(
            self._domain_separator, self._struct_hash)
        self._state = UserOperationState.DRAFT
        self.bundler_user_operation_hash = None
        self.result = None
        logging.debug(
            f"UserOperation {variant} hash: "
            f"{self.user_operation_hash_hex} "
            f"for sender {user_operation.sender_address} "
            f"nonce {user_operation.nonce}"
        )

    def __repr__(self) -> str:
        return (
            f"UserOperationEnvelope({self.user_operation_hash_hex}, "
            f"{self._variant}, {self._state})"
        )

    @property
    def user_operation(self) -> UserOperation:
        return self._user_operation

    @property
    def variant(self) -> UserOperationVariant:
        return self._variant

    @property
    def wire_format(self) -> WireFormat:
        return self._wire_format

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def entrypoint(self) -> Address:
        return self._entrypoint

    @property
    def signing_view(self) -> SigningView:
        return self._signing_view

    @property
    def domain_separator(self) -> bytes:
        return self._domain_separator

    @property
    def struct_hash(self) -> bytes:
        return self._struct_hash

    @property
    def user_operation_hash(self) -> bytes:
        return self._user_operation_hash

    @property
    def state(self) -> UserOperationState:
        return self._state

    @property
    def user_operation_hash_hex(self) -> UserOperationHash:
        return UserOperationHash("0x" + self.user_operation_hash.hex())

    def with_user_operation(
        self, user_operation: UserOperation
    ) -> "UserOperationEnvelope":
        return UserOperationEnvelope(
            user_operation=user_operation.with_signature(b""),
            variant=self.variant,
            wire_format=self.wire_format,
            chain_id=self.chain_id,
            entrypoint=self.entrypoint,
        )

    def transition(
        self, new_state: UserOperationState, stage: Stage = Stage.SUBMIT
    ) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionException(
                current=str(self.state),
                requested=str(new_state),
                stage=stage,
            )
        logging.debug(
            f"UserOperation {self.user_operation_hash_hex} "
            f"{self.state} -> {new_state}"
        )
        self._state = new_state

    def sign(self, signer: Signer) -> None:
        if self.state != UserOperationState.DRAFT:
            raise InvalidStateTransitionException(
                current=str(self.state),
                requested=str(UserOperationState.SIGNED),
                stage=Stage.SIGN,
            )
        signature = bytes(signer(self.user_operation_hash))
        self._user_operation = self._user_operation.with_signature(signature)
        self.transition(UserOperationState.SIGNED, Stage.SIGN)

    def get_wire_view(self) -> dict[str, str]:
        if self.state == UserOperationState.DRAFT:
            raise InvalidStateTransitionException(
                current=str(self.state),
                requested=str(UserOperationState.SUBMITTED),
                stage=Stage.SUBMIT,
            )
        return self.user_operation.get_user_operation_json(self.wire_format)
