from dataclasses import dataclass, field
from enum import Enum


class Stage(Enum):
    CONFIG = "config"
    ENCODE = "encode"
    HASH = "hash"
    SIGN = "sign"
    SUBMIT = "submit"
    POLL = "poll"

    def __str__(self):
        return self.value


class EncodingExceptionCode(Enum):
    InvalidFields = -32602
    ValueOutOfRange = -32610
    MalformedPaymasterData = -32611
    VariantMismatch = -32612


@dataclass
class EncodingException(Exception):
    exception_code: EncodingExceptionCode
    message: str
    stage: Stage = Stage.ENCODE

    def __str__(self):
        return f"[{self.stage}] {self.exception_code.name}: {self.message}"


@dataclass
class HashMismatchException(Exception):
    expected: str
    computed: str
    stage: Stage = Stage.HASH

    def __str__(self):
        return (
            f"[{self.stage}] UserOperation hash mismatch - "
            f"expected (EntryPoint): {self.expected} "
            f"computed (local): {self.computed}"
        )


@dataclass
class AddressMismatchException(Exception):
    expected: str
    computed: str
    stage: Stage = Stage.CONFIG

    def __str__(self):
        return (
            f"[{self.stage}] Counterfactual address mismatch - "
            f"expected (factory): {self.expected} "
            f"computed (CREATE2): {self.computed}"
        )


@dataclass
class BundlerRejectedException(Exception):
    code: int | None
    message: str
    aa_code: str | None = None
    category: str | None = None
    data: object = None
    stage: Stage = Stage.SUBMIT

    def __str__(self):
        aa = f" ({self.aa_code} {self.category})" if self.aa_code else ""
        return (
            f"[{self.stage}] bundler rejected UserOperation{aa} - "
            f"code: {self.code} message: {self.message}"
        )


@dataclass
class TransportException(Exception):
    url: str
    method: str
    reason: str
    stage: Stage = Stage.SUBMIT

    def __str__(self):
        return (
            f"[{self.stage}] transport failure calling {self.method} "
            f"on {self.url}: {self.reason}"
        )


@dataclass
class RpcException(Exception):
    method: str
    code: int | None
    message: str
    data: object = None
    stage: Stage = Stage.ENCODE

    def __str__(self):
        return (
            f"[{self.stage}] {self.method} failed - "
            f"code: {self.code} message: {self.message}"
        )


@dataclass
class InvalidStateTransitionException(Exception):
    current: str
    requested: str
    stage: Stage = Stage.SUBMIT

    def __str__(self):
        return (
            f"[{self.stage}] invalid UserOperation state transition "
            f"{self.current} -> {self.requested}"
        )


class PreflightExceptionCode(Enum):
    UnregisteredAccount = -32620
    PaymasterDepositTooLow = -32621
    SignatureMismatch = -32622
    ValidationFailed = -32623


@dataclass
class PreflightException(Exception):
    exception_code: PreflightExceptionCode
    message: str
    details: dict = field(default_factory=dict)
    stage: Stage = Stage.SIGN

    def __str__(self):
        return f"[{self.stage}] {self.exception_code.name}: {self.message}"
