from dataclasses import dataclass

from userop_core.typing import Address
from userop_core.user_operation.eip712 import UserOperationVariant
from userop_core.user_operation.fields import verify_and_get_address
from userop_core.user_operation.user_operation import WireFormat


@dataclass(frozen=True)
class NetworkConfig:
    """
    Deployment a UserOperation is built for.

    variant and wire_format have no defaults: the EIP-712 struct layout and
    the bundler field shape must be chosen for the target EntryPoint.
    """
    chain_id: int
    entrypoint: Address
    variant: UserOperationVariant
    wire_format: WireFormat
    factory: Address | None = None
    paymaster: Address | None = None
    bundler_url: str | None = None
    ethereum_node_url: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "entrypoint",
            verify_and_get_address("entrypoint", self.entrypoint),
        )
        if self.factory is not None:
            object.__setattr__(
                self, "factory", verify_and_get_address("factory", self.factory))
        if self.paymaster is not None:
            object.__setattr__(
                self,
                "paymaster",
                verify_and_get_address("paymaster", self.paymaster),
            )
