import logging
from typing import Protocol

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from userop_core.exceptions import (AddressMismatchException,
                                    EncodingException, EncodingExceptionCode)
from userop_core.typing import Address
from userop_core.user_operation.fields import (verify_and_get_address,
                                               verify_uint256)
from userop_core.utils.encode import encode_initialize_calldata


class AccountFactory(Protocol):
    async def get_address(self, owner: Address, salt: int) -> Address:
        ...


def compute_create2_address(
    deployer: Address, salt: int, init_code_hash: bytes
) -> Address:
    if len(init_code_hash) != 32:
        raise EncodingException(
            EncodingExceptionCode.InvalidFields,
            f"init code hash must be 32 bytes, got {len(init_code_hash)} bytes",
        )
    verify_uint256("salt", salt)
    deployer_bytes = bytes.fromhex(
        verify_and_get_address("factory", deployer)[2:])
    address_bytes = keccak(
        b"\xff" + deployer_bytes + salt.to_bytes(32, "big") + init_code_hash
    )[12:]
    return Address(to_checksum_address(address_bytes))


def get_proxy_init_code_hash(
    proxy_creation_code: bytes,
    implementation: Address,
    owner: Address,
) -> bytes:
    """
    keccak256 of the init code a SimpleAccount-style factory deploys:
    ERC1967Proxy creation code followed by the abi encoded constructor
    arguments (implementation, initialize(owner) calldata).
    """
    constructor_args = encode(
        ["address", "bytes"],
        [implementation, encode_initialize_calldata(owner)],
    )
    return keccak(proxy_creation_code + constructor_args)


class AddressPredictor:
    factory_address: Address
    account_factory: AccountFactory | None

    def __init__(
        self,
        factory_address: Address,
        account_factory: AccountFactory | None = None,
    ):
        self.factory_address = verify_and_get_address(
            "factory", factory_address)
        self.account_factory = account_factory

    def predict(self, salt: int, init_code_hash: bytes) -> Address:
        return compute_create2_address(
            self.factory_address, salt, init_code_hash)

    async def resolve(
        self,
        owner: Address,
        salt: int,
        init_code_hash: bytes | None = None,
    ) -> Address:
        """
        Return the counterfactual account address of (owner, salt).

        When an init code hash is known the address is computed locally and,
        if a factory collaborator is available, cross-checked against its
        getAddress answer. A disagreement means a wrong factory address or a
        wrong init code hash and raises AddressMismatchException.
        """
        predicted = None
        if init_code_hash is not None:
            predicted = self.predict(salt, init_code_hash)
            logging.debug(
                f"CREATE2 prediction for owner {owner} salt {salt}: "
                f"{predicted}"
            )
            if self.account_factory is None:
                return predicted

        if self.account_factory is None:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                "Cannot resolve account address without an init code hash "
                "or a factory collaborator",
            )

        factory_address = Address(to_checksum_address(
            await self.account_factory.get_address(owner, salt)))
        if predicted is not None and predicted != factory_address:
            raise AddressMismatchException(
                expected=factory_address, computed=predicted)
        return factory_address
