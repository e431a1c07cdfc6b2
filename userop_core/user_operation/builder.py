import logging
from dataclasses import dataclass
from typing import Protocol

from userop_core.account.address_predictor import AddressPredictor
from userop_core.exceptions import (AddressMismatchException,
                                    EncodingException, EncodingExceptionCode)
from userop_core.network_config import NetworkConfig
from userop_core.typing import Address
from userop_core.utils.encode import (encode_create_account_calldata,
                                      encode_execute_calldata)
from .fields import verify_and_get_address
from .lifecycle import UserOperationEnvelope
from .user_operation import UserOperation


class EntryPoint(Protocol):
    async def get_nonce(self, sender: Address, key: int = 0) -> int:
        ...


class AccountFactory(Protocol):
    async def get_address(self, owner: Address, salt: int) -> Address:
        ...

    async def is_deployed(self, account: Address) -> bool:
        ...


class FeeOracle(Protocol):
    async def get_fee_data(self) -> tuple[int, int]:
        ...


@dataclass(frozen=True)
class GasDefaults:
    # static limits, no estimation is performed
    verification_gas_limit: int = 500_000
    deployment_verification_gas_limit: int = 700_000
    call_gas_limit: int = 300_000
    pre_verification_gas: int = 100_000
    deployment_pre_verification_gas: int = 150_000
    paymaster_verification_gas_limit: int = 100_000
    paymaster_post_op_gas_limit: int = 50_000


class UserOperationBuilder:
    network_config: NetworkConfig
    entrypoint: EntryPoint
    account_factory: AccountFactory | None
    fee_oracle: FeeOracle | None
    gas_defaults: GasDefaults

    def __init__(
        self,
        network_config: NetworkConfig,
        entrypoint: EntryPoint,
        account_factory: AccountFactory | None = None,
        fee_oracle: FeeOracle | None = None,
        gas_defaults: GasDefaults = GasDefaults(),
    ):
        self.network_config = network_config
        self.entrypoint = entrypoint
        self.account_factory = account_factory
        self.fee_oracle = fee_oracle
        self.gas_defaults = gas_defaults

    async def build(
        self,
        *,
        sender: Address | None = None,
        owner: Address | None = None,
        salt: int = 0,
        init_code_hash: bytes | None = None,
        target: Address | None = None,
        value: int = 0,
        data: bytes = b"",
        call_gas_limit: int | None = None,
        verification_gas_limit: int | None = None,
        pre_verification_gas: int | None = None,
        max_fee_per_gas: int | None = None,
        max_priority_fee_per_gas: int | None = None,
        sponsored: bool = True,
        paymaster_verification_gas_limit: int | None = None,
        paymaster_post_op_gas_limit: int | None = None,
        paymaster_data: bytes = b"",
    ) -> UserOperationEnvelope:
        """
        Build an unsigned (Draft) UserOperation envelope.

        Pass `sender` for an already deployed account, or `owner` (and `salt`)
        to use the counterfactual account of the configured factory; factory
        and factoryData are only set while that account has no code.
        """
        sender, factory, factory_data = await self._resolve_sender(
            sender, owner, salt, init_code_hash)

        nonce = await self.entrypoint.get_nonce(sender, 0)

        if target is not None:
            call_data = encode_execute_calldata(
                verify_and_get_address("target", target), value, data)
        else:
            call_data = bytes(0)

        is_deployment = factory is not None
        if verification_gas_limit is None:
            verification_gas_limit = (
                self.gas_defaults.deployment_verification_gas_limit
                if is_deployment
                else self.gas_defaults.verification_gas_limit
            )
        if pre_verification_gas is None:
            pre_verification_gas = (
                self.gas_defaults.deployment_pre_verification_gas
                if is_deployment
                else self.gas_defaults.pre_verification_gas
            )
        if call_gas_limit is None:
            call_gas_limit = self.gas_defaults.call_gas_limit

        max_priority_fee_per_gas, max_fee_per_gas = await self._resolve_fees(
            max_priority_fee_per_gas, max_fee_per_gas)

        paymaster = self.network_config.paymaster if sponsored else None
        if paymaster is not None:
            if paymaster_verification_gas_limit is None:
                paymaster_verification_gas_limit = (
                    self.gas_defaults.paymaster_verification_gas_limit)
            if paymaster_post_op_gas_limit is None:
                paymaster_post_op_gas_limit = (
                    self.gas_defaults.paymaster_post_op_gas_limit)
        else:
            paymaster_verification_gas_limit = None
            paymaster_post_op_gas_limit = None
            paymaster_data = b""

        user_operation = UserOperation(
            sender_address=sender,
            nonce=nonce,
            factory=factory,
            factory_data=factory_data,
            call_data=call_data,
            call_gas_limit=call_gas_limit,
            verification_gas_limit=verification_gas_limit,
            pre_verification_gas=pre_verification_gas,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            paymaster=paymaster,
            paymaster_verification_gas_limit=paymaster_verification_gas_limit,
            paymaster_post_op_gas_limit=paymaster_post_op_gas_limit,
            paymaster_data=paymaster_data if paymaster is not None else None,
        )
        logging.info(
            f"Built UserOperation for sender {sender} nonce {nonce} "
            f"deployment: {is_deployment} paymaster: {paymaster}"
        )
        return UserOperationEnvelope(
            user_operation=user_operation,
            variant=self.network_config.variant,
            wire_format=self.network_config.wire_format,
            chain_id=self.network_config.chain_id,
            entrypoint=self.network_config.entrypoint,
        )

    async def _resolve_sender(
        self,
        sender: Address | None,
        owner: Address | None,
        salt: int,
        init_code_hash: bytes | None,
    ) -> tuple[Address, Address | None, bytes | None]:
        if owner is None:
            if sender is None:
                raise EncodingException(
                    EncodingExceptionCode.InvalidFields,
                    "Either a deployed sender or an owner is required",
                )
            return verify_and_get_address("sender", sender), None, None

        owner = verify_and_get_address("owner", owner)
        factory = self.network_config.factory
        if factory is None or self.account_factory is None:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                "A factory address and factory collaborator are required "
                "to derive a counterfactual sender",
            )
        predictor = AddressPredictor(factory, self.account_factory)
        counterfactual_address = await predictor.resolve(
            owner, salt, init_code_hash)
        if (
            sender is not None and
            verify_and_get_address("sender", sender) != counterfactual_address
        ):
            raise AddressMismatchException(
                expected=sender, computed=counterfactual_address)

        if await self.account_factory.is_deployed(counterfactual_address):
            logging.info(
                f"Account {counterfactual_address} already deployed, "
                "building without factory"
            )
            return counterfactual_address, None, None
        return (
            counterfactual_address,
            factory,
            encode_create_account_calldata(owner, salt),
        )

    async def _resolve_fees(
        self,
        max_priority_fee_per_gas: int | None,
        max_fee_per_gas: int | None,
    ) -> tuple[int, int]:
        if max_priority_fee_per_gas is not None and max_fee_per_gas is not None:
            return max_priority_fee_per_gas, max_fee_per_gas
        if self.fee_oracle is None:
            raise EncodingException(
                EncodingExceptionCode.InvalidFields,
                "maxFeePerGas and maxPriorityFeePerGas are required "
                "when no fee oracle is configured",
            )
        oracle_priority_fee, oracle_max_fee = (
            await self.fee_oracle.get_fee_data())
        if max_priority_fee_per_gas is None:
            max_priority_fee_per_gas = oracle_priority_fee
        if max_fee_per_gas is None:
            max_fee_per_gas = max(oracle_max_fee, max_priority_fee_per_gas)
        return max_priority_fee_per_gas, max_fee_per_gas
