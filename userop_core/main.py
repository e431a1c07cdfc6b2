import logging
import sys

import uvloop

from userop_core.bundler.bundler_client import BundlerClient
from userop_core.bundler.models import Confirmed, PollResult
from userop_core.contracts.account_factory import AccountFactoryClient
from userop_core.contracts.entrypoint import EntryPointClient
from userop_core.contracts.fee_oracle import NodeFeeOracle
from userop_core.contracts.smart_account import SmartAccountClient
from userop_core.exceptions import (AddressMismatchException,
                                    BundlerRejectedException,
                                    EncodingException, HashMismatchException,
                                    InvalidStateTransitionException,
                                    PreflightException, RpcException,
                                    TransportException)
from userop_core.typing import Address
from userop_core.user_operation.builder import UserOperationBuilder
from userop_core.user_operation.lifecycle import UserOperationEnvelope
from userop_core.user_operation.preflight import (check_echoed_user_operation,
                                                 run_preflight_checks)

from .cli_manager import InitData, parse_args

CORE_EXCEPTIONS = (
    AddressMismatchException,
    BundlerRejectedException,
    EncodingException,
    HashMismatchException,
    InvalidStateTransitionException,
    PreflightException,
    RpcException,
    TransportException,
)


async def check_bundler_echo(
    bundler: BundlerClient, envelope: UserOperationEnvelope, owner: Address
) -> None:
    user_operation_hash = (
        envelope.bundler_user_operation_hash or
        envelope.user_operation_hash_hex
    )
    try:
        echoed = await bundler.get_user_operation_by_hash(user_operation_hash)
    except (BundlerRejectedException, TransportException) as excp:
        logging.warning(f"Could not fetch {user_operation_hash}: {excp}")
        return
    if not echoed or "userOperation" not in echoed:
        logging.warning(f"Bundler has no record of {user_operation_hash}")
        return
    try:
        check = check_echoed_user_operation(
            envelope, echoed["userOperation"], owner)
    except EncodingException as excp:
        logging.warning(
            f"Bundler returned an unreadable copy of {user_operation_hash}: "
            f"{excp}"
        )
        return
    if check.hashes_match:
        logging.info(f"Bundler copy of {user_operation_hash} matches")


async def execute(init_data: InitData) -> PollResult:
    network_config = init_data.network_config
    ethereum_node_url = network_config.ethereum_node_url
    entrypoint = EntryPointClient(ethereum_node_url, network_config.entrypoint)
    account_factory = None
    if network_config.factory is not None:
        account_factory = AccountFactoryClient(
            ethereum_node_url, network_config.factory)

    builder = UserOperationBuilder(
        network_config,
        entrypoint,
        account_factory,
        NodeFeeOracle(ethereum_node_url),
    )
    owner = init_data.signer.address
    envelope = await builder.build(
        sender=init_data.sender,
        owner=owner if init_data.sender is None else None,
        salt=init_data.salt,
        init_code_hash=init_data.init_code_hash,
        target=init_data.target,
        value=init_data.value,
        data=init_data.data,
        call_gas_limit=init_data.call_gas_limit,
        verification_gas_limit=init_data.verification_gas_limit,
        pre_verification_gas=init_data.pre_verification_gas,
        max_fee_per_gas=init_data.max_fee_per_gas,
        max_priority_fee_per_gas=init_data.max_priority_fee_per_gas,
        sponsored=init_data.sponsored,
    )
    envelope.sign(init_data.signer)
    logging.info(
        f"Signed UserOperation {envelope.user_operation_hash_hex} "
        f"domain separator 0x{envelope.domain_separator.hex()} "
        f"struct hash 0x{envelope.struct_hash.hex()}"
    )

    if not init_data.skip_preflight:
        await run_preflight_checks(
            envelope,
            owner,
            entrypoint,
            account_factory,
            SmartAccountClient(
                ethereum_node_url, envelope.user_operation.sender_address),
        )

    bundler = BundlerClient(network_config.bundler_url)
    await bundler.submit(envelope)
    result = await bundler.wait(
        envelope,
        timeout=init_data.poll_timeout,
        interval=init_data.poll_interval,
        max_retries=init_data.poll_max_retries,
    )
    if isinstance(result, Confirmed):
        await check_bundler_echo(bundler, envelope, owner)
    return result


async def main(cmd_args=sys.argv[1:]) -> PollResult:
    init_data = await parse_args(cmd_args)
    result = await execute(init_data)
    logging.info(f"UserOperation final state: {result}")
    return result


def run() -> None:
    try:
        result = uvloop.run(main())
    except CORE_EXCEPTIONS as excp:
        logging.critical(str(excp))
        sys.exit(1)
    if not isinstance(result, Confirmed):
        sys.exit(2)


if __name__ == "__main__":
    run()
