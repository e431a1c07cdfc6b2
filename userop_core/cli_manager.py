import logging
import os
import re
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass

from userop_core.exceptions import RpcException, TransportException
from userop_core.network_config import NetworkConfig
from userop_core.typing import Address
from userop_core.user_operation.eip712 import UserOperationVariant
from userop_core.user_operation.user_operation import WireFormat
from userop_core.utils.eth_client_utils import get_chain_id, get_code
from userop_core.utils.import_key import (LocalAccountSigner,
                                          import_owner_account)


@dataclass()
class InitData:
    network_config: NetworkConfig
    signer: LocalAccountSigner
    sender: Address | None
    salt: int
    init_code_hash: bytes | None
    target: Address | None
    value: int
    data: bytes
    call_gas_limit: int | None
    verification_gas_limit: int | None
    pre_verification_gas: int | None
    max_fee_per_gas: int | None
    max_priority_fee_per_gas: int | None
    sponsored: bool
    skip_preflight: bool
    poll_timeout: float
    poll_interval: float
    poll_max_retries: int


def address(ep: str):
    address_pattern = "^0x[0-9,a-f,A-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value, 0) if isinstance(value, str) else int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def boolean(value):
    if isinstance(value, bool):
        return value
    if value.lower() not in ("true", "false"):
        raise ArgumentTypeError(
                "%s is an invalid boolean value - use true or false" % value)
    return value.lower() == "true"


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def hex_bytes(value: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ArgumentTypeError(f"Wrong hex bytes format : {value}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError:
        raise ArgumentTypeError(f"Wrong hex bytes format : {value}")


def bytes32(value: str) -> bytes:
    result = hex_bytes(value)
    if len(result) != 32:
        raise ArgumentTypeError(f"Expected 32 bytes hex value : {value}")
    return result


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return
    the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="userop-core",
        description=(
            "Build, sign and submit one ERC-4337 UserOperation to a bundler"
        ),
    )

    group = parser.add_mutually_exclusive_group(required=False)

    group.add_argument(
        "--owner_secret",
        type=str,
        help="Smart account owner private key",
        nargs="?",
        default=_get_env_or_default("USEROP_OWNER_SECRET", None, str),
    )

    group.add_argument(
        "--keystore_file_path",
        type=str,
        help="Smart account owner keystore file path",
        nargs="?",
        default=_get_env_or_default("USEROP_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Owner keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default("USEROP_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help="Eth Client JSON-RPC Url - defaults to http://localhost:8545",
        nargs="?",
        const="http://localhost:8545",
        default=_get_env_or_default(
            "USEROP_ETHEREUM_NODE_URL", "http://localhost:8545", str),
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="Bundler JSON-RPC Url - defaults to http://localhost:3000/rpc",
        nargs="?",
        const="http://localhost:3000/rpc",
        default=_get_env_or_default(
            "USEROP_BUNDLER_URL", "http://localhost:3000/rpc", str),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="chain id - defaults to the Eth Client eth_chainId",
        nargs="?",
        default=_get_env_or_default("USEROP_CHAIN_ID", None, unsigned_int),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help="EntryPoint address, the EIP-712 verifyingContract",
        nargs="?",
        default=_get_env_or_default("USEROP_ENTRYPOINT", None, address),
    )

    parser.add_argument(
        "--variant",
        type=UserOperationVariant,
        help="EIP-712 struct layout of the target EntryPoint",
        choices=list(UserOperationVariant),
        nargs="?",
        default=_get_env_or_default(
            "USEROP_VARIANT", None, UserOperationVariant),
    )

    parser.add_argument(
        "--wire_format",
        type=WireFormat,
        help="eth_sendUserOperation field layout - defaults to v7",
        choices=list(WireFormat),
        nargs="?",
        const=WireFormat.V7,
        default=_get_env_or_default(
            "USEROP_WIRE_FORMAT", WireFormat.V7, WireFormat),
    )

    parser.add_argument(
        "--factory",
        type=address,
        help="AccountFactory address",
        nargs="?",
        default=_get_env_or_default("USEROP_FACTORY", None, address),
    )

    parser.add_argument(
        "--paymaster",
        type=address,
        help="Paymaster address - no paymaster if not set",
        nargs="?",
        default=_get_env_or_default("USEROP_PAYMASTER", None, address),
    )

    parser.add_argument(
        "--no_paymaster",
        type=boolean,
        help="do not sponsor this operation even if a paymaster is set",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "USEROP_NO_PAYMASTER", False, boolean),
    )

    parser.add_argument(
        "--sender",
        type=address,
        help="deployed smart account - derived from owner and salt if not set",
        nargs="?",
        default=_get_env_or_default("USEROP_SENDER", None, address),
    )

    parser.add_argument(
        "--salt",
        type=unsigned_int,
        help="account salt - defaults to 0",
        nargs="?",
        const=0,
        default=_get_env_or_default("USEROP_SALT", 0, unsigned_int),
    )

    parser.add_argument(
        "--init_code_hash",
        type=bytes32,
        help="account init code hash for local CREATE2 prediction",
        nargs="?",
        default=_get_env_or_default("USEROP_INIT_CODE_HASH", None, bytes32),
    )

    parser.add_argument(
        "--target",
        type=address,
        help="execute(target, value, data) target - no call if not set",
        nargs="?",
        default=_get_env_or_default("USEROP_TARGET", None, address),
    )

    parser.add_argument(
        "--value",
        type=unsigned_int,
        help="execute value in wei - defaults to 0",
        nargs="?",
        const=0,
        default=_get_env_or_default("USEROP_VALUE", 0, unsigned_int),
    )

    parser.add_argument(
        "--data",
        type=hex_bytes,
        help="execute calldata - defaults to 0x",
        nargs="?",
        const=b"",
        default=_get_env_or_default("USEROP_DATA", b"", hex_bytes),
    )

    for gas_field in (
        "call_gas_limit",
        "verification_gas_limit",
        "pre_verification_gas",
        "max_fee_per_gas",
        "max_priority_fee_per_gas",
    ):
        parser.add_argument(
            f"--{gas_field}",
            type=unsigned_int,
            help=f"{gas_field} - static default or node fee data if not set",
            nargs="?",
            default=_get_env_or_default(
                f"USEROP_{gas_field.upper()}", None, unsigned_int),
        )

    parser.add_argument(
        "--skip_preflight",
        type=boolean,
        help="skip the hash, signature and paymaster checks before submit",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "USEROP_SKIP_PREFLIGHT", False, boolean),
    )

    parser.add_argument(
        "--poll_timeout",
        type=positive_float,
        help="seconds to wait for the receipt - defaults to 60",
        nargs="?",
        const=60,
        default=_get_env_or_default("USEROP_POLL_TIMEOUT", 60, positive_float),
    )

    parser.add_argument(
        "--poll_interval",
        type=positive_float,
        help="seconds between receipt polls - defaults to 2",
        nargs="?",
        const=2,
        default=_get_env_or_default("USEROP_POLL_INTERVAL", 2, positive_float),
    )

    parser.add_argument(
        "--poll_max_retries",
        type=unsigned_int,
        help="transport retries per receipt poll - defaults to 3",
        nargs="?",
        const=3,
        default=_get_env_or_default(
            "USEROP_POLL_MAX_RETRIES", 3, unsigned_int),
    )

    parser.add_argument(
        "--verbose",
        type=boolean,
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "USEROP_VERBOSE", False, boolean),
    )

    return parser


async def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    if not args.owner_secret and not args.keystore_file_path:
        argument_parser.error(
            "You must specify either --owner_secret or --keystore_file_path, "
            "or set USEROP_OWNER_SECRET or USEROP_KEYSTORE_FILE_PATH "
            "environment variables.")
    if args.entrypoint is None:
        argument_parser.error(
            "You must specify --entrypoint or set USEROP_ENTRYPOINT")
    if args.variant is None:
        argument_parser.error(
            "You must specify --variant or set USEROP_VARIANT, "
            "the EIP-712 layout is never inferred")
    if args.sender is None and args.factory is None:
        argument_parser.error(
            "You must specify either --sender or --factory")
    init_data = await get_init_data(args)
    return init_data


def init_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )

    logging.getLogger("userop_core")


def init_owner_signer(args: Namespace) -> LocalAccountSigner:
    if args.keystore_file_path is not None:
        return LocalAccountSigner(import_owner_account(
            args.keystore_file_password, args.keystore_file_path
        ))
    return LocalAccountSigner.from_private_key(args.owner_secret)


async def check_valid_ethereum_rpc_and_get_chain_id(
    ethereum_node_url: str
) -> int:
    try:
        return await get_chain_id(ethereum_node_url)
    except TransportException as excp:
        logging.critical(f"Invalid Eth node {ethereum_node_url}: {excp}")
        sys.exit(1)
    except RpcException as excp:
        logging.critical(
            f"Error when connecting to Eth node {ethereum_node_url}: {excp}")
        sys.exit(1)


async def check_valid_entrypoint(ethereum_node_url: str, entrypoint: Address):
    entrypoint_code = await get_code(ethereum_node_url, entrypoint)
    if len(entrypoint_code) == 0:
        logging.critical(f"entrypoint not deployed at {entrypoint}")
        sys.exit(1)


async def get_init_data(args: Namespace) -> InitData:
    init_logging(args.verbose)

    node_chain_id = await check_valid_ethereum_rpc_and_get_chain_id(
        args.ethereum_node_url)
    if args.chain_id is None:
        chain_id = node_chain_id
    elif args.chain_id != node_chain_id:
        # a wrong chain id produces a hash the EntryPoint never matches
        logging.critical(
            f"Invalid chain id {args.chain_id} - "
            f"Eth node {args.ethereum_node_url} reports {node_chain_id}"
        )
        sys.exit(1)
    else:
        chain_id = args.chain_id

    await check_valid_entrypoint(args.ethereum_node_url, args.entrypoint)

    network_config = NetworkConfig(
        chain_id=chain_id,
        entrypoint=args.entrypoint,
        variant=args.variant,
        wire_format=args.wire_format,
        factory=args.factory,
        paymaster=args.paymaster,
        bundler_url=args.bundler_url,
        ethereum_node_url=args.ethereum_node_url,
    )

    init_data = InitData(
        network_config=network_config,
        signer=init_owner_signer(args),
        sender=args.sender,
        salt=args.salt,
        init_code_hash=args.init_code_hash,
        target=args.target,
        value=args.value,
        data=args.data,
        call_gas_limit=args.call_gas_limit,
        verification_gas_limit=args.verification_gas_limit,
        pre_verification_gas=args.pre_verification_gas,
        max_fee_per_gas=args.max_fee_per_gas,
        max_priority_fee_per_gas=args.max_priority_fee_per_gas,
        sponsored=not args.no_paymaster,
        skip_preflight=bool(args.skip_preflight),
        poll_timeout=args.poll_timeout,
        poll_interval=args.poll_interval,
        poll_max_retries=args.poll_max_retries,
    )

    logging.info(
        f"EntryPoint {network_config.entrypoint} chain id {chain_id} "
        f"variant {network_config.variant} "
        f"wire format {network_config.wire_format} "
        f"owner {init_data.signer.address}"
    )
    return init_data
