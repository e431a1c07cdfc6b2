import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from eth_account.messages import _hash_eip191_message, encode_typed_data
from eth_utils import keccak, to_checksum_address

from userop_core.account.address_predictor import compute_create2_address
from userop_core.user_operation.eip712 import UserOperationVariant
from userop_core.user_operation.user_operation import UserOperation
from userop_core.utils.import_key import LocalAccountSigner

# hardhat / anvil account #0
OWNER_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)
OWNER_ADDRESS = to_checksum_address(
    "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266")

CHAIN_ID = 31337
ENTRYPOINT = to_checksum_address("0xfe66e25f708ab4ef9b1cf6c5ff3be911f38d15a2")
SENDER = to_checksum_address("0x02faffd17d2b367e437f2c331221e46217a07017")
FACTORY = to_checksum_address("0x9406cc6185a346906296840746125a0e44976454")
PAYMASTER = to_checksum_address("0x0000000000325602a77416a16136fdafd04b299f")
TARGET = to_checksum_address("0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
ACCOUNT_INIT_CODE_HASH = keccak(text="SimpleAccount proxy init code")


def oracle_user_operation_hash(
    user_operation: UserOperation,
    variant: UserOperationVariant,
    chain_id: int = CHAIN_ID,
    entrypoint: str = ENTRYPOINT,
) -> tuple[bytes, bytes, bytes]:
    """
    (domain separator, struct hash, final hash) computed by eth_account's
    EIP-712 encoder from the raw fields of the operation.
    """
    hashed_field_type = (
        "bytes" if variant == UserOperationVariant.PACKED else "bytes32")

    def hashed_field(value: bytes) -> bytes:
        if variant == UserOperationVariant.PACKED:
            return value
        return keccak(value)

    typed_data = {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "PackedUserOperation": [
                {"name": "sender", "type": "address"},
                {"name": "nonce", "type": "uint256"},
                {"name": "initCode", "type": hashed_field_type},
                {"name": "callData", "type": hashed_field_type},
                {"name": "accountGasLimits", "type": "bytes32"},
                {"name": "preVerificationGas", "type": "uint256"},
                {"name": "gasFees", "type": "bytes32"},
                {"name": "paymasterAndData", "type": hashed_field_type},
            ],
        },
        "primaryType": "PackedUserOperation",
        "domain": {
            "name": "ERC4337",
            "version": "1",
            "chainId": chain_id,
            "verifyingContract": entrypoint,
        },
        "message": {
            "sender": user_operation.sender_address,
            "nonce": user_operation.nonce,
            "initCode": hashed_field(user_operation.init_code),
            "callData": hashed_field(user_operation.call_data),
            "accountGasLimits": (
                user_operation.verification_gas_limit.to_bytes(16, "big") +
                user_operation.call_gas_limit.to_bytes(16, "big")
            ),
            "preVerificationGas": user_operation.pre_verification_gas,
            "gasFees": (
                user_operation.max_priority_fee_per_gas.to_bytes(16, "big") +
                user_operation.max_fee_per_gas.to_bytes(16, "big")
            ),
            "paymasterAndData": hashed_field(
                user_operation.paymaster_and_data),
        },
    }
    signable_message = encode_typed_data(full_message=typed_data)
    return (
        bytes(signable_message.header),
        bytes(signable_message.body),
        bytes(_hash_eip191_message(signable_message)),
    )


def make_user_operation(**overrides) -> UserOperation:
    fields = {
        "sender_address": SENDER,
        "nonce": 0,
        "call_data": bytes(0),
        "call_gas_limit": 200_000,
        "verification_gas_limit": 100_000,
        "pre_verification_gas": 50_000,
        "max_fee_per_gas": 2_000_000_000,
        "max_priority_fee_per_gas": 1_000_000_000,
    }
    fields.update(overrides)
    return UserOperation(**fields)


class FakeEntryPoint:
    """EntryPoint whose getUserOpHash is the eth_account EIP-712 encoder."""

    def __init__(self, variant=UserOperationVariant.PACKED, nonce=0):
        self.variant = variant
        self.nonce = nonce
        self.deposits: dict[str, int] = {}
        self.nonce_requests: list[tuple[str, int]] = []

    async def get_nonce(self, sender, key=0):
        self.nonce_requests.append((sender, key))
        return self.nonce

    async def get_user_op_hash(self, user_operation):
        return oracle_user_operation_hash(user_operation, self.variant)[2]

    async def balance_of(self, account):
        return self.deposits.get(account, 0)


class FakeAccountFactory:
    def __init__(self, init_code_hash=ACCOUNT_INIT_CODE_HASH):
        self.init_code_hash = init_code_hash
        self.deployed: set[str] = set()
        self.registered: set[str] = set()

    async def get_address(self, owner, salt):
        return compute_create2_address(FACTORY, salt, self.init_code_hash)

    async def is_deployed(self, account):
        return account in self.deployed

    async def is_registered_account(self, account):
        return account in self.registered


class FakeFeeOracle:
    def __init__(self, max_priority_fee_per_gas=1_500_000_000,
                 max_fee_per_gas=30_000_000_000):
        self.fee_data = (max_priority_fee_per_gas, max_fee_per_gas)
        self.calls = 0

    async def get_fee_data(self):
        self.calls += 1
        return self.fee_data


class FakeSmartAccount:
    def __init__(self, validation_data=0):
        self.validation_data = validation_data
        self.requests: list[bytes] = []

    async def simulate_validate_user_op(
        self, user_operation, user_operation_hash, entrypoint,
        missing_account_funds=0
    ):
        self.requests.append(user_operation_hash)
        return self.validation_data


class FakeRpcServer:
    """
    JSON-RPC endpoint standing in for a bundler or an Eth node.

    handlers maps a method to a callable taking the params list and
    returning either a {"result": ...} / {"error": ...} dict or an
    aiohttp response to send as-is.
    """

    def __init__(self):
        self.handlers = {}
        self.calls: list[tuple[str, list]] = []
        self.url = ""
        self.app = web.Application()
        self.app.router.add_post("/rpc", self.handle)

    def calls_to(self, method):
        return [params for name, params in self.calls if name == method]

    async def handle(self, request):
        body = await request.json()
        method = body["method"]
        params = body.get("params", [])
        self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            return web.json_response({
                "jsonrpc": "2.0",
                "id": body["id"],
                "error": {
                    "code": -32601,
                    "message": f"Method {method} not found",
                },
            })
        response = handler(params)
        if isinstance(response, web.StreamResponse):
            return response
        return web.json_response({"jsonrpc": "2.0", "id": body["id"],
                                  **response})


def bad_gateway(params):
    return web.Response(status=502, text="<html>502 Bad Gateway</html>")


def service_unavailable(params):
    return web.json_response(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "error": {"code": -32603, "message": "upstream unavailable"},
        },
        status=503,
    )


@pytest_asyncio.fixture
async def rpc_server():
    fake = FakeRpcServer()
    server = TestServer(fake.app)
    await server.start_server()
    fake.url = str(server.make_url("/rpc"))
    yield fake
    await server.close()


@pytest.fixture
def owner_signer():
    return LocalAccountSigner.from_private_key(OWNER_PRIVATE_KEY)


@pytest.fixture
def entrypoint():
    return FakeEntryPoint()


@pytest.fixture
def account_factory():
    return FakeAccountFactory()


@pytest.fixture
def fee_oracle():
    return FakeFeeOracle()
