import pytest
from eth_abi import decode, encode

from userop_core.contracts.account_factory import AccountFactoryClient
from userop_core.contracts.entrypoint import EntryPointClient
from userop_core.contracts.fee_oracle import (DEFAULT_MAX_PRIORITY_FEE_PER_GAS,
                                              NodeFeeOracle)
from userop_core.contracts.smart_account import (SIG_VALIDATION_FAILED,
                                                 SmartAccountClient)
from userop_core.exceptions import RpcException
from userop_core.utils.encode import (PACKED_USER_OPERATION_TUPLE,
                                      function_selector)

from conftest import (ENTRYPOINT, FACTORY, OWNER_ADDRESS, PAYMASTER, SENDER,
                      make_user_operation)


def eth_call_handler(to, results):
    """Answer eth_call to `to` by function selector."""
    def handler(params):
        call, block = params
        assert block == "latest"
        assert call["to"] == to
        data = bytes.fromhex(call["data"][2:])
        selector, arguments = data[:4], data[4:]
        result = results[selector](arguments, call)
        if isinstance(result, dict):
            return result
        return {"result": "0x" + result.hex()}
    return handler


@pytest.mark.asyncio
async def test_entrypoint_get_nonce(rpc_server):
    def get_nonce(arguments, call):
        sender, key = decode(["address", "uint192"], arguments)
        assert sender.lower() == SENDER.lower()
        return encode(["uint256"], [(key << 64) + 4])

    rpc_server.handlers["eth_call"] = eth_call_handler(ENTRYPOINT, {
        function_selector("getNonce(address,uint192)"): get_nonce,
    })
    entrypoint = EntryPointClient(rpc_server.url, ENTRYPOINT)

    assert await entrypoint.get_nonce(SENDER) == 4
    assert await entrypoint.get_nonce(SENDER, 2) == (2 << 64) + 4


@pytest.mark.asyncio
async def test_entrypoint_get_user_op_hash_sends_packed_struct(rpc_server):
    user_operation = make_user_operation(
        paymaster=PAYMASTER,
        paymaster_verification_gas_limit=1,
        paymaster_post_op_gas_limit=2,
        signature=b"\x01" * 65,
    )

    def get_user_op_hash(arguments, call):
        [packed] = decode([PACKED_USER_OPERATION_TUPLE], arguments)
        assert packed[0].lower() == SENDER.lower()
        assert packed[4] == user_operation.account_gas_limits
        assert packed[6] == user_operation.gas_fees
        assert packed[7] == user_operation.paymaster_and_data
        assert packed[8] == user_operation.signature
        return b"\x42" * 32

    rpc_server.handlers["eth_call"] = eth_call_handler(ENTRYPOINT, {
        function_selector(
            f"getUserOpHash({PACKED_USER_OPERATION_TUPLE})"): get_user_op_hash,
    })

    assert await EntryPointClient(
        rpc_server.url, ENTRYPOINT
    ).get_user_op_hash(user_operation) == b"\x42" * 32


@pytest.mark.asyncio
async def test_entrypoint_revert_is_decoded(rpc_server):
    revert_data = "0x220266b6" + encode(
        ["uint256", "string"], [0, "AA24 signature error"]).hex()
    rpc_server.handlers["eth_call"] = lambda params: {
        "error": {
            "code": 3,
            "message": "execution reverted",
            "data": revert_data,
        }
    }

    with pytest.raises(RpcException) as excinfo:
        await EntryPointClient(rpc_server.url, ENTRYPOINT).balance_of(
            PAYMASTER)

    assert excinfo.value.method == "eth_call"
    assert "AA24 signature error" in excinfo.value.message


@pytest.mark.asyncio
async def test_entrypoint_balance_of_and_deposit_calldata(rpc_server):
    rpc_server.handlers["eth_call"] = eth_call_handler(ENTRYPOINT, {
        function_selector("balanceOf(address)"):
        lambda arguments, call: encode(["uint256"], [10**17]),
    })

    assert await EntryPointClient(
        rpc_server.url, ENTRYPOINT).balance_of(PAYMASTER) == 10**17
    deposit_to = EntryPointClient.encode_deposit_to(PAYMASTER)
    assert deposit_to[:4] == function_selector("depositTo(address)")
    assert decode(["address"], deposit_to[4:])[0].lower() == PAYMASTER.lower()


@pytest.mark.asyncio
async def test_account_factory_views(rpc_server):
    implementation = "0x" + "22" * 20
    rpc_server.handlers["eth_call"] = eth_call_handler(FACTORY, {
        function_selector("getAddress(address,uint256)"):
        lambda arguments, call: encode(["address"], [SENDER]),
        function_selector("isRegistedAccount(address)"):
        lambda arguments, call: encode(["bool"], [True]),
        function_selector("accountImplementation()"):
        lambda arguments, call: encode(["address"], [implementation]),
    })
    rpc_server.handlers["eth_getCode"] = lambda params: {
        "result": "0x6080" if params[0] == SENDER else "0x"}
    account_factory = AccountFactoryClient(rpc_server.url, FACTORY)

    assert await account_factory.get_address(OWNER_ADDRESS, 0) == SENDER
    assert await account_factory.is_registered_account(SENDER)
    assert (await account_factory.account_implementation()).lower() == (
        implementation)
    assert await account_factory.is_deployed(SENDER)
    assert not await account_factory.is_deployed(OWNER_ADDRESS)


@pytest.mark.asyncio
async def test_smart_account_simulation_is_called_from_entrypoint(
    rpc_server
):
    def validate_user_op(arguments, call):
        assert call["from"] == ENTRYPOINT
        _, user_operation_hash, missing_account_funds = decode(
            [PACKED_USER_OPERATION_TUPLE, "bytes32", "uint256"], arguments)
        assert user_operation_hash == b"\x07" * 32
        assert missing_account_funds == 0
        return encode(["uint256"], [SIG_VALIDATION_FAILED])

    rpc_server.handlers["eth_call"] = eth_call_handler(SENDER, {
        function_selector(
            f"validateUserOp({PACKED_USER_OPERATION_TUPLE},bytes32,uint256)"
        ): validate_user_op,
        function_selector("owner()"):
        lambda arguments, call: encode(["address"], [OWNER_ADDRESS]),
        function_selector("entryPoint()"):
        lambda arguments, call: encode(["address"], [ENTRYPOINT]),
        function_selector("getNonce()"):
        lambda arguments, call: encode(["uint256"], [5]),
    })
    smart_account = SmartAccountClient(rpc_server.url, SENDER)

    assert await smart_account.simulate_validate_user_op(
        make_user_operation(), b"\x07" * 32, ENTRYPOINT
    ) == SIG_VALIDATION_FAILED
    assert await smart_account.owner() == OWNER_ADDRESS
    assert await smart_account.entry_point() == ENTRYPOINT
    assert await smart_account.get_nonce() == 5
    # getters are sent as bare selectors
    for call, block in rpc_server.calls_to("eth_call")[1:]:
        assert len(call["data"]) == 10


@pytest.mark.asyncio
async def test_node_fee_oracle(rpc_server):
    rpc_server.handlers["eth_maxPriorityFeePerGas"] = lambda params: {
        "result": hex(2_000_000_000)}
    rpc_server.handlers["eth_getBlockByNumber"] = lambda params: {
        "result": {
            "number": "0x10",
            "baseFeePerGas": hex(7_000_000_000),
            "gasLimit": "0x1c9c380",
            "timestamp": "0x6553f100",
            "hash": "0x" + "00" * 32,
        }
    }

    assert await NodeFeeOracle(rpc_server.url).get_fee_data() == (
        2_000_000_000, 16_000_000_000)


@pytest.mark.asyncio
async def test_node_fee_oracle_without_priority_fee_method(rpc_server):
    rpc_server.handlers["eth_getBlockByNumber"] = lambda params: {
        "result": {
            "number": "0x10",
            "gasLimit": "0x1c9c380",
            "timestamp": "0x6553f100",
            "hash": "0x" + "00" * 32,
        }
    }

    assert await NodeFeeOracle(rpc_server.url).get_fee_data() == (
        DEFAULT_MAX_PRIORITY_FEE_PER_GAS, DEFAULT_MAX_PRIORITY_FEE_PER_GAS)
