from userop_core.typing import Address
from userop_core.user_operation.fields import verify_and_get_address
from userop_core.utils.decode import decode_address_result, decode_bool_result
from userop_core.utils.encode import (encode_create_account_calldata,
                                      encode_function_call)
from userop_core.utils.eth_client_utils import eth_call, get_code


class AccountFactoryClient:
    ethereum_node_url: str
    factory: Address

    def __init__(self, ethereum_node_url: str, factory: Address):
        self.ethereum_node_url = ethereum_node_url
        self.factory = verify_and_get_address("factory", factory)

    async def get_address(self, owner: Address, salt: int) -> Address:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.factory,
            encode_function_call(
                "getAddress(address,uint256)",
                ["address", "uint256"],
                [owner, salt],
            ),
        )
        return decode_address_result(raw_result)

    async def is_registered_account(self, account: Address) -> bool:
        # the paymaster only sponsors accounts registered by this factory
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.factory,
            encode_function_call(
                "isRegistedAccount(address)", ["address"], [account]),
        )
        return decode_bool_result(raw_result)

    async def account_implementation(self) -> Address:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.factory,
            encode_function_call("accountImplementation()", [], []),
        )
        return decode_address_result(raw_result)

    async def is_deployed(self, account: Address) -> bool:
        code = await get_code(self.ethereum_node_url, account)
        return len(code) > 0

    @staticmethod
    def encode_create_account(owner: Address, salt: int) -> bytes:
        return encode_create_account_calldata(owner, salt)
