from userop_core.typing import Address
from userop_core.user_operation.fields import verify_and_get_address
from userop_core.user_operation.user_operation import UserOperation
from userop_core.utils.decode import decode_address_result, decode_uint_result
from userop_core.utils.encode import (encode_function_call,
                                      encode_validate_user_op_calldata)
from userop_core.utils.eth_client_utils import eth_call

SIG_VALIDATION_SUCCESS = 0
SIG_VALIDATION_FAILED = 1


class SmartAccountClient:
    ethereum_node_url: str
    account: Address

    def __init__(self, ethereum_node_url: str, account: Address):
        self.ethereum_node_url = ethereum_node_url
        self.account = verify_and_get_address("account", account)

    async def owner(self) -> Address:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.account,
            encode_function_call("owner()", [], []),
        )
        return decode_address_result(raw_result)

    async def entry_point(self) -> Address:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.account,
            encode_function_call("entryPoint()", [], []),
        )
        return decode_address_result(raw_result)

    async def get_nonce(self) -> int:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.account,
            encode_function_call("getNonce()", [], []),
        )
        return decode_uint_result(raw_result)

    async def simulate_validate_user_op(
        self,
        user_operation: UserOperation,
        user_operation_hash: bytes,
        entrypoint: Address,
        missing_account_funds: int = 0,
    ) -> int:
        """
        eth_call validateUserOp from the EntryPoint address and return the
        raw validationData (0 success, 1 signature failure).
        """
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.account,
            encode_validate_user_op_calldata(
                user_operation.to_packed_list(),
                user_operation_hash,
                missing_account_funds,
            ),
            from_address=entrypoint,
        )
        return decode_uint_result(raw_result)
