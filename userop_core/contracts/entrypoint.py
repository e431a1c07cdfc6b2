import logging

from userop_core.typing import Address
from userop_core.user_operation.fields import verify_and_get_address
from userop_core.user_operation.user_operation import UserOperation
from userop_core.utils.decode import decode_bytes32_result, decode_uint_result
from userop_core.utils.encode import (encode_function_call,
                                      encode_get_user_op_hash_calldata)
from userop_core.utils.eth_client_utils import eth_call


class EntryPointClient:
    """Read-only view of an EntryPoint deployment through eth_call."""
    ethereum_node_url: str
    entrypoint: Address

    def __init__(self, ethereum_node_url: str, entrypoint: Address):
        self.ethereum_node_url = ethereum_node_url
        self.entrypoint = verify_and_get_address("entrypoint", entrypoint)

    async def get_nonce(self, sender: Address, key: int = 0) -> int:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.entrypoint,
            encode_function_call(
                "getNonce(address,uint192)",
                ["address", "uint192"],
                [sender, key],
            ),
        )
        nonce = decode_uint_result(raw_result)
        logging.debug(f"EntryPoint nonce for {sender} key {key}: {nonce}")
        return nonce

    async def get_user_op_hash(self, user_operation: UserOperation) -> bytes:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.entrypoint,
            encode_get_user_op_hash_calldata(user_operation.to_packed_list()),
        )
        return decode_bytes32_result(raw_result)

    async def balance_of(self, account: Address) -> int:
        raw_result = await eth_call(
            self.ethereum_node_url,
            self.entrypoint,
            encode_function_call(
                "balanceOf(address)", ["address"], [account]),
        )
        return decode_uint_result(raw_result)

    @staticmethod
    def encode_deposit_to(account: Address) -> bytes:
        # payable, the caller sends it as a transaction with value
        return encode_function_call(
            "depositTo(address)", ["address"], [account])
