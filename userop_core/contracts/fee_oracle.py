import logging

from userop_core.exceptions import RpcException
from userop_core.utils.eth_client_utils import (get_block_info,
                                                get_rpc_result,
                                                send_rpc_request_to_eth_client)

DEFAULT_MAX_PRIORITY_FEE_PER_GAS = 1_000_000_000  # 1 gwei


class NodeFeeOracle:
    """
    maxPriorityFeePerGas from eth_maxPriorityFeePerGas and
    maxFeePerGas = 2 * latest base fee + maxPriorityFeePerGas.
    """
    ethereum_node_url: str

    def __init__(self, ethereum_node_url: str):
        self.ethereum_node_url = ethereum_node_url

    async def get_fee_data(self) -> tuple[int, int]:
        raw_res = await send_rpc_request_to_eth_client(
            self.ethereum_node_url, "eth_maxPriorityFeePerGas", []
        )
        try:
            max_priority_fee_per_gas = int(
                get_rpc_result(raw_res, "eth_maxPriorityFeePerGas"), 16)
        except RpcException as excp:
            logging.warning(
                f"eth_maxPriorityFeePerGas unavailable ({excp.message}), "
                f"using {DEFAULT_MAX_PRIORITY_FEE_PER_GAS} wei"
            )
            max_priority_fee_per_gas = DEFAULT_MAX_PRIORITY_FEE_PER_GAS

        _, base_fee, _, _, _ = await get_block_info(self.ethereum_node_url)
        max_fee_per_gas = base_fee * 2 + max_priority_fee_per_gas
        return max_priority_fee_per_gas, max_fee_per_gas
