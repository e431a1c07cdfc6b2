import asyncio
import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from userop_core.exceptions import RpcException, Stage, TransportException
from userop_core.typing import Address
from .decode import decode_revert_reason

DEFAULT_REQUEST_TIMEOUT = 30


async def send_rpc_request_to_eth_client(
    node_url: str,
    method: str,
    params=None,
    retries: int = 0,
    backoff: float = 1,
    stage: Stage = Stage.SUBMIT,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Any:
    """
    POST one JSON-RPC request and return the decoded response object.

    JSON-RPC error responses are returned as-is for the caller to interpret.
    Transport failures (connection errors, undecodable json, non-2xx without
    a JSON-RPC body) are retried up to `retries` times, sleeping
    `backoff * attempt` seconds between attempts, then raise
    TransportException. When retries are allowed every non-2xx reply is a
    transport failure, even one carrying a JSON-RPC error body. Use retries=0
    for requests that must not be repeated.
    """
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    last_error = ""
    for attempt in range(1, retries + 2):
        try:
            async with ClientSession(
                timeout=ClientTimeout(total=request_timeout)
            ) as session:
                async with session.post(
                    node_url,
                    json=json_request,
                    headers=headers
                ) as response:
                    resp = await response.read()
                    status = response.status
            json_result = json.loads(resp)
            if not isinstance(json_result, dict):
                raise ValueError(f"unexpected json response: {resp[:200]!r}")
            if status // 100 != 2 and (
                retries > 0 or "error" not in json_result
            ):
                raise ValueError(f"http status {status}")
        except json.decoder.JSONDecodeError:
            last_error = (
                f"invalid json response (http status {status})")
        except (ClientError, asyncio.TimeoutError, ValueError) as excp:
            last_error = str(excp) or excp.__class__.__name__
        else:
            return json_result

        logging.error(
            f"Attempt No. {attempt} to call {method} on {node_url} failed. "
            f"error: {last_error}"
        )
        if attempt <= retries:
            await asyncio.sleep(backoff * attempt)

    raise TransportException(
        url=node_url, method=method, reason=last_error, stage=stage)


def get_rpc_result(
    json_result: dict, method: str, stage: Stage = Stage.ENCODE
) -> Any:
    if "error" in json_result:
        error = json_result["error"] or {}
        data = error.get("data")
        message = error.get("message", "")
        if isinstance(data, str) and data.startswith("0x"):
            reason = decode_revert_reason(data)
            if reason is not None:
                message = f"{message} ({reason})" if message else reason
        raise RpcException(
            method=method,
            code=error.get("code"),
            message=message,
            data=data,
            stage=stage,
        )
    return json_result.get("result")


async def eth_call(
    node_url: str,
    to: Address,
    call_data: bytes,
    from_address: Address | None = None,
    block: str = "latest",
) -> bytes:
    call: dict[str, str] = {"to": to, "data": "0x" + call_data.hex()}
    if from_address is not None:
        call["from"] = from_address
    raw_res = await send_rpc_request_to_eth_client(
        node_url, "eth_call", [call, block], stage=Stage.ENCODE
    )
    result = get_rpc_result(raw_res, "eth_call")
    return bytes.fromhex(result[2:])


async def get_code(node_url: str, address: Address) -> bytes:
    raw_res = await send_rpc_request_to_eth_client(
        node_url, "eth_getCode", [address, "latest"], stage=Stage.ENCODE
    )
    result = get_rpc_result(raw_res, "eth_getCode")
    return bytes.fromhex(result[2:])


async def get_chain_id(node_url: str) -> int:
    raw_res = await send_rpc_request_to_eth_client(
        node_url, "eth_chainId", [], stage=Stage.CONFIG
    )
    return int(get_rpc_result(raw_res, "eth_chainId", Stage.CONFIG), 16)


async def get_block_info(
    node_url: str, block_number_hex: str = "latest"
) -> tuple[str, int, str, int, str]:
    raw_res: Any = await send_rpc_request_to_eth_client(
        node_url,
        "eth_getBlockByNumber",
        [block_number_hex, False],
        stage=Stage.ENCODE,
    )
    latest_block = get_rpc_result(raw_res, "eth_getBlockByNumber")

    latest_block_number = latest_block["number"]

    if "baseFeePerGas" in latest_block:
        latest_block_basefee = int(latest_block["baseFeePerGas"], 16)
    else:  # for block requested before the EIP-1559 upgrade
        latest_block_basefee = 0

    latest_block_gas_limit_hex = latest_block["gasLimit"]
    latest_block_timestamp = int(latest_block["timestamp"], 16)
    latest_block_hash = latest_block["hash"]

    return (
        latest_block_number,
        latest_block_basefee,
        latest_block_gas_limit_hex,
        latest_block_timestamp,
        latest_block_hash,
    )
