import asyncio
import logging
from typing import Any

from userop_core.exceptions import (BundlerRejectedException,
                                    InvalidStateTransitionException, Stage,
                                    TransportException)
from userop_core.typing import Address, UserOperationHash
from userop_core.user_operation.fields import (is_user_operation_hash,
                                               verify_and_get_address)
from userop_core.user_operation.lifecycle import (UserOperationEnvelope,
                                                  UserOperationState)
from userop_core.utils.eth_client_utils import send_rpc_request_to_eth_client
from .aa_errors import parse_aa_error
from .models import (Confirmed, PollResult, Rejected, TimedOut,
                     UserOperationReceipt)

DEFAULT_POLL_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 2
DEFAULT_POLL_MAX_RETRIES = 3


class BundlerClient:
    bundler_url: str
    request_timeout: float

    def __init__(self, bundler_url: str, request_timeout: float = 30):
        self.bundler_url = bundler_url
        self.request_timeout = request_timeout

    async def _call(
        self,
        method: str,
        params: list[Any],
        stage: Stage,
        retries: int = 0,
        backoff: float = 1,
    ) -> Any:
        json_result = await send_rpc_request_to_eth_client(
            self.bundler_url,
            method,
            params,
            retries=retries,
            backoff=backoff,
            stage=stage,
            request_timeout=self.request_timeout,
        )
        if "error" in json_result:
            error = json_result["error"] or {}
            message = str(error.get("message", ""))
            aa_error = parse_aa_error(message)
            aa_code, category = aa_error if aa_error is not None else (None, None)
            raise BundlerRejectedException(
                code=error.get("code"),
                message=message,
                aa_code=aa_code,
                category=None if category is None else str(category),
                data=error.get("data"),
                stage=stage,
            )
        return json_result.get("result")

    async def send_user_operation(
        self, user_operation_json: dict[str, str], entrypoint: Address
    ) -> UserOperationHash:
        # submission is never retried, a retry could duplicate the operation
        result = await self._call(
            "eth_sendUserOperation",
            [user_operation_json, verify_and_get_address(
                "entrypoint", entrypoint)],
            Stage.SUBMIT,
        )
        if not is_user_operation_hash(result):
            raise BundlerRejectedException(
                code=None,
                message=f"invalid userOpHash returned by bundler: {result!r}",
                stage=Stage.SUBMIT,
            )
        logging.info(f"UserOperation submitted - userOpHash: {result}")
        return UserOperationHash(result)

    async def submit(self, envelope: UserOperationEnvelope) -> UserOperationHash:
        if envelope.state != UserOperationState.SIGNED:
            raise InvalidStateTransitionException(
                current=str(envelope.state),
                requested=str(UserOperationState.SUBMITTED),
                stage=Stage.SUBMIT,
            )
        user_operation_json = envelope.get_wire_view()
        envelope.transition(UserOperationState.SUBMITTED)
        try:
            user_operation_hash = await self.send_user_operation(
                user_operation_json, envelope.entrypoint)
        except BundlerRejectedException as excp:
            logging.error(str(excp))
            envelope.transition(UserOperationState.REJECTED)
            envelope.result = excp
            raise
        except TransportException:
            # unknown whether the bundler accepted it, stays Submitted
            logging.error(
                "Transport failure while submitting UserOperation "
                f"{envelope.user_operation_hash_hex}, it may still be pending"
            )
            raise

        envelope.bundler_user_operation_hash = user_operation_hash
        if user_operation_hash.lower() != envelope.user_operation_hash_hex:
            logging.warning(
                "bundler userOpHash differs from the locally computed hash - "
                f"bundler: {user_operation_hash} "
                f"local: {envelope.user_operation_hash_hex}"
            )
        return user_operation_hash

    async def get_user_operation_receipt(
        self,
        user_operation_hash: UserOperationHash,
        retries: int = 0,
        backoff: float = 1,
    ) -> UserOperationReceipt | None:
        result = await self._call(
            "eth_getUserOperationReceipt",
            [user_operation_hash],
            Stage.POLL,
            retries=retries,
            backoff=backoff,
        )
        if result is None:
            return None
        try:
            return UserOperationReceipt.from_json(result)
        except (KeyError, ValueError, TypeError, AttributeError) as excp:
            raise BundlerRejectedException(
                code=None,
                message=f"malformed UserOperation receipt: {excp!r}",
                data=result,
                stage=Stage.POLL,
            ) from excp

    async def poll_receipt(
        self,
        user_operation_hash: UserOperationHash,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = DEFAULT_POLL_MAX_RETRIES,
    ) -> PollResult:
        """
        Poll eth_getUserOperationReceipt until a receipt is found or
        `timeout` seconds elapse.

        Each poll retries transport failures, non-2xx replies included, up to
        `max_retries` times with linear backoff (interval, 2 * interval, ...).
        A JSON-RPC error reply counts as an empty poll and is reported as
        `last_error` if the deadline passes. Polling never raises. The
        deadline is checked between polls only; a request in flight is never
        interrupted.
        """
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        deadline = started_at + timeout
        last_error = None
        while True:
            try:
                receipt = await self.get_user_operation_receipt(
                    user_operation_hash,
                    retries=max_retries,
                    backoff=interval,
                )
            except BundlerRejectedException as excp:
                # an error reply to a receipt query is a failed poll
                logging.warning(
                    f"Receipt query for {user_operation_hash} failed: {excp}")
                last_error = str(excp)
                receipt = None
            except TransportException as excp:
                logging.error(
                    f"Abandoning receipt polling for {user_operation_hash}: "
                    f"{excp}"
                )
                return TimedOut(
                    user_operation_hash=user_operation_hash,
                    elapsed=loop.time() - started_at,
                    last_error=str(excp),
                )

            if receipt is not None:
                if receipt.success:
                    logging.info(
                        f"UserOperation {user_operation_hash} included in "
                        f"transaction {receipt.transaction_hash}"
                    )
                    return Confirmed(receipt=receipt)
                reason = receipt.reason or "UserOperation execution reverted"
                logging.warning(
                    f"UserOperation {user_operation_hash} reverted: {reason}")
                return Rejected(receipt=receipt, reason=reason)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return TimedOut(
                    user_operation_hash=user_operation_hash,
                    elapsed=loop.time() - started_at,
                    last_error=last_error,
                )
            await asyncio.sleep(min(interval, remaining))

    async def wait(
        self,
        envelope: UserOperationEnvelope,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = DEFAULT_POLL_MAX_RETRIES,
    ) -> PollResult:
        if envelope.state != UserOperationState.SUBMITTED:
            raise InvalidStateTransitionException(
                current=str(envelope.state),
                requested=str(UserOperationState.CONFIRMED),
                stage=Stage.POLL,
            )
        user_operation_hash = (
            envelope.bundler_user_operation_hash or
            envelope.user_operation_hash_hex
        )
        result = await self.poll_receipt(
            user_operation_hash, timeout, interval, max_retries)
        if isinstance(result, Confirmed):
            envelope.transition(UserOperationState.CONFIRMED, Stage.POLL)
        elif isinstance(result, Rejected):
            envelope.transition(UserOperationState.REJECTED, Stage.POLL)
        else:
            envelope.transition(UserOperationState.TIMED_OUT, Stage.POLL)
        envelope.result = result
        return result

    async def get_user_operation_by_hash(
        self, user_operation_hash: UserOperationHash
    ) -> dict[str, Any] | None:
        return await self._call(
            "eth_getUserOperationByHash", [user_operation_hash], Stage.POLL)

    async def supported_entrypoints(self) -> list[Address]:
        return await self._call(
            "eth_supportedEntryPoints", [], Stage.CONFIG)

    async def chain_id(self) -> int:
        return int(await self._call("eth_chainId", [], Stage.CONFIG), 16)

    async def estimate_user_operation_gas(
        self, user_operation_json: dict[str, str], entrypoint: Address
    ) -> dict[str, str]:
        return await self._call(
            "eth_estimateUserOperationGas",
            [user_operation_json, entrypoint],
            Stage.ENCODE,
        )
