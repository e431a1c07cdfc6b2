import pytest

from userop_core.exceptions import (HashMismatchException,
                                    PreflightException,
                                    PreflightExceptionCode)
from userop_core.user_operation.eip712 import UserOperationVariant
from userop_core.user_operation.lifecycle import UserOperationEnvelope
from userop_core.user_operation.preflight import (check_echoed_user_operation,
                                                  run_preflight_checks,
                                                  verify_signer)
from userop_core.user_operation.user_operation import WireFormat

from conftest import (CHAIN_ID, ENTRYPOINT, FACTORY, OWNER_ADDRESS,
                      PAYMASTER, SENDER, TARGET, FakeAccountFactory,
                      FakeEntryPoint, FakeSmartAccount, make_user_operation)

SPONSORED_FIELDS = {
    "paymaster": PAYMASTER,
    "paymaster_verification_gas_limit": 100_000,
    "paymaster_post_op_gas_limit": 50_000,
}


def make_signed_envelope(owner_signer, variant=UserOperationVariant.PACKED,
                         **overrides):
    envelope = UserOperationEnvelope(
        user_operation=make_user_operation(**overrides),
        variant=variant,
        wire_format=WireFormat.V7,
        chain_id=CHAIN_ID,
        entrypoint=ENTRYPOINT,
    )
    envelope.sign(owner_signer)
    return envelope


@pytest.mark.asyncio
async def test_preflight_passes(owner_signer):
    envelope = make_signed_envelope(owner_signer, **SPONSORED_FIELDS)
    entrypoint = FakeEntryPoint()
    entrypoint.deposits[PAYMASTER] = 10**18
    account_factory = FakeAccountFactory()
    account_factory.registered.add(SENDER)
    smart_account = FakeSmartAccount()

    await run_preflight_checks(
        envelope, OWNER_ADDRESS, entrypoint, account_factory, smart_account)

    assert smart_account.requests == [envelope.user_operation_hash]


@pytest.mark.asyncio
async def test_preflight_detects_variant_mismatch(owner_signer):
    envelope = make_signed_envelope(
        owner_signer, variant=UserOperationVariant.UNPACKED_LEGACY)
    entrypoint = FakeEntryPoint(variant=UserOperationVariant.PACKED)

    with pytest.raises(HashMismatchException) as excinfo:
        await run_preflight_checks(envelope, OWNER_ADDRESS, entrypoint)

    assert excinfo.value.computed == envelope.user_operation_hash_hex


@pytest.mark.asyncio
async def test_preflight_rejects_unregistered_sponsored_account(owner_signer):
    envelope = make_signed_envelope(owner_signer, **SPONSORED_FIELDS)
    entrypoint = FakeEntryPoint()
    entrypoint.deposits[PAYMASTER] = 10**18

    with pytest.raises(PreflightException) as excinfo:
        await run_preflight_checks(
            envelope, OWNER_ADDRESS, entrypoint, FakeAccountFactory())

    assert (
        excinfo.value.exception_code ==
        PreflightExceptionCode.UnregisteredAccount
    )


@pytest.mark.asyncio
async def test_preflight_allows_sponsored_deployment(owner_signer):
    envelope = make_signed_envelope(
        owner_signer,
        factory=FACTORY,
        factory_data=b"\x01",
        **SPONSORED_FIELDS,
    )
    entrypoint = FakeEntryPoint()
    entrypoint.deposits[PAYMASTER] = 1
    smart_account = FakeSmartAccount(validation_data=1)

    await run_preflight_checks(
        envelope, OWNER_ADDRESS, entrypoint, FakeAccountFactory(),
        smart_account)

    # no code to simulate against before deployment
    assert smart_account.requests == []


@pytest.mark.asyncio
async def test_preflight_rejects_empty_paymaster_deposit(owner_signer):
    envelope = make_signed_envelope(owner_signer, **SPONSORED_FIELDS)

    with pytest.raises(PreflightException) as excinfo:
        await run_preflight_checks(envelope, OWNER_ADDRESS, FakeEntryPoint())

    assert (
        excinfo.value.exception_code ==
        PreflightExceptionCode.PaymasterDepositTooLow
    )


@pytest.mark.asyncio
async def test_preflight_rejects_failed_validation(owner_signer):
    envelope = make_signed_envelope(owner_signer)

    with pytest.raises(PreflightException) as excinfo:
        await run_preflight_checks(
            envelope,
            OWNER_ADDRESS,
            FakeEntryPoint(),
            smart_account=FakeSmartAccount(validation_data=1),
        )

    assert (
        excinfo.value.exception_code ==
        PreflightExceptionCode.ValidationFailed
    )


def test_verify_signer_rejects_other_owner(owner_signer):
    envelope = make_signed_envelope(owner_signer)

    verify_signer(envelope, OWNER_ADDRESS)
    with pytest.raises(PreflightException) as excinfo:
        verify_signer(envelope, TARGET)

    assert excinfo.value.details["recovered"] == OWNER_ADDRESS


def test_echo_check_identical(owner_signer):
    envelope = make_signed_envelope(owner_signer, **SPONSORED_FIELDS)

    check = check_echoed_user_operation(
        envelope, envelope.get_wire_view(), OWNER_ADDRESS)

    assert check.hashes_match
    assert check.signature_matches_constructed
    assert check.signature_matches_echoed
    assert check.differing_fields == []


def test_echo_check_detects_rewritten_paymaster_data(owner_signer):
    envelope = make_signed_envelope(owner_signer, **SPONSORED_FIELDS)
    echoed_json = envelope.get_wire_view()
    echoed_json["paymasterVerificationGasLimit"] = hex(100_001)

    check = check_echoed_user_operation(envelope, echoed_json, OWNER_ADDRESS)

    assert not check.hashes_match
    assert check.signature_matches_constructed
    assert not check.signature_matches_echoed
    assert check.differing_fields == ["paymasterVerificationGasLimit"]
