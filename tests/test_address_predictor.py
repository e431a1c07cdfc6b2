import pytest
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from userop_core.account.address_predictor import (AddressPredictor,
                                                   compute_create2_address,
                                                   get_proxy_init_code_hash)
from userop_core.exceptions import (AddressMismatchException,
                                    EncodingException, Stage)
from userop_core.utils.encode import encode_initialize_calldata

from conftest import (ACCOUNT_INIT_CODE_HASH, FACTORY, OWNER_ADDRESS,
                      FakeAccountFactory)


def test_create2_eip1014_vector():
    # example 1 of EIP-1014
    address = compute_create2_address(
        "0x0000000000000000000000000000000000000000",
        0,
        keccak(bytes.fromhex("00")),
    )

    assert address == to_checksum_address(
        "0x4d1a2e2bb4f88f0250f26ffff098b0b30b26bf38")


def test_create2_matches_definition():
    salt = 42
    expected = keccak(
        b"\xff" +
        bytes.fromhex(FACTORY[2:]) +
        salt.to_bytes(32, "big") +
        ACCOUNT_INIT_CODE_HASH
    )[12:]

    assert compute_create2_address(
        FACTORY, salt, ACCOUNT_INIT_CODE_HASH
    ) == to_checksum_address(expected)


def test_prediction_is_deterministic_and_salted():
    predictor = AddressPredictor(FACTORY)

    assert predictor.predict(0, ACCOUNT_INIT_CODE_HASH) == predictor.predict(
        0, ACCOUNT_INIT_CODE_HASH)
    assert predictor.predict(0, ACCOUNT_INIT_CODE_HASH) != predictor.predict(
        1, ACCOUNT_INIT_CODE_HASH)


def test_init_code_hash_must_be_32_bytes():
    with pytest.raises(EncodingException):
        compute_create2_address(FACTORY, 0, bytes(31))


def test_proxy_init_code_hash():
    creation_code = bytes.fromhex("6080604052")
    implementation = to_checksum_address(
        "0x1111111111111111111111111111111111111111")

    assert get_proxy_init_code_hash(
        creation_code, implementation, OWNER_ADDRESS
    ) == keccak(
        creation_code +
        encode(
            ["address", "bytes"],
            [implementation, encode_initialize_calldata(OWNER_ADDRESS)],
        )
    )


@pytest.mark.asyncio
async def test_resolve_agrees_with_factory():
    predictor = AddressPredictor(FACTORY, FakeAccountFactory())

    assert await predictor.resolve(
        OWNER_ADDRESS, 3, ACCOUNT_INIT_CODE_HASH
    ) == compute_create2_address(FACTORY, 3, ACCOUNT_INIT_CODE_HASH)


@pytest.mark.asyncio
async def test_resolve_without_init_code_hash_asks_factory():
    predictor = AddressPredictor(FACTORY, FakeAccountFactory())

    assert await predictor.resolve(OWNER_ADDRESS, 0) == (
        compute_create2_address(FACTORY, 0, ACCOUNT_INIT_CODE_HASH))


@pytest.mark.asyncio
async def test_resolve_mismatch_raises():
    predictor = AddressPredictor(FACTORY, FakeAccountFactory())
    wrong_init_code_hash = keccak(text="another account implementation")

    with pytest.raises(AddressMismatchException) as excinfo:
        await predictor.resolve(OWNER_ADDRESS, 0, wrong_init_code_hash)

    assert excinfo.value.stage == Stage.CONFIG
    assert excinfo.value.computed == compute_create2_address(
        FACTORY, 0, wrong_init_code_hash)


@pytest.mark.asyncio
async def test_resolve_needs_hash_or_factory():
    with pytest.raises(EncodingException):
        await AddressPredictor(FACTORY).resolve(OWNER_ADDRESS, 0)
