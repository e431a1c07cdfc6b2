import glob

from eth_account import Account
from eth_account.signers.local import LocalAccount

from userop_core.typing import Address


def import_owner_account(
    keystore_file_password, keystore_file_path="keystore/*"
) -> LocalAccount:
    if keystore_file_path != "keystore/*":
        keystore = keystore_file_path
    else:
        keystore = glob.glob(keystore_file_path)[0]

    with open(keystore) as keyfile:
        encrypted_key = keyfile.read()
        private_key = Account.decrypt(encrypted_key, keystore_file_password)
        return Account.from_key(private_key)


class LocalAccountSigner:
    """Signs a 32 byte UserOperation hash with a local private key."""

    def __init__(self, account: LocalAccount):
        self.account = account

    @classmethod
    def from_private_key(cls, private_key: str) -> "LocalAccountSigner":
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> Address:
        return Address(self.account.address)

    def __call__(self, user_operation_hash: bytes) -> bytes:
        signed_message = self.account.unsafe_sign_hash(user_operation_hash)
        return bytes(signed_message.signature)


def recover_signer(user_operation_hash: bytes, signature: bytes) -> Address:
    return Address(
        Account._recover_hash(user_operation_hash, signature=signature)
    )
