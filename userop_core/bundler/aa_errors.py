import re
from enum import Enum

AA_CODE_PATTERN = re.compile(r"\bAA(\d)(\d)\b")


class AAErrorCategory(Enum):
    # AA1x
    SenderCreation = "factory"
    # AA2x
    Account = "account"
    # AA3x
    Paymaster = "paymaster"
    # AA4x
    Gas = "gas"
    # AA5x
    PostExecution = "execution"
    # AA9x
    EntryPoint = "entrypoint"

    def __str__(self):
        return self.value


AA_CATEGORY_BY_DIGIT = {
    "1": AAErrorCategory.SenderCreation,
    "2": AAErrorCategory.Account,
    "3": AAErrorCategory.Paymaster,
    "4": AAErrorCategory.Gas,
    "5": AAErrorCategory.PostExecution,
    "9": AAErrorCategory.EntryPoint,
}


def parse_aa_error(message: str) -> tuple[str, AAErrorCategory | None] | None:
    """Extract the first ERC-4337 AAxx code of a bundler error message."""
    match = AA_CODE_PATTERN.search(message or "")
    if match is None:
        return None
    return (
        f"AA{match.group(1)}{match.group(2)}",
        AA_CATEGORY_BY_DIGIT.get(match.group(1)),
    )
