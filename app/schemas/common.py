"""Shared boundary types."""

from typing import Annotated

from pydantic import Field, StringConstraints

# Amounts are integer cents in the payment currency
Money = Annotated[int, Field(ge=0)]

LedgerAddress = Annotated[
    str,
    StringConstraints(strip_whitespace=True, pattern=r"^0x[0-9a-fA-F]{64}$"),
]

# Owner recorded on the ledger for patients who have not linked a wallet
PLACEHOLDER_LEDGER_ADDRESS = "0x" + "0" * 64
