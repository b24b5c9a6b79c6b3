from datetime import date
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import Direction


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., min_length=1, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=16)


class CredentialsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., min_length=1, alias="clientId")
    client_secret: str = Field(..., min_length=1, alias="clientSecret")
    api_key: str = Field(..., min_length=1, alias="apiKey")


class TokenResponse(BaseModel):
    access_token: str
    expires_in: Union[int, str]
    token_type: str = "Bearer"
    scope: str = ""

    @property
    def expires_in_secs(self) -> int:
        return int(self.expires_in)


class Account(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    account_id: str = Field(..., alias="accountId")
    account_number: str = Field(default="", alias="accountNumber")
    account_name: str = Field(default="", alias="accountName")
    reference_name: str = Field(default="", alias="referenceName")
    product_name: str = Field(default="", alias="productName")


class AccountBalance(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    account_id: str = Field(..., alias="accountId")
    current_balance: float = Field(..., alias="currentBalance")
    available_balance: float = Field(..., alias="availableBalance")
    currency: str = "ZAR"


class TransactionIn(BaseModel):
    """A remote record after normalization; every field is populated."""

    model_config = ConfigDict(extra="forbid")

    account_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    transaction_type: str = Field(default="Other", min_length=1)
    status: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    card_number: str = ""
    posted_order: int = 0
    posting_date: str = ""
    value_date: str = ""
    action_date: str = ""
    transaction_date: date
    amount_cents: int = Field(..., ge=0)
    running_balance_cents: int = 0

    @property
    def direction(self) -> Optional[Direction]:
        try:
            return Direction(self.type)
        except ValueError:
            return None


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
