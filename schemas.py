import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import TransactionType

# Two-decimal amounts travel as JSON numbers, not strings.
Money = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]
NonBlank = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)
]
Label = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]

BCRYPT_MAX_BYTES = 72


class RegisterIn(BaseModel):
    name: NonBlank
    email: NonBlank
    password: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise ValueError("Password is too long")
        return value


class LoginIn(BaseModel):
    email: NonBlank
    password: str = Field(..., min_length=1)


class ProfileUpdateIn(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[NonBlank] = None


class TransactionIn(BaseModel):
    description: NonBlank
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    type: TransactionType = Field(..., validation_alias=AliasChoices("type", "kind"))
    category: Label
    date: dt.date


class TransactionPatch(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    description: Optional[NonBlank] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=10, decimal_places=2
    )
    type: Optional[TransactionType] = Field(
        default=None, validation_alias=AliasChoices("type", "kind")
    )
    category: Optional[Label] = None
    date: Optional[dt.date] = None

    @model_validator(mode="after")
    def supplied_fields_not_null(self) -> "TransactionPatch":
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: Optional[datetime] = None


class AuthOut(BaseModel):
    message: str
    token: str
    user: UserOut


class ProfileOut(BaseModel):
    message: str
    user: UserOut


class MessageOut(BaseModel):
    message: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    description: str
    amount: Money
    type: TransactionType
    category: str
    date: dt.date
    created_at: datetime
    updated_at: datetime


class TransactionEnvelope(BaseModel):
    message: str
    transaction: TransactionOut


class _ReportModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class BalanceOut(_ReportModel):
    total: Money
    total_income: Money
    total_expense: Money


class MonthlyOut(_ReportModel):
    month: int
    year: int
    income: Money
    expense: Money
    balance: Money


class CategoryTotalOut(_ReportModel):
    category: str
    type: TransactionType
    total: Money


class DashboardOut(_ReportModel):
    balance: BalanceOut
    monthly: MonthlyOut
    category_breakdown: list[CategoryTotalOut]


class PeriodBucketOut(_ReportModel):
    period: str
    type: TransactionType
    total: Money
    count: int


class CategoryStatOut(_ReportModel):
    category: str
    type: TransactionType
    total: Money
    count: int
    average: Money
