import datetime as dt
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TransactionType = Literal["income", "expense"]
Frequency = Literal["daily", "weekly", "monthly"]

Amount = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TransactionRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Amount
    description: str | None = Field(default=None, max_length=255)
    category: str = Field(min_length=1, max_length=50)
    date: dt.date | None = None


class BudgetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(min_length=1, max_length=50)
    monthly_limit: Amount
    month: dt.date | None = None

    @field_validator("month", mode="before")
    @classmethod
    def accept_year_month(cls, value):
        # "2026-10" is accepted as shorthand for the first of that month.
        if isinstance(value, str) and len(value.strip()) == 7:
            return f"{value.strip()}-01"
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value

    @field_validator("month")
    @classmethod
    def first_of_month(cls, value: dt.date | None) -> dt.date | None:
        return value.replace(day=1) if value else value


class RecurringRuleRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Amount
    description: str | None = Field(default=None, max_length=255)
    category: str = Field(min_length=1, max_length=50)
    frequency: Frequency
    start_date: dt.date | None = None
    end_date: dt.date | None = None

    @model_validator(mode="after")
    def end_not_before_start(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class BudgetStatus(BaseModel):
    category: str
    monthly_limit: float
    spent: float
    percent_used: float
    alert: Literal["caution", "warning"] | None = None


class DashboardSummary(BaseModel):
    total_income: float
    total_expenses: float
    balance: float
    currency: str


class DashboardResponse(BaseModel):
    summary: DashboardSummary
    budgets: list[BudgetStatus]


class MessageResponse(BaseModel):
    message: str
