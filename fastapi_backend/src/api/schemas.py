from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, condecimal, model_validator

Money = condecimal(gt=0, max_digits=14, decimal_places=2)


class UserType(str, Enum):
    entrepreneur = "Entrepreneur"
    investor = "Investor"
    admin = "Admin"


class InvestmentStatus(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class TransactionType(str, Enum):
    deposit = "deposit"
    investment = "investment"


class APIMessage(BaseModel):
    message: str = Field(..., description="Human readable message")


class RegisterRequest(BaseModel):
    # No "@" so a username can never collide with an email at login.
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[^@\s]+$", description="Unique username")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, description="Password (min 8 chars)")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    # Admin accounts are never self-registered.
    user_type: UserType = Field(..., description="Entrepreneur or Investor")

    @model_validator(mode="after")
    def _no_admin_signup(self) -> "RegisterRequest":
        if self.user_type == UserType.admin:
            raise ValueError("user_type must be Entrepreneur or Investor")
        return self


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1, description="Password")


class UserPublic(BaseModel):
    user_id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    user_type: UserType
    balance: Decimal = Decimal("0")
    account_status: str = "active"


class TokenResponse(BaseModel):
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field("bearer", description="Token type (bearer)")
    user: UserPublic


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    funding_goal: Money = Field(..., description="Target amount to raise")
    category: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_dates(self) -> "ProjectCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self


class Project(BaseModel):
    id: int
    user_id: int
    title: str
    description: str
    funding_goal: Decimal
    category: str
    start_date: date
    end_date: date
    created_at: datetime
    updated_at: datetime


class DepositRequest(BaseModel):
    amount: Money


class InvestRequest(BaseModel):
    project_id: int = Field(..., gt=0)
    investment_amount: Money


class BalanceResponse(BaseModel):
    balance: Decimal


class Investment(BaseModel):
    investment_id: int
    investor_id: int
    project_id: int
    investment_amount: Decimal
    investment_date: datetime
    investment_status: InvestmentStatus
    created_at: datetime
    updated_at: datetime


class InvestmentReceipt(BaseModel):
    investment: Investment
    balance: Decimal = Field(..., description="Investor balance after the investment")


class InvestmentDetail(Investment):
    title: str
    category: str
    funding_goal: Decimal


class InvestmentSummary(BaseModel):
    total_invested: Decimal
    investment_count: int
    active_investments: int
    projects_backed: int
    average_investment: Decimal


class PortfolioItem(BaseModel):
    project_id: int
    user_id: int = Field(..., description="Project owner")
    title: str
    category: str
    funding_goal: Decimal
    end_date: date
    current_funding: Decimal = Field(..., description="Raised from all investors")
    total_investors: int
    funding_progress: Decimal = Field(..., description="current_funding as a percent of funding_goal")
    investment_amount: Decimal
    investment_count: int
    last_investment_date: datetime
    percent_of_goal: Decimal


class Transaction(BaseModel):
    transaction_id: int
    user_id: int
    transaction_type: TransactionType
    amount: Decimal
    project_id: Optional[int] = None
    balance_after: Decimal
    created_at: datetime


class DashboardMetrics(BaseModel):
    totalProjects: int
    activeProjects: int
    fundedProjects: int
    totalFunding: Decimal


class DashboardData(BaseModel):
    metrics: DashboardMetrics
    recentProjects: List[Project] = []
