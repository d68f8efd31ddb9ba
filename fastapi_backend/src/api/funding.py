"""
Balance-mutating operations: deposits and investments.

Both run inside a single database transaction. The investor's row is locked
with ``SELECT ... FOR UPDATE`` before the balance is checked, so two
concurrent investments by the same user are serialized rather than both
passing the check. Any error raised here means nothing was written.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from psycopg2 import errors as pg_errors

from src.api import db

logger = logging.getLogger(__name__)


class FundingError(Exception):
    """Base class for rejected funding operations."""


class InvalidAmountError(FundingError):
    pass


class InsufficientBalanceError(FundingError):
    pass


class CampaignClosedError(FundingError):
    pass


class ProjectNotFoundError(FundingError):
    pass


class AccountNotFoundError(FundingError):
    pass


def _as_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("Invalid amount")
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError("Invalid amount")
    return value


def _lock_account(cur, user_id: int) -> Dict[str, Any]:
    cur.execute("SELECT user_id, balance FROM users WHERE user_id=%s FOR UPDATE", [user_id])
    account = cur.fetchone()
    if not account:
        raise AccountNotFoundError("User not found")
    return account


def _record_transaction(
    cur,
    user_id: int,
    transaction_type: str,
    amount: Decimal,
    balance_after: Decimal,
    project_id: Optional[int] = None,
) -> None:
    cur.execute(
        """
        INSERT INTO transactions (user_id, transaction_type, amount, project_id, balance_after)
        VALUES (%s, %s, %s, %s, %s)
        """,
        [user_id, transaction_type, amount, project_id, balance_after],
    )


# PUBLIC_INTERFACE
def deposit(user_id: int, amount: Any) -> Decimal:
    """Add funds to a user's balance. Returns the new balance."""
    value = _as_amount(amount)
    with db.transaction() as cur:
        _lock_account(cur, user_id)
        try:
            cur.execute(
                "UPDATE users SET balance = balance + %s, updated_at=NOW() WHERE user_id=%s RETURNING balance",
                [value, user_id],
            )
        except pg_errors.NumericValueOutOfRange:
            raise InvalidAmountError("Deposit would exceed the maximum balance")
        balance = Decimal(cur.fetchone()["balance"])
        _record_transaction(cur, user_id, "deposit", value, balance)

    logger.info("Deposit of %s for user %s; balance now %s", value, user_id, balance)
    return balance


# PUBLIC_INTERFACE
def place_investment(
    investor_id: int,
    project_id: int,
    amount: Any,
    today: Optional[date] = None,
) -> Tuple[Dict[str, Any], Decimal]:
    """
    Commit ``amount`` from the investor's balance to a project.

    Returns the inserted investment row and the investor's new balance.

    Raises:
        InvalidAmountError: amount is not a positive number.
        AccountNotFoundError: the investor row does not exist.
        ProjectNotFoundError: the project does not exist.
        CampaignClosedError: the project's end date has passed.
        InsufficientBalanceError: the balance does not cover the amount.
    """
    value = _as_amount(amount)
    today = today or date.today()

    with db.transaction() as cur:
        account = _lock_account(cur, investor_id)

        cur.execute("SELECT id, end_date FROM projects WHERE id=%s", [project_id])
        project = cur.fetchone()
        if not project:
            raise ProjectNotFoundError("Project not found")
        if project["end_date"] < today:
            raise CampaignClosedError("Project is no longer accepting investments")

        if Decimal(account["balance"]) < value:
            raise InsufficientBalanceError("Insufficient balance")

        cur.execute(
            """
            INSERT INTO investments (investor_id, project_id, investment_amount, investment_date, investment_status)
            VALUES (%s, %s, %s, NOW(), 'active')
            RETURNING *
            """,
            [investor_id, project_id, value],
        )
        investment = dict(cur.fetchone())

        cur.execute(
            """
            UPDATE users SET balance = balance - %s, updated_at=NOW()
            WHERE user_id=%s AND balance >= %s
            RETURNING balance
            """,
            [value, investor_id, value],
        )
        row = cur.fetchone()
        if not row:
            raise InsufficientBalanceError("Insufficient balance")
        balance = Decimal(row["balance"])

        _record_transaction(cur, investor_id, "investment", value, balance, project_id=project_id)

    logger.info(
        "Investment %s: user %s put %s into project %s; balance now %s",
        investment["investment_id"],
        investor_id,
        value,
        project_id,
        balance,
    )
    return investment, balance
