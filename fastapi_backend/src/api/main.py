import logging
import os
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg2 import errors as pg_errors

from src.api import db, funding, metrics
from src.api.auth_utils import (
    ADMIN_ROLE,
    create_user_access_token,
    get_current_user,
    hash_password,
    require_role,
    verify_password,
)
from src.api.schemas import (
    APIMessage,
    BalanceResponse,
    DashboardData,
    DepositRequest,
    InvestmentDetail,
    InvestmentReceipt,
    InvestmentSummary,
    InvestRequest,
    LoginRequest,
    PortfolioItem,
    Project,
    ProjectCreate,
    RegisterRequest,
    TokenResponse,
    Transaction,
    UserPublic,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Service health checks."},
    {"name": "Auth", "description": "Registration, login, and current user."},
    {"name": "Projects", "description": "Funding campaigns created by entrepreneurs."},
    {"name": "Dashboard", "description": "Entrepreneur dashboard metrics."},
    {"name": "Funds", "description": "Balance, deposits, and transaction history."},
    {"name": "Investments", "description": "Investing in projects and investor portfolio views."},
]

app = FastAPI(
    title="Crowdfunding API",
    description=(
        "Backend API connecting entrepreneurs who run funding campaigns with investors who fund them.\n\n"
        "Auth: Use the `Authorization: Bearer <token>` header for protected routes."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
)

# CORS: allow all by default. Restrict via CORS_ALLOW_ORIGINS env (comma separated).
allow_origins = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_FUNDING_STATUS = {
    funding.InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    funding.InsufficientBalanceError: status.HTTP_400_BAD_REQUEST,
    funding.CampaignClosedError: status.HTTP_400_BAD_REQUEST,
    funding.ProjectNotFoundError: status.HTTP_404_NOT_FOUND,
    funding.AccountNotFoundError: status.HTTP_404_NOT_FOUND,
}


@app.exception_handler(funding.FundingError)
async def _funding_error_handler(request: Request, exc: funding.FundingError) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    code = _FUNDING_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never echo driver/SQL error text back to clients.
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something broke on the server!"},
    )


def _not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} not found")


def _conflict(msg: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=msg)


def _user_id(user: Dict[str, Any]) -> int:
    return int(user["user_id"])


@app.on_event("startup")
def _startup() -> None:
    db.init_db_pool()


@app.on_event("shutdown")
def _shutdown() -> None:
    db.close_db_pool()


@app.get("/", tags=["Health"], summary="Health check")
def health_check() -> Dict[str, str]:
    """Health check endpoint used by the mobile client to verify backend availability."""
    return {"message": "API is running..."}


# =========================
# Auth
# =========================

@app.post(
    "/register",
    response_model=APIMessage,
    status_code=status.HTTP_201_CREATED,
    tags=["Auth"],
    summary="Register",
)
def register(payload: RegisterRequest) -> APIMessage:
    """Create a new entrepreneur or investor account."""
    email = payload.email.lower()
    existing = db.fetch_one(
        "SELECT user_id FROM users WHERE username IN (%s, %s) OR email IN (%s, %s)",
        [payload.username, email, payload.username, email],
    )
    if existing:
        raise _conflict("Username or email already exists")

    try:
        user = db.execute_returning_one(
            """
            INSERT INTO users (username, email, password, first_name, last_name, user_type, account_status)
            VALUES (%s, %s, %s, %s, %s, %s, 'active')
            RETURNING user_id
            """,
            [
                payload.username,
                email,
                hash_password(payload.password),
                payload.first_name,
                payload.last_name,
                payload.user_type.value,
            ],
        )
    except pg_errors.UniqueViolation:
        raise _conflict("Username or email already exists")

    logger.info("Registered %s user %s (id=%s)", payload.user_type.value, payload.username, user["user_id"])
    return APIMessage(message="User registered successfully")


@app.post("/login", response_model=TokenResponse, tags=["Auth"], summary="Login")
def login(payload: LoginRequest) -> TokenResponse:
    """Authenticate by username or email and return an access token."""
    user = db.fetch_one(
        """
        SELECT user_id, username, email, password, first_name, last_name, user_type, balance, account_status
        FROM users WHERE username=%s OR email=%s
        ORDER BY (username=%s) DESC, user_id
        LIMIT 1
        """,
        [payload.identifier, payload.identifier.lower(), payload.identifier],
    )
    if not user or not verify_password(payload.password, user["password"]):
        logger.info("Failed login for identifier %r", payload.identifier)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if user.get("account_status") != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")

    token = create_user_access_token(user["user_id"], user["username"], user["user_type"])
    logger.info("User %s logged in", user["user_id"])
    return TokenResponse(access_token=token, user=UserPublic(**user))


@app.get("/me", response_model=UserPublic, tags=["Auth"], summary="Get current user")
def me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Return the current authenticated user."""
    return user


# =========================
# Projects
# =========================

@app.post(
    "/create-project",
    response_model=Project,
    status_code=status.HTTP_201_CREATED,
    tags=["Projects"],
    summary="Create project",
)
def create_project(
    payload: ProjectCreate,
    user: Dict[str, Any] = Depends(require_role("Entrepreneur")),
) -> Dict[str, Any]:
    """Create a funding campaign owned by the current entrepreneur."""
    project = db.execute_returning_one(
        """
        INSERT INTO projects (user_id, title, description, funding_goal, category, start_date, end_date)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        [
            _user_id(user),
            payload.title,
            payload.description,
            payload.funding_goal,
            payload.category,
            payload.start_date,
            payload.end_date,
        ],
    )
    logger.info("User %s created project %s", _user_id(user), project["id"])
    return project


@app.get("/projects", response_model=List[Project], tags=["Projects"], summary="List projects")
def list_projects(_: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    """List every project, newest first."""
    return db.fetch_all("SELECT * FROM projects ORDER BY created_at DESC")


@app.get("/projects/{project_id}", response_model=Project, tags=["Projects"], summary="Get project")
def get_project(project_id: int, _: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    project = db.fetch_one("SELECT * FROM projects WHERE id=%s", [project_id])
    if not project:
        raise _not_found("Project")
    return project


@app.get("/user-projects/{user_id}", response_model=List[Project], tags=["Projects"], summary="Projects by owner")
def user_projects(user_id: int, _: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    return db.fetch_all("SELECT * FROM projects WHERE user_id=%s ORDER BY created_at DESC", [user_id])


# =========================
# Dashboard
# =========================

@app.get("/dashboard-data/{user_id}", response_model=DashboardData, tags=["Dashboard"], summary="Dashboard data")
def dashboard_data(user_id: int, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Metrics and most recent projects for an entrepreneur (self or admin only)."""
    if user_id != _user_id(user) and user.get("user_type") != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")

    projects = db.fetch_all("SELECT * FROM projects WHERE user_id=%s", [user_id])
    raised_rows = db.fetch_all(
        """
        SELECT i.project_id, COALESCE(SUM(i.investment_amount), 0) AS raised
        FROM investments i
        JOIN projects p ON p.id = i.project_id
        WHERE p.user_id=%s AND i.investment_status <> 'cancelled'
        GROUP BY i.project_id
        """,
        [user_id],
    )
    raised = {r["project_id"]: r["raised"] for r in raised_rows}
    return {
        "metrics": metrics.entrepreneur_metrics(projects, raised),
        "recentProjects": metrics.recent_projects(projects),
    }


# =========================
# Funds
# =========================

@app.get("/user-balance", response_model=BalanceResponse, tags=["Funds"], summary="Current balance")
def user_balance(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    row = db.fetch_one("SELECT balance FROM users WHERE user_id=%s", [_user_id(user)])
    return {"balance": row["balance"] if row else 0}


@app.post("/deposit", response_model=BalanceResponse, tags=["Funds"], summary="Deposit funds")
def deposit(payload: DepositRequest, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Add funds to the current user's balance."""
    return {"balance": funding.deposit(_user_id(user), payload.amount)}


@app.get("/transaction-history", response_model=List[Transaction], tags=["Funds"], summary="Transaction history")
def transaction_history(user: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    """Deposits and investments that changed the current user's balance, newest first."""
    return db.fetch_all(
        "SELECT * FROM transactions WHERE user_id=%s ORDER BY created_at DESC, transaction_id DESC",
        [_user_id(user)],
    )


# =========================
# Investments
# =========================

@app.post(
    "/invest",
    response_model=InvestmentReceipt,
    status_code=status.HTTP_201_CREATED,
    tags=["Investments"],
    summary="Invest in a project",
)
def invest(payload: InvestRequest, user: Dict[str, Any] = Depends(require_role("Investor"))) -> Dict[str, Any]:
    """
    Move funds from the investor's balance into a project.

    Runs as one database transaction: either the investment row, the balance
    decrement and the ledger entry are all written, or none of them are.
    """
    investment, balance = funding.place_investment(_user_id(user), payload.project_id, payload.investment_amount)
    return {"investment": investment, "balance": balance}


def _investments_with_projects(user_id: int) -> List[Dict[str, Any]]:
    return db.fetch_all(
        """
        SELECT i.*, p.title, p.category, p.funding_goal
        FROM investments i
        JOIN projects p ON p.id = i.project_id
        WHERE i.investor_id=%s
        ORDER BY i.investment_date DESC
        """,
        [user_id],
    )


@app.get("/user-investments", response_model=List[InvestmentDetail], tags=["Investments"], summary="My investments")
def user_investments(user: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    return _investments_with_projects(_user_id(user))


@app.get(
    "/user-investment-summary",
    response_model=InvestmentSummary,
    tags=["Investments"],
    summary="Investment summary",
)
def user_investment_summary(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    investments = db.fetch_all(
        "SELECT project_id, investment_amount, investment_status FROM investments "
        "WHERE investor_id=%s AND investment_status <> 'cancelled'",
        [_user_id(user)],
    )
    return metrics.investment_summary(investments)


@app.get("/portfolio", response_model=List[PortfolioItem], tags=["Investments"], summary="Portfolio by project")
def portfolio(user: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    """Per-project view of the caller's investments, with each project's overall funding progress."""
    rows = db.fetch_all(
        """
        SELECT i.*, p.user_id, p.title, p.category, p.funding_goal, p.end_date,
               COALESCE(f.current_funding, 0) AS current_funding,
               COALESCE(f.total_investors, 0) AS total_investors
        FROM investments i
        JOIN projects p ON p.id = i.project_id
        LEFT JOIN (
            SELECT project_id, SUM(investment_amount) AS current_funding,
                   COUNT(DISTINCT investor_id) AS total_investors
            FROM investments
            WHERE investment_status <> 'cancelled'
            GROUP BY project_id
        ) f ON f.project_id = i.project_id
        WHERE i.investor_id=%s AND i.investment_status <> 'cancelled'
        ORDER BY i.investment_date DESC
        """,
        [_user_id(user)],
    )
    return metrics.build_portfolio(rows)


# PUBLIC_INTERFACE
def run() -> None:
    """Serve the API with uvicorn (HOST/PORT env, default 0.0.0.0:8081)."""
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8081")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
