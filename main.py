import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import issue_access_token, read_access_token, token_max_age_seconds
from config import get_settings
from database import get_db
from models import PaymentMethod, TransactionType, User
from schemas import (
    BulkDeleteIn,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdateIn,
    TransactionIn,
    UserRegisterIn,
)
from services import (
    DashboardService,
    InvalidCredentials,
    NotFoundError,
    TransactionFilters,
    TransactionService,
    UnauthorizedError,
    UserService,
)
from trends import DEFAULT_TREND_MONTHS, MAX_TREND_MONTHS, MIN_TREND_MONTHS

settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Personal Finance Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _load_app_version() -> str:
    try:
        import tomllib
    except ImportError:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()


def envelope(
    message: str,
    data: object = None,
    *,
    success: bool = True,
    status_code: int = 200,
    pagination: Optional[dict] = None,
) -> JSONResponse:
    body: dict[str, object] = {
        "success": success,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidCredentials):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, UnauthorizedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return envelope(str(exc.detail), success=False, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    message = ", ".join(err["message"] for err in errors) or "Validation failed"
    return envelope(message, {"errors": errors}, success=False, status_code=422)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.exception(f"unhandled_error: path={request.url.path}")
    return envelope("Server error", success=False, status_code=500)


@app.on_event("startup")
def startup_event():
    logging.info(f"app_started: version={APP_VERSION} timezone={settings.timezone}")


def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> int:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401, detail="Access denied. No token provided."
        )
    user_id = read_access_token(authorization[len("Bearer ") :].strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


def _auth_payload(user: User) -> dict[str, object]:
    return {
        "user": user.to_dict(),
        "token": issue_access_token(user.id),
        "expires_in": token_max_age_seconds(),
    }


@app.get("/")
def index():
    return envelope(
        "Welcome to the Personal Finance Tracker API",
        {
            "version": APP_VERSION,
            "endpoints": {
                "auth": "/api/auth",
                "transactions": "/api/transactions",
                "dashboard": "/api/dashboard",
            },
        },
    )


@app.post("/api/auth/register")
def register(payload: UserRegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("User registered successfully", _auth_payload(user), status_code=201)


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(payload.email, payload.password)
    except UnauthorizedError as exc:
        raise http_error(exc) from exc
    logging.info(f"user_logged_in: user_id={user.id}")
    return envelope("Login successful", _auth_payload(user))


@app.get("/api/auth/profile")
def get_profile(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    try:
        user = UserService(db).get_by_id(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Profile retrieved successfully", {"user": user.to_dict()})


@app.put("/api/auth/profile")
def update_profile(
    payload: ProfileUpdateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = UserService(db).update_profile(user_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Profile updated successfully", {"user": user.to_dict()})


@app.put("/api/auth/change-password")
def change_password(
    payload: PasswordChangeIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        UserService(db).change_password(user_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Password changed successfully")


@app.get("/api/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: Optional[TransactionType] = None,
    category: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[PaymentMethod] = None,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query("date", pattern="^(date|amount)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        type=type,
        category=category,
        start=datetime.combine(start_date, time.min) if start_date else None,
        end=datetime.combine(end_date, time.max) if end_date else None,
        payment_method=payment_method,
        tag=tag,
        query=search,
    )
    result = TransactionService(db, user_id).list(
        filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    return envelope(
        "Transactions retrieved successfully",
        [txn.to_dict() for txn in result.items],
        pagination=result.pagination(),
    )


@app.post("/api/transactions")
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope(
        "Transaction created successfully", {"transaction": txn.to_dict()}, status_code=201
    )


@app.get("/api/transactions/categories")
def transaction_categories(user_id: int = Depends(get_current_user_id)):
    return envelope("Categories retrieved successfully", TransactionService.categories())


@app.delete("/api/transactions/bulk-delete")
def bulk_delete_transactions(
    payload: BulkDeleteIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    deleted = TransactionService(db, user_id).bulk_delete(payload.transaction_ids)
    return envelope(
        f"{deleted} transactions deleted successfully", {"deleted_count": deleted}
    )


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return envelope("Transaction retrieved successfully", {"transaction": txn.to_dict()})


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, payload)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return envelope("Transaction updated successfully", {"transaction": txn.to_dict()})


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except (ValueError, PermissionError) as exc:
        raise http_error(exc) from exc
    return envelope("Transaction deleted successfully")


@app.get("/api/dashboard/overview")
def dashboard_overview(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    try:
        data = DashboardService(db, user_id).overview()
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Dashboard overview retrieved successfully", data)


@app.get("/api/dashboard/expense-breakdown")
def dashboard_expense_breakdown(
    period: str = Query("month", pattern="^(week|month|year)$"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = DashboardService(db, user_id).expense_breakdown(period)
    return envelope("Expense breakdown retrieved successfully", data)


@app.get("/api/dashboard/monthly-trends")
def dashboard_monthly_trends(
    months: int = Query(DEFAULT_TREND_MONTHS, ge=MIN_TREND_MONTHS, le=MAX_TREND_MONTHS),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        data = DashboardService(db, user_id).monthly_trends(months)
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Monthly trends retrieved successfully", data)


@app.get("/api/dashboard/insights")
def dashboard_insights(
    user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    try:
        data = DashboardService(db, user_id).insights()
    except ValueError as exc:
        raise http_error(exc) from exc
    return envelope("Financial insights retrieved successfully", data)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
