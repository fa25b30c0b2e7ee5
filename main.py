import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthError, issue_token, verify_token
from config import get_settings
from database import SessionLocal, session_scope
from models import TransactionType
from schemas import (
    AuthOut,
    CategoryOut,
    CategoryStatOut,
    DashboardOut,
    LoginIn,
    MessageOut,
    PeriodBucketOut,
    ProfileOut,
    ProfileUpdateIn,
    RegisterIn,
    TransactionEnvelope,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    UserOut,
)
from services import (
    CategoryService,
    NotFound,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
    seed_default_categories,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Finance Tracker", version=APP_VERSION)
bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_token(credentials.credentials)
    except AuthError as exc:
        raise HTTPException(
            status_code=401, detail=str(exc), headers={"WWW-Authenticate": "Bearer"}
        ) from exc


def today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


def _type_from_request(request: Request) -> Optional[TransactionType]:
    raw = request.query_params.get("type") or request.query_params.get("kind")
    if not raw:
        return None
    try:
        return TransactionType(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Type must be income or expense"
        ) from exc


def _date_param(request: Request, name: str) -> Optional[date]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"{name} must be a YYYY-MM-DD date"
        ) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    category = (request.query_params.get("category") or "").strip()
    return TransactionFilters(
        type=_type_from_request(request),
        date_from=_date_param(request, "startDate"),
        date_to=_date_param(request, "endDate"),
        category=category or None,
    )


def _error_body(message: str) -> dict:
    # "error" and "detail" carry the same message.
    return {"error": message, "detail": message}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content=_error_body(detail))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        "database_error: %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content=_error_body("Internal server error"))


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        seeded = seed_default_categories(session)
    logger.info("startup: default_categories_seeded=%s", seeded)


@app.get("/")
def index():
    return {"message": "Personal finance API", "version": APP_VERSION}


@app.post("/api/auth/register", status_code=201, response_model=AuthOut)
async def register(request: Request, db: Session = Depends(get_db)):
    payload = await _json_body(request)
    try:
        data = RegisterIn.model_validate(payload)
        user = UserService(db).register(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
    return AuthOut(
        message="User created",
        token=issue_token(user.id),
        user=UserOut.model_validate(user),
    )


@app.post("/api/auth/login", response_model=AuthOut)
async def login(request: Request, db: Session = Depends(get_db)):
    payload = await _json_body(request)
    try:
        data = LoginIn.model_validate(payload)
        user = UserService(db).authenticate(data.email, data.password)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
    return AuthOut(
        message="Login successful",
        token=issue_token(user.id),
        user=UserOut.model_validate(user),
    )


@app.get("/api/auth/profile", response_model=UserOut)
def get_profile(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    try:
        user = UserService(db).get(user_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@app.put("/api/auth/profile", response_model=ProfileOut)
async def update_profile(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = ProfileUpdateIn.model_validate(payload)
        user = UserService(db).update_profile(user_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
    return ProfileOut(message="Profile updated", user=UserOut.model_validate(user))


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    request: Request,
    _user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category_type = _type_from_request(request)
    categories = CategoryService(db).list_all(category_type)
    return [CategoryOut.model_validate(category) for category in categories]


@app.post("/api/transactions", status_code=201, response_model=TransactionEnvelope)
async def create_transaction(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    try:
        data = TransactionIn.model_validate(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
    txn = TransactionService(db, user_id).create(data)
    return TransactionEnvelope(
        message="Transaction created", transaction=TransactionOut.model_validate(txn)
    )


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    items = TransactionService(db, user_id).list(filters)
    return [TransactionOut.model_validate(txn) for txn in items]


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TransactionOut.model_validate(txn)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionEnvelope)
async def update_transaction(
    transaction_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    payload = await _json_body(request)
    service = TransactionService(db, user_id)
    try:
        # Ownership is checked before the payload so foreign ids always 404.
        service.get(transaction_id)
        patch = TransactionPatch.model_validate(payload)
        txn = service.update(transaction_id, patch)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc)) from exc
    return TransactionEnvelope(
        message="Transaction updated", transaction=TransactionOut.model_validate(txn)
    )


@app.delete("/api/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Transaction deleted")


@app.get("/api/reports/dashboard", response_model=DashboardOut)
def dashboard(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        view = ReportService(db, user_id).dashboard(month, year, today=today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardOut.model_validate(view)


@app.get("/api/reports/period", response_model=list[PeriodBucketOut])
def report_by_period(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    start = _date_param(request, "startDate")
    end = _date_param(request, "endDate")
    transaction_type = _type_from_request(request)
    try:
        buckets = ReportService(db, user_id).report_by_period(
            start, end, transaction_type
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [PeriodBucketOut.model_validate(bucket) for bucket in buckets]


@app.get("/api/reports/categories", response_model=list[CategoryStatOut])
def category_report(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        stats = ReportService(db, user_id).category_report(month, year, today=today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [CategoryStatOut.model_validate(stat) for stat in stats]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
