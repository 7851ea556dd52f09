import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from access import Principal
from auth import SessionTokens, authenticate, principal_for_token
from config import Settings, get_settings
from csv_utils import export_rows
from database import build_engine, build_sessionmaker, session_scope
from errors import LedgerError, ValidationError
from models import Category, Operation, User
from schemas import (
    CategoryIn,
    LoginIn,
    OperationIn,
    OperationPatch,
    RebuildIn,
    UserCreateIn,
    UserPatch,
)
from services import (
    CategoryService,
    ExportRow,
    OperationService,
    QueryService,
    SummaryView,
    UserService,
    cents_to_amount,
)


logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

router = APIRouter(prefix="/api")


def get_db(request: Request):
    db = request.app.state.sessionmaker()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(SESSION_COOKIE)


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    return principal_for_token(db, request.app.state.tokens, _token_from_request(request))


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def operation_payload(op: Operation) -> dict[str, object]:
    return {
        "id": op.id,
        "amount": cents_to_amount(op.amount_cents),
        "type": op.type.value,
        "description": op.description,
        "date": op.date.isoformat(),
        "category": {"id": op.category.id, "name": op.category.name},
        "user": {"id": op.user.id, "name": op.user.name, "email": op.user.email},
    }


def export_row_payload(row: ExportRow) -> dict[str, object]:
    return {
        "date": row.date.isoformat(),
        "description": row.description,
        "amount": cents_to_amount(row.amount_cents),
        "type": row.type.value,
        "user": row.user,
        "category": row.category,
    }


def category_payload(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "type": category.type.value}


def summary_payload(view: SummaryView) -> dict[str, object]:
    return {
        "period": view.period,
        "start": view.bucket.start.isoformat(),
        "end": view.bucket.end.isoformat(),
        "key": {
            k: v.isoformat() if isinstance(v, date) else v for k, v in view.key.items()
        },
        "total_income": cents_to_amount(view.totals.income_cents),
        "total_expense": cents_to_amount(view.totals.expense_cents),
        "balance": cents_to_amount(view.totals.balance_cents),
        "is_admin": view.is_admin,
        "filtered_by_user": view.filtered_by_user,
        "total_operations": len(view.operations),
        "operations": [export_row_payload(row) for row in view.export_rows()],
        "breakdown": [
            {
                "start": part.start.isoformat(),
                "end": part.end.isoformat(),
                "total_income": cents_to_amount(part.totals.income_cents),
                "total_expense": cents_to_amount(part.totals.expense_cents),
                "balance": cents_to_amount(part.totals.balance_cents),
                "operations_count": len(part.operations),
                "operations": [
                    {
                        "id": op.id,
                        "amount": cents_to_amount(op.amount_cents),
                        "type": op.type.value,
                        "description": op.description or "",
                        "date": op.date.isoformat(),
                        "category": {"id": op.category.id, "name": op.category.name},
                    }
                    for op in part.operations
                ],
            }
            for part in view.breakdown
        ],
    }


SUMMARY_KEYS = {
    "daily": ("date",),
    "weekly": ("week", "year"),
    "monthly": ("month", "year"),
}


def stored_summary_payload(granularity: str, row) -> dict[str, object]:
    payload: dict[str, object] = {"user_id": row.user_id}
    for column in SUMMARY_KEYS[granularity]:
        value = getattr(row, column)
        payload[column] = value.isoformat() if isinstance(value, date) else value
    payload.update(
        {
            "total_income": cents_to_amount(row.total_income_cents),
            "total_expense": cents_to_amount(row.total_expense_cents),
            "balance": cents_to_amount(row.balance_cents),
        }
    )
    return payload


@router.post("/auth/login")
def login(
    payload: LoginIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user = authenticate(db, payload.email, payload.password)
    token = request.app.state.tokens.issue(user)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    return {"token": token, "user": user_payload(user)}


@router.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out"}


@router.get("/auth/me")
def me(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return user_payload(UserService(db).profile(principal))


def _query_service(request: Request, db: Session) -> QueryService:
    return QueryService(db, timezone=request.app.state.settings.timezone)


def _operation_service(request: Request, db: Session) -> OperationService:
    return OperationService(db, timezone=request.app.state.settings.timezone)


SUMMARY_PERIODS = {
    "day": QueryService.day_summary,
    "week": QueryService.week_summary,
    "month": QueryService.month_summary,
}


def _summary(
    request: Request,
    db: Session,
    principal: Principal,
    period: str,
    on: Optional[date],
    user_id: Optional[int],
) -> SummaryView:
    handler = SUMMARY_PERIODS.get(period)
    if handler is None:
        raise ValidationError.for_field("period", "Expected one of: day, week, month")
    return handler(_query_service(request, db), principal, on=on, user_id=user_id)


@router.get("/operations/summary")
def period_summary(
    request: Request,
    period: str = Query("month"),
    on: Optional[date] = Query(None, alias="date"),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return summary_payload(_summary(request, db, principal, period, on, user_id))


@router.get("/operations/summary/day")
def day_summary(
    request: Request,
    on: Optional[date] = Query(None, alias="date"),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return summary_payload(_summary(request, db, principal, "day", on, user_id))


@router.get("/operations/summary/week")
def week_summary(
    request: Request,
    on: Optional[date] = Query(None, alias="date"),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return summary_payload(_summary(request, db, principal, "week", on, user_id))


@router.get("/operations/summary/month")
def month_summary(
    request: Request,
    on: Optional[date] = Query(None, alias="date"),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return summary_payload(_summary(request, db, principal, "month", on, user_id))


@router.get("/operations/summary/{period}/export.csv")
def export_summary(
    period: str,
    request: Request,
    on: Optional[date] = Query(None, alias="date"),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    view = _summary(request, db, principal, period, on, user_id)
    csv_text = export_rows(view.export_rows())
    filename = f"summary_{period}_{view.bucket.start.date()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/operations")
def list_operations(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    page = _query_service(request, db).list_operations(
        principal, limit=limit, offset=offset, user_id=user_id
    )
    return {
        "operations": [operation_payload(op) for op in page.items],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }


@router.post("/operations", status_code=201)
def create_operation(
    payload: OperationIn,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    operation = _operation_service(request, db).create(principal, payload)
    return operation_payload(operation)


@router.get("/operations/{operation_id}")
def get_operation(
    operation_id: int,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return operation_payload(_query_service(request, db).get_operation(principal, operation_id))


@router.put("/operations/{operation_id}")
def update_operation(
    operation_id: int,
    payload: OperationPatch,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    operation = _operation_service(request, db).update(operation_id, payload, principal)
    return operation_payload(operation)


@router.delete("/operations/{operation_id}")
def delete_operation(
    operation_id: int,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    _operation_service(request, db).delete(operation_id, principal)
    return {"message": "Operation deleted successfully"}


@router.get("/summaries/{granularity}")
def list_summaries(
    granularity: str,
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    page = _query_service(request, db).list_summaries(
        principal, granularity, user_id=user_id, limit=limit, offset=offset
    )
    return {
        "summaries": [stored_summary_payload(granularity, row) for row in page.items],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }


@router.post("/summaries/rebuild")
def rebuild_summaries(
    payload: RebuildIn,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    days = _operation_service(request, db).rebuild_summaries(principal, payload.user_id)
    return {"user_id": payload.user_id, "days": days}


@router.get("/categories")
def list_categories(
    principal: Principal = Depends(get_principal), db: Session = Depends(get_db)
):
    return [category_payload(c) for c in CategoryService(db).list_all(principal)]


@router.post("/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return category_payload(CategoryService(db).create(principal, payload))


@router.get("/categories/{category_id}")
def get_category(
    category_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    category = CategoryService(db).get(principal, category_id)
    payload = category_payload(category)
    payload["operations"] = [
        {
            "id": op.id,
            "amount": cents_to_amount(op.amount_cents),
            "type": op.type.value,
            "date": op.date.isoformat(),
        }
        for op in category.operations
    ]
    return payload


@router.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return category_payload(CategoryService(db).update(principal, category_id, payload))


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    CategoryService(db).delete(principal, category_id)
    return {"message": "Category deleted successfully"}


def _user_service(settings: Settings, db: Session) -> UserService:
    return UserService(db, bcrypt_rounds=settings.bcrypt_rounds)


@router.get("/users")
def list_users(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return [user_payload(u) for u in _user_service(settings, db).list_all(principal)]


@router.post("/users", status_code=201)
def create_user(
    payload: UserCreateIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return user_payload(_user_service(settings, db).create(principal, payload))


@router.patch("/users/{user_id}")
def update_user(
    user_id: int,
    payload: UserPatch,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return user_payload(_user_service(settings, db).update(principal, user_id, payload))


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    _user_service(settings, db).delete(principal, user_id)
    return {"message": "User deleted successfully"}


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    body: dict[str, object] = {"error": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"error": "Invalid data", "details": details}
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Unexpected error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    engine = build_engine(settings)
    app = FastAPI(title="Finance Ledger")
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)
    app.state.tokens = SessionTokens(settings)

    @app.on_event("startup")
    def startup_event():
        if settings.admin_email and settings.admin_password:
            with session_scope(app.state.sessionmaker) as session:
                UserService(session, bcrypt_rounds=settings.bcrypt_rounds).ensure_admin(
                    settings.admin_email, settings.admin_password
                )

    @app.on_event("shutdown")
    def shutdown_event():
        engine.dispose()
        logger.info("Database engine disposed")

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app
