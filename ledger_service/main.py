"""Servicio FastAPI que expone saldos, historial de saldo y gastos."""

import os
import time
import logging
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from dotenv import load_dotenv

from ledger_service import db, schemas
from ledger_service.errors import LedgerError, ledger_error_handler, validation_error_handler
from ledger_service.ledger import LedgerService, Page

load_dotenv()

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8080,http://localhost:5173").split(",") if o.strip()]

app = FastAPI(
    title="Ledger Service - Expense Tracker",
    description="Keeps each user's balance consistent with their expenses and an append-only balance history.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(LedgerError, ledger_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.on_event("startup")
def startup_event():
    """Crea el engine y el LedgerService una vez por proceso."""
    if getattr(app.state, "ledger", None) is not None:
        return
    try:
        engine = db.create_db_engine()
        db.init_db(engine)
        app.state.engine = engine
        app.state.ledger = LedgerService(db.create_session_factory(engine))
        logger.info("Ledger Service iniciado.")
    except Exception as e:
        logger.critical(f"FATAL: no se pudo inicializar la base de datos del ledger: {e}", exc_info=True)
        app.state.engine = None
        app.state.ledger = None


@app.on_event("shutdown")
def shutdown_event():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.dispose()
        logger.info("Conexiones a la base de datos cerradas.")


def get_ledger(request: Request) -> LedgerService:
    """Dependencia de FastAPI que devuelve el LedgerService del proceso."""
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        logger.error("Se pidió el ledger pero la base de datos no está disponible.")
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Database service unavailable.")
    return ledger


# --- Métricas Prometheus ---
REQUEST_COUNT = Counter("ledger_requests_total", "Total requests", ["method", "endpoint", "status_code"])
REQUEST_LATENCY = Histogram("ledger_request_latency_seconds", "Request latency", ["endpoint"])
BALANCE_CHANGES = Counter("ledger_balance_changes_total", "Balance writes by operation", ["operation"])
EXPENSE_OPERATIONS = Counter("ledger_expense_operations_total", "Expense writes by operation", ["operation"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Error en middleware: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    finally:
        latency = time.time() - start_time
        # Etiqueta por plantilla de ruta para que /balance/1 y /balance/2 compartan serie
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        final_code = getattr(response, 'status_code', status_code)
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status_code=final_code).inc()
    return response


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check(request: Request):
    engine = getattr(request.app.state, "engine", None)
    db_status = "ok" if engine is not None and db.ping(engine) else "error"
    return {"status": "ok", "service": "ledger_service", "database": db_status}


def _pagination(page: Page) -> schemas.Pagination:
    return schemas.Pagination(total=page.total, page=page.page, limit=page.limit, totalPages=page.total_pages)


# --- Endpoints de Saldo ---

@app.get("/balance/history/{user_id}", response_model=schemas.HistoryResponse, tags=["Balance"])
def get_history(
    user_id: int,
    page: int = Query(1),
    limit: int = Query(10),
    ledger: LedgerService = Depends(get_ledger),
):
    result = ledger.list_history(user_id, page, limit)
    if not result.items:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "No history found for the given user ID"},
        )
    return schemas.HistoryResponse(
        history=[schemas.HistoryEntryResponse.model_validate(entry) for entry in result.items],
        pagination=_pagination(result),
    )


@app.get("/balance/{user_id}", response_model=schemas.BalanceResponse, tags=["Balance"])
def get_balance(user_id: int, ledger: LedgerService = Depends(get_ledger)):
    return {"balance": ledger.get_balance(user_id)}


@app.post("/balance/{user_id}", response_model=schemas.BalanceChangeResponse, tags=["Balance"])
def add_balance(user_id: int, body: schemas.BalanceAdjust, ledger: LedgerService = Depends(get_ledger)):
    new_balance = ledger.adjust_balance(user_id, body.added_balance)
    BALANCE_CHANGES.labels(operation="adjust").inc()
    return {"message": "Balance updated and history recorded successfully", "new_balance": new_balance}


@app.put("/balance/{user_id}", response_model=schemas.BalanceChangeResponse, tags=["Balance"])
def edit_balance(user_id: int, body: schemas.BalanceSet, ledger: LedgerService = Depends(get_ledger)):
    new_balance = ledger.set_balance(user_id, body.new_balance)
    BALANCE_CHANGES.labels(operation="set").inc()
    return {"message": "Balance updated and history recorded successfully", "new_balance": new_balance}


# --- Endpoints de Gastos ---

@app.get("/expenses/detail/{expense_id}", response_model=schemas.ExpenseResponse, tags=["Expenses"])
def get_expense(expense_id: int, ledger: LedgerService = Depends(get_ledger)):
    return ledger.get_expense(expense_id)


@app.get("/expenses/{user_id}", response_model=schemas.ExpenseListResponse, tags=["Expenses"])
def get_expenses(
    user_id: int,
    page: int = Query(1),
    limit: int = Query(50),
    filter_by: Optional[str] = Query(None, alias="filterBy"),
    ledger: LedgerService = Depends(get_ledger),
):
    result, total_amount = ledger.list_expenses(user_id, page, limit, filter_by)
    return schemas.ExpenseListResponse(
        data=[schemas.ExpenseResponse.model_validate(expense) for expense in result.items],
        pagination=_pagination(result),
        totalAmount=total_amount,
    )


@app.post("/expenses", response_model=schemas.BalanceChangeResponse, tags=["Expenses"])
def add_expense(body: schemas.ExpenseRequest, ledger: LedgerService = Depends(get_ledger)):
    new_balance = ledger.add_expense(body.user_id, body.title, body.category, body.amount)
    EXPENSE_OPERATIONS.labels(operation="add").inc()
    return {"message": "Expense added and balance updated successfully", "new_balance": new_balance}


@app.put("/expenses/{expense_id}", response_model=schemas.MessageResponse, tags=["Expenses"])
def update_expense(expense_id: int, body: schemas.ExpenseRequest, ledger: LedgerService = Depends(get_ledger)):
    ledger.update_expense(expense_id, body.user_id, body.title, body.category, body.amount)
    EXPENSE_OPERATIONS.labels(operation="update").inc()
    return {"message": "Expense updated and balance adjusted successfully"}


@app.delete("/expenses/{expense_id}", response_model=schemas.BalanceChangeResponse, tags=["Expenses"])
def delete_expense(expense_id: int, ledger: LedgerService = Depends(get_ledger)):
    new_balance = ledger.delete_expense(expense_id)
    EXPENSE_OPERATIONS.labels(operation="delete").inc()
    return {"message": "Expense deleted and balance updated successfully", "new_balance": new_balance}


# --- Endpoints de Usuarios (llamados por auth_service) ---

@app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Internal"])
def purge_user(user_id: int, ledger: LedgerService = Depends(get_ledger)):
    """Elimina el saldo, historial y gastos de un usuario borrado."""
    ledger.purge_user(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
