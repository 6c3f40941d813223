"""FastAPI service handling registration, login, profiles and token verification."""

import os
import logging
import time
from typing import List, Optional

import httpx
from fastapi import FastAPI, Depends, HTTPException, Query, status, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth_service import db, schemas
from auth_service.db import get_db
from auth_service.models import User
from auth_service.utils import (
    get_password_hash,
    verify_password,
    create_access_token,
    decode_token,
    purge_ledger_data,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8080,http://localhost:5173").split(",") if o.strip()]

app = FastAPI(
    title="Auth Service - Expense Tracker",
    description="Handles user registration, authentication, profiles and token verification.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    """Binds the session factory to the database unless already bound."""
    if db.SessionLocal.kw.get("bind") is not None:
        return
    try:
        db.init_engine()
    except Exception as e:
        logger.error(f"Error initializing database: {e}", exc_info=True)


# --- Respuestas de error: {"error": "..."} ---
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        field = ".".join(str(p) for p in errors[0].get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {errors[0].get('msg')}" if field else errors[0].get("msg", message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


# --- Métricas Prometheus ---
REQUEST_COUNT = Counter(
    "auth_requests_total",
    "Total requests processed by Auth Service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "auth_request_latency_seconds",
    "Request latency in seconds for Auth Service",
    ["endpoint"]
)
LOGIN_FAILURES = Counter("auth_login_failures_total", "Failed login attempts")


# --- Middleware para Métricas ---
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    finally:
        latency = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        final_status_code = getattr(response, 'status_code', status_code)

        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response

# --- Endpoints de Salud y Métricas ---
@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Exposes application metrics for Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.get("/health", tags=["Monitoring"])
def health_check():
    """Performs a basic health check of the service."""
    return {"status": "ok", "service": "auth_service"}


def _check_passwords(user: schemas.UserCreate) -> None:
    if user.password != user.password2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"User with ID {user_id} not found.")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user

# --- Endpoints de API ---

@app.post("/register", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Registers a new user.
    The balance row is created by the ledger on the user's first deposit.
    """
    logger.info(f"Registration attempt for username: {user.username}")
    _check_passwords(user)

    if db.query(User).filter(User.username == user.username).first():
        logger.warning(f"Registration failed: username {user.username} already exists.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User Already Exists")

    new_user = User(
        name=f"{user.fname} {user.lname}",
        username=user.username,
        hashed_password=get_password_hash(user.password),
        image=user.image,
    )
    try:
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
    except Exception as e:
        db.rollback()
        logger.error(f"Database error during user creation for {user.username}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "An error occurred while registering the user")

    logger.info(f"User created with ID: {new_user.id} for username: {user.username}")
    return new_user


@app.post("/login", response_model=schemas.Token, tags=["Authentication"])
def login(db: Session = Depends(get_db), form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Authenticates a user with username and password (form-data).
    Returns a JWT access token and the user profile.
    """
    logger.info(f"Login attempt for user: {form_data.username}")
    user = db.query(User).filter(User.username == form_data.username).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Login failed for user: {form_data.username}")
        LOGIN_FAILURES.inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect username or password",
        )

    # El 'sub' (subject) es el ID del usuario; añadimos el username para el frontend
    access_token = create_access_token(data={"sub": str(user.id), "username": user.username})
    logger.info(f"Login successful for user_id: {user.id}")

    return {"access_token": access_token, "token_type": "bearer", "user": user}


@app.get("/users", response_model=List[schemas.UserResponse], tags=["Users"])
def get_users(
    page: int = Query(1),
    limit: int = Query(50),
    filter_by: Optional[str] = Query(None, alias="filterBy"),
    db: Session = Depends(get_db),
):
    """Lists users, optionally filtered by name."""
    if page <= 0 or limit <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid page or limit")

    query = db.query(User)
    if filter_by:
        query = query.filter(User.name.ilike(f"%{filter_by}%"))
    return query.order_by(User.id).limit(limit).offset((page - 1) * limit).all()


@app.get("/users/{user_id}", response_model=schemas.UserResponse, tags=["Users"])
def get_user_by_id(user_id: int, db: Session = Depends(get_db)):
    """Returns the profile of a user."""
    return _get_user_or_404(db, user_id)


@app.put("/users/{user_id}", response_model=schemas.UserResponse, tags=["Users"])
def update_user(user_id: int, data: schemas.UserUpdate, db: Session = Depends(get_db)):
    """Updates name, username, password and avatar of a user."""
    _check_passwords(data)
    user = _get_user_or_404(db, user_id)

    taken = db.query(User).filter(User.username == data.username, User.id != user_id).first()
    if taken:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    user.name = f"{data.fname} {data.lname}"
    user.username = data.username
    user.hashed_password = get_password_hash(data.password)
    if data.image:
        user.image = data.image

    try:
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Database error while updating user {user_id}: {e}", exc_info=True)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "An error occurred while updating the user")

    logger.info(f"User {user_id} updated.")
    return user


@app.delete("/users/{user_id}", tags=["Users"])
async def delete_user(user_id: int, db: Session = Depends(get_db)):
    """
    Deletes a user together with their ledger data.
    The ledger is purged first; if that fails the user is kept.
    """
    user = _get_user_or_404(db, user_id)

    try:
        await purge_ledger_data(user_id)
    except (httpx.RequestError, httpx.HTTPStatusError) as exc:
        logger.error(f"Failed to purge ledger data for user_id {user_id}: {exc}")
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Ledger service unavailable. The user was not deleted.")

    try:
        db.delete(user)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.critical(f"Ledger data of user {user_id} was purged but the user row could not be deleted: {e}")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error deleting user")

    logger.info(f"User {user_id} deleted.")
    return {"message": "User Deleted"}


@app.get("/verify", response_model=schemas.TokenPayload, tags=["Internal"])
def verify(token: str):
    """
    Validates a JWT (query parameter 'token') and returns its payload.
    Used by the frontend and other services to resolve the caller's user id.
    """
    payload = decode_token(token)
    if payload is None or "sub" not in payload:
        logger.warning("Verification attempt with an invalid, expired or subject-less token.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return {"sub": payload.get("sub"), "exp": payload.get("exp"), "username": payload.get("username")}
