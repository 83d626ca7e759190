import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

import uvicorn
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from video_rental.db.deps import get_db
from video_rental.db.session import build_engine, build_session_factory, create_schema
from video_rental.models.rental_models import AuditLog
from video_rental.schemas.rentals import CheckoutRequest, RentalPartiesDto, ReturnRequest, is_row_id
from video_rental.services.catalog_service import (
    find_customer,
    find_movie,
    list_customers,
    list_movies,
    serialize_customer,
    serialize_movie,
)
from video_rental.services.rental_errors import (
    ActiveRentalExists,
    AlreadyReturned,
    InvalidReference,
    InventoryInconsistency,
    OutOfStock,
    RentalLedgerError,
    RentalNotFound,
)
from video_rental.services.rental_service import (
    checkout,
    get_rental,
    list_rentals,
    process_return,
    serialize_rental,
)
from video_rental.services.user_access_service import (
    create_session,
    get_session,
    remove_session,
    verify_staff_credentials,
)

APP_LOGGER = logging.getLogger("video_rental.app")
AUTH_LOGGER = logging.getLogger("video_rental.auth")
RENTAL_LOGGER = logging.getLogger("video_rental.rentals")

LEDGER_ERROR_STATUS = {
    InvalidReference: 400,
    OutOfStock: 400,
    ActiveRentalExists: 400,
    AlreadyReturned: 400,
    RentalNotFound: 404,
}


def _env_flag(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def configure_logging() -> None:
    level = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = (os.environ.get("LOG_FILE") or "").strip()
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_engine()
    if _env_flag("VIDEO_RENTAL_CREATE_SCHEMA", "true"):
        create_schema(engine)
    app.state.session_factory = build_session_factory(engine)
    APP_LOGGER.info("Database ready url=%s", engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        engine.dispose()
        APP_LOGGER.info("Database engine disposed")


app = FastAPI(title="Video Rental Desk", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
_APP_SESSION_SECRET = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
if len(_APP_SESSION_SECRET) >= 32:
    app.add_middleware(
        SessionMiddleware,
        secret_key=_APP_SESSION_SECRET,
        session_cookie="video_rental_session",
        same_site="lax",
        https_only=False,
    )


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
    password: str


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_name: str | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserName=user_name,
        )
    )


def _audit_rental_event(db: Session, rental_id: int, action: str, details: str, user_name: str | None) -> None:
    try:
        log_audit(db, "Rental", rental_id, action, details, user_name=user_name)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        RENTAL_LOGGER.warning("Audit write failed rental_id=%s action=%s error=%s", rental_id, action, exc)


def _cookie_session(request: Request) -> dict:
    if "session" not in request.scope:
        return {}
    return request.session


def _request_session_token(request: Request, session_token: str | None) -> str | None:
    if session_token:
        return session_token
    cookie_token = _cookie_session(request).get("sessionToken")
    return cookie_token if isinstance(cookie_token, str) else None


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    # The cookie only carries the signed token, so expiry and revocation apply to both.
    token = _request_session_token(request, session_token)
    session = get_session(token)
    if "session" in request.scope:
        if session:
            request.session["sessionToken"] = token
        elif not session_token:
            request.session.pop("sessionToken", None)
    return session


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Access denied. No valid session.")
    return session


def _session_username(session: dict) -> str | None:
    value = str(session.get("username") or "").strip()
    return value or None


def _parse_parties_or_400(model: type[RentalPartiesDto], payload: dict | None) -> RentalPartiesDto:
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise HTTPException(status_code=400, detail=f"{field}: {first.get('msg', 'invalid value')}") from exc


def _ledger_http_error(exc: RentalLedgerError) -> HTTPException:
    if isinstance(exc, InventoryInconsistency):
        RENTAL_LOGGER.error("Inventory inconsistency movie_id=%s detail=%s", exc.movie_id, exc.detail)
        return HTTPException(status_code=500, detail="Inventory could not be updated. Stock needs reconciliation.")
    for error_type, status_code in LEDGER_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    RENTAL_LOGGER.error("Unmapped ledger error %s: %s", exc.__class__.__name__, exc)
    return HTTPException(status_code=500, detail="Could not process rental.")


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/login")
def auth_login(request: Request, payload: dict | None = Body(None)):
    try:
        parsed = AuthLoginRequest.model_validate(payload or {})
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid login request.")

    username = parsed.username.strip().lower()
    if not verify_staff_credentials(username, parsed.password):
        AUTH_LOGGER.warning("Login failed username=%s", username)
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    session_payload = {
        "username": username,
        "displayName": username.title(),
    }
    token = create_session(session_payload)
    if "session" in request.scope:
        request.session["sessionToken"] = token
    AUTH_LOGGER.info("Login success username=%s", username)
    return {"sessionToken": token, "user": session_payload}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    token = _request_session_token(request, x_session_token)
    if "session" in request.scope:
        request.session.clear()
    if remove_session(token):
        AUTH_LOGGER.info("Logout revoked a session token")
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session_or_401(request, x_session_token)
    return {"user": session}


@app.get("/api/movies")
def get_movies(db: Session = Depends(get_db)):
    return [serialize_movie(movie) for movie in list_movies(db)]


@app.get("/api/movies/{movie_id}")
def get_movie(movie_id: int, db: Session = Depends(get_db)):
    movie = find_movie(db, movie_id) if is_row_id(movie_id) else None
    if not movie:
        raise HTTPException(status_code=404, detail=f"The movie with the given ID of {movie_id} was not found.")
    return serialize_movie(movie)


@app.get("/api/customers")
def get_customers(db: Session = Depends(get_db)):
    return [serialize_customer(customer) for customer in list_customers(db)]


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: int, db: Session = Depends(get_db)):
    customer = find_customer(db, customer_id) if is_row_id(customer_id) else None
    if not customer:
        raise HTTPException(status_code=404, detail=f"The customer with the given ID of {customer_id} was not found.")
    return serialize_customer(customer)


@app.get("/api/rentals")
def get_rentals(db: Session = Depends(get_db)):
    return [serialize_rental(rental) for rental in list_rentals(db)]


@app.get("/api/rentals/{rental_id}")
def get_rental_by_id(rental_id: int, db: Session = Depends(get_db)):
    rental = get_rental(db, rental_id) if is_row_id(rental_id) else None
    if not rental:
        raise HTTPException(status_code=404, detail="Rental not found")
    return serialize_rental(rental)


@app.post("/api/rentals", status_code=201)
def create_rental(
    request: Request,
    payload: dict | None = Body(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    parsed = _parse_parties_or_400(CheckoutRequest, payload)
    try:
        rental = checkout(db, parsed.customerId, parsed.movieId)
    except RentalLedgerError as exc:
        raise _ledger_http_error(exc) from exc

    _audit_rental_event(
        db,
        rental.RentalID,
        "Checkout",
        f"customer={rental.CustomerID} movie={rental.MovieID}",
        _session_username(session),
    )
    return serialize_rental(rental)


@app.post("/api/returns")
def return_rental(
    request: Request,
    payload: dict | None = Body(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    parsed = _parse_parties_or_400(ReturnRequest, payload)
    try:
        rental = process_return(db, parsed.customerId, parsed.movieId)
    except RentalLedgerError as exc:
        raise _ledger_http_error(exc) from exc

    _audit_rental_event(
        db,
        rental.RentalID,
        "Return",
        f"customer={rental.CustomerID} movie={rental.MovieID} fee={rental.RentalFee}",
        _session_username(session),
    )
    return serialize_rental(rental)


def run() -> None:
    configure_logging()
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT") or "3000"),
    )


if __name__ == "__main__":
    run()
