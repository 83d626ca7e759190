from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from video_rental.models.rental_models import Rental
from video_rental.services.catalog_service import find_customer, find_movie
from video_rental.services.inventory_service import release_unit, reserve_unit
from video_rental.services.rental_errors import (
    ActiveRentalExists,
    AlreadyReturned,
    InvalidReference,
    InventoryInconsistency,
    MovieNotFound,
    RentalNotFound,
)


RENTAL_LOGGER = logging.getLogger("video_rental.rentals")


def compute_rental_days(date_out: datetime, returned_at: datetime) -> int:
    # Whole elapsed days, truncated; a same-day return is 0 days.
    return max((returned_at - date_out).days, 0)


def compute_rental_fee(rental_days: int, daily_rate) -> Decimal:
    rate = daily_rate if isinstance(daily_rate, Decimal) else Decimal(str(daily_rate or 0))
    return Decimal(int(rental_days)) * rate


def lookup_active_rental(db: Session, customer_id: int, movie_id: int) -> Rental | None:
    stmt = select(Rental).where(
        Rental.CustomerID == customer_id,
        Rental.MovieID == movie_id,
        Rental.DateReturned.is_(None),
    )
    return db.execute(stmt).scalars().first()


def get_rental(db: Session, rental_id: int) -> Rental | None:
    return db.get(Rental, rental_id)


def list_rentals(db: Session) -> list[Rental]:
    stmt = select(Rental).order_by(Rental.DateOut.desc(), Rental.RentalID.desc())
    return list(db.execute(stmt).scalars().all())


def checkout(db: Session, customer_id: int, movie_id: int, *, now: datetime | None = None) -> Rental:
    """Open a rental and take one unit of stock for it.

    Stock is reserved before the rental row is written. If the write fails the
    unit is released again; if that release fails too, InventoryInconsistency
    is raised so the leak is never silent.
    """
    customer = find_customer(db, customer_id)
    if customer is None:
        raise InvalidReference("customer", customer_id)
    movie = find_movie(db, movie_id)
    if movie is None:
        raise InvalidReference("movie", movie_id)
    if lookup_active_rental(db, customer_id, movie_id) is not None:
        raise ActiveRentalExists(customer_id, movie_id)

    rental = Rental(
        CustomerID=customer.CustomerID,
        CustomerName=customer.Name,
        CustomerPhone=customer.Phone,
        CustomerIsGold=bool(customer.IsGold),
        MovieID=movie.MovieID,
        MovieTitle=movie.Title,
        MovieDailyRentalRate=movie.DailyRentalRate,
        DateOut=now or datetime.now(),
        DateReturned=None,
        RentalFee=None,
    )

    try:
        remaining = reserve_unit(db, movie_id)
    except MovieNotFound as exc:
        raise InvalidReference("movie", movie_id) from exc

    try:
        _persist_rental(db, rental)
    except Exception as exc:
        db.rollback()
        RENTAL_LOGGER.warning(
            "Checkout write failed customer_id=%s movie_id=%s error=%s; releasing reserved unit",
            customer_id,
            movie_id,
            exc.__class__.__name__,
        )
        _compensate_reservation(db, movie_id)
        if isinstance(exc, IntegrityError):
            raise ActiveRentalExists(customer_id, movie_id) from exc
        raise

    RENTAL_LOGGER.info(
        "Checkout rental_id=%s customer_id=%s movie_id=%s stock=%s",
        rental.RentalID,
        customer_id,
        movie_id,
        remaining,
    )
    return rental


def _persist_rental(db: Session, rental: Rental) -> None:
    db.add(rental)
    db.commit()


def _compensate_reservation(db: Session, movie_id: int) -> None:
    try:
        release_unit(db, movie_id)
    except (MovieNotFound, InventoryInconsistency) as exc:
        RENTAL_LOGGER.error("Compensating release failed movie_id=%s error=%s", movie_id, exc)
        raise InventoryInconsistency(movie_id, f"compensating release failed: {exc}") from exc


def close_rental(db: Session, rental: Rental, returned_at: datetime) -> Rental:
    rental_days = compute_rental_days(rental.DateOut, returned_at)
    fee = compute_rental_fee(rental_days, rental.MovieDailyRentalRate)

    # "Still active?" and "mark returned" must be one statement.
    stmt = (
        update(Rental)
        .where(Rental.RentalID == rental.RentalID, Rental.DateReturned.is_(None))
        .values(DateReturned=returned_at, RentalFee=fee)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            raise AlreadyReturned(rental.RentalID)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(rental)
    return rental


def process_return(db: Session, customer_id: int, movie_id: int, *, now: datetime | None = None) -> Rental:
    rental = lookup_active_rental(db, customer_id, movie_id)
    if rental is None:
        raise RentalNotFound(customer_id, movie_id)

    # Ledger first: a failed release leaves stock held, never a reopened unit.
    close_rental(db, rental, now or datetime.now())

    try:
        remaining = release_unit(db, rental.MovieID)
    except MovieNotFound as exc:
        RENTAL_LOGGER.error("Return release failed rental_id=%s movie_id=%s reason=movie_missing", rental.RentalID, rental.MovieID)
        raise InventoryInconsistency(rental.MovieID, f"movie missing while releasing rental {rental.RentalID}") from exc

    RENTAL_LOGGER.info(
        "Return rental_id=%s customer_id=%s movie_id=%s fee=%s stock=%s",
        rental.RentalID,
        customer_id,
        movie_id,
        rental.RentalFee,
        remaining,
    )
    return rental


def rental_status(rental: Rental) -> str:
    return "Returned" if rental.DateReturned is not None else "Active"


def serialize_rental(rental: Rental) -> dict:
    return {
        "rentalID": rental.RentalID,
        "status": rental_status(rental),
        "customer": {
            "customerID": rental.CustomerID,
            "name": rental.CustomerName,
            "phone": rental.CustomerPhone,
            "isGold": bool(rental.CustomerIsGold),
        },
        "movie": {
            "movieID": rental.MovieID,
            "title": rental.MovieTitle,
            "dailyRentalRate": rental.MovieDailyRentalRate,
        },
        "dateOut": rental.DateOut,
        "dateReturned": rental.DateReturned,
        "rentalFee": rental.RentalFee,
    }
