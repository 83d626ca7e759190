from __future__ import annotations

import logging
import os

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from video_rental.models.rental_models import Movie
from video_rental.services.rental_errors import InventoryInconsistency, MovieNotFound, OutOfStock


CATALOG_MAX_STOCK = int(os.environ.get("CATALOG_MAX_STOCK") or "255")
INVENTORY_LOGGER = logging.getLogger("video_rental.inventory")


def get_stock(db: Session, movie_id: int) -> int | None:
    return db.execute(select(Movie.NumberInStock).where(Movie.MovieID == movie_id)).scalar()


def _movie_exists(db: Session, movie_id: int) -> bool:
    return db.execute(select(Movie.MovieID).where(Movie.MovieID == movie_id)).first() is not None


def _adjust_stock(db: Session, movie_id: int, delta: int, guard) -> int | None:
    # Check and write happen in one statement; concurrent callers on the same
    # row serialize on the row lock, other movies are unaffected.
    stmt = (
        update(Movie)
        .where(Movie.MovieID == movie_id, guard)
        .values(NumberInStock=Movie.NumberInStock + delta)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            return None
        new_count = get_stock(db, movie_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    loaded = db.identity_map.get(Session.identity_key(Movie, movie_id))
    if loaded is not None:
        db.expire(loaded, ["NumberInStock"])
    return new_count


def reserve_unit(db: Session, movie_id: int) -> int:
    new_count = _adjust_stock(db, movie_id, -1, Movie.NumberInStock > 0)
    if new_count is None:
        if not _movie_exists(db, movie_id):
            raise MovieNotFound(movie_id)
        INVENTORY_LOGGER.info("Reserve rejected movie_id=%s reason=out_of_stock", movie_id)
        raise OutOfStock(movie_id)
    INVENTORY_LOGGER.debug("Reserved unit movie_id=%s stock=%s", movie_id, new_count)
    return new_count


def release_unit(db: Session, movie_id: int) -> int:
    new_count = _adjust_stock(db, movie_id, 1, Movie.NumberInStock < CATALOG_MAX_STOCK)
    if new_count is None:
        if not _movie_exists(db, movie_id):
            raise MovieNotFound(movie_id)
        INVENTORY_LOGGER.error("Release rejected movie_id=%s reason=stock_at_maximum max=%s", movie_id, CATALOG_MAX_STOCK)
        raise InventoryInconsistency(movie_id, f"stock already at catalog maximum {CATALOG_MAX_STOCK}")
    INVENTORY_LOGGER.debug("Released unit movie_id=%s stock=%s", movie_id, new_count)
    return new_count
