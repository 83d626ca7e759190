from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from video_rental.models.rental_models import Customer, Movie


def find_movie(db: Session, movie_id: int) -> Movie | None:
    return db.get(Movie, movie_id)


def find_customer(db: Session, customer_id: int) -> Customer | None:
    return db.get(Customer, customer_id)


def list_movies(db: Session) -> list[Movie]:
    return list(db.execute(select(Movie).order_by(Movie.Title)).scalars().all())


def list_customers(db: Session) -> list[Customer]:
    return list(db.execute(select(Customer).order_by(Customer.Name)).scalars().all())


def serialize_movie(movie: Movie) -> dict:
    return {
        "movieID": movie.MovieID,
        "title": movie.Title,
        "genre": {"name": movie.GenreName} if movie.GenreName else None,
        "dailyRentalRate": movie.DailyRentalRate,
        "numberInStock": movie.NumberInStock,
        "createdDate": movie.CreatedDate,
    }


def serialize_customer(customer: Customer) -> dict:
    return {
        "customerID": customer.CustomerID,
        "name": customer.Name,
        "phone": customer.Phone,
        "isGold": bool(customer.IsGold),
        "createdDate": customer.CreatedDate,
    }
