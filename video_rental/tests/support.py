import os
import tempfile
import threading
from decimal import Decimal

from sqlalchemy import select

from video_rental.db.session import build_engine, build_session_factory, create_schema
from video_rental.models.rental_models import Customer, Movie, Rental
from video_rental.services.inventory_service import get_stock


class LedgerDatabase:
    """Throwaway SQLite file database; a file (not :memory:) so threads get real separate connections."""

    def __init__(self):
        handle, self.path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(handle)
        self.engine = build_engine(f"sqlite+pysqlite:///{self.path}")
        create_schema(self.engine)
        self.session_factory = build_session_factory(self.engine)

    def close(self):
        self.engine.dispose()
        if os.path.exists(self.path):
            os.remove(self.path)

    def add_movie(self, title="12345", daily_rate="2", in_stock=10) -> int:
        with self.session_factory() as db:
            movie = Movie(
                Title=title,
                GenreName="12345",
                DailyRentalRate=Decimal(str(daily_rate)),
                NumberInStock=in_stock,
            )
            db.add(movie)
            db.commit()
            return movie.MovieID

    def add_customer(self, name="12345", phone="12345", is_gold=False) -> int:
        with self.session_factory() as db:
            customer = Customer(Name=name, Phone=phone, IsGold=is_gold)
            db.add(customer)
            db.commit()
            return customer.CustomerID

    def stock(self, movie_id: int):
        with self.session_factory() as db:
            return get_stock(db, movie_id)

    def rentals_for(self, customer_id: int, movie_id: int) -> list[Rental]:
        with self.session_factory() as db:
            stmt = select(Rental).where(Rental.CustomerID == customer_id, Rental.MovieID == movie_id)
            return list(db.execute(stmt).scalars().all())

    def rental_count(self) -> int:
        with self.session_factory() as db:
            return len(db.execute(select(Rental.RentalID)).all())


def run_concurrently(database: LedgerDatabase, calls: list) -> list:
    """Run each call(db) on its own thread and session, released together.

    Returns ("ok", value) or ("error", exception) per call, in call order.
    """
    barrier = threading.Barrier(len(calls))
    outcomes: list = [None] * len(calls)

    def worker(index, call):
        db = database.session_factory()
        try:
            barrier.wait()
            outcomes[index] = ("ok", call(db))
        except Exception as exc:
            outcomes[index] = ("error", exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(index, call)) for index, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes
