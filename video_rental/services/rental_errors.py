from __future__ import annotations


class RentalLedgerError(RuntimeError):
    pass


class InvalidReference(RentalLedgerError):
    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"Invalid {entity}: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class OutOfStock(RentalLedgerError):
    def __init__(self, movie_id: int):
        super().__init__(f"Movie {movie_id} is not in stock.")
        self.movie_id = movie_id


class MovieNotFound(RentalLedgerError):
    def __init__(self, movie_id: int):
        super().__init__(f"Movie {movie_id} not found.")
        self.movie_id = movie_id


class ActiveRentalExists(RentalLedgerError):
    def __init__(self, customer_id: int, movie_id: int):
        super().__init__(f"Customer {customer_id} already has an active rental of movie {movie_id}.")
        self.customer_id = customer_id
        self.movie_id = movie_id


class RentalNotFound(RentalLedgerError):
    def __init__(self, customer_id: int, movie_id: int):
        super().__init__(f"No active rental for customer {customer_id} and movie {movie_id}.")
        self.customer_id = customer_id
        self.movie_id = movie_id


class AlreadyReturned(RentalLedgerError):
    def __init__(self, rental_id: int):
        super().__init__(f"Return already processed for rental {rental_id}.")
        self.rental_id = rental_id


class InventoryInconsistency(RentalLedgerError):
    """Stock could not be adjusted after the ledger already changed.

    Needs a manual restock reconciliation; see scripts/stock_overview.py.
    """

    def __init__(self, movie_id: int, detail: str):
        super().__init__(f"Inventory inconsistency on movie {movie_id}: {detail}")
        self.movie_id = movie_id
        self.detail = detail
