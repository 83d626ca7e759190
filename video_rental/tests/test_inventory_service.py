import unittest
from unittest.mock import patch

from video_rental.models.rental_models import Movie
from video_rental.services import inventory_service
from video_rental.services.inventory_service import release_unit, reserve_unit
from video_rental.services.rental_errors import InventoryInconsistency, MovieNotFound, OutOfStock
from video_rental.tests.support import LedgerDatabase, run_concurrently


class InventoryServiceTests(unittest.TestCase):
    def setUp(self):
        self.database = LedgerDatabase()
        self.db = self.database.session_factory()

    def tearDown(self):
        self.db.close()
        self.database.close()

    def test_reserve_decrements_and_returns_new_count(self):
        movie_id = self.database.add_movie(in_stock=2)

        self.assertEqual(reserve_unit(self.db, movie_id), 1)
        self.assertEqual(self.database.stock(movie_id), 1)

    def test_reserve_at_zero_raises_out_of_stock(self):
        movie_id = self.database.add_movie(in_stock=0)

        with self.assertRaises(OutOfStock):
            reserve_unit(self.db, movie_id)
        self.assertEqual(self.database.stock(movie_id), 0)

    def test_reserve_unknown_movie_raises_not_found(self):
        with self.assertRaises(MovieNotFound):
            reserve_unit(self.db, 4242)

    def test_release_increments(self):
        movie_id = self.database.add_movie(in_stock=0)

        self.assertEqual(release_unit(self.db, movie_id), 1)
        self.assertEqual(self.database.stock(movie_id), 1)

    def test_release_unknown_movie_raises_not_found(self):
        with self.assertRaises(MovieNotFound):
            release_unit(self.db, 4242)

    def test_release_never_exceeds_catalog_maximum(self):
        movie_id = self.database.add_movie(in_stock=3)

        with patch.object(inventory_service, "CATALOG_MAX_STOCK", 3):
            with self.assertRaises(InventoryInconsistency):
                release_unit(self.db, movie_id)
        self.assertEqual(self.database.stock(movie_id), 3)

    def test_loaded_movie_sees_new_count_after_reserve(self):
        movie_id = self.database.add_movie(in_stock=4)
        movie = self.db.get(Movie, movie_id)
        self.assertEqual(movie.NumberInStock, 4)

        reserve_unit(self.db, movie_id)

        self.assertEqual(movie.NumberInStock, 3)

    def test_concurrent_reservations_on_last_unit_only_one_wins(self):
        movie_id = self.database.add_movie(in_stock=1)

        outcomes = run_concurrently(self.database, [lambda db: reserve_unit(db, movie_id)] * 6)

        successes = [value for kind, value in outcomes if kind == "ok"]
        failures = [value for kind, value in outcomes if kind == "error"]
        self.assertEqual(successes, [0])
        self.assertEqual(len(failures), 5)
        self.assertTrue(all(isinstance(exc, OutOfStock) for exc in failures), failures)
        self.assertEqual(self.database.stock(movie_id), 0)

    def test_concurrent_reserve_and_release_keep_stock_in_bounds(self):
        movie_id = self.database.add_movie(in_stock=3)
        calls = [lambda db: reserve_unit(db, movie_id)] * 5 + [lambda db: release_unit(db, movie_id)] * 2

        outcomes = run_concurrently(self.database, calls)

        reserved = sum(1 for index, (kind, _) in enumerate(outcomes) if index < 5 and kind == "ok")
        released = sum(1 for index, (kind, _) in enumerate(outcomes) if index >= 5 and kind == "ok")
        for kind, value in outcomes:
            if kind == "error":
                self.assertIsInstance(value, OutOfStock)
        self.assertEqual(released, 2)
        final = self.database.stock(movie_id)
        self.assertEqual(final, 3 - reserved + released)
        self.assertGreaterEqual(final, 0)

    def test_other_movies_are_unaffected(self):
        first = self.database.add_movie(title="first", in_stock=1)
        second = self.database.add_movie(title="second", in_stock=5)

        reserve_unit(self.db, first)

        self.assertEqual(self.database.stock(second), 5)


if __name__ == "__main__":
    unittest.main()
