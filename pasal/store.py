"""The database handle shared by every service.

One ``Store`` is built when the application starts and handed to each
service explicitly. Multi-step writes go through :meth:`Store.transaction`,
which either runs a server-side transaction (replica sets) or records
compensating writes and replays them when the block fails.
"""
import logging
from contextlib import contextmanager

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, session=None):
        self.session = session
        self._compensations = []

    def on_rollback(self, func, *args, **kwargs):
        """Register the inverse of a write that was just applied.

        Ignored inside a server-side transaction, where aborting already
        discards the write.
        """
        if self.session is None:
            self._compensations.append((func, args, kwargs))

    def rollback(self):
        while self._compensations:
            func, args, kwargs = self._compensations.pop()
            try:
                func(*args, **kwargs)
            except PyMongoError:
                logger.exception("Compensating write %s failed", getattr(func, "__name__", func))


class Store:
    def __init__(self, client, db, use_transactions: bool = False):
        self.client = client
        self.db = db
        self.use_transactions = use_transactions

    @property
    def products(self):
        return self.db.products

    @property
    def categories(self):
        return self.db.categories

    @property
    def users(self):
        return self.db.users

    @property
    def orders(self):
        return self.db.orders

    @property
    def payments(self):
        return self.db.payments

    def ensure_indexes(self):
        try:
            self.orders.create_index("order_id", unique=True)
            self.orders.create_index([("user_id", ASCENDING), ("purchase_date", DESCENDING)])
            self.users.create_index("username", unique=True)
            self.users.create_index("email", unique=True)
            self.users.create_index("phone_number", unique=True, sparse=True)
            self.categories.create_index("name_key", unique=True)
            self.payments.create_index(
                [("gateway", ASCENDING), ("transaction_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"transaction_id": {"$type": "string"}},
            )
        except PyMongoError as exc:
            logger.warning("Unable to ensure indexes: %s", exc)

    @contextmanager
    def transaction(self):
        if self.use_transactions:
            with self.client.start_session() as session:
                with session.start_transaction():
                    yield UnitOfWork(session)
            return

        unit = UnitOfWork()
        try:
            yield unit
        except Exception:
            logger.error("Rolling back unit of work")
            unit.rollback()
            raise
