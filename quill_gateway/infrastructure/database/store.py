"""Account store - serializable read-modify-write over ledger records"""

from typing import Callable, TypeVar
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from quill_gateway.domain.exceptions import UserNotFound
from quill_gateway.domain.models import AccountBalance
from quill_gateway.infrastructure.database.repositories import AccountRepository

T = TypeVar("T")


class AccountStore:
    """
    Transactional record store backing the credit ledger.

    Each `run_transaction` call gets a fresh session and one database
    transaction: it commits when `fn` returns and rolls back when it raises.
    Work runs in the threadpool so callers suspend instead of blocking the
    event loop. Retrying is the caller's decision.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def run_transaction(self, fn: Callable[[Session], T]) -> T:
        return await run_in_threadpool(self._run, fn)

    async def get_balance(self, user_id: str) -> AccountBalance:
        """
        Raises:
            UserNotFound: no account for `user_id`
        """
        def read(db: Session) -> AccountBalance:
            account = AccountRepository(db).get(user_id)
            if account is None:
                raise UserNotFound(f"User {user_id} not found")
            return account

        return await self.run_transaction(read)

    def _run(self, fn: Callable[[Session], T]) -> T:
        db = self.session_factory()
        try:
            with db.begin():
                return fn(db)
        finally:
            db.close()
