"""
Transaction boundaries for blocking and asyncio connections.

Connections run in auto-commit mode; a transaction switches the driver
connection out of it, marks the wrapper ``in_transaction`` so operations
stop committing on their own, and commits or rolls back as a whole.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)

__all__ = ['Transaction', 'AsyncTransaction']


class Transaction:
    """Context manager for running multiple commands in a transaction.

    Attribute access is delegated to the connection, so the transaction
    object can be used in its place. Nested transactions on the same
    connection are not supported.

    Examples
        with Transaction(cn) as tx:
            tx.insert(person)
            tx.delete_rows('audit', 'person_id = %(id)s', {'id': person.id})
    """

    def __init__(self, cn: Any) -> None:
        if cn.in_transaction:
            raise RuntimeError('Nested transactions are not supported')
        self.cn = cn

    def __getattr__(self, name: str) -> Any:
        return getattr(self.cn, name)

    def __enter__(self) -> 'Transaction':
        self.cn.strategy.begin(self.cn.dbapi_connection)
        self.cn.in_transaction = True
        logger.debug(f'Started transaction for connection {id(self.cn)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        raw_conn = self.cn.dbapi_connection
        try:
            if exc_type is not None:
                raw_conn.rollback()
                logger.warning('Rolling back the current transaction')
            else:
                raw_conn.commit()
                logger.debug(f'Committed transaction for connection {id(self.cn)}')
        finally:
            self.cn.in_transaction = False
            self.cn.strategy.end(raw_conn)


class AsyncTransaction:
    """Asyncio variant of :class:`Transaction`.

    Examples
        async with AsyncTransaction(cn) as tx:
            await tx.insert(person)
    """

    def __init__(self, cn: Any) -> None:
        if cn.in_transaction:
            raise RuntimeError('Nested transactions are not supported')
        self.cn = cn

    def __getattr__(self, name: str) -> Any:
        return getattr(self.cn, name)

    async def __aenter__(self) -> 'AsyncTransaction':
        await self.cn.strategy.begin_async(self.cn.dbapi_connection)
        self.cn.in_transaction = True
        logger.debug(f'Started transaction for connection {id(self.cn)}')
        return self

    async def __aexit__(self, exc_type: type | None, value: BaseException | None,
                        traceback: Any | None) -> None:
        raw_conn = self.cn.dbapi_connection
        try:
            if exc_type is not None:
                await raw_conn.rollback()
                logger.warning('Rolling back the current transaction')
            else:
                await raw_conn.commit()
                logger.debug(f'Committed transaction for connection {id(self.cn)}')
        finally:
            self.cn.in_transaction = False
            await self.cn.strategy.end_async(raw_conn)
