# taskweave/core/history/store.py
from __future__ import annotations
import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional
from result import Err, Ok
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from taskweave.core.codec.serde import (
    execution_result_from_json,
    execution_result_to_json,
)
from taskweave.core.errors import SerializationError
from taskweave.core.logging import get_logger
from taskweave.core.models.app import HistoryConfig
from taskweave.core.models.execution import ExecutionResult
from taskweave.core.models.history_sql import Base, ExecutionRecordModel
from taskweave.core.types.results import (
    HistoryError,
    HistoryErrorCode,
    HistoryResult,
    QueryError,
    QueryErrorCode,
    QueryResult,
)


def _is_retryable_db_error(exc: BaseException) -> bool:
    """Connection-level failures are worth a retry; constraint or SQL errors are not."""
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated) or type(exc).__name__ in (
            'OperationalError',
            'InterfaceError',
        )
    return False


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith('sqlite') and (':memory:' in url or url.rstrip('/').endswith(':'))


class HistoryStore:
    """
    Append-only record of finished executions, backed by any SQLAlchemy
    async engine (in-memory SQLite through aiosqlite by default).

    Never raises for database problems: writes return ``HistoryResult``,
    reads return ``QueryResult``.
    """

    def __init__(self, config: HistoryConfig | None = None) -> None:
        self.config = config or HistoryConfig()
        self.logger = get_logger('history')

        engine_cfg: dict[str, Any] = {'echo': self.config.echo}
        self._shared_connection = _is_memory_sqlite(self.config.database_url)
        if self._shared_connection:
            # One shared connection, otherwise every connection sees its own empty database.
            engine_cfg['poolclass'] = StaticPool
            engine_cfg['connect_args'] = {'check_same_thread': False}
        self.async_engine = create_async_engine(self.config.database_url, **engine_cfg)
        self.session_factory = async_sessionmaker(self.async_engine, expire_on_commit=False)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        # Held for the whole session when all sessions share one connection.
        self._session_lock = asyncio.Lock()

    async def ensure_schema(self) -> HistoryResult[None]:
        """Create the history table if needed. Safe to call repeatedly."""
        if self._initialized:
            return Ok(None)
        async with self._init_lock:
            if self._initialized:
                return Ok(None)
            try:
                async with self.async_engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as exc:
                self.logger.error(f'History schema init failed: {exc}')
                return Err(
                    HistoryError(
                        code=HistoryErrorCode.SCHEMA_INIT_FAILED,
                        message=f'Failed to create history schema: {exc}',
                        retryable=_is_retryable_db_error(exc),
                        execution_id='',
                        exception=exc,
                    )
                )
            self._initialized = True
            return Ok(None)

    async def record(self, result: ExecutionResult) -> HistoryResult[None]:
        """Append one result; a second record with the same id is rejected."""
        schema = await self.ensure_schema()
        if schema.is_err():
            return schema
        try:
            payload = execution_result_to_json(result)
        except SerializationError as exc:
            return Err(
                HistoryError(
                    code=HistoryErrorCode.QUERY_FAILED,
                    message=f'Result of {result.execution_id} is not serializable: {exc.message}',
                    retryable=False,
                    execution_id=result.execution_id,
                    exception=exc,
                )
            )

        row = ExecutionRecordModel(
            execution_id=result.execution_id,
            workflow_name=result.workflow_name,
            workflow_version=result.workflow_version,
            overall_result=result.overall_result,
            start_ts=_as_utc(result.start_time).timestamp(),
            end_ts=_as_utc(result.end_time).timestamp(),
            total_duration=result.total_duration,
            summary=result.summary,
            payload=payload,
            recorded_at=datetime.now(timezone.utc),
        )
        try:
            async with self._session() as session:
                if await session.get(ExecutionRecordModel, result.execution_id) is not None:
                    return Err(self._duplicate(result.execution_id))
                session.add(row)
                await session.commit()
        except IntegrityError as exc:
            return Err(self._duplicate(result.execution_id, exc))
        except SQLAlchemyError as exc:
            self.logger.error(f'Failed to record execution {result.execution_id}: {exc}')
            return Err(
                HistoryError(
                    code=HistoryErrorCode.QUERY_FAILED,
                    message=f'Failed to record execution: {exc}',
                    retryable=_is_retryable_db_error(exc),
                    execution_id=result.execution_id,
                    exception=exc,
                )
            )
        self.logger.debug(f'Recorded execution {result.execution_id} ({result.overall_result.value})')
        return Ok(None)

    async def query(
        self,
        workflow_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> QueryResult[list[ExecutionResult]]:
        """
        Results of ``workflow_name`` whose start time lies in [start, end]
        (either bound optional), oldest first, at most ``max_results``.
        """
        if max_results is not None and max_results <= 0:
            return Ok([])
        stmt = select(ExecutionRecordModel.payload).where(
            ExecutionRecordModel.workflow_name == workflow_name,
        )
        if start is not None:
            stmt = stmt.where(ExecutionRecordModel.start_ts >= _as_utc(start).timestamp())
        if end is not None:
            stmt = stmt.where(ExecutionRecordModel.start_ts <= _as_utc(end).timestamp())
        stmt = stmt.order_by(
            ExecutionRecordModel.start_ts.asc(), ExecutionRecordModel.execution_id.asc(),
        )
        if max_results is not None:
            stmt = stmt.limit(max_results)

        schema = await self.ensure_schema()
        if schema.is_err():
            return Err(self._query_failed(schema.err_value.message, schema.err_value.exception))
        try:
            async with self._session() as session:
                rows = (await session.execute(stmt)).scalars().all()
            return Ok([execution_result_from_json(p) for p in rows])
        except (SQLAlchemyError, SerializationError) as exc:
            self.logger.error(f"History query for '{workflow_name}' failed: {exc}")
            return Err(self._query_failed(f'History query failed: {exc}', exc))

    async def get(self, execution_id: str) -> QueryResult[ExecutionResult]:
        schema = await self.ensure_schema()
        if schema.is_err():
            return Err(self._query_failed(schema.err_value.message, schema.err_value.exception))
        try:
            async with self._session() as session:
                row = await session.get(ExecutionRecordModel, execution_id)
                payload = row.payload if row is not None else None
            if payload is None:
                return Err(
                    QueryError(
                        code=QueryErrorCode.NOT_FOUND,
                        message=f'Execution {execution_id} not found in history',
                        retryable=False,
                    )
                )
            return Ok(execution_result_from_json(payload))
        except (SQLAlchemyError, SerializationError) as exc:
            self.logger.error(f'History lookup of {execution_id} failed: {exc}')
            return Err(self._query_failed(f'History lookup failed: {exc}', exc))

    async def close(self) -> None:
        await self.async_engine.dispose()

    # --- helpers ---

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """
        A session on the history engine.

        With a shared in-memory connection, closing one session rolls back
        whatever another session has not committed yet, so sessions run one
        at a time.
        """
        if not self._shared_connection:
            async with self.session_factory() as session:
                yield session
            return
        async with self._session_lock:
            async with self.session_factory() as session:
                yield session

    @staticmethod
    def _duplicate(execution_id: str, exc: BaseException | None = None) -> HistoryError:
        return HistoryError(
            code=HistoryErrorCode.DUPLICATE_EXECUTION,
            message=f'Execution {execution_id} is already recorded',
            retryable=False,
            execution_id=execution_id,
            exception=exc,
        )

    @staticmethod
    def _query_failed(message: str, exc: BaseException | None) -> QueryError:
        return QueryError(
            code=QueryErrorCode.QUERY_FAILED,
            message=message,
            retryable=exc is not None and _is_retryable_db_error(exc),
            exception=exc,
        )
