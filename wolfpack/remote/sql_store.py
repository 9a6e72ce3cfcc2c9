"""Remote store backed by the SQLAlchemy schema and an in-process realtime hub.

Table operations are expressed with SQLAlchemy Core against
``Base.metadata`` so callers address tables by name, the same way the hosted
backend's query builder does. Blocking database work runs in a worker thread;
change events are published to the hub once the transaction has committed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from sqlalchemy import Table, delete, false, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models  # noqa: F401  (registers every table on the metadata)
from ..database import Base, create_session
from ..models.base import ensure_utc
from .auth import AuthSession
from .base import (
    NotAuthenticatedError,
    PermissionDeniedError,
    RemoteConflictError,
    RemoteStore,
    RemoteStoreError,
    Row,
)
from .filters import Filter
from .policies import RowCheck, TablePolicy, policy_for
from .procedures import run_procedure
from .realtime import BroadcastChannel, ChangeCallback, ChangeEvent, RealtimeHub, Subscription, realtime_hub

logger = logging.getLogger(__name__)

T = TypeVar("T")
Work = Callable[[Session], tuple[T, list[ChangeEvent]]]


def _plain(row: Mapping[str, Any]) -> Row:
    return {key: ensure_utc(value) for key, value in row.items()}


class SqlRemoteStore(RemoteStore):
    """:class:`RemoteStore` running queries and procedures against a SQL database."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = create_session,
        hub: RealtimeHub | None = None,
        auth: AuthSession | None = None,
    ) -> None:
        super().__init__(auth or AuthSession())
        self._session_factory = session_factory
        self.hub = hub or realtime_hub

    # -- plumbing ---------------------------------------------------------

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise RemoteStoreError(f"Unknown table: {name}", code="UNKNOWN_TABLE")
        return table

    def _column(self, table: Table, name: str) -> Any:
        if name not in table.c:
            raise RemoteStoreError(f"Unknown column {table.name}.{name}", code="UNKNOWN_COLUMN")
        return table.c[name]

    def _clauses(self, table: Table, filters: Iterable[Filter]) -> list[Any]:
        clauses = []
        for item in filters:
            column = self._column(table, item.column)
            if item.op == "eq":
                clauses.append(column == item.value)
            elif item.op == "neq":
                clauses.append(column != item.value)
            elif item.op == "lt":
                clauses.append(column < item.value)
            elif item.op == "lte":
                clauses.append(column <= item.value)
            elif item.op == "gt":
                clauses.append(column > item.value)
            elif item.op == "gte":
                clauses.append(column >= item.value)
            elif item.op == "in":
                clauses.append(column.in_(list(item.value)))
            else:
                clauses.append(column.is_(item.value))
        return clauses

    def _check_columns(self, table: Table, values: Mapping[str, Any]) -> None:
        for key in values:
            self._column(table, key)

    # -- row-level rules --------------------------------------------------

    def _policy(self, table: Table) -> TablePolicy:
        policy = policy_for(table.name)
        if policy is None:
            raise PermissionDeniedError(f"Direct access to {table.name} is not permitted")
        return policy

    def _acting_user(self) -> str:
        user_id = self.current_user_id
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    def _visible(self, table: Table) -> list[Any]:
        policy = self._policy(table)
        if policy.read is None:
            return []
        user_id = self.current_user_id
        if not user_id:
            return [false()]
        return [policy.read(table, user_id)]

    def _owned(self, table: Table, action: str) -> tuple[TablePolicy, Any]:
        policy = self._policy(table)
        if policy.write is None:
            raise PermissionDeniedError(f"Direct {action} on {table.name} is not permitted")
        return policy, policy.write(table, self._acting_user())

    def _check_updatable(self, table: Table, policy: TablePolicy, values: Mapping[str, Any]) -> None:
        locked = sorted(set(values) - policy.updatable)
        if locked:
            raise PermissionDeniedError(f"Cannot change {table.name} columns: {', '.join(locked)}")

    def _insert_rule(self, table: Table) -> tuple[RowCheck, str]:
        policy = self._policy(table)
        if policy.insert_check is None:
            raise PermissionDeniedError(f"Direct insert on {table.name} is not permitted")
        return policy.insert_check, self._acting_user()

    def _execute(self, work: Work[T]) -> tuple[T, list[ChangeEvent]]:
        session = self._session_factory()
        try:
            return work(session)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, operation: str, work: Work[T]) -> T:
        try:
            result, events = await asyncio.to_thread(self._execute, work)
        except IntegrityError as exc:
            logger.warning("Remote %s conflicted: %s", operation, exc.orig)
            raise RemoteConflictError(f"Remote {operation} conflicted with existing data", code="CONFLICT") from exc
        except SQLAlchemyError as exc:
            logger.exception("Remote %s failed", operation)
            raise RemoteStoreError(f"Remote {operation} failed", code="DATABASE_ERROR") from exc
        await self.hub.publish_many(events)
        return result

    # -- queries ----------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]:
        target = self._table(table)
        if columns:
            statement = select(*(self._column(target, name) for name in columns))
        else:
            statement = select(target)
        statement = statement.where(*self._clauses(target, filters), *self._visible(target))
        if order_by:
            column = self._column(target, order_by)
            statement = statement.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            statement = statement.limit(limit)
        if offset:
            statement = statement.offset(offset)

        def work(session: Session) -> tuple[list[Row], list[ChangeEvent]]:
            return [_plain(row) for row in session.execute(statement).mappings().all()], []

        return await self._run(f"select {table}", work)

    async def count(self, table: str, *, filters: Sequence[Filter] = ()) -> int:
        target = self._table(table)
        statement = (
            select(func.count())
            .select_from(target)
            .where(*self._clauses(target, filters), *self._visible(target))
        )

        def work(session: Session) -> tuple[int, list[ChangeEvent]]:
            return int(session.scalar(statement) or 0), []

        return await self._run(f"count {table}", work)

    # -- mutations --------------------------------------------------------

    async def insert(self, table: str, rows: Row | Iterable[Row]) -> list[Row]:
        target = self._table(table)
        batch = [dict(rows)] if isinstance(rows, Mapping) else [dict(row) for row in rows]
        if not batch:
            return []
        for row in batch:
            self._check_columns(target, row)
        check, user_id = self._insert_rule(target)

        def work(session: Session) -> tuple[list[Row], list[ChangeEvent]]:
            if not all(check(session, row, user_id) for row in batch):
                raise PermissionDeniedError(f"Row rejected by the {table} access rules")
            created = [
                _plain(session.execute(insert(target).values(**row).returning(*target.c)).mappings().one())
                for row in batch
            ]
            session.commit()
            return created, [ChangeEvent(table, "INSERT", new=row) for row in created]

        return await self._run(f"insert {table}", work)

    async def update(self, table: str, values: Row, *, filters: Sequence[Filter]) -> list[Row]:
        target = self._table(table)
        if not filters:
            raise RemoteStoreError(f"Refusing unfiltered update on {table}", code="UNFILTERED")
        self._check_columns(target, values)
        policy, owned = self._owned(target, "update")
        self._check_updatable(target, policy, values)
        statement = (
            update(target)
            .where(*self._clauses(target, filters), owned)
            .values(**values)
            .returning(*target.c)
        )

        def work(session: Session) -> tuple[list[Row], list[ChangeEvent]]:
            changed = [_plain(row) for row in session.execute(statement).mappings().all()]
            session.commit()
            return changed, [ChangeEvent(table, "UPDATE", new=row) for row in changed]

        return await self._run(f"update {table}", work)

    async def upsert(self, table: str, row: Row, *, on_conflict: Sequence[str]) -> Row:
        target = self._table(table)
        self._check_columns(target, row)
        missing = [name for name in on_conflict if name not in row]
        if not on_conflict or missing:
            raise RemoteStoreError(f"Upsert on {table} needs values for {list(on_conflict)}", code="INVALID_UPSERT")
        match = [self._column(target, name) == row[name] for name in on_conflict]
        changes = {key: value for key, value in row.items() if key not in on_conflict}
        check, user_id = self._insert_rule(target)
        owned: Any = None
        if changes:
            policy, owned = self._owned(target, "upsert")
            self._check_updatable(target, policy, changes)

        def write(session: Session) -> tuple[Row, ChangeEvent]:
            existing = session.execute(select(target).where(*match)).mappings().first()
            if existing is None:
                created = session.execute(insert(target).values(**row).returning(*target.c)).mappings().one()
                return _plain(created), ChangeEvent(table, "INSERT", new=_plain(created))
            if not changes:
                return _plain(existing), ChangeEvent(table, "UPDATE", new=_plain(existing), old=_plain(existing))
            updated = session.execute(
                update(target).where(*match, owned).values(**changes).returning(*target.c)
            ).mappings().one()
            return _plain(updated), ChangeEvent(table, "UPDATE", new=_plain(updated), old=_plain(existing))

        def work(session: Session) -> tuple[Row, list[ChangeEvent]]:
            if not check(session, row, user_id):
                raise PermissionDeniedError(f"Row rejected by the {table} access rules")
            try:
                result, event = write(session)
            except IntegrityError:
                # Lost an insert race; the row now exists, so update it instead.
                session.rollback()
                result, event = write(session)
            session.commit()
            return result, [event]

        return await self._run(f"upsert {table}", work)

    async def delete(self, table: str, *, filters: Sequence[Filter]) -> int:
        target = self._table(table)
        if not filters:
            raise RemoteStoreError(f"Refusing unfiltered delete on {table}", code="UNFILTERED")
        policy, owned = self._owned(target, "delete")
        if not policy.deletable:
            raise PermissionDeniedError(f"Direct delete on {table} is not permitted")
        statement = delete(target).where(*self._clauses(target, filters), owned).returning(*target.c)

        def work(session: Session) -> tuple[int, list[ChangeEvent]]:
            removed = [_plain(row) for row in session.execute(statement).mappings().all()]
            session.commit()
            return len(removed), [ChangeEvent(table, "DELETE", old=row) for row in removed]

        return await self._run(f"delete {table}", work)

    # -- procedures -------------------------------------------------------

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        user_id = self.auth.current_user_id
        arguments = dict(params or {})

        def work(session: Session) -> tuple[dict[str, Any], list[ChangeEvent]]:
            return run_procedure(session, name, user_id, arguments)

        return await self._run(f"rpc {name}", work)

    # -- realtime ---------------------------------------------------------

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        events: Iterable[str] = ("INSERT",),
        filters: Sequence[Filter] = (),
    ) -> Subscription:
        self._table(table)
        return await self.hub.subscribe(table, callback, events=events, filters=filters)

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self.hub.unsubscribe(subscription)

    def channel(self, topic: str, *, receive_own: bool = False) -> BroadcastChannel:
        return self.hub.channel(topic, receive_own=receive_own)


__all__ = ["SqlRemoteStore"]
