"""
SQLAlchemy-backed store.

Each record is kept as its full JSON document plus indexed columns for every
field that can be filtered, sorted or matched on. Sequence counters live in a
dedicated table and are advanced with a single upsert ... RETURNING statement,
so concurrent callers in any number of processes never observe the same value.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Integer,
    String,
    and_,
    case,
    create_engine,
    delete,
    exists,
    false,
    func,
    or_,
    select,
    true,
    update,
)
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ...core.errors import DuplicateIdentifier, SequenceUnavailable, StoreUnavailable
from ..models import Dispatch, DispatchLoadStatus, Document, SequenceName, Truck
from ..query import AllOf, AnyOf, Contains, Eq, ListQuery, Missing, Predicate, Range, resolve_path
from .base import IDENTIFIER_OWNERS, UNIQUE_FIELDS, RecordT, Store, UnitOfWork

logger = structlog.get_logger(component="sql_store")

_UPSERT_DIALECTS: dict[str, Callable[..., Any]] = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class Base(DeclarativeBase):
    pass


class SequenceRow(Base):
    __tablename__ = "sequences"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DispatchRow(Base):
    __tablename__ = "dispatches"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    load_number: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    invoice_number: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    wo_number: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    invoice_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), index=True)
    equipment: Mapped[str] = mapped_column(String(16), index=True)
    length: Mapped[Optional[float]] = mapped_column(Float)
    special_instructions: Mapped[Optional[str]] = mapped_column(String)
    all_in_rate: Mapped[Optional[float]] = mapped_column(Float)
    broker_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    carrier_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    posted_by: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    shipper_address: Mapped[str] = mapped_column(String)
    shipper_lat: Mapped[float] = mapped_column(Float, index=True)
    shipper_lng: Mapped[float] = mapped_column(Float)
    shipper_date: Mapped[datetime] = mapped_column(DateTime)
    shipper_weight: Mapped[Optional[float]] = mapped_column(Float)
    consignee_address: Mapped[str] = mapped_column(String)
    consignee_lat: Mapped[float] = mapped_column(Float, index=True)
    consignee_lng: Mapped[float] = mapped_column(Float)
    consignee_date: Mapped[datetime] = mapped_column(DateTime)
    consignee_weight: Mapped[Optional[float]] = mapped_column(Float)
    age: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)
    document: Mapped[dict] = mapped_column(JSON)

    PATHS = {
        "id": "id",
        "load_number": "load_number",
        "invoice_number": "invoice_number",
        "wo_number": "wo_number",
        "invoice_date": "invoice_date",
        "status": "status",
        "equipment": "equipment",
        "length": "length",
        "special_instructions": "special_instructions",
        "all_in_rate": "all_in_rate",
        "broker_id": "broker_id",
        "customer_id": "customer_id",
        "carrier_id": "carrier_id",
        "posted_by": "posted_by",
        "shipper.address.label": "shipper_address",
        "shipper.address.lat": "shipper_lat",
        "shipper.address.lng": "shipper_lng",
        "shipper.date": "shipper_date",
        "shipper.weight": "shipper_weight",
        "consignee.address.label": "consignee_address",
        "consignee.address.lat": "consignee_lat",
        "consignee.address.lng": "consignee_lng",
        "consignee.date": "consignee_date",
        "consignee.weight": "consignee_weight",
        "age": "age",
        "created_at": "created_at",
        "updated_at": "updated_at",
    }


class TruckRow(Base):
    __tablename__ = "trucks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    reference_number: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    equipment: Mapped[str] = mapped_column(String(16), index=True)
    origin_address: Mapped[str] = mapped_column(String)
    origin_lat: Mapped[float] = mapped_column(Float, index=True)
    origin_lng: Mapped[float] = mapped_column(Float)
    destination_address: Mapped[Optional[str]] = mapped_column(String)
    destination_lat: Mapped[Optional[float]] = mapped_column(Float, index=True)
    destination_lng: Mapped[Optional[float]] = mapped_column(Float)
    available_date: Mapped[datetime] = mapped_column(DateTime)
    available_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    weight: Mapped[Optional[float]] = mapped_column(Float)
    length: Mapped[Optional[float]] = mapped_column(Float)
    miles: Mapped[Optional[float]] = mapped_column(Float)
    all_in_rate: Mapped[Optional[float]] = mapped_column(Float)
    comments: Mapped[Optional[str]] = mapped_column(String)
    broker_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    posted_by: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    age: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)
    document: Mapped[dict] = mapped_column(JSON)

    PATHS = {
        "id": "id",
        "reference_number": "reference_number",
        "equipment": "equipment",
        "origin.label": "origin_address",
        "origin.lat": "origin_lat",
        "origin.lng": "origin_lng",
        "destination.label": "destination_address",
        "destination.lat": "destination_lat",
        "destination.lng": "destination_lng",
        "destination": "destination_lat",
        "available_date": "available_date",
        "available_until": "available_until",
        "weight": "weight",
        "length": "length",
        "miles": "miles",
        "all_in_rate": "all_in_rate",
        "comments": "comments",
        "broker_id": "broker_id",
        "posted_by": "posted_by",
        "age": "age",
        "created_at": "created_at",
        "updated_at": "updated_at",
    }


ROWS: dict[type[Document], type[Base]] = {Dispatch: DispatchRow, Truck: TruckRow}


def _sql_value(value: Any) -> Any:
    """Convert a model value to what the column stores (naive UTC for datetimes)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)
    return value


def _row_values(record: Document) -> dict[str, Any]:
    row_cls = ROWS[type(record)]
    values = {
        column: _sql_value(resolve_path(record, path))
        for path, column in row_cls.PATHS.items()
        if "." in path or path == column
    }
    values["document"] = record.model_dump(mode="json")
    return values


class SQLUnitOfWork(UnitOfWork):
    def __init__(self, store: "SQLStore", session: Session) -> None:
        self._store = store
        self._session = session

    def next_sequence(self, name: SequenceName) -> int:
        return self._store._increment(self._session, name)

    def compare_and_set_dispatch(
        self, dispatch: Dispatch, expected_status: DispatchLoadStatus
    ) -> bool:
        statement = (
            update(DispatchRow)
            .where(DispatchRow.id == dispatch.id, DispatchRow.status == expected_status.value)
            .values(**_row_values(dispatch))
        )
        try:
            result = self._session.execute(statement)
        except IntegrityError as e:
            raise self._store._duplicate(Dispatch, dispatch, e) from e
        return result.rowcount == 1


class SQLStore(Store):
    """Store on any SQLAlchemy database with upsert support (SQLite, PostgreSQL)."""

    def __init__(self, url: str, engine: Optional[Engine] = None, create_schema: bool = True) -> None:
        self.engine = engine or self._create_engine(url)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        if create_schema:
            self.create_schema()

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if url.startswith("sqlite"):
            if url in ("sqlite://", "sqlite:///:memory:"):
                return create_engine(
                    url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            return create_engine(url, connect_args={"timeout": 30})
        return create_engine(url, pool_pre_ping=True)

    def create_schema(self) -> None:
        """Create tables that do not exist yet."""
        with self._guard():
            Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _guard(self, error: type[StoreUnavailable] = StoreUnavailable) -> Iterator[None]:
        try:
            yield
        except IntegrityError:
            raise
        except DBAPIError as e:
            logger.error("store_operation_failed", error=str(e.orig))
            raise error() from e

    def _duplicate(self, kind: type[Document], record: Document, error: IntegrityError) -> DuplicateIdentifier:
        message = str(error.orig)
        for attr in UNIQUE_FIELDS[kind]:
            if attr in message:
                return DuplicateIdentifier(attr, getattr(record, attr))
        return DuplicateIdentifier("id", record.id)

    # Sequences

    def _upsert(self):
        insert = _UPSERT_DIALECTS.get(self.engine.dialect.name)
        if insert is None:
            logger.error("atomic_counter_unsupported", dialect=self.engine.dialect.name)
            raise SequenceUnavailable()
        return insert

    def _increment(self, session: Session, name: SequenceName) -> int:
        table = SequenceRow.__table__
        statement = (
            self._upsert()(table)
            .values(name=name.value, value=1)
            .on_conflict_do_update(
                index_elements=[table.c.name],
                set_={"value": table.c.value + 1},
            )
            .returning(table.c.value)
        )
        with self._guard(SequenceUnavailable):
            return session.execute(statement).scalar_one()

    def next_sequence(self, name: SequenceName) -> int:
        with self._guard(SequenceUnavailable), self._sessions.begin() as session:
            return self._increment(session, name)

    def peek_sequence(self, name: SequenceName) -> int:
        with self._guard(SequenceUnavailable), self._sessions() as session:
            value = session.scalar(select(SequenceRow.value).where(SequenceRow.name == name.value))
            return value or 0

    def raise_sequence_floor(self, name: SequenceName, value: int) -> int:
        table = SequenceRow.__table__
        statement = (
            self._upsert()(table)
            .values(name=name.value, value=value)
            .on_conflict_do_update(
                index_elements=[table.c.name],
                set_={"value": case((table.c.value < value, value), else_=table.c.value)},
            )
            .returning(table.c.value)
        )
        with self._guard(SequenceUnavailable), self._sessions.begin() as session:
            return session.execute(statement).scalar_one()

    # Identifiers

    def identifier_in_use(self, name: SequenceName, value: int) -> bool:
        kind, attr = IDENTIFIER_OWNERS[name]
        column = getattr(ROWS[kind], attr)
        with self._guard(), self._sessions() as session:
            return bool(session.scalar(select(exists().where(column == value))))

    def max_identifier(self, name: SequenceName) -> Optional[int]:
        kind, attr = IDENTIFIER_OWNERS[name]
        with self._guard(), self._sessions() as session:
            return session.scalar(select(func.max(getattr(ROWS[kind], attr))))

    # Records

    def _to_model(self, kind: type[RecordT], row: Any) -> RecordT:
        return kind.model_validate(row.document)

    def _clause(self, kind: type[Document], predicate: Predicate):
        row_cls = ROWS[kind]

        def column(path: str):
            if path not in row_cls.PATHS:
                raise ValueError(f"{kind.__name__} has no queryable field {path!r}")
            return getattr(row_cls, row_cls.PATHS[path])

        if isinstance(predicate, Eq):
            return column(predicate.field) == _sql_value(predicate.value)
        if isinstance(predicate, Contains):
            if self.engine.dialect.name == "sqlite":
                return column(predicate.field).regexp_match("(?i)" + predicate.pattern)
            return column(predicate.field).regexp_match(predicate.pattern, flags="i")
        if isinstance(predicate, Range):
            col = column(predicate.field)
            parts = [col.is_not(None)]
            if predicate.gte is not None:
                parts.append(col >= _sql_value(predicate.gte))
            if predicate.lte is not None:
                parts.append(col <= _sql_value(predicate.lte))
            return and_(*parts)
        if isinstance(predicate, Missing):
            return column(predicate.field).is_(None)
        if isinstance(predicate, AnyOf):
            return or_(*(self._clause(kind, p) for p in predicate.predicates)) if predicate.predicates else false()
        if isinstance(predicate, AllOf):
            return and_(true(), *(self._clause(kind, p) for p in predicate.predicates))
        raise TypeError(f"unsupported predicate {type(predicate).__name__}")

    def get(self, kind: type[RecordT], record_id: str) -> Optional[RecordT]:
        with self._guard(), self._sessions() as session:
            row = session.get(ROWS[kind], record_id)
            return self._to_model(kind, row) if row is not None else None

    def insert(self, record: RecordT) -> RecordT:
        row_cls = ROWS[type(record)]
        try:
            with self._guard(), self._sessions.begin() as session:
                session.add(row_cls(**_row_values(record)))
        except IntegrityError as e:
            raise self._duplicate(type(record), record, e) from e
        return record

    def replace(self, record: RecordT) -> bool:
        row_cls = ROWS[type(record)]
        statement = update(row_cls).where(row_cls.id == record.id).values(**_row_values(record))
        try:
            with self._guard(), self._sessions.begin() as session:
                return session.execute(statement).rowcount == 1
        except IntegrityError as e:
            raise self._duplicate(type(record), record, e) from e

    def delete(self, kind: type[Document], record_id: str) -> bool:
        row_cls = ROWS[kind]
        with self._guard(), self._sessions.begin() as session:
            return session.execute(delete(row_cls).where(row_cls.id == record_id)).rowcount == 1

    def find(self, kind: type[RecordT], predicate: Predicate) -> list[RecordT]:
        statement = select(ROWS[kind]).where(self._clause(kind, predicate))
        with self._guard(), self._sessions() as session:
            return [self._to_model(kind, row) for row in session.scalars(statement)]

    def query(self, kind: type[RecordT], query: ListQuery) -> tuple[list[RecordT], int]:
        row_cls = ROWS[kind]
        where = self._clause(kind, query.predicate)
        order = []
        for key in query.sort:
            col = getattr(row_cls, row_cls.PATHS[key.field])
            order.extend([col.is_(None), col.desc() if key.descending else col.asc()])
        order.extend([row_cls.created_at.asc(), row_cls.id.asc()])
        statement = (
            select(row_cls)
            .where(where)
            .order_by(*order)
            .offset(query.pagination.skip)
            .limit(query.pagination.limit)
        )
        with self._guard(), self._sessions() as session:
            total = session.scalar(select(func.count()).select_from(row_cls).where(where)) or 0
            rows = [self._to_model(kind, row) for row in session.scalars(statement)]
        return rows, total

    def touch_age(self, kind: type[RecordT], record_ids: list[str], now: datetime) -> list[RecordT]:
        row_cls = ROWS[kind]
        updated = []
        with self._guard(), self._sessions.begin() as session:
            for row in session.scalars(select(row_cls).where(row_cls.id.in_(record_ids))):
                record = self._to_model(kind, row)
                record.age = now
                for column, value in _row_values(record).items():
                    setattr(row, column, value)
                updated.append(record)
        return updated

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        with self._guard(), self._sessions.begin() as session:
            yield SQLUnitOfWork(self, session)
