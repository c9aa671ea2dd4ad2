from __future__ import annotations
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Sequence,
    Type,
    TypeVar,
)
from sqlalchemy import (
    event,
    select,
    create_engine,
    func,
    asc,
    desc,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from streamchat.models.base import Base
from streamchat.models import chat  # noqa: F401  registers the chat tables
from streamchat.settings import config

if TYPE_CHECKING:
    from sqlalchemy import ColumnExpressionArgument

V = TypeVar("V", bound=Type)

_engines: dict[str, Engine] = {}
_factories: dict[str, Callable[..., Session]] = {}


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # one shared connection so threadpool workers see the same database
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


def get_engine(url: str | None = None) -> Engine:
    url = url or config.db_url
    if url not in _engines:
        _engines[url] = create_db_engine(url)
    return _engines[url]


def create_factory(engine: Engine) -> Callable[..., Session]:
    return sessionmaker(engine, expire_on_commit=False)


def init_db(url: str | None = None) -> None:
    Base.metadata.create_all(get_engine(url))


def get_session_factory(url: str | None = None) -> Callable[..., Session]:
    """
    Returns the session factory for ``url`` (the configured database by
    default), creating the engine on first use.
    """
    url = url or config.db_url
    if url not in _factories:
        _factories[url] = create_factory(get_engine(url))
    return _factories[url]


class CRUDCapability(Generic[V]):
    resource_db: Type[V]

    def __init__(
        self,
        resource_db: Type[V],
        session_factory: Callable[..., Session] | None = None,
    ) -> None:
        self.resource_db = resource_db
        self.session_factory = session_factory

    def db_row_to_model(self, row: V) -> dict[str, Any]:
        return {field.name: getattr(row, field.name) for field in row.__table__.c}

    def db_rows_to_model_list(self, rows: Sequence[V]) -> list[dict[str, Any]]:
        return [self.db_row_to_model(r) for r in rows]

    def get_sync_session(self) -> Session:
        factory = self.session_factory or get_session_factory()
        return factory()

    def _order_clauses(self, order_by: list[str]) -> list:
        clauses = []
        for item in order_by:
            if item.startswith("-"):
                clauses.append(desc(getattr(self.resource_db, item[1:])))
            else:
                clauses.append(asc(getattr(self.resource_db, item)))
        return clauses

    def list_resource(
        self,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(self.resource_db)
        if where is not None:
            stmt = stmt.where(*where)
        if order_by is not None:
            stmt = stmt.order_by(*self._order_clauses(order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)

        with self.get_sync_session() as session:
            resources = session.scalars(stmt).all()
            return self.db_rows_to_model_list(resources)

    def get_resource(
        self,
        resource_id: str | None,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(self.resource_db)
        if resource_id is not None:
            stmt = stmt.where(self.resource_db.id == resource_id)  # type: ignore
        if where is not None:
            stmt = stmt.where(*where)
        with self.get_sync_session() as session:
            resource = session.scalars(stmt).first()
            if resource is None:
                return None
            return self.db_row_to_model(resource)

    def max_value(
        self,
        column: str,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> Any:
        stmt = select(func.max(getattr(self.resource_db, column)))
        if where is not None:
            stmt = stmt.where(*where)
        with self.get_sync_session() as session:
            return session.execute(stmt).scalar()

    def create_resource(
        self,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        resource = self.resource_db(**data)  # type: ignore
        with self.get_sync_session() as session:
            session.add(resource)
            session.flush()
            session.commit()
            session.refresh(resource)
            return self.db_row_to_model(resource)  # type: ignore

    def delete_resource(
        self,
        resource_id: str | None = None,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(self.resource_db)
        if resource_id is not None:
            stmt = stmt.where(self.resource_db.id == resource_id)  # type: ignore
        if where is not None:
            stmt = stmt.where(*where)
        with self.get_sync_session() as session:
            resource = session.scalars(stmt).first()
            if resource is None:
                return None
            deleted = self.db_row_to_model(resource)
            session.delete(resource)
            session.flush()
            session.commit()
            return deleted

    def update_resource(
        self,
        data: dict[str, Any] | None,
        resource_id: str | None = None,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(self.resource_db)
        if resource_id is not None:
            stmt = stmt.where(self.resource_db.id == resource_id)  # type: ignore
        if where is not None:
            stmt = stmt.where(*where)
        with self.get_sync_session() as session:
            resource = session.scalars(stmt).first()
            if resource is None:
                return None
            if data is not None:
                for k in data:
                    setattr(resource, k, data[k])
            session.add(resource)
            session.flush()
            session.commit()
            session.refresh(resource)
            return self.db_row_to_model(resource)
