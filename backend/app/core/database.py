import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings
from app.core.feed import ChangeEvent, EventKind, feed

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_changes"


def create_db_engine(url: str, **kwargs: Any) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = create_db_engine(settings.sqlalchemy_url, echo=settings.debug)


def init_db(bind: Engine | None = None) -> None:
    import app.models  # noqa: F401 - ensure models are registered
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session


# --- Row-level change capture ---
# Changes are collected at flush time (while attribute history is still
# available) and published to the feed only once the transaction commits.


def _previous_values(obj: SQLModel) -> dict[str, Any]:
    state = inspect(obj)
    old: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        old[attr.key] = history.deleted[0] if history.deleted else getattr(obj, attr.key)
    return old


@event.listens_for(Session, "after_flush")
def _collect_changes(session: Session, _flush_context: Any) -> None:
    pending: list[ChangeEvent] = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if isinstance(obj, SQLModel):
            pending.append(ChangeEvent(EventKind.INSERT, obj.__tablename__, None, obj.model_dump()))
    for obj in session.dirty:
        if isinstance(obj, SQLModel) and session.is_modified(obj, include_collections=False):
            pending.append(
                ChangeEvent(EventKind.UPDATE, obj.__tablename__, _previous_values(obj), obj.model_dump())
            )
    for obj in session.deleted:
        if isinstance(obj, SQLModel):
            pending.append(ChangeEvent(EventKind.DELETE, obj.__tablename__, obj.model_dump(), None))


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        feed.publish(pending)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug(f"Discarded {len(dropped)} uncommitted change(s)")
