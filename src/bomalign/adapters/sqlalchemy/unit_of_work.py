"""SQLAlchemy unit of work for the reconciliation core.

The adapter is bound to one engine per process through :func:`startup`;
each unit of work opens its own session from it. Sessions never expire on
commit so domain objects stay readable after the block closes.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal, Self

from sqlalchemy import create_engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bomalign.adapters.sqlalchemy.mappings import create_all_tables, start_mappers
from bomalign.adapters.sqlalchemy.repositories import (
    SqlAlchemyAlignmentRecordRepository,
    SqlAlchemyBOMSnapshotRepository,
    SqlAlchemyLocalCatalog,
    SqlAlchemySyncRunRepository,
)
from bomalign.config.storage import get_database_config
from bomalign.domain.ports.unit_of_work import ReconciliationRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the adapter or a unit of work is used in the wrong state."""


@dataclass(slots=True)
class _Binding:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = None

    def session_factory(self) -> sessionmaker[Session]:
        if self.sessions is None:
            raise StartupError(
                "Reconciliation database not started; call "
                "bomalign.adapters.sqlalchemy.unit_of_work.startup() first"
            )
        return self.sessions


_BINDING = _Binding()


def _create_engine(database_uri: str) -> Engine:
    url = make_url(database_uri)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # in-memory databases exist per connection; share one across threads
        return create_engine(
            url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url, future=True)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the adapter to ``engine`` (or a new one) and create missing tables."""

    if _BINDING.engine is not None and not force:
        raise StartupError("Reconciliation database already started; pass force=True to rebind")

    bound = engine or _create_engine(database_uri or get_database_config().uri)
    start_mappers()
    create_all_tables(bound)
    _BINDING.engine = bound
    _BINDING.sessions = sessionmaker(bind=bound, expire_on_commit=False)
    log.info("Reconciliation database ready at %s", bound.url.render_as_string())


def configured_engine() -> Engine | None:
    return _BINDING.engine


def is_started() -> bool:
    return _BINDING.engine is not None


def shutdown() -> None:
    """Dispose the bound engine; a later :func:`startup` may bind a new one."""

    if _BINDING.engine is not None:
        _BINDING.engine.dispose()
    _BINDING.engine = None
    _BINDING.sessions = None


class SqlAlchemyReconciliationUnitOfWork:
    """Alignment, sync-run, snapshot and catalog access over one session.

    Leaving the block with an exception rolls back; anything not committed
    is discarded when the session closes.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or _BINDING.session_factory()
        self._session: Session | None = None
        self._repositories: ReconciliationRepositories | None = None

    def __enter__(self) -> Self:
        if self._session is not None:
            raise StartupError("Unit of work is already open")
        session = self._session_factory()
        self._session = session
        self._repositories = ReconciliationRepositories(
            alignments=SqlAlchemyAlignmentRecordRepository(session),
            sync_runs=SqlAlchemySyncRunRepository(session),
            snapshots=SqlAlchemyBOMSnapshotRepository(session),
            catalog=SqlAlchemyLocalCatalog(session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work is not open; use it in a with block")
        return self._session

    @property
    def repositories(self) -> ReconciliationRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work is not open; use it in a with block")
        return self._repositories

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


if TYPE_CHECKING:
    from bomalign.domain.ports.unit_of_work import ReconciliationUnitOfWork

    _uow_check: ReconciliationUnitOfWork = SqlAlchemyReconciliationUnitOfWork()
