import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Mapping

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

if TYPE_CHECKING:
    from ..app import App


logger = logging.getLogger(__name__)


class Database:
    """SQLAlchemy engine plus a session factory."""

    def __init__(self, url: str, echo: bool = False, **engine_options: Any):
        self.engine: Engine = create_engine(url, echo=echo, **engine_options)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session, committing on success and rolling back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


def register(app: "App", service_name: str, settings: Mapping[str, Any]) -> None:
    """Register a lazily connected :class:`Database` under the service name.

    The engine is created on first lookup, so commands and routes that never
    touch the database never open a connection pool.
    """
    if "url" not in settings:
        raise ValueError(f"Database service '{service_name}' requires a 'url' setting")

    options = dict(settings)
    url = options.pop("url")
    echo = bool(options.pop("echo", False))
    is_default = bool(options.pop("default", True))

    def build() -> Database:
        logger.info(f"Creating database engine for service '{service_name}'")
        return Database(url, echo=echo, **options)

    app.container.factory(service_name, build)
    if is_default:
        app.container.alias({Database: service_name})
