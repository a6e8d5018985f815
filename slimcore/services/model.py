from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import DateTime, inspect, select
from sqlalchemy.orm import DeclarativeBase, Session, load_only
from sqlalchemy.types import TypeDecorator

# Columns filled on insert with the current time / acting user
CREATED_AT_COLUMNS = ("created_at", "DateCreated", "CreationDate")
CREATED_BY_COLUMNS = ("CreatedByUserID", "CreatedBy")
# Columns refreshed on every update
UPDATED_AT_COLUMNS = ("updated_at", "DateUpdated")
UPDATED_BY_COLUMNS = ("UpdatedByUserID",)


class EmptyDateTime(TypeDecorator):
    """DateTime column that stores and reads empty values as NULL."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        return value

    def process_result_value(self, value, dialect):
        return value or None


class Model(DeclarativeBase):
    """Declarative base with defaults, blank-to-NULL columns and audit columns.

    Subclasses tune behaviour through class attributes:

    - ``__default_values__``: attribute values applied to new instances
    - ``__set_null_on_empty__``: string columns where blank input becomes ``None``
    - ``__auto_fill_columns__``: audit columns to maintain on :meth:`save`

    A subclass may define ``get_validator(scenario)`` returning a callable that
    receives the attribute mapping and raises ``ValidationFailure``.
    """

    __default_values__: ClassVar[Dict[str, Any]] = {}
    __set_null_on_empty__: ClassVar[Tuple[str, ...]] = ()
    __auto_fill_columns__: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, **kwargs: Any):
        values = {**self.__default_values__, **kwargs}
        type(self).registry.constructor(self, **values)

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self.__set_null_on_empty__ and isinstance(value, str) and value.strip() == "":
            value = None
        super().__setattr__(key, value)

    @property
    def exists(self) -> bool:
        return inspect(self).has_identity

    def attributes(self) -> Dict[str, Any]:
        return {attr.key: getattr(self, attr.key) for attr in inspect(type(self)).column_attrs}

    @classmethod
    def find(
        cls,
        session: Session,
        ident: Union[Any, Mapping[str, Any]],
        columns: Optional[Sequence[str]] = None,
    ):
        """Fetch one row by primary key, or by ``{column: value}`` equality."""
        stmt = select(cls)
        if isinstance(ident, Mapping):
            stmt = stmt.filter_by(**ident)
        else:
            primary_key = inspect(cls).primary_key
            if len(primary_key) != 1:
                raise ValueError(f"{cls.__name__} has a composite key; pass a column mapping")
            stmt = stmt.where(primary_key[0] == ident)
        if columns:
            stmt = stmt.options(load_only(*[getattr(cls, c) for c in columns]))
        return session.scalars(stmt.limit(1)).first()

    def auto_fill(self, user_id: Any = None, now: Optional[datetime] = None) -> None:
        now = now or datetime.now().replace(microsecond=0)
        columns = self.__auto_fill_columns__
        if not self.exists:
            for column in CREATED_AT_COLUMNS:
                if column in columns and getattr(self, column, None) is None:
                    setattr(self, column, now)
            for column in CREATED_BY_COLUMNS:
                if column in columns and getattr(self, column, None) is None:
                    setattr(self, column, user_id)
        else:
            for column in UPDATED_AT_COLUMNS:
                if column in columns:
                    setattr(self, column, now)
            for column in UPDATED_BY_COLUMNS:
                if column in columns:
                    setattr(self, column, user_id)

    def save(self, session: Session, validate: bool = True, scenario: str = "default", user_id: Any = None) -> bool:
        self.auto_fill(user_id)

        get_validator: Optional[Callable[[str], Callable[[Mapping[str, Any]], Any]]] = getattr(self, "get_validator", None)
        if validate and get_validator is not None:
            get_validator(scenario)(self.attributes())

        session.add(self)
        session.flush()
        return True
