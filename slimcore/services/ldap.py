import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ldap3 import ALL_ATTRIBUTES, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

if TYPE_CHECKING:
    from ..app import App


logger = logging.getLogger(__name__)

Entry = Dict[str, List[Any]]


class Ldap:
    """Directory lookups and bind checks over an ldap3 connection.

    Entries come back as dicts keyed by lower-cased attribute name, every
    value a list, plus a ``dn`` key.
    """

    def __init__(self, params: Mapping[str, Any], connection: Optional[Connection] = None):
        self.base_dn: str = params["base_dn"]
        self.server = Server(params["host"], port=params.get("port"), use_ssl=bool(params.get("use_ssl", False)))
        self._conn = connection or Connection(
            self.server,
            user=params.get("username"),
            password=params.get("password"),
            auto_bind=bool(params.get("auto_bind", True)),
            read_only=True,
        )

    def query(self) -> Connection:
        return self._conn

    def search(self, base_dn: str, search_filter: str, attributes: Any = ALL_ATTRIBUTES) -> List[Entry]:
        self._conn.search(
            search_base=base_dn,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=list(attributes) if attributes and attributes is not ALL_ATTRIBUTES else ALL_ATTRIBUTES,
        )
        return [_normalize(item) for item in self._conn.response or [] if item.get("type") == "searchResEntry"]

    def get_user(self, username: str, member_of: Sequence[str] = ()) -> Optional[Entry]:
        results = self.search(self.base_dn, f"(samaccountname={escape_filter_chars(username)})")
        if len(results) != 1:
            return None
        return results[0] if self.is_member_of_all(results[0], member_of) else None

    def authenticate_user(self, distinguished_name: str, password: str) -> bool:
        if not password:
            return False
        try:
            conn = Connection(self.server, user=distinguished_name, password=password)
            bound = conn.bind()
            conn.unbind()
            return bool(bound)
        except LDAPException as e:
            logger.warning(f"LDAP bind failed for {distinguished_name}: {e}")
            return False

    def is_member_of_any(self, entry: Mapping[str, Any], membership: Iterable[str] = ()) -> bool:
        return len(set(entry.get("memberof", [])) & set(membership)) > 0

    def is_member_of_all(self, entry: Mapping[str, Any], membership: Iterable[str] = ()) -> bool:
        return set(membership) <= set(entry.get("memberof", []))

    def belongs_to_ou(self, entry: Mapping[str, Any], ou: str) -> bool:
        names = entry.get("distinguishedname") or []
        return bool(names) and f"OU={ou}" in names[0]

    def get_entries(self, base_dn: str, search_filter: str, attributes: Sequence[str] = ()) -> List[Entry]:
        return self.search(base_dn, search_filter, attributes or ALL_ATTRIBUTES)

    def get_user_by_dn(self, base_dn: str, username: str) -> Optional[Entry]:
        return _first(self.search(base_dn, f"(samaccountname={escape_filter_chars(username)})"))

    def get_user_by_cn(self, base_dn: str, cname: str) -> Optional[Entry]:
        return _first(self.search(base_dn, f"(cn={escape_filter_chars(cname)})"))

    def get_expire_password_of_user(self, base_dn: str, username: str) -> Optional[Entry]:
        return _first(
            self.search(
                base_dn,
                f"(samaccountname={escape_filter_chars(username)})",
                ["msDS-UserPasswordExpiryTimeComputed"],
            )
        )


def _normalize(item: Mapping[str, Any]) -> Entry:
    entry: Entry = {"dn": [item.get("dn", "")]}
    for key, value in (item.get("attributes") or {}).items():
        entry[key.lower()] = list(value) if isinstance(value, (list, tuple)) else [value]
    return entry


def _first(entries: List[Entry]) -> Optional[Entry]:
    return entries[0] if entries else None


def register(app: "App", service_name: str, settings: Mapping[str, Any]) -> None:
    """Register a lazily bound :class:`Ldap` helper under the service name."""
    missing = [key for key in ("host", "base_dn") if not settings.get(key)]
    if missing:
        raise ValueError(f"LDAP service '{service_name}' is missing settings: {', '.join(missing)}")

    params = dict(settings)
    app.container.factory(service_name, lambda: Ldap(params))
