"""Directory (LDAP / Active Directory) authentication.

Each attempt runs three independent exchanges with the directory:

1. a service-account search resolving the identifier to a distinguished name,
2. a fresh connection bound with that DN and the caller's secret, whose bind
   result alone proves the secret,
3. service-account queries for display attributes and group membership.

Every step returns a ``DirectoryResult`` carrying either a value or a
``DirectoryErrorKind``; nothing here raises for directory-side failures. All
calls are blocking and bounded by ``LDAP_TIMEOUT_SECONDS``; async callers run
them through ``asyncio.to_thread``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import ldap3
import structlog
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from src.core.auth import Role
from src.core.config import Settings, get_settings

logger = structlog.get_logger()

T = TypeVar("T")

USER_ATTRIBUTES = ("displayName", "givenName", "sn", "sAMAccountName", "distinguishedName")

# sizeLimitExceeded (4), referral (10) and noSuchObject (32) are not directory faults.
_SEARCH_OK_CODES = frozenset({0, 4, 10, 32})


class DirectoryErrorKind(str, Enum):
    EMPTY_CREDENTIALS = "empty_credentials"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class DirectoryResult(Generic[T]):
    value: T | None = None
    error: DirectoryErrorKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> DirectoryResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: DirectoryErrorKind, detail: str | None = None) -> DirectoryResult[T]:
        return cls(error=error, detail=detail)


@dataclass(frozen=True, slots=True)
class DirectoryIdentity:
    """Attributes resolved fresh from the directory on each login."""

    email: str
    name: str
    first_name: str | None
    last_name: str | None
    account_name: str | None
    distinguished_name: str
    role: Role


ConnectionFactory = Callable[[str | None, str | None], Any]


def role_for_groups(
    group_names: Iterable[str],
    *,
    admin_group: str,
    instructor_group: str,
    student_group: str,
) -> Role:
    """Map group common names to a role: Admin > Instructor > Student, default Student."""
    names = {name.casefold() for name in group_names if name}
    if admin_group.casefold() in names:
        return Role.ADMIN
    if instructor_group.casefold() in names:
        return Role.INSTRUCTOR
    if student_group.casefold() in names:
        return Role.STUDENT
    return Role.STUDENT


class DirectoryAuthenticator:
    """Authenticate users against an LDAP directory and resolve their role."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._connection_factory = connection_factory or self._connect

    # -- public API ------------------------------------------------------------

    def authenticate_user(self, identifier: str, password: str) -> bool:
        """Return True only when the directory accepts the caller's secret."""
        return self.verify_credentials(identifier, password).ok

    def verify_credentials(self, identifier: str, password: str) -> DirectoryResult[str]:
        """Resolve the user's DN and bind with it. Returns the DN on success."""
        if not identifier or not identifier.strip() or not password or not password.strip():
            return DirectoryResult.failure(DirectoryErrorKind.EMPTY_CREDENTIALS)

        dn_result = self.resolve_dn(identifier)
        if not dn_result.ok:
            self._log_failure("directory_dn_resolution_failed", identifier, dn_result)
            return DirectoryResult.failure(dn_result.error, dn_result.detail)

        bind_result = self.bind_as_user(dn_result.value, password)
        if not bind_result.ok:
            self._log_failure("directory_bind_failed", identifier, bind_result)
            return DirectoryResult.failure(bind_result.error, bind_result.detail)

        logger.info("directory_bind_succeeded", identifier=identifier)
        return DirectoryResult.success(dn_result.value)

    def authenticate(self, identifier: str, password: str) -> DirectoryResult[DirectoryIdentity]:
        """Verify the secret, then resolve attributes and role."""
        verified = self.verify_credentials(identifier, password)
        if not verified.ok:
            return DirectoryResult.failure(verified.error, verified.detail)
        return self.get_user_details(identifier)

    def resolve_dn(self, identifier: str) -> DirectoryResult[str]:
        entries = self._search_users(identifier, ("distinguishedName",))
        if not entries.ok:
            return DirectoryResult.failure(entries.error, entries.detail)

        entry = self._single(entries.value)
        if not entry.ok:
            return DirectoryResult.failure(entry.error, entry.detail)

        dn = _first_value(entry.value["attributes"], "distinguishedName") or entry.value["dn"]
        if not dn:
            return DirectoryResult.failure(DirectoryErrorKind.NOT_FOUND, "entry has no DN")
        return DirectoryResult.success(dn)

    def bind_as_user(self, dn: str, password: str) -> DirectoryResult[bool]:
        connection = None
        try:
            connection = self._connection_factory(dn, password)
            bound = connection.bind()
            description = (connection.result or {}).get("description")
        except (LDAPException, OSError) as exc:
            return DirectoryResult.failure(DirectoryErrorKind.UNAVAILABLE, str(exc))
        finally:
            self._close(connection)

        if not bound:
            return DirectoryResult.failure(DirectoryErrorKind.INVALID_CREDENTIALS, description)
        return DirectoryResult.success(True)

    def get_user_details(self, identifier: str) -> DirectoryResult[DirectoryIdentity]:
        """Fetch display attributes and the role derived from group membership."""
        entries = self._search_users(identifier, USER_ATTRIBUTES)
        if not entries.ok:
            self._log_failure("directory_attribute_lookup_failed", identifier, entries)
            return DirectoryResult.failure(entries.error, entries.detail)

        entry = self._single(entries.value)
        if not entry.ok:
            self._log_failure("directory_attribute_lookup_failed", identifier, entry)
            return DirectoryResult.failure(entry.error, entry.detail)

        attributes = entry.value["attributes"]
        given_name = _first_value(attributes, "givenName")
        surname = _first_value(attributes, "sn")
        display_name = _first_value(attributes, "displayName")
        if not display_name:
            display_name = f"{given_name or ''} {surname or ''}".strip()
        dn = _first_value(attributes, "distinguishedName") or entry.value["dn"]

        role = self.resolve_role(dn)
        if not role.ok:
            self._log_failure("directory_group_lookup_failed", identifier, role)
            return DirectoryResult.failure(role.error, role.detail)

        return DirectoryResult.success(
            DirectoryIdentity(
                email=identifier,
                name=display_name,
                first_name=given_name,
                last_name=surname,
                account_name=_first_value(attributes, "sAMAccountName"),
                distinguished_name=dn,
                role=role.value,
            )
        )

    def resolve_role(self, dn: str) -> DirectoryResult[Role]:
        groups = self.member_groups(dn)
        if not groups.ok:
            return DirectoryResult.failure(groups.error, groups.detail)

        settings = self._settings
        return DirectoryResult.success(
            role_for_groups(
                groups.value,
                admin_group=settings.ldap_admin_group,
                instructor_group=settings.ldap_instructor_group,
                student_group=settings.ldap_student_group,
            )
        )

    def member_groups(self, dn: str) -> DirectoryResult[list[str]]:
        """Common names of every group whose ``member`` attribute holds ``dn``."""
        if not dn:
            return DirectoryResult.success([])

        search_filter = f"(member={escape_filter_chars(dn)})"
        entries = self._service_search(
            self._absolute_base(self._settings.ldap_group_search_base), search_filter, ("cn",)
        )
        if not entries.ok:
            return DirectoryResult.failure(entries.error, entries.detail)

        names = [_first_value(item["attributes"], "cn") for item in entries.value]
        return DirectoryResult.success([name for name in names if name])

    def ping(self) -> DirectoryResult[bool]:
        """Bind with the service account; used by the health probe."""
        connection = self._open_service_connection()
        if not connection.ok:
            return DirectoryResult.failure(connection.error, connection.detail)
        self._close(connection.value)
        return DirectoryResult.success(True)

    # -- internals -------------------------------------------------------------

    def _connect(self, user: str | None, password: str | None) -> ldap3.Connection:
        timeout = self._settings.ldap_timeout_seconds
        server = ldap3.Server(self._settings.ldap_url, connect_timeout=timeout, get_info=ldap3.NONE)
        return ldap3.Connection(
            server,
            user=user,
            password=password,
            receive_timeout=timeout,
            read_only=True,
            raise_exceptions=False,
        )

    def _open_service_connection(self) -> DirectoryResult[Any]:
        settings = self._settings
        try:
            connection = self._connection_factory(
                settings.ldap_username or None, settings.ldap_password or None
            )
            bound = connection.bind()
        except (LDAPException, OSError) as exc:
            return DirectoryResult.failure(DirectoryErrorKind.UNAVAILABLE, str(exc))

        if not bound:
            description = (connection.result or {}).get("description")
            self._close(connection)
            return DirectoryResult.failure(
                DirectoryErrorKind.UNAVAILABLE, f"service bind refused: {description}"
            )
        return DirectoryResult.success(connection)

    def _search_users(
        self, identifier: str, attributes: Iterable[str]
    ) -> DirectoryResult[list[dict[str, Any]]]:
        search_filter = self._settings.ldap_user_search_filter.format(
            identifier=escape_filter_chars(identifier)
        )
        return self._service_search(
            self._absolute_base(self._settings.ldap_user_search_base), search_filter, attributes
        )

    def _service_search(
        self, base: str, search_filter: str, attributes: Iterable[str]
    ) -> DirectoryResult[list[dict[str, Any]]]:
        opened = self._open_service_connection()
        if not opened.ok:
            return DirectoryResult.failure(opened.error, opened.detail)

        connection = opened.value
        try:
            connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=ldap3.SUBTREE,
                attributes=list(attributes),
            )
            result = dict(connection.result or {})
            response = list(connection.response or [])
        except (LDAPException, OSError) as exc:
            return DirectoryResult.failure(DirectoryErrorKind.UNAVAILABLE, str(exc))
        finally:
            self._close(connection)

        if result.get("result", 0) not in _SEARCH_OK_CODES:
            return DirectoryResult.failure(
                DirectoryErrorKind.UNAVAILABLE, result.get("description")
            )

        entries = [
            {"dn": item.get("dn"), "attributes": item.get("attributes") or {}}
            for item in response
            if item.get("type") == "searchResEntry"
        ]
        return DirectoryResult.success(entries)

    def _absolute_base(self, relative: str) -> str:
        base = self._settings.ldap_base
        relative = (relative or "").strip()
        if not relative:
            return base
        if not base or relative.lower().endswith(base.lower()):
            return relative
        return f"{relative},{base}"

    @staticmethod
    def _single(entries: list[dict[str, Any]]) -> DirectoryResult[dict[str, Any]]:
        if not entries:
            return DirectoryResult.failure(DirectoryErrorKind.NOT_FOUND)
        if len(entries) > 1:
            return DirectoryResult.failure(
                DirectoryErrorKind.AMBIGUOUS, f"{len(entries)} entries matched"
            )
        return DirectoryResult.success(entries[0])

    @staticmethod
    def _close(connection: Any) -> None:
        if connection is None:
            return
        try:
            connection.unbind()
        except (LDAPException, OSError) as exc:
            logger.debug("directory_unbind_failed", error=str(exc))

    @staticmethod
    def _log_failure(event: str, identifier: str, result: DirectoryResult[Any]) -> None:
        level = logger.error if result.error is DirectoryErrorKind.UNAVAILABLE else logger.info
        level(event, identifier=identifier, kind=result.error.value, detail=result.detail)


def _first_value(attributes: Mapping[str, Any], name: str) -> str | None:
    """Read a single string value, tolerating attribute-name case and list values."""
    value = attributes.get(name)
    if value is None:
        lowered = name.lower()
        value = next((v for k, v in attributes.items() if k.lower() == lowered), None)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if value is None:
        return None
    value = str(value).strip()
    return value or None
