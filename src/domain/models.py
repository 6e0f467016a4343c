from __future__ import annotations

from dataclasses import dataclass

from src.core.auth import AUTHORITY_PREFIX, ROLE_ALIASES, Role


@dataclass(frozen=True, slots=True)
class Identity:
    """The authenticated caller for a single request."""

    email: str
    authority: str
    user_id: int | None = None
    name: str | None = None

    def has_any_role(self, roles: set[Role]) -> bool:
        """True when the authority names one of ``roles``.

        ``ROLE_TEACHER`` is honoured wherever ``ROLE_INSTRUCTOR`` is.
        """
        name = self.authority.removeprefix(AUTHORITY_PREFIX)
        name = ROLE_ALIASES.get(name, name)
        return name in {role.value for role in roles}
