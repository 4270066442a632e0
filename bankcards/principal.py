"""
The authenticated caller, as seen by the card services.

A Principal is resolved once per request by the auth dependency
(dependencies.get_current_principal) and passed explicitly into every
service call. Services never look up "the current user" on their own.
"""

from dataclasses import dataclass, field

from bankcards.models.user import Role


@dataclass(frozen=True)
class Principal:
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: Role | str) -> bool:
        name = role.value if isinstance(role, Role) else role
        return name in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)
