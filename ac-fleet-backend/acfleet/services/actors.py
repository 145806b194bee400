"""
Callers of the orchestration service.

A tenant outranks its sub-tenants on every device they share; precedence
is compared numerically rather than by branching on role names.
"""
import enum
from dataclasses import dataclass
from typing import Optional


class Role(str, enum.Enum):
    TENANT = "tenant"
    SUB_TENANT = "sub-tenant"

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self]


_PRECEDENCE = {Role.TENANT: 2, Role.SUB_TENANT: 1}


@dataclass(frozen=True)
class Actor:
    role: Role
    id: int
    tenant_id: int

    @classmethod
    def tenant(cls, tenant_id: int) -> "Actor":
        return cls(Role.TENANT, tenant_id, tenant_id)

    @classmethod
    def sub_tenant(cls, sub_tenant_id: int, tenant_id: int) -> "Actor":
        return cls(Role.SUB_TENANT, sub_tenant_id, tenant_id)

    @classmethod
    def owner_of(cls, event) -> "Actor":
        """The actor an event runs on behalf of, used by the scheduler"""
        if Role(event.created_by_role) is Role.SUB_TENANT:
            return cls.sub_tenant(event.sub_tenant_id, event.tenant_id)
        return cls.tenant(event.tenant_id)

    @property
    def is_tenant(self) -> bool:
        return self.role is Role.TENANT

    @property
    def sub_tenant_id(self) -> Optional[int]:
        return None if self.is_tenant else self.id

    def outranks(self, role) -> bool:
        return self.role.precedence > Role(role).precedence

    def yields_to(self, role) -> bool:
        return self.role.precedence < Role(role).precedence

    def can_manage(self, event) -> bool:
        if event.tenant_id != self.tenant_id:
            return False
        if self.is_tenant:
            return True
        return (
            Role(event.created_by_role) is Role.SUB_TENANT
            and event.sub_tenant_id == self.id
        )

    def __str__(self):
        return f"{self.role.value}:{self.id}"
