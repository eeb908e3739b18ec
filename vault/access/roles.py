"""
Role-based access for vault entry points.

Three roles: ADMIN (pause, emergency exit, role grants), MANAGER
(adapters, tuning, harvest, rebalance) and SETTLEMENT (reserve, release
and deduct on behalf of the rental workflow). ADMIN passes every check.

The check runs before the vault takes its mutation lock, so an
unauthorized call never touches state.
"""
import functools
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, Set

from vault.errors import AuthorizationError, ValidationError
from vault.validation import require_address

logger = logging.getLogger("vault.access")


class Role(Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SETTLEMENT = "settlement"


class AccessController:

    def __init__(self, admin: str):
        require_address(admin, "admin")
        self._grants: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._grants[Role.ADMIN].add(admin)

    def has_role(self, account: str, role: Role) -> bool:
        if account in self._grants[Role.ADMIN]:
            return True
        return account in self._grants[role]

    def require(self, account: str, role: Role) -> None:
        if not self.has_role(account, role):
            logger.debug(f"Rejected: {account} lacks {role.value}")
            raise AuthorizationError(account, role.value)

    def grant_role(self, caller: str, role: Role, account: str) -> None:
        self.require(caller, Role.ADMIN)
        require_address(account, "account")
        self._grants[role].add(account)
        logger.info(f"Role {role.value} granted to {account} by {caller}")

    def revoke_role(self, caller: str, role: Role, account: str) -> None:
        self.require(caller, Role.ADMIN)
        if role is Role.ADMIN and self._grants[Role.ADMIN] == {account}:
            raise ValidationError("cannot revoke the last admin")
        self._grants[role].discard(account)
        logger.info(f"Role {role.value} revoked from {account} by {caller}")

    def members(self, role: Role) -> Iterable[str]:
        return sorted(self._grants[role])


def requires_role(role: Role) -> Callable:
    """Decorator for async VaultCore methods whose first argument is the caller."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, caller, *args, **kwargs):
            self.access.require(caller, role)
            return await func(self, caller, *args, **kwargs)
        return wrapper
    return decorator
