from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends  # type: ignore[import-not-found]

from gatekeeper.auth.depends import get_auth_service
from gatekeeper.auth.models import User, UserRole
from gatekeeper.auth.service import AuthService
from gatekeeper.commons.exceptions import ErrorKind
from gatekeeper.commons.logging import logger
from gatekeeper.users.exceptions import UsersServiceException


@dataclass(frozen=True)
class UsersService:
    auth: AuthService

    async def list_users(self) -> list[User]:
        return await self.auth.users.list_users()

    async def delete_user(self, *, target_id: UUID, requester: User) -> None:
        """
        USER: only themselves. ADMIN: only regular users. SUPER_ADMIN: anyone.
        """
        target = await self.auth.users.get_by_id(target_id)
        if target is None:
            logger.warning("USER_DELETE_FAILED: user not found - %s", target_id)
            raise UsersServiceException(
                ErrorKind.NOT_FOUND, f"User with ID {target_id} not found"
            )

        if requester.role == UserRole.USER and target.id != requester.id:
            logger.warning(
                "USER_DELETE_DENIED: %s tried to delete %s", requester.id, target.id
            )
            raise UsersServiceException(
                ErrorKind.FORBIDDEN, "You can only delete your own account"
            )
        if requester.role == UserRole.ADMIN and target.role != UserRole.USER:
            logger.warning(
                "USER_DELETE_DENIED: admin %s tried to delete %s user %s",
                requester.id,
                target.role,
                target.id,
            )
            raise UsersServiceException(
                ErrorKind.FORBIDDEN, "Admins can only delete regular users"
            )

        await self.auth.logout(user_id=target.id)
        await self.auth.users.delete_user(target.id)
        logger.info(
            "USER_DELETED: %s (%s) deleted by %s (%s)",
            target.id,
            target.role,
            requester.id,
            requester.role,
        )

    async def update_role(
        self, *, target_id: UUID, requester: User, role: UserRole
    ) -> User:
        if target_id == requester.id:
            logger.warning("ROLE_CHANGE_DENIED: %s tried to change own role", requester.id)
            raise UsersServiceException(
                ErrorKind.BAD_REQUEST, "You cannot change your own role"
            )
        target = await self.auth.users.get_by_id(target_id)
        if target is None:
            raise UsersServiceException(
                ErrorKind.NOT_FOUND, f"User with ID {target_id} not found"
            )
        if target.role == UserRole.SUPER_ADMIN:
            logger.warning(
                "ROLE_CHANGE_DENIED: %s tried to change SUPER_ADMIN role", requester.id
            )
            raise UsersServiceException(
                ErrorKind.BAD_REQUEST, "Cannot change SUPER_ADMIN role"
            )
        old_role = target.role
        updated = await self.auth.users.update_role(target_id, role)
        if updated is None:
            raise UsersServiceException(
                ErrorKind.NOT_FOUND, f"User with ID {target_id} not found"
            )
        logger.info(
            "USER_ROLE_UPDATED: %s %s -> %s by %s", target_id, old_role, role, requester.id
        )
        return updated

    async def force_logout(self, *, target_id: UUID, requester: User) -> None:
        target = await self.auth.users.get_by_id(target_id)
        if target is None:
            raise UsersServiceException(
                ErrorKind.NOT_FOUND, f"User with ID {target_id} not found"
            )
        await self.auth.logout(user_id=target.id)
        logger.info("USER_FORCED_LOGOUT: %s by %s", target.id, requester.id)


def get_users_service(
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> UsersService:
    return UsersService(auth=auth)
