"""Authentication service."""

import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

from libris.core.config import settings
from libris.core.redis_client import RevocationList
from libris.core.security import create_access_token, hash_password, verify_password
from libris.domain.entities import Identity, Profile, Role
from libris.domain.errors import NotAuthenticated, NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IProfileRepository, IRoleRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class AuthService:
    """Handles signup, login, profile, roles and token revocation."""

    def __init__(
        self,
        profile_repository: IProfileRepository,
        role_repository: IRoleRepository,
        revocation_list: Optional[RevocationList] = None,
        admin_emails: Optional[list[str]] = None,
    ):
        self.profile_repository = profile_repository
        self.role_repository = role_repository
        self.revocation_list = revocation_list
        self.admin_emails = {e.lower() for e in (admin_emails or [])}

    async def signup(self, email: str, password: str, full_name: Optional[str] = None) -> Profile:
        """Register a member.  Addresses in ``ADMIN_EMAILS`` also get the admin role."""
        email = email.strip().lower()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if await self.profile_repository.get_by_email(email):
            raise ValidationError("Email already registered")

        profile = await self.profile_repository.create(
            Profile(
                id=uuid4(),
                email=email,
                hashed_password=hash_password(password),
                full_name=(full_name or "").strip() or None,
            )
        )
        await self.role_repository.grant(profile.id, Role.USER)
        if email in self.admin_emails:
            await self.role_repository.grant(profile.id, Role.ADMIN)
            logger.info("Granted admin role to %s at signup", profile.id)
        logger.info("User registered: %s", profile.id)
        return profile

    async def login(self, email: str, password: str) -> str:
        """Authenticate and return a JWT access token."""
        profile = await self.profile_repository.get_by_email(email.strip().lower())
        if not profile or not verify_password(password, profile.hashed_password):
            raise NotAuthenticated("Invalid email or password")
        if not profile.is_active:
            raise NotAuthenticated("Account is deactivated")

        token = create_access_token(
            data={"sub": str(profile.id)},
            expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        )
        logger.info("User logged in: %s", profile.id)
        return token

    async def sign_out(self, claims: dict[str, Any]) -> None:
        if self.revocation_list is None:
            return
        ttl = await self.revocation_list.revoke(claims)
        logger.info("Token of %s revoked for %ss", claims.get("sub"), ttl)

    async def resolve_identity(self, user_id: UUID) -> Optional[Identity]:
        """Build the request identity for *user_id*; ``None`` if the account is unusable."""
        profile = await self.profile_repository.get_by_id(user_id)
        if not profile or not profile.is_active:
            return None
        roles = await self.role_repository.get_roles(user_id)
        role = Role.ADMIN if Role.ADMIN in roles else Role.USER
        return Identity(user_id=profile.id, email=profile.email, role=role)

    async def get_profile(self, identity: Optional[Identity]) -> Profile:
        if identity is None:
            raise NotAuthenticated()
        profile = await self.profile_repository.get_by_id(identity.user_id)
        if not profile:
            raise NotFound("Profile not found")
        return profile

    async def update_profile(
        self,
        identity: Optional[Identity],
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Profile:
        profile = await self.get_profile(identity)
        if full_name is not None:
            profile.full_name = full_name.strip() or None
        if avatar_url is not None:
            profile.avatar_url = avatar_url.strip() or None
        return await self.profile_repository.update(profile)

    async def set_role(self, identity: Optional[Identity], user_id: UUID, role: Role) -> Role:
        """Make *user_id* an admin or a plain member."""
        authorize(identity, Capability.MANAGE_ROLES)
        if not await self.profile_repository.get_by_id(user_id):
            raise NotFound("User not found")
        if user_id == identity.user_id and role != Role.ADMIN:
            raise ValidationError("You cannot remove your own admin role")

        await self.role_repository.grant(user_id, Role.USER)
        if role == Role.ADMIN:
            await self.role_repository.grant(user_id, Role.ADMIN)
        else:
            await self.role_repository.revoke(user_id, Role.ADMIN)
        logger.info("User %s role set to %s by %s", user_id, role.value, identity.user_id)
        return role

    async def list_users(
        self, identity: Optional[Identity], skip: int = 0, limit: int = 100
    ) -> list[tuple[Profile, Role]]:
        authorize(identity, Capability.VIEW_ALL)
        users = []
        for profile in await self.profile_repository.list_all(skip, limit):
            roles = await self.role_repository.get_roles(profile.id)
            users.append((profile, Role.ADMIN if Role.ADMIN in roles else Role.USER))
        return users
