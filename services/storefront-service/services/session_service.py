"""Session/identity holder and authentication flows."""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import redis

from schemas import UserProfile
from services.gateway_service import GatewayClient, GatewayError, GatewayUnavailable
from monitoring import auth_attempts_counter, auth_failures_counter

logger = logging.getLogger(__name__)


class SessionHolder:
    """
    Current-user state for one client.

    The profile is replaced wholesale when an authoritative row is at hand
    and patched field-wise after checkout.
    """

    def __init__(self, storage: redis.Redis, storage_key: str):
        """
        Initialize session holder.

        Args:
            storage: Durable key/value storage for the session tokens
            storage_key: Namespaced key holding the tokens
        """
        self.storage = storage
        self.storage_key = storage_key
        self.profile: Optional[UserProfile] = None
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        # set while a deposit or redemption is mutating the balance
        self.processing = False

    @property
    def is_authenticated(self) -> bool:
        return self.profile is not None and self.access_token is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.profile.id if self.profile else None

    def replace(self, profile: UserProfile) -> None:
        self.profile = profile

    def apply_checkout(self, new_balance: Decimal, points_earned: int) -> None:
        """Patch balance and points only, leaving other profile fields alone."""
        if self.profile is None:
            return
        self.profile = self.profile.model_copy(update={
            "wallet_balance": new_balance,
            "discord_points": self.profile.discord_points + points_earned
        })

    def start(self, session: Dict[str, Any], profile: UserProfile) -> None:
        self.access_token = session["access_token"]
        self.refresh_token = session.get("refresh_token")
        self.profile = profile
        self._remember()

    def clear(self) -> None:
        self.profile = None
        self.access_token = None
        self.refresh_token = None
        self.processing = False
        try:
            self.storage.delete(self.storage_key)
        except redis.RedisError as e:
            logger.error("Failed to forget stored session", extra={
                "storage_key": self.storage_key,
                "error": str(e)
            })

    def stored_tokens(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.storage.get(self.storage_key)
        except redis.RedisError as e:
            logger.error("Failed to read stored session", extra={
                "storage_key": self.storage_key,
                "error": str(e)
            })
            return None
        if not raw:
            return None
        try:
            tokens = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed stored session", extra={"storage_key": self.storage_key})
            return None
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            return None
        return tokens

    def _remember(self) -> None:
        payload = json.dumps({"access_token": self.access_token, "refresh_token": self.refresh_token})
        try:
            self.storage.set(self.storage_key, payload)
        except redis.RedisError as e:
            logger.error("Failed to persist session", extra={
                "storage_key": self.storage_key,
                "error": str(e)
            })


def provisional_profile(user: Dict[str, Any]) -> UserProfile:
    """Profile stand-in for an auth user whose profile row does not exist yet."""
    email = user.get("email") or ""
    metadata = user.get("user_metadata") or {}
    return UserProfile(
        id=user["id"],
        email=email,
        username=metadata.get("username") or email.split("@")[0] or "User"
    )


class SessionService:
    """Authentication flows populating a SessionHolder."""

    def __init__(self, gateway: GatewayClient):
        """
        Initialize session service.

        Args:
            gateway: Gateway client (unbound; sessions are bound per call)
        """
        self.gateway = gateway

    async def load_profile(self, access_token: str, user: Dict[str, Any]) -> UserProfile:
        row = await self.gateway.bind(access_token).select_one("profiles", {"id": user["id"]})
        if row is None:
            logger.warning("No profile row for auth user", extra={"user_id": user["id"]})
            return provisional_profile(user)
        return UserProfile.model_validate(row)

    async def sign_in(self, holder: SessionHolder, email: str, password: str) -> UserProfile:
        """
        Sign in with email and password.

        Raises:
            GatewayError: If the credentials are rejected or the gateway fails
        """
        auth_attempts_counter.add(1, {"type": "password"})
        try:
            session = await self.gateway.sign_in_with_password(email, password)
        except GatewayError as e:
            auth_failures_counter.add(1, {"reason": "rejected" if e.status_code else "unavailable"})
            logger.warning("Login failed", extra={"email": email, "error": e.message})
            raise
        profile = await self.load_profile(session["access_token"], session["user"])
        holder.start(session, profile)
        logger.info("User logged in successfully", extra={"user_id": profile.id})
        return profile

    async def sign_up(
        self,
        holder: SessionHolder,
        email: str,
        password: str,
        username: str
    ) -> Optional[UserProfile]:
        """
        Register a new account.

        Returns:
            The signed-in profile, or None while email verification is pending
        """
        auth_attempts_counter.add(1, {"type": "sign_up"})
        result = await self.gateway.sign_up(email, password, {"username": username, "full_name": username})
        if not result.get("access_token"):
            logger.info("Sign-up awaiting email verification", extra={"email": email})
            return None
        profile = await self.load_profile(result["access_token"], result["user"])
        holder.start(result, profile)
        logger.info("User signed up", extra={"user_id": profile.id})
        return profile

    async def sign_out(self, holder: SessionHolder) -> None:
        """Revoke the session remotely (best effort) and clear local identity."""
        if holder.access_token:
            try:
                await self.gateway.bind(holder.access_token).sign_out()
            except GatewayError as e:
                logger.warning("Remote sign-out failed", extra={
                    "user_id": holder.user_id,
                    "error": e.message
                })
        logger.info("User logged out", extra={"user_id": holder.user_id})
        holder.clear()

    async def refresh_profile(self, holder: SessionHolder) -> UserProfile:
        """Re-fetch the profile row and replace the held profile."""
        if not holder.is_authenticated:
            raise PermissionError("Please log in to continue.")
        row = await self.gateway.bind(holder.access_token).select_one("profiles", {"id": holder.user_id})
        if row is None:
            raise LookupError("Profile not found")
        profile = UserProfile.model_validate(row)
        holder.replace(profile)
        return profile

    async def restore(self, holder: SessionHolder) -> bool:
        """
        Revive a stored session.

        Returns:
            True when a profile was restored
        """
        tokens = holder.stored_tokens()
        if tokens is None:
            return False
        access_token = tokens["access_token"]
        try:
            user = await self.gateway.bind(access_token).get_user()
            profile = await self.load_profile(access_token, user)
        except GatewayUnavailable as e:
            logger.warning("Could not restore session, gateway unavailable", extra={"error": e.message})
            return False
        except GatewayError as e:
            if e.status_code in (401, 403):
                logger.info("Stored session expired", extra={"storage_key": holder.storage_key})
                holder.clear()
            else:
                logger.error("Could not restore session", extra={
                    "storage_key": holder.storage_key,
                    "error": e.message
                })
            return False
        holder.start(tokens, profile)
        return True
