"""User profiles: helper capability and payout destinations."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import NotFoundError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.records import now_iso
from task_market_service.services.token_validator import optional_text

if TYPE_CHECKING:
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.token_validator import TokenValidator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_IBAN_RE = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")

_MAX_NAME_LENGTH = 200
_MAX_EMAIL_LENGTH = 320


def normalize_iban(value: str | None) -> str | None:
    """Uppercase and strip spaces; reject anything not shaped like an IBAN."""
    if value is None:
        return None
    iban = value.replace(" ", "").upper()
    if not _IBAN_RE.match(iban):
        raise ValidationError("INVALID_PAYLOAD", "iban is not a valid IBAN")
    return iban


def _optional_email(payload: dict[str, Any], field_name: str) -> str | None:
    email = optional_text(payload, field_name, _MAX_EMAIL_LENGTH)
    if email is not None and not _EMAIL_RE.match(email):
        raise ValidationError("INVALID_PAYLOAD", f"{field_name} must be an e-mail address")
    return email


def profile_to_response(profile: dict[str, Any], *, private: bool) -> dict[str, Any]:
    """Public view for everyone, with contact and payout fields for the owner."""
    response: dict[str, Any] = {
        "user_id": profile["user_id"],
        "full_name": profile["full_name"],
        "is_helper": bool(profile["is_helper"]),
    }
    if private:
        response.update(
            {
                "email": profile["email"],
                "iban": profile["iban"],
                "paypal_email": profile["paypal_email"],
                "has_payout_method": bool(profile["iban"] or profile["paypal_email"]),
                "updated_at": profile["updated_at"],
            }
        )
    return response


class ProfileManager:
    """Self-service profile updates."""

    def __init__(
        self,
        store: MarketStore,
        token_validator: TokenValidator,
        *,
        platform_agent_id: str,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._platform_agent_id = platform_agent_id
        self._logger = get_logger(__name__)

    async def upsert_profile(self, token: str) -> dict[str, Any]:
        """Create or replace the signer's own profile."""
        payload = await self._token_validator.validate_jws_token(token, "update_profile")
        signer_id: str = payload["_signer_id"]

        is_helper = payload.get("is_helper", False)
        if not isinstance(is_helper, bool):
            raise ValidationError("INVALID_PAYLOAD", "is_helper must be a boolean")

        profile = {
            "user_id": signer_id,
            "full_name": optional_text(payload, "full_name", _MAX_NAME_LENGTH),
            "email": _optional_email(payload, "email"),
            "is_helper": int(is_helper),
            "iban": normalize_iban(optional_text(payload, "iban", 64)),
            "paypal_email": _optional_email(payload, "paypal_email"),
            "updated_at": now_iso(),
        }
        self._store.upsert_profile(profile)
        self._logger.info(
            "Profile updated",
            extra={"user_id": signer_id, "is_helper": is_helper},
        )
        return profile_to_response(profile, private=True)

    async def get_profile(self, user_id: str, auth_token: str | None) -> dict[str, Any]:
        """Profile of one user. Private fields only for the owner or the platform."""
        viewer_id = None
        if auth_token is not None:
            viewer_id = await self._token_validator.signer_for(auth_token, "view_profile")

        profile = self._store.get_profile(user_id)
        if profile is None:
            raise NotFoundError("PROFILE_NOT_FOUND", "Profile not found")
        return profile_to_response(
            profile,
            private=viewer_id in (user_id, self._platform_agent_id),
        )
