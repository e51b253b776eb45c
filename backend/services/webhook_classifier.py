"""Classify raw Plaid webhook payloads into semantic categories.

Plaid nests the real reason for an ``ITEM/ERROR`` webhook inside its
``error`` object, and several codes mean the same thing for us (for
example ``PENDING_EXPIRATION`` and ``PENDING_DISCONNECT`` both require the
user to re-authenticate).  :func:`classify_webhook` resolves all of that
once, so the status updater only switches on :class:`WebhookCategory`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class WebhookCategory(str, Enum):
    SESSION_FINISHED = "session_finished"
    LOGIN_REQUIRED = "login_required"
    ITEM_ERROR = "item_error"
    LOGIN_REPAIRED = "login_repaired"
    PERMISSION_REVOKED = "permission_revoked"
    ACCOUNT_REVOKED = "account_revoked"
    NEW_ACCOUNTS_AVAILABLE = "new_accounts_available"
    SYNC_UPDATES_AVAILABLE = "sync_updates_available"
    INFORMATIONAL = "informational"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ClassifiedWebhook:
    """A webhook reduced to the fields its category needs."""

    category: WebhookCategory
    webhook_type: str
    webhook_code: str
    external_item_id: str | None = None
    external_account_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    consent_expires_at: datetime | None = None
    link_token: str | None = None
    link_session_id: str | None = None
    session_status: str | None = None
    public_tokens: tuple[str, ...] = field(default_factory=tuple)
    session_error: dict[str, Any] | None = None


_LOGIN_REQUIRED_CODES = {"PENDING_EXPIRATION", "PENDING_DISCONNECT"}

_ITEM_CODES: dict[str, WebhookCategory] = {
    "LOGIN_REPAIRED": WebhookCategory.LOGIN_REPAIRED,
    "USER_PERMISSION_REVOKED": WebhookCategory.PERMISSION_REVOKED,
    "USER_ACCOUNT_REVOKED": WebhookCategory.ACCOUNT_REVOKED,
    "NEW_ACCOUNTS_AVAILABLE": WebhookCategory.NEW_ACCOUNTS_AVAILABLE,
    "WEBHOOK_UPDATE_ACKNOWLEDGED": WebhookCategory.INFORMATIONAL,
}


def _public_tokens(payload: dict[str, Any]) -> tuple[str, ...]:
    """Collect ``public_tokens`` and ``public_token``, deduplicated in order."""
    tokens: list[str] = []
    many = payload.get("public_tokens")
    if isinstance(many, list):
        tokens.extend(t for t in many if isinstance(t, str) and t)
    single = payload.get("public_token")
    if isinstance(single, str) and single:
        tokens.append(single)
    return tuple(dict.fromkeys(tokens))


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def classify_webhook(payload: dict[str, Any]) -> ClassifiedWebhook:
    """Map a raw webhook body to exactly one :class:`WebhookCategory`.

    Pure function: no I/O, no clock, never raises for well-formed dicts.
    """
    webhook_type = str(payload.get("webhook_type") or "")
    webhook_code = str(payload.get("webhook_code") or "")
    error = payload.get("error") if isinstance(payload.get("error"), dict) else None
    error_code = error.get("error_code") if error else None
    error_message = error.get("error_message") if error else None

    common = {
        "webhook_type": webhook_type,
        "webhook_code": webhook_code,
        "external_item_id": payload.get("item_id"),
        "external_account_id": payload.get("account_id"),
    }

    if webhook_type == "LINK":
        if webhook_code == "SESSION_FINISHED":
            return ClassifiedWebhook(
                category=WebhookCategory.SESSION_FINISHED,
                link_token=payload.get("link_token"),
                link_session_id=payload.get("link_session_id"),
                session_status=payload.get("status"),
                public_tokens=_public_tokens(payload),
                session_error=error,
                error_code=error_code,
                error_message=error_message,
                **common,
            )
        return ClassifiedWebhook(category=WebhookCategory.INFORMATIONAL, **common)

    if webhook_type == "TRANSACTIONS":
        if webhook_code == "SYNC_UPDATES_AVAILABLE":
            return ClassifiedWebhook(category=WebhookCategory.SYNC_UPDATES_AVAILABLE, **common)
        # Legacy /transactions/get codes; /transactions/sync users only need the flag above.
        return ClassifiedWebhook(category=WebhookCategory.INFORMATIONAL, **common)

    if webhook_type == "ITEM":
        if webhook_code == "ERROR":
            category = (
                WebhookCategory.LOGIN_REQUIRED
                if error_code == "ITEM_LOGIN_REQUIRED"
                else WebhookCategory.ITEM_ERROR
            )
            return ClassifiedWebhook(
                category=category,
                error_code=error_code,
                error_message=error_message,
                **common,
            )
        if webhook_code in _LOGIN_REQUIRED_CODES:
            return ClassifiedWebhook(
                category=WebhookCategory.LOGIN_REQUIRED,
                error_code=error_code,
                error_message=error_message,
                consent_expires_at=_parse_timestamp(payload.get("consent_expiration_time")),
                **common,
            )
        category = _ITEM_CODES.get(webhook_code)
        if category is not None:
            return ClassifiedWebhook(category=category, **common)

    return ClassifiedWebhook(category=WebhookCategory.UNRECOGNIZED, **common)
