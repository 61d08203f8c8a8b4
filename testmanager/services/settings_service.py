"""
AI provider settings stored in the `settings` table.

Lookup order for every key: database row, then environment variable, then
the built-in default. API keys are stored encrypted (Fernet, ENCRYPTION_KEY)
and never returned in clear text by the API.

Transaction policy: flush() only; the route handler commits.
"""
import logging
import os

from cryptography.fernet import InvalidToken

from testmanager.core.exceptions import ValidationError
from testmanager.models import db
from testmanager.models.setting import Setting
from testmanager.utils.crypto import decrypt_secret, encrypt_secret, mask_secret

logger = logging.getLogger(__name__)

AI_PROVIDERS = ("gemini", "openai", "claude", "grok")

DEFAULT_MODELS = {
    "gemini": "gemini-1.5-flash",
    "openai": "gpt-4o",
    "claude": "claude-3-5-sonnet-20241022",
    "grok": "grok-2-latest",
}

DEFAULT_ENDPOINTS = {
    "claude": "https://api.anthropic.com",
    "grok": "https://api.x.ai/v1",
}

# Extra env names accepted for a provider's key.
_KEY_ENV_ALIASES = {"claude": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY")}

SETTING_KEYS = (
    "ai_provider",
    *(f"{p}_model" for p in AI_PROVIDERS),
    *(f"{p}_api_key" for p in AI_PROVIDERS),
    *(f"{p}_api_endpoint" for p in DEFAULT_ENDPOINTS),
)


def _is_secret(key):
    return key.endswith("_api_key")


def _env_value(key):
    if key == "ai_provider":
        return os.getenv("AI_PROVIDER")
    provider, _, suffix = key.partition("_")
    if suffix == "api_key":
        for name in _KEY_ENV_ALIASES.get(provider, (f"{provider.upper()}_API_KEY",)):
            if os.getenv(name):
                return os.getenv(name)
        return None
    return os.getenv(key.upper())


def _default_value(key):
    if key == "ai_provider":
        return "gemini"
    provider, _, suffix = key.partition("_")
    if suffix == "model":
        return DEFAULT_MODELS.get(provider)
    if suffix == "api_endpoint":
        return DEFAULT_ENDPOINTS.get(provider)
    return None


def get_setting(key):
    row = Setting.query.filter_by(key=key).first()
    if row is not None and row.value:
        if not row.is_secret:
            return row.value
        try:
            return decrypt_secret(row.value)
        except (RuntimeError, InvalidToken) as exc:
            logger.error("Cannot decrypt setting %s: %s", key, exc)
    return _env_value(key) or _default_value(key)


def provider_settings(provider=None):
    """Resolved {provider, model, api_key, endpoint} for one provider."""
    provider = provider or get_setting("ai_provider")
    if provider not in AI_PROVIDERS:
        raise ValidationError(f"Unsupported AI provider: {provider}", details={"provider": provider})
    return {
        "provider": provider,
        "model": get_setting(f"{provider}_model"),
        "api_key": get_setting(f"{provider}_api_key"),
        "endpoint": get_setting(f"{provider}_api_endpoint") if provider in DEFAULT_ENDPOINTS else None,
    }


def public_settings():
    """All AI settings with API keys masked."""
    out = {}
    for key in SETTING_KEYS:
        value = get_setting(key)
        out[key] = mask_secret(value) if _is_secret(key) else value
    return out


def update_settings(data):
    """Upsert known keys; empty strings delete the stored value."""
    unknown = sorted(set(data) - set(SETTING_KEYS))
    if unknown:
        raise ValidationError("Unknown settings", details={"keys": unknown})
    if "ai_provider" in data and data["ai_provider"] not in AI_PROVIDERS:
        raise ValidationError(
            f"ai_provider must be one of: {', '.join(AI_PROVIDERS)}",
            details={"ai_provider": data["ai_provider"]},
        )

    for key, value in data.items():
        row = Setting.query.filter_by(key=key).first()
        if value in (None, ""):
            if row is not None:
                db.session.delete(row)
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        stored = value
        if _is_secret(key):
            try:
                stored = encrypt_secret(value)
            except RuntimeError as exc:
                raise ValidationError(str(exc))
        if row is None:
            row = Setting(key=key)
            db.session.add(row)
        row.value = stored
        row.is_secret = _is_secret(key)
    db.session.flush()
    logger.info("AI settings updated: %s", ", ".join(sorted(data)))
    return public_settings()
