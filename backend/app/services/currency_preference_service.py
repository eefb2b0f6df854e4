"""
User currency preference service.
"""
import logging
from typing import Optional, Union
from pydantic import ValidationError
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.exceptions import InvalidPreference
from app.core.utils import normalize_currency_code
from app.models.currency_preference import CurrencyPreference
from app.models.exchange_rate import RateSource
from app.models.user import User
from app.schemas.currency_preference import CurrencyPreferenceResponse, CurrencyPreferenceUpdate

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_ORDER = [RateSource.API, RateSource.LLM]
DEFAULT_ENABLED_METHODS = [RateSource.API, RateSource.LLM]


def get_default_currency(user_id: int, db: Session) -> str:
    """
    Get the default currency for a user.
    Falls back to the global DEFAULT_CURRENCY setting.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if user and user.default_currency:
        try:
            return normalize_currency_code(user.default_currency)
        except ValueError:
            logger.warning(
                f"User {user_id} has invalid default currency {user.default_currency!r}, "
                f"using {settings.DEFAULT_CURRENCY}"
            )
    return normalize_currency_code(settings.DEFAULT_CURRENCY)


def get_preferences(user_id: int, db: Session) -> CurrencyPreferenceResponse:
    """
    Get a user's currency preferences.

    Users without a stored record get synthesized defaults:
    fallback order [api, llm], both enabled, no custom rates.
    """
    default_currency = get_default_currency(user_id, db)
    prefs = db.query(CurrencyPreference).filter(CurrencyPreference.user_id == user_id).first()

    if not prefs:
        return CurrencyPreferenceResponse(
            user_id=user_id,
            default_currency=default_currency,
            fallback_order=list(DEFAULT_FALLBACK_ORDER),
            enabled_methods=list(DEFAULT_ENABLED_METHODS),
            custom_rates={},
            is_default=True
        )

    return CurrencyPreferenceResponse(
        user_id=user_id,
        default_currency=default_currency,
        fallback_order=_known_sources(prefs.fallback_order),
        enabled_methods=_known_sources(prefs.enabled_methods),
        custom_rates=prefs.custom_rates or {},
        updated_at=prefs.updated_at
    )


def validate_preferences(fallback_order: list, enabled_methods: list) -> None:
    """
    Check fallback order against enabled sources.

    Raises:
        InvalidPreference: If no source is enabled, the order has duplicates,
            or the order lists a source that is not enabled
    """
    if not enabled_methods:
        raise InvalidPreference("At least one rate source must be enabled")
    if len(set(fallback_order)) != len(fallback_order):
        raise InvalidPreference("fallback_order must not contain duplicates")
    disabled = [source.value for source in fallback_order if source not in set(enabled_methods)]
    if disabled:
        raise InvalidPreference(f"fallback_order references disabled sources: {', '.join(disabled)}")


def set_preferences(
    user_id: int,
    update: Union[CurrencyPreferenceUpdate, dict],
    db: Session
) -> CurrencyPreferenceResponse:
    """
    Apply a partial preference update for a user.

    Fields that are not provided keep their current (or default) value. The
    merged result is validated before anything is written.

    Raises:
        InvalidPreference: If the update names an unknown source, a
            non-positive custom rate, or breaks the fallback/enabled invariant
    """
    if isinstance(update, dict):
        try:
            update = CurrencyPreferenceUpdate.model_validate(update)
        except ValidationError as e:
            raise InvalidPreference(str(e)) from e

    current = get_preferences(user_id, db)
    fallback_order = list(update.fallback_order if update.fallback_order is not None else current.fallback_order)
    enabled_methods = _unique(update.enabled_methods if update.enabled_methods is not None else current.enabled_methods)
    custom_rates = update.custom_rates if update.custom_rates is not None else current.custom_rates

    validate_preferences(fallback_order, enabled_methods)

    prefs: Optional[CurrencyPreference] = db.query(CurrencyPreference).filter(
        CurrencyPreference.user_id == user_id
    ).first()

    values = {
        "fallback_order": [source.value for source in fallback_order],
        "enabled_methods": [source.value for source in enabled_methods],
        "custom_rates": dict(custom_rates),
    }
    if prefs:
        for field, value in values.items():
            setattr(prefs, field, value)
    else:
        prefs = CurrencyPreference(user_id=user_id, **values)
        db.add(prefs)

    db.commit()
    logger.info(f"Saved currency preferences for user {user_id}: order={values['fallback_order']}")
    return get_preferences(user_id, db)


def _known_sources(values) -> list:
    # Older records may list "custom", which is an override, not a source
    known = {source.value for source in RateSource}
    return [RateSource(value) for value in values or [] if value in known]


def _unique(sources) -> list:
    seen = []
    for source in sources:
        if source not in seen:
            seen.append(source)
    return seen
