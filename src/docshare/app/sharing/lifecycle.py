"""Share-link lifecycle guard.

States::

    ACTIVE ──expires_at passed──────────────▶ EXPIRED    (terminal)
    ACTIVE ──access_count >= max_accesses───▶ EXHAUSTED  (terminal)
    ACTIVE ──failed attempts >= max, <15m───▶ THROTTLED
    THROTTLED ──15 minutes since last attempt──▶ ACTIVE  (lazily, next attempt)

Checks run in that order: expiry, then exhaustion, then throttling.

All functions here are pure transformations over ``ShareSettings``. The
repositories apply them inside their atomic update primitives, so the
decision is always taken against the latest persisted counters.
"""

from __future__ import annotations

import math
import re
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum

from .errors import ShareLinkExhausted, ShareLinkExpired, ShareLinkThrottled
from .model import DEFAULT_MAX_ACCESS_ATTEMPTS, AccessRecord, ShareSettings, Visitor

# ── Constants ─────────────────────────────────────────────────────────

ATTEMPT_COOLDOWN = timedelta(minutes=15)
VIEW_DEDUP_WINDOW = timedelta(minutes=5)
DEFAULT_LINK_EXPIRY = timedelta(days=7)

_EXPIRY_PATTERN = re.compile(r'^\s*(\d+)\s*([a-zA-Z]?)\s*$')


class LinkState(str, Enum):
    ACTIVE = 'active'
    EXPIRED = 'expired'
    EXHAUSTED = 'exhausted'
    THROTTLED = 'throttled'


# ── Construction ──────────────────────────────────────────────────────


def initial_settings(
    now: datetime,
    *,
    expires_at: datetime | None = None,
    allow_download: bool = True,
    allow_comments: bool = True,
    notify_on_access: bool = False,
    max_accesses: int | None = None,
    max_access_attempts: int = DEFAULT_MAX_ACCESS_ATTEMPTS,
) -> ShareSettings:
    """Fresh lifecycle fields for a newly issued link (all counters zero)."""
    if max_accesses is not None and max_accesses < 1:
        raise ValueError('max_accesses must be at least 1')
    if max_access_attempts < 1:
        raise ValueError('max_access_attempts must be at least 1')
    return ShareSettings(
        created_at=now,
        expires_at=expires_at,
        allow_download=allow_download,
        allow_comments=allow_comments,
        notify_on_access=notify_on_access,
        max_access_attempts=max_access_attempts,
        max_accesses=max_accesses,
    )


def parse_link_expiry(value: str) -> timedelta:
    """Parse ``'7d'``, ``'12h'`` or ``'30m'`` into a timedelta.

    An unknown unit falls back to seven days.
    """
    match = _EXPIRY_PATTERN.match(value or '')
    if match is None:
        raise ValueError(f'invalid link expiry: {value!r}')
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f'link expiry must be positive: {value!r}')
    unit = match.group(2).lower()
    if unit == 'd':
        return timedelta(days=amount)
    if unit == 'h':
        return timedelta(hours=amount)
    if unit == 'm':
        return timedelta(minutes=amount)
    return DEFAULT_LINK_EXPIRY


# ── State evaluation ─────────────────────────────────────────────────


def _is_expired(settings: ShareSettings, now: datetime) -> bool:
    return settings.expires_at is not None and now > settings.expires_at


def _is_exhausted(settings: ShareSettings) -> bool:
    return (
        settings.max_accesses is not None
        and settings.access_count >= settings.max_accesses
    )


def _cooldown_elapsed(settings: ShareSettings, now: datetime) -> bool:
    last = settings.last_access_attempt
    return last is None or now - last >= ATTEMPT_COOLDOWN


def _retry_after_seconds(settings: ShareSettings, now: datetime) -> int:
    remaining = ATTEMPT_COOLDOWN - (now - settings.last_access_attempt)
    return max(1, math.ceil(remaining.total_seconds()))


def link_state(settings: ShareSettings, now: datetime) -> LinkState:
    if _is_expired(settings, now):
        return LinkState.EXPIRED
    if _is_exhausted(settings):
        return LinkState.EXHAUSTED
    if (
        settings.access_attempts >= settings.max_access_attempts
        and not _cooldown_elapsed(settings, now)
    ):
        return LinkState.THROTTLED
    return LinkState.ACTIVE


def check_active(settings: ShareSettings, now: datetime) -> LinkState:
    """Raise the lifecycle error for a non-active link.

    Raises:
        ShareLinkExpired: Past ``expires_at`` (checked first).
        ShareLinkExhausted: Redemption cap reached.
        ShareLinkThrottled: Inside the failed-attempt cooldown.
    """
    state = link_state(settings, now)
    if state is LinkState.EXPIRED:
        raise ShareLinkExpired(settings.expires_at)
    if state is LinkState.EXHAUSTED:
        raise ShareLinkExhausted(settings.max_accesses)
    if state is LinkState.THROTTLED:
        raise ShareLinkThrottled(_retry_after_seconds(settings, now))
    return state


def check_not_expired(settings: ShareSettings, now: datetime) -> None:
    """Expiry-only check for requests inside an already redeemed session."""
    if _is_expired(settings, now):
        raise ShareLinkExpired(settings.expires_at)


# ── Transitions ──────────────────────────────────────────────────────


def record_attempt(
    settings: ShareSettings,
    success: bool,
    now: datetime,
) -> ShareSettings:
    """Apply the outcome of one password attempt.

    A failure after the cooldown window starts counting from zero again.
    """
    if success:
        return replace(settings, access_attempts=0, last_access_attempt=now)
    attempts = 0 if _cooldown_elapsed(settings, now) else settings.access_attempts
    return replace(
        settings,
        access_attempts=attempts + 1,
        last_access_attempt=now,
    )


def claim_attempt(settings: ShareSettings, now: datetime) -> ShareSettings:
    """Charge a password attempt before the slow hash runs.

    The attempt is recorded as failed; a later successful verification
    settles it with ``record_attempt(success=True)``. Concurrent guesses
    therefore each consume a slot and cannot slip past the ceiling.
    """
    check_active(settings, now)
    return record_attempt(settings, False, now)


def record_redemption(
    settings: ShareSettings,
    entry: AccessRecord,
    now: datetime,
    visitor: Visitor | None = None,
) -> ShareSettings:
    """Count one redemption; refuses to go past ``max_accesses``."""
    check_active(settings, now)
    visitors = settings.visitors + (visitor,) if visitor else settings.visitors
    return replace(
        settings,
        access_count=settings.access_count + 1,
        last_accessed=now,
        access_history=settings.access_history + (entry,),
        visitors=visitors,
    )


def should_count_view(
    last_viewed: datetime | None,
    now: datetime,
    window: timedelta = VIEW_DEDUP_WINDOW,
) -> bool:
    """View telemetry de-duplication; unrelated to ``access_count``."""
    return last_viewed is None or now - last_viewed >= window
