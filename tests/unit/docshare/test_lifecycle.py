"""Share-link lifecycle guard: expiry, exhaustion, throttling."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from docshare.app.sharing.errors import (
    ShareLinkExhausted,
    ShareLinkExpired,
    ShareLinkThrottled,
)
from docshare.app.sharing.lifecycle import (
    ATTEMPT_COOLDOWN,
    DEFAULT_LINK_EXPIRY,
    LinkState,
    check_active,
    check_not_expired,
    claim_attempt,
    initial_settings,
    link_state,
    parse_link_expiry,
    record_attempt,
    record_redemption,
    should_count_view,
)
from docshare.app.sharing.model import AccessRecord, Visitor

from docshare_factories import NOW


def _fail(settings, times, now=NOW):
    for _ in range(times):
        settings = record_attempt(settings, False, now)
    return settings


# =====================================================================
# Construction
# =====================================================================


class TestInitialSettings:
    def test_counters_start_at_zero(self):
        s = initial_settings(NOW)
        assert s.access_count == 0
        assert s.access_attempts == 0
        assert s.max_accesses is None
        assert s.max_access_attempts == 5
        assert s.access_history == ()

    @pytest.mark.parametrize('kwargs', [
        {'max_accesses': 0},
        {'max_accesses': -3},
        {'max_access_attempts': 0},
    ])
    def test_rejects_non_positive_limits(self, kwargs):
        with pytest.raises(ValueError):
            initial_settings(NOW, **kwargs)


class TestParseLinkExpiry:
    @pytest.mark.parametrize('value,expected', [
        ('7d', timedelta(days=7)),
        ('12h', timedelta(hours=12)),
        ('30m', timedelta(minutes=30)),
        (' 2D ', timedelta(days=2)),
    ])
    def test_units(self, value, expected):
        assert parse_link_expiry(value) == expected

    def test_unknown_unit_defaults_to_seven_days(self):
        assert parse_link_expiry('3w') == DEFAULT_LINK_EXPIRY

    @pytest.mark.parametrize('value', ['', 'abc', 'd7', '0d', '-1h'])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            parse_link_expiry(value)


# =====================================================================
# Throttling
# =====================================================================


class TestThrottle:
    def test_five_failures_allow_no_sixth_attempt(self):
        s = initial_settings(NOW)
        for _ in range(5):
            s = claim_attempt(s, NOW)
        assert s.access_attempts == 5
        with pytest.raises(ShareLinkThrottled) as exc_info:
            claim_attempt(s, NOW)
        assert exc_info.value.retry_after_seconds == 15 * 60

    def test_retry_after_rounds_up(self):
        s = _fail(initial_settings(NOW), 5)
        with pytest.raises(ShareLinkThrottled) as exc_info:
            check_active(s, NOW + timedelta(minutes=14, seconds=59, milliseconds=500))
        assert exc_info.value.retry_after_seconds == 1

    def test_fresh_evaluation_after_cooldown(self):
        s = _fail(initial_settings(NOW), 5)
        later = NOW + ATTEMPT_COOLDOWN
        assert link_state(s, later) is LinkState.ACTIVE
        s = claim_attempt(s, later)
        assert s.access_attempts == 1
        assert s.last_access_attempt == later

    def test_failure_inside_window_accumulates(self):
        s = _fail(initial_settings(NOW), 2)
        s = record_attempt(s, False, NOW + timedelta(minutes=5))
        assert s.access_attempts == 3

    def test_success_resets_counter(self):
        s = _fail(initial_settings(NOW), 4)
        s = record_attempt(s, True, NOW)
        assert s.access_attempts == 0
        assert s.last_access_attempt == NOW

    def test_custom_attempt_ceiling(self):
        s = _fail(initial_settings(NOW, max_access_attempts=2), 2)
        assert link_state(s, NOW) is LinkState.THROTTLED


# =====================================================================
# Expiry / exhaustion precedence
# =====================================================================


class TestPrecedence:
    def test_expired_link_reports_expired_even_if_exhausted_and_throttled(self):
        s = initial_settings(NOW, expires_at=NOW + timedelta(hours=1), max_accesses=1)
        s = replace(s, access_count=1)
        s = _fail(s, 5, now=NOW + timedelta(hours=2))
        with pytest.raises(ShareLinkExpired) as exc_info:
            check_active(s, NOW + timedelta(hours=2))
        assert exc_info.value.expired_at == NOW + timedelta(hours=1)

    def test_exhausted_before_throttled(self):
        s = replace(initial_settings(NOW, max_accesses=2), access_count=2)
        s = _fail(s, 5)
        with pytest.raises(ShareLinkExhausted):
            check_active(s, NOW)

    def test_expiry_instant_itself_is_still_active(self):
        s = initial_settings(NOW, expires_at=NOW)
        assert check_active(s, NOW) is LinkState.ACTIVE

    def test_continuation_only_checks_expiry(self):
        s = replace(initial_settings(NOW, max_accesses=1), access_count=1)
        check_not_expired(s, NOW)
        expiring = initial_settings(NOW, expires_at=NOW)
        with pytest.raises(ShareLinkExpired):
            check_not_expired(expiring, NOW + timedelta(seconds=1))


# =====================================================================
# Redemption
# =====================================================================


class TestRedemption:
    def test_counts_and_records_history(self):
        s = initial_settings(NOW)
        entry = AccessRecord(NOW, email='guest@example.com', access_token='sess_1')
        visitor = Visitor(NOW, user_agent='pytest', ip='10.0.0.1')
        s = record_redemption(s, entry, NOW, visitor)
        assert s.access_count == 1
        assert s.last_accessed == NOW
        assert s.access_history == (entry,)
        assert s.visitors == (visitor,)

    def test_never_exceeds_max_accesses(self):
        s = initial_settings(NOW, max_accesses=2)
        for _ in range(2):
            s = record_redemption(s, AccessRecord(NOW), NOW)
        with pytest.raises(ShareLinkExhausted):
            record_redemption(s, AccessRecord(NOW), NOW)
        assert s.access_count == 2
        assert s.remaining_accesses == 0

    def test_unlimited_when_max_accesses_is_none(self):
        s = initial_settings(NOW)
        for _ in range(25):
            s = record_redemption(s, AccessRecord(NOW), NOW)
        assert s.access_count == 25
        assert s.remaining_accesses is None


class TestViewDedup:
    def test_first_view_counts(self):
        assert should_count_view(None, NOW)

    def test_view_inside_window_is_not_counted(self):
        assert not should_count_view(NOW, NOW + timedelta(minutes=4))

    def test_view_after_window_counts(self):
        assert should_count_view(NOW, NOW + timedelta(minutes=5))
