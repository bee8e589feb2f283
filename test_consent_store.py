"""
Consent Store Tests

Validation of consent requests, validity checks and revocation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from banking.consents import ConsentStore, default_valid_until
from banking.models import AccessScope, AccountAccess, ConsentRequest
from core.errors import InvalidConsentRequestError, InvalidScopeError, NotFoundError

from conftest import COMPANY_ID, IBAN


def _request(clock, **overrides) -> ConsentRequest:
    values = dict(
        company_id=COMPANY_ID,
        valid_until=clock.today() + timedelta(days=90),
        access=AccessScope(all_psd2=AccountAccess.ALL_ACCOUNTS),
        frequency_per_day=4,
    )
    values.update(overrides)
    return ConsentRequest(**values)


class TestConsentValidation:

    def test_create_stores_request(self, services, clock):
        consent_id = services.consents.create(_request(clock))

        stored = services.consents.get(consent_id)
        assert stored.company_id == COMPANY_ID
        assert stored.frequency_per_day == 4
        assert stored.access.all_psd2 == AccountAccess.ALL_ACCOUNTS
        assert stored.revoked_at is None

    def test_empty_scope_rejected(self, services, clock):
        with pytest.raises(InvalidScopeError):
            services.consents.create(_request(clock, access=AccessScope()))

    def test_valid_until_today_rejected(self, services, clock):
        with pytest.raises(InvalidConsentRequestError):
            services.consents.create(_request(clock, valid_until=clock.today()))

    @pytest.mark.parametrize("frequency", [0, 101])
    def test_frequency_out_of_range_rejected(self, services, clock, frequency):
        with pytest.raises(InvalidConsentRequestError):
            services.consents.create(_request(clock, frequency_per_day=frequency))

    @pytest.mark.parametrize("frequency", [1, 100])
    def test_frequency_bounds_accepted(self, services, clock, frequency):
        consent_id = services.consents.create(_request(clock, frequency_per_day=frequency))
        assert services.consents.get(consent_id).frequency_per_day == frequency

    def test_iban_scope_round_trips(self, services, clock):
        access = AccessScope(accounts=[IBAN], balances=[IBAN], transactions=[])
        consent_id = services.consents.create(_request(clock, access=access))

        stored = services.consents.get(consent_id).access
        assert stored.accounts == [IBAN]
        assert stored.grants_balances(IBAN)
        assert not stored.grants_transactions(IBAN)

    def test_unknown_consent(self, services):
        with pytest.raises(NotFoundError):
            services.consents.get(999)


class TestConsentValidity:

    def test_valid_through_last_day(self, services, clock):
        consent_id = services.consents.create(_request(clock, valid_until=clock.today() + timedelta(days=1)))

        last_moment = datetime.combine(clock.today() + timedelta(days=1), datetime.max.time(), tzinfo=timezone.utc)
        assert services.consents.is_valid(consent_id, last_moment)
        assert not services.consents.is_valid(consent_id, last_moment + timedelta(seconds=1))

    def test_revoked_is_never_valid(self, services, clock):
        consent_id = services.consents.create(_request(clock))
        services.consents.revoke(consent_id)

        assert not services.consents.is_valid(consent_id, clock())

    def test_revoke_twice_keeps_first_timestamp(self, services, clock):
        consent_id = services.consents.create(_request(clock))
        services.consents.revoke(consent_id)
        first = services.consents.get(consent_id).revoked_at

        clock.advance(hours=1)
        services.consents.revoke(consent_id)

        assert services.consents.get(consent_id).revoked_at == first

    def test_uses_injected_clock(self, store, clock):
        consents = ConsentStore(store, clock=clock)
        consent_id = consents.create(_request(clock, valid_until=clock.today() + timedelta(days=1)))

        assert consents.is_valid(consent_id)
        clock.advance(days=2)
        assert not consents.is_valid(consent_id)


def test_default_valid_until(clock):
    assert default_valid_until(clock.today()) == clock.today() + timedelta(days=90)
