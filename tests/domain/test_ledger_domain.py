"""Pure ledger helpers: per-currency imbalance, key discriminators, negation."""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from domos_kernel.domain.ledger import (
    PostingSpec,
    RemittanceKeyScheme,
    RemittanceSpec,
    imbalances_by_currency,
    key_discriminator,
    negate_postings,
)
from domos_kernel.exceptions import ValidationError

amounts = st.decimals(
    min_value=Decimal("-1000000"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def _remittance(line_id=None):
    return RemittanceSpec(
        account_id=uuid4(),
        credit_system_id=uuid4(),
        transaction_id="tx-1",
        amount=Decimal("10"),
        currency="USD",
        line_id=line_id,
    )


class TestImbalances:

    def test_balanced_across_accounts(self):
        a, b = uuid4(), uuid4()
        postings = [PostingSpec(a, Decimal("100"), "USD"), PostingSpec(b, Decimal("-100"), "USD")]
        assert imbalances_by_currency(postings) == {}

    def test_unbalanced_reports_currency_and_amount(self):
        a, b = uuid4(), uuid4()
        postings = [PostingSpec(a, Decimal("100"), "USD"), PostingSpec(b, Decimal("-50"), "USD")]
        assert imbalances_by_currency(postings) == {"USD": Decimal("50")}

    def test_currencies_do_not_offset_each_other(self):
        a = uuid4()
        postings = [PostingSpec(a, Decimal("100"), "USD"), PostingSpec(a, Decimal("-100"), "EUR")]
        assert imbalances_by_currency(postings) == {"EUR": Decimal("-100"), "USD": Decimal("100")}

    @given(st.lists(amounts, min_size=1, max_size=10))
    def test_postings_plus_negation_always_balance(self, values):
        account = uuid4()
        postings = [PostingSpec(account, v, "USD") for v in values]
        assert imbalances_by_currency(postings + list(negate_postings(postings))) == {}

    @given(st.lists(amounts, min_size=1, max_size=10))
    def test_single_currency_imbalance_is_the_sum(self, values):
        postings = [PostingSpec(uuid4(), v, "GBP") for v in values]
        total = sum(values, Decimal("0"))
        expected = {} if total == 0 else {"GBP": total}
        assert imbalances_by_currency(postings) == expected


class TestKeyDiscriminator:

    def test_credit_system_scheme(self):
        remittance = _remittance()
        assert key_discriminator(RemittanceKeyScheme.CREDIT_SYSTEM, remittance) == (
            f"cs:{remittance.credit_system_id}"
        )

    def test_line_scheme(self):
        assert key_discriminator(RemittanceKeyScheme.LINE, _remittance("L-7")) == "line:L-7"

    def test_line_scheme_requires_line_id(self):
        with pytest.raises(ValidationError) as exc_info:
            key_discriminator(RemittanceKeyScheme.LINE, _remittance())
        assert exc_info.value.field == "line_id"


def test_negation_keeps_account_and_currency():
    account = uuid4()
    (negated,) = negate_postings([PostingSpec(account, Decimal("12.50"), "CAD")])
    assert negated == PostingSpec(account, Decimal("-12.50"), "CAD")
