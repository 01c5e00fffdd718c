# rm_core/tests/test_numbering.py
import pytest
from django.db import transaction

from rm_core.common.numbering import next_number
from rm_core.tenants.models import Tenant

pytestmark = pytest.mark.django_db


def _next(prefix, width=4):
    with transaction.atomic():
        return next_number(Tenant.objects.all(), field="code", prefix=prefix, width=width)


def test_first_number_is_padded():
    assert _next("apt-20261019-") == "apt-20261019-0001"


def test_increments_latest_for_prefix_only():
    Tenant.objects.create(code="apt-20261019-0007", name="a")
    Tenant.objects.create(code="apt-20261018-0042", name="b")
    assert _next("apt-20261019-") == "apt-20261019-0008"


def test_sequence_keeps_counting_past_its_width():
    Tenant.objects.create(code="apt-20261019-9998", name="a")
    Tenant.objects.create(code="apt-20261019-9999", name="b")
    assert _next("apt-20261019-") == "apt-20261019-10000"

    Tenant.objects.create(code="apt-20261019-10000", name="c")
    assert _next("apt-20261019-") == "apt-20261019-10001"
