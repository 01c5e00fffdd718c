# rm_core/common/numbering.py
from __future__ import annotations

import re

from django.db.models import QuerySet
from django.db.models.functions import Length


def next_number(qs: QuerySet, *, field: str, prefix: str, width: int) -> str:
    """
    Next human-readable number for `prefix` (REF202405000001, DISP-20240501-0001).

    Locks the latest matching row; the caller runs inside a transaction and the
    model carries a unique constraint on `field`, so a lost race surfaces as an
    IntegrityError (a retryable conflict) rather than a duplicate.

    The sequence may outgrow `width`; longer numbers sort first so
    `...-10000` wins over `...-9999`.
    """
    latest = (
        qs.select_for_update()
        .filter(**{f"{field}__startswith": prefix})
        .annotate(number_length=Length(field))
        .order_by("-number_length", f"-{field}")
        .values_list(field, flat=True)
        .first()
    )
    n = 1
    if latest:
        m = re.match(rf"^{re.escape(prefix)}(\d+)$", latest)
        if m:
            n = int(m.group(1)) + 1
    return f"{prefix}{n:0{width}d}"
