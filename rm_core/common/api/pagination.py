from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def paginate(request, queryset, serializer_class, *, paginator: PageNumberPagination | None = None, context=None) -> Response:
    """
    Stable list contract: { count, next, previous, results }
    """
    p = paginator or DefaultPagination()
    ctx = {"request": request, **(context or {})}
    page = p.paginate_queryset(queryset, request)
    if page is not None:
        ser = serializer_class(page, many=True, context=ctx)
        return p.get_paginated_response(ser.data)

    ser = serializer_class(queryset, many=True, context=ctx)
    return Response(ser.data)
