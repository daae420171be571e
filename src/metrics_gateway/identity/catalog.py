"""
metrics_gateway.identity.catalog

Service catalog endpoint lookup.

Responsibilities:
- Resolve a single endpoint URL by service type, interface and (optional) region.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

METRICS_SERVICE_TYPE = "metrics"


class EndpointNotFoundError(LookupError):
    pass


def endpoint_url(
    catalog: Iterable[dict[str, Any]],
    *,
    service_type: str = METRICS_SERVICE_TYPE,
    interface: str = "public",
    region: str | None = None,
) -> str:
    """
    Return the unique endpoint matching `service_type`/`interface`, with a
    trailing slash. Zero or several matches raise `EndpointNotFoundError`.
    """

    urls = [
        ep.get("url", "")
        for svc in catalog
        if svc.get("type") == service_type
        for ep in svc.get("endpoints") or ()
        if ep.get("interface") == interface
        and (region is None or region in (ep.get("region"), ep.get("region_id")))
    ]
    if not urls:
        raise EndpointNotFoundError(f"no {interface} endpoint of type {service_type!r} in catalog")
    if len(urls) > 1:
        raise EndpointNotFoundError(
            f"{len(urls)} {interface} endpoints of type {service_type!r} in catalog"
        )
    url = urls[0]
    return url if url.endswith("/") else url + "/"
