from __future__ import annotations

from fastapi import Request

from jobtrail.core.runtime import TrailServices, get_services as get_default_services


def get_services(request: Request) -> TrailServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = get_default_services()
        request.app.state.services = services
    return services
