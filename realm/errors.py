"""Exceptions raised by the town backend and the realm owner.

Each error carries a machine readable ``code`` and the HTTP status the API
layer should answer with.
"""
from __future__ import annotations

from typing import Dict, Mapping

from .resources import Resource, normalise_resource


class RealmError(Exception):
    """Base for every realm domain error."""

    code = "realm_error"
    http_status = 400

    def __init__(self, message: str, *, code: str | None = None, http_status: int | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = int(http_status)


class BackendError(RealmError):
    """The backend rejected an operation."""

    code = "backend_rejected"


class NotFoundError(BackendError):
    code = "not_found"
    http_status = 404


class InsufficientResourcesError(BackendError):
    """Raised when an action cannot be performed due to missing resources."""

    code = "insufficient_resources"

    def __init__(self, requirements: Mapping[Resource | str, float]):
        self.requirements: Dict[Resource, float] = {
            normalise_resource(resource): float(amount)
            for resource, amount in requirements.items()
        }
        super().__init__("Recursos insuficientes")


class BackendUnavailableError(RealmError):
    """The authoritative backend could not be reached."""

    code = "backend_unavailable"
    http_status = 503
