# Overview: Error kinds raised by the service layer and mapped to HTTP responses.

from __future__ import annotations


class TankflowError(Exception):
    """Base class for domain errors. Carries the HTTP status the routes use."""

    status_code = 500
    kind = "internal"

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": self.kind}


class NotFoundError(TankflowError):
    """404-level: order, reservation, ledger line or location absent."""

    status_code = 404
    kind = "not_found"


class BadRequestError(TankflowError):
    """400-level input problem (invalid target status, bad quantity, missing discriminator)."""

    status_code = 400
    kind = "bad_request"


class ConflictError(TankflowError):
    """409-level business rule conflict (status mismatch, insufficient stock)."""

    status_code = 409
    kind = "conflict"


class PermissionDeniedError(TankflowError):
    """403-level: actor role may not perform the requested transition."""

    status_code = 403
    kind = "forbidden"


class InternalError(TankflowError):
    """Unexpected persistence failure."""

    status_code = 500
    kind = "internal"
