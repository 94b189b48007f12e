"""Error taxonomy for the acquisition engine."""

from __future__ import annotations

ERROR_NOT_FOUND = "not_found"
ERROR_EXPIRED = "expired"
ERROR_INVALID = "invalid"
ERROR_NETWORK = "network"
ERROR_NO_CANDIDATES = "no_candidates"
ERROR_CANCELLED = "cancelled"

_HTTP_STATUS_BY_CODE = {
    ERROR_NOT_FOUND: 404,
    ERROR_EXPIRED: 410,
    ERROR_INVALID: 400,
    ERROR_NETWORK: 502,
    ERROR_NO_CANDIDATES: 404,
    ERROR_CANCELLED: 409,
}


class AcquisitionError(Exception):
    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFoundError(AcquisitionError):
    code = ERROR_NOT_FOUND


class ExpiredError(AcquisitionError):
    code = ERROR_EXPIRED


class InvalidInputError(AcquisitionError):
    code = ERROR_INVALID


class NetworkFailure(AcquisitionError):
    """slskd was unreachable or answered with an error."""

    code = ERROR_NETWORK


class NoCandidatesError(AcquisitionError):
    code = ERROR_NO_CANDIDATES


class SearchCancelled(AcquisitionError):
    """Polling was aborted by a stop signal. The task itself stays resumable."""

    code = ERROR_CANCELLED


def http_status_for(error_code: str | None) -> int:
    if not error_code:
        return 200
    return _HTTP_STATUS_BY_CODE.get(error_code, 400)
