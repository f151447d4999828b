from rest_framework import exceptions, status
from rest_framework.views import exception_handler as drf_exception_handler


class RoomUnavailable(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Room unavailable for selected dates."
    default_code = "room_unavailable"


class ConcurrencyConflict(exceptions.APIException):
    """Raised when the overlap re-check inside the write transaction fails."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Room was booked concurrently, please retry."
    default_code = "concurrency_conflict"


class UpstreamGatewayFailure(exceptions.APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Failed to trigger payment prompt."
    default_code = "upstream_gateway_failure"


class DuplicateRoomNumber(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Room already exists."
    default_code = "duplicate_room"


def _first_message(detail):
    if isinstance(detail, list):
        return _first_message(detail[0]) if detail else ""
    if isinstance(detail, dict):
        return _first_message(next(iter(detail.values()))) if detail else ""
    return str(detail)


def exception_handler(exc, context):
    """Render API errors as ``{"success": false, "error": {"kind", "message"}}``."""
    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, exceptions.ValidationError):
        kind = "validation_error"
        detail = exc.detail
    elif isinstance(exc, exceptions.APIException):
        codes = exc.get_codes()
        kind = codes if isinstance(codes, str) else exc.default_code
        detail = exc.detail
    else:
        # Django's Http404 / PermissionDenied, already translated by DRF
        kind = "not_found" if response.status_code == status.HTTP_404_NOT_FOUND else "permission_denied"
        detail = response.data.get("detail", "")

    error = {"kind": kind, "message": _first_message(detail)}
    if isinstance(exc, exceptions.ValidationError) and isinstance(detail, dict):
        error["fields"] = detail
    response.data = {"success": False, "error": error}
    return response
