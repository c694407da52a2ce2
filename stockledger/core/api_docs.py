from stockledger.core.errors import LedgerError
from stockledger.schemas.common import ErrorOut


_GENERIC_ERRORS: dict[int, tuple[str, str]] = {
    400: (LedgerError.code, "Ledger rule rejected the request"),
    401: ("unauthorized", "Missing or invalid bearer token"),
    403: ("forbidden", "Role not allowed for this operation"),
    404: ("not_found", "Resource not found"),
    409: ("conflict", "Request conflicts with recorded state"),
    422: ("validation_error", "Request body or query failed validation"),
    500: ("internal_error", "Internal server error"),
}


def _envelope(code: str, message: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "request_id": "request-id",
            "path": "/example",
            "details": None,
            "context": None,
        }
    }


def error_responses(*status_codes: int, errors: tuple[type[LedgerError], ...] = ()) -> dict[int, dict]:
    """
    OpenAPI ``responses`` for the unified error envelope.

    Ledger errors passed in ``errors`` are listed as named examples under their
    own status code; statuses without one fall back to a generic example.
    """
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _GENERIC_ERRORS.get(status_code, ("http_error", "HTTP error"))
        specific = [error for error in errors if error.status_code == status_code]
        if specific:
            content = {
                "examples": {
                    error.code: {"summary": error.__name__, "value": _envelope(error.code, error.__name__)}
                    for error in specific
                }
            }
        else:
            content = {"example": _envelope(code, message)}
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {"application/json": content},
        }
    return responses
