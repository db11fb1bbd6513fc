from fastapi import HTTPException

from backend.outcomes import ERROR_KINDS, ErrorKind, Failure

HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    "NotFound": 404,
    "InvalidState": 400,
    "Conflict": 409,
    "Unauthorized": 403,
    "Malformed": 400,
}


def raise_for_failure(result: Failure) -> None:
    status_code = HTTP_STATUS_BY_KIND[ERROR_KINDS[result["error"]]]
    raise HTTPException(
        status_code=status_code,
        detail={"error": result["error"], "message": result["message"]},
    )
