"""
Translate bank integration failure results into HTTP errors.
"""

from typing import Dict, Any

from fastapi import HTTPException, status

HTTP_STATUS_BY_ERROR_CODE = {
    'not_found': status.HTTP_404_NOT_FOUND,
    'validation_error': status.HTTP_400_BAD_REQUEST,
    'no_token': status.HTTP_409_CONFLICT,
    'refresh_failed': status.HTTP_409_CONFLICT,
    'bank_api_error': status.HTTP_502_BAD_GATEWAY,
    'network_error': status.HTTP_502_BAD_GATEWAY,
}


def raise_for_failure(result: Dict[str, Any], success_key: str = 'success') -> Dict[str, Any]:
    """Return the result unchanged if it succeeded, otherwise raise the matching HTTPException."""
    if result.get(success_key):
        return result

    raise HTTPException(
        status_code=HTTP_STATUS_BY_ERROR_CODE.get(
            result.get('error_code'), status.HTTP_500_INTERNAL_SERVER_ERROR
        ),
        detail=result.get('error') or "Bank operation failed"
    )
