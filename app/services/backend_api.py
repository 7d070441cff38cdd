# app/services/backend_api.py
import requests
from requests.exceptions import RequestException
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from app.x402.exceptions import UpstreamError

logger = logging.getLogger(__name__)

# Methods whose request body is forwarded to the backend
METHODS_WITHOUT_BODY = {"GET", "HEAD"}


def forward_request(
    method: str,
    base_url: str,
    path: str,
    headers: Dict[str, str],
    body: Optional[bytes] = None,
    params: Optional[Mapping[str, str]] = None,
    timeout: float = 30,
) -> Tuple[int, Any]:
    """
    Forwards a request to the content backend and parses its JSON response.

    This is a blocking call; async callers run it in a worker thread.

    Args:
        method: HTTP method of the original request
        base_url: Backend base URL without a trailing slash
        path: Resource path to request on the backend
        headers: Headers to send
        body: Raw request body (ignored for GET/HEAD)
        params: Query string parameters
        timeout: Request timeout in seconds

    Returns:
        Tuple of (status_code, parsed JSON body)

    Raises:
        UpstreamError: If the backend is unreachable or does not answer with JSON
    """
    api_url = f"{base_url}{path}"
    data = None if method.upper() in METHODS_WITHOUT_BODY else (body or None)

    try:
        response = requests.request(
            method,
            api_url,
            headers=headers,
            data=data,
            params=params,
            timeout=timeout,
        )
    except RequestException as e:
        logger.error(f"Error forwarding {method} to backend ({api_url}): {e}")
        raise UpstreamError(str(e)) from e

    try:
        payload = response.json()
    except ValueError as e:
        logger.error(f"Backend returned non-JSON response ({api_url}, status {response.status_code}): {e}")
        raise UpstreamError(f"invalid JSON from backend: {e}") from e

    return response.status_code, payload
