import logging
from typing import Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from config import API_VERSION, HTTP_TIMEOUT, api_url
from signing.exceptions import ZatcaApiError

logger = logging.getLogger(__name__)


def base_headers(**extra) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Accept-Version": API_VERSION
    }
    headers.update(extra)
    return headers


def _error_detail(response: requests.Response):
    try:
        error_json = response.json()
    except ValueError:
        return response.text
    if isinstance(error_json, dict):
        if "errors" in error_json:
            return error_json["errors"]
        validation = error_json.get("validationResults") or {}
        if validation.get("errorMessages"):
            return validation["errorMessages"]
    return error_json


def send(method: str, path: str, payload: Dict, headers: Dict[str, str],
         auth: Optional[HTTPBasicAuth] = None, allow_warnings: bool = False) -> Dict:
    """
    Sends a JSON request to the e-invoicing gateway and returns the decoded
    response. 200 is success; 202 (accepted with warnings) only when
    `allow_warnings` is set. Anything else raises ZatcaApiError.
    """
    url = api_url(path)
    logger.info("%s %s", method.upper(), url)

    try:
        sender = requests.patch if method.lower() == "patch" else requests.post
        response = sender(url, json=payload, headers=headers, auth=auth, timeout=HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise ZatcaApiError(f"Request to {path} failed: {e}", context={"endpoint": path}) from e

    accepted = {200, 202} if allow_warnings else {200}
    if response.status_code not in accepted:
        detail = _error_detail(response)
        logger.error("%s returned %s: %s", path, response.status_code, detail)
        raise ZatcaApiError(
            f"API request failed with status code {response.status_code}",
            status_code=response.status_code,
            response=response.text,
            context={"endpoint": path, "errors": detail}
        )

    try:
        return response.json()
    except ValueError as e:
        raise ZatcaApiError(
            f"{path} returned a non-JSON body",
            status_code=response.status_code,
            response=response.text
        ) from e
