"""
Username/password login against the school system.

The school system login is a two-step handshake:

1. ``GET /webapi/logindata`` returns the bootstrap cookies plus an opaque
   login token (``lt``) and version marker (``ver``).
2. ``POST /webapi/auth/login`` submits the credentials together with
   ``lt``/``ver``, the accumulated cookies and a fixed set of client/site
   identifiers required by the login contract.

Success is signalled by an ``at`` (access token) field in the step 2 body.
Nothing is persisted until both steps succeed.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import InvalidCredentials, UpstreamUnavailable
from ..models import PasswordCredentials
from .cookies import decode_cookies, encode_cookies, merge_cookies

logger = logging.getLogger(__name__)


LOGIN_DATA_PATH = "/webapi/logindata"
LOGIN_PATH = "/webapi/auth/login"

# Client/site/device identifiers expected by the school system login contract
LOGIN_FORM_CONSTANTS: Dict[str, Any] = {
    "loginType": 1,
    "cid": 2,
    "sid": 23,
    "pid": -1,
    "cn": -1,
    "sft": 2,
    "scid": 2,
    "pw2": "",
}


def _error_payload(response: httpx.Response) -> Any:
    """Best-effort extraction of the upstream error body."""
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _extract_user_id(account_info: Optional[Dict[str, Any]]) -> Optional[Any]:
    if not isinstance(account_info, dict):
        return None
    user = account_info.get("user")
    if not isinstance(user, dict):
        return None
    return user.get("id")


async def fetch_login_data(client: httpx.AsyncClient, base_url: str, user_agent: str):
    """
    Step 1: fetch the login bootstrap data.

    Returns:
        Tuple of (cookie jar, lt, ver)

    Raises:
        UpstreamUnavailable: Transport error, non-2xx status or malformed JSON
    """
    try:
        response = await client.get(
            f"{base_url}{LOGIN_DATA_PATH}",
            headers={"User-Agent": user_agent},
        )
    except httpx.HTTPError as e:
        logger.error(f"Login data request failed: {e}", extra={"base_url": base_url})
        raise UpstreamUnavailable("Unable to reach the school system", details=str(e)) from e

    if not response.is_success:
        logger.error(
            f"Login data request returned {response.status_code}",
            extra={"base_url": base_url},
        )
        raise UpstreamUnavailable(
            "School system rejected the login data request",
            details=_error_payload(response),
        )

    try:
        login_data = response.json()
    except ValueError as e:
        raise UpstreamUnavailable("Malformed login data response", details=response.text) from e

    if not isinstance(login_data, dict):
        raise UpstreamUnavailable("Malformed login data response", details=login_data)

    cookies = decode_cookies(response.headers.get_list("set-cookie"))
    return cookies, login_data.get("lt"), login_data.get("ver")


async def login_with_password(
    client: httpx.AsyncClient,
    base_url: str,
    username: str,
    password: str,
    user_agent: str,
) -> PasswordCredentials:
    """
    Run the two-step login handshake and build password-session credentials.

    Args:
        client: HTTP client without persistent cookie state
        base_url: School system base URL resolved from the region code
        username: School system username
        password: School system password
        user_agent: User-Agent expected by the upstream

    Returns:
        PasswordCredentials ready to be stored in the session store

    Raises:
        InvalidCredentials: Step 2 answered without an ``at`` field
        UpstreamUnavailable: Transport or protocol failure in either step
    """
    logger.info("Password login attempt", extra={"base_url": base_url})

    cookies, lt, ver = await fetch_login_data(client, base_url, user_agent)

    payload = dict(LOGIN_FORM_CONSTANTS)
    payload.update({"UN": username, "PW": password, "lt": lt, "ver": ver})

    try:
        response = await client.post(
            f"{base_url}{LOGIN_PATH}",
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Cookie": encode_cookies(cookies),
                "User-Agent": user_agent,
            },
        )
    except httpx.HTTPError as e:
        logger.error(f"Login request failed: {e}", extra={"base_url": base_url})
        raise UpstreamUnavailable("Unable to reach the school system", details=str(e)) from e

    try:
        body = response.json()
    except ValueError as e:
        logger.error(
            f"Login response is not JSON (status {response.status_code})",
            extra={"base_url": base_url},
        )
        raise UpstreamUnavailable("Malformed login response", details=response.text or None) from e

    access_token = body.get("at") if isinstance(body, dict) else None
    if not access_token:
        logger.info("Password login rejected", extra={"base_url": base_url, "status_code": response.status_code})
        raise InvalidCredentials()

    merge_cookies(cookies, response.headers.get_list("set-cookie"))
    account_info = body.get("accountInfo")

    logger.info("Password login succeeded", extra={"base_url": base_url})
    return PasswordCredentials(
        cookies=cookies,
        base_url=base_url,
        access_token=access_token,
        user_id=_extract_user_id(account_info),
        profile=account_info if isinstance(account_info, dict) else None,
    )
