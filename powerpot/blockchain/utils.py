import os
import logging
import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are loaded when this module is imported.
load_dotenv()


def _treasury_fqdn() -> str:
    fqdn = os.environ.get("TREASURY_API_FQDN")
    if not fqdn:
        raise RuntimeError("Environment variable 'TREASURY_API_FQDN' is not set")
    return fqdn


def open_session(timeout: float = 45):
    """Open a requests session to the treasury service and fetch CSRF.

    Returns
    -------
    tuple[requests.Session, str]
        The initialized session and CSRF token string.

    Raises
    ------
    RuntimeError
        If ``TREASURY_API_FQDN`` is not set or the session cannot be
        established, including when the server returns no CSRF cookie. Any
        underlying exception is re-raised as a ``RuntimeError`` with context.
    """
    url = "https://" + _treasury_fqdn()

    session = requests.Session()
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()

        csrf_token = response.cookies.get("csrftoken") or session.cookies.get("csrftoken")
        if csrf_token:
            # Do not log the CSRF token value
            logger.debug("CSRF token acquired")
            return session, csrf_token
        raise RuntimeError("Server did not return a CSRF token")

    except Exception as e:
        logger.critical(f"Error occurred while starting treasury session: {e}")
        raise RuntimeError(f"Failed to establish session: {e}") from e


def get_jwt_token(session: requests.Session, timeout: float = 45) -> str:
    """Obtain a JWT access token using the treasury operator credentials.

    Raises
    ------
    RuntimeError
        If required environment variables are not set.
    requests.HTTPError
        If the login request fails.
    KeyError
        If the response payload does not include an ``"access"`` field.
    """
    username = os.environ.get("TREASURY_API_USERNAME")
    password = os.environ.get("TREASURY_API_PASSWORD")
    if not username or not password:
        raise RuntimeError(
            "Environment variables 'TREASURY_API_USERNAME' and "
            "'TREASURY_API_PASSWORD' must be set"
        )
    # Never log raw credentials
    logger.debug("Attempting JWT login with configured treasury operator")

    url = "https://" + _treasury_fqdn() + "/api/v1/auth/jwt-token"
    response = session.post(
        url, json={"username": username, "password": password}, timeout=timeout
    )
    response.raise_for_status()

    # Avoid logging headers/body/response as they may contain sensitive data
    logger.debug("JWT token response received (content redacted)")

    return response.json()["access"]
