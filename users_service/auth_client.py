# users_service/auth_client.py
"""
Client for the remote authentication API.

The API signs users in with their ID number: ``POST auth/token/login/`` returns
an ``auth_token`` that is then sent as ``Authorization: Token <auth_token>`` to
``GET auth/users/me/`` to fetch the profile. ``POST auth/users/`` registers a
new account.
"""
import logging
import os
from typing import Any, Dict, NamedTuple, Optional

import httpx
from fastapi import HTTPException, status

from .circuit_breaker import CircuitBreaker, auth_api_circuit_breaker

logger = logging.getLogger(__name__)

AUTH_API_URL = os.getenv("AUTH_API_URL", "https://citc-ustpcdo.com/api/v1/")
AUTH_API_TIMEOUT_SECONDS = 10.0


class RemoteIdentity(NamedTuple):
    id: str
    display_name: str
    username: str
    is_admin: bool


def identity_from_profile(profile: Dict[str, Any]) -> RemoteIdentity:
    """
    Map a profile returned by ``auth/users/me/`` to an identity.

    Parameters
    ----------
    profile : Dict[str, Any]
        Profile JSON with ``uuid``, ``id_number``, ``first_name``,
        ``last_name``, ``username``, ``is_staff`` and ``is_superuser``.

    Returns
    -------
    RemoteIdentity
        Id is the ``uuid``, else the ``id_number``. Display name is
        "first last", else the username, else "User". Staff and superusers
        are administrators.
    """
    user_id = profile.get("uuid") or profile.get("id_number")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Authentication service returned a profile without an id",
        )

    username = profile.get("username") or str(profile.get("id_number") or "")
    full_name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    display_name = full_name or username or "User"
    is_admin = profile.get("is_staff") is True or profile.get("is_superuser") is True

    return RemoteIdentity(
        id=str(user_id),
        display_name=display_name,
        username=username,
        is_admin=is_admin,
    )


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _first_error(payload: Any, default: str) -> str:
    """Pick a readable message out of a DRF-style error body."""
    if not isinstance(payload, dict) or not payload:
        return default
    if payload.get("non_field_errors"):
        return str(payload["non_field_errors"][0])
    key = next(iter(payload))
    value = payload[key]
    if isinstance(value, list) and value:
        value = value[0]
    return f"{key}: {value}"


class RemoteAuthClient:
    """
    Synchronous httpx client guarded by a circuit breaker.

    Parameters
    ----------
    base_url : str
        Root of the authentication API, with trailing slash.
    timeout : float
        Per-request timeout in seconds.
    breaker : CircuitBreaker
        Breaker shared by all calls to the API.
    transport : Optional[httpx.BaseTransport]
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str = AUTH_API_URL,
        timeout: float = AUTH_API_TIMEOUT_SECONDS,
        breaker: CircuitBreaker = auth_api_circuit_breaker,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.breaker = breaker
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _ensure_closed_circuit(self) -> None:
        if not self.breaker.allow_request():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service temporarily unavailable (circuit open)",
            )

    def _unavailable(self, reason: str) -> HTTPException:
        self.breaker.record_failure()
        logger.warning("Authentication API call failed: %s", reason)
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to contact authentication service",
        )

    def login(self, id_number: str, password: str) -> RemoteIdentity:
        """
        Sign in with ID number and password and load the profile.

        Raises
        ------
        HTTPException
            401 for rejected credentials, 502 when the API fails or is
            unreachable, 503 while the circuit is open.
        """
        self._ensure_closed_circuit()

        try:
            with self._client() as client:
                token_response = client.post(
                    "auth/token/login/",
                    json={"id_number": id_number, "password": password},
                )
                if token_response.status_code in (400, 401):
                    # the API answered; wrong credentials are not an outage
                    self.breaker.record_success()
                    raise HTTPException(
                        status_code=status.HTTP_401_UNAUTHORIZED,
                        detail=_first_error(_json_or_none(token_response), "Invalid credentials"),
                    )
                if token_response.status_code != 200:
                    raise self._unavailable(f"login returned {token_response.status_code}")

                token_body = token_response.json()
                auth_token = token_body.get("auth_token") if isinstance(token_body, dict) else None
                if not auth_token:
                    raise self._unavailable("login response without auth_token")

                profile_response = client.get(
                    "auth/users/me/",
                    headers={"Authorization": f"Token {auth_token}"},
                )
                if profile_response.status_code != 200:
                    raise self._unavailable(f"profile returned {profile_response.status_code}")
                profile = profile_response.json()
                if not isinstance(profile, dict):
                    raise self._unavailable("profile response is not an object")
        except httpx.RequestError as exc:
            raise self._unavailable(str(exc))
        except ValueError as exc:
            raise self._unavailable(f"invalid JSON: {exc}")

        self.breaker.record_success()
        return identity_from_profile(profile)

    def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an account on the authentication API.

        Raises
        ------
        HTTPException
            400 with the API's first validation error, 502/503 as for ``login``.
        """
        self._ensure_closed_circuit()

        try:
            with self._client() as client:
                response = client.post("auth/users/", json=data)
                if response.status_code == 400:
                    self.breaker.record_success()
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=_first_error(_json_or_none(response), "Could not create account"),
                    )
                if response.status_code not in (200, 201):
                    raise self._unavailable(f"registration returned {response.status_code}")
                created = response.json()
                if not isinstance(created, dict):
                    raise self._unavailable("registration response is not an object")
        except httpx.RequestError as exc:
            raise self._unavailable(str(exc))
        except ValueError as exc:
            raise self._unavailable(f"invalid JSON: {exc}")

        self.breaker.record_success()
        return created
