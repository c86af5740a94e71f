# envoy_monitor/services/envoy_client.py

from __future__ import annotations

import logging
import re
import warnings
from typing import Any, List, Optional

import requests
from urllib3.exceptions import InsecureRequestWarning

from envoy_monitor.config import CloudConfig
from envoy_monitor.errors import AuthError, ConfigError, NetworkError, ParseError
from envoy_monitor.models.session import SessionSecrets
from envoy_monitor.models.telemetry import MeterDescriptor, MeterReading, ProductionReport


DEFAULT_TIMEOUT = 10.0

_SESSION_COOKIE_RE = re.compile(r"sessionId=(.*?);")


def _is_success(resp) -> bool:
    return 200 <= resp.status_code < 300


class EnvoyClient:
    """Session-authenticated reads against a local Envoy gateway.

    The gateway only accepts a ``sessionId`` cookie, which is minted by
    logging in to Enlighten, exchanging the session for a bearer token at
    Entrez and presenting that token to the gateway's ``/auth/check_jwt``.
    A 4xx from a data endpoint triggers that sequence once and retries the
    request once; anything after that is surfaced to the caller.
    """

    PRODUCTION_PATH = "production.json"
    METERS_PATH = "ivp/meters"
    METER_READINGS_PATH = "ivp/meters/readings"
    CHECK_JWT_PATH = "auth/check_jwt"

    def __init__(
        self,
        address: str | None,
        device_serial: str,
        username: str,
        password: str,
        log=None,
        *,
        cloud: CloudConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self._address = address
        self._device_serial = device_serial
        self._credentials = (username, password)
        self._secrets: SessionSecrets | None = None
        self.cloud = cloud or CloudConfig()
        self.timeout = timeout
        self.log = log or logging.getLogger("envoy.client")
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    @property
    def address(self) -> str | None:
        return self._address

    @property
    def device_serial(self) -> str:
        return self._device_serial

    @property
    def username(self) -> str:
        return self._credentials[0]

    @property
    def secrets(self) -> SessionSecrets | None:
        return self._secrets

    @property
    def bearer_token(self) -> str | None:
        secrets = self._secrets
        return secrets.bearer_token if secrets else None

    @property
    def session_cookie(self) -> str | None:
        secrets = self._secrets
        return secrets.session_cookie if secrets else None

    def set_credentials(self, username: str, password: str) -> None:
        self._credentials = (username, password)

    # ------------------------------------------------------------------
    def _gateway_url(self, path: str) -> str:
        return f"https://{self._address}/{path.lstrip('/')}"

    def _gateway_request(self, method: str, path: str, headers: dict[str, str]):
        # Envoy serves HTTPS with a self-signed certificate.
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", InsecureRequestWarning)
            return self.session.request(
                method,
                self._gateway_url(path),
                headers=headers,
                verify=False,
                timeout=self.timeout,
            )

    def fetch_endpoint(self, path: str, _is_retry: bool = False):
        if not self._address:
            raise ConfigError("Attempted to fetch data for an uninitialised Enphase device")

        headers: dict[str, str] = {}
        secrets = self._secrets
        if secrets is not None:
            headers["Cookie"] = f"sessionId={secrets.session_cookie}"

        try:
            resp = self._gateway_request("GET", path, headers)
        except requests.RequestException as exc:
            raise NetworkError(f"Request to Envoy endpoint {path} failed: {exc}") from exc

        if 400 <= resp.status_code < 500 and not _is_retry:
            self.log.info(
                "Envoy returned HTTP %s for %s; refreshing session and retrying once",
                resp.status_code,
                path,
            )
            self.authenticate()
            return self.fetch_endpoint(path, _is_retry=True)

        if not _is_success(resp):
            raise NetworkError(
                f"An unknown error occurred while fetching inverter data: HTTP {resp.status_code} from {path}"
            )

        return resp

    def _fetch_json(self, path: str) -> Any:
        resp = self.fetch_endpoint(path)
        try:
            return resp.json()
        except ValueError:
            raise ParseError(f"Envoy endpoint {path} returned non-JSON payload") from None

    # ------------------------------------------------------------------
    @staticmethod
    def _cloud_login(
        session: requests.Session,
        username: str,
        password: str,
        cloud: CloudConfig,
    ):
        try:
            resp = session.post(
                cloud.login_url,
                data={"user[email]": username, "user[password]": password},
                timeout=cloud.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Could not reach Enphase login service: {exc}") from exc

        if not _is_success(resp):
            raise AuthError(
                "Failed to authenticate to Enphase - are your username and password correct?"
            )
        return resp

    @staticmethod
    def verify_credentials(
        username: str,
        password: str,
        *,
        cloud: CloudConfig | None = None,
        session: Optional[requests.Session] = None,
    ) -> bool:
        """Check a username/password pair against Enlighten without touching a gateway."""
        cloud = cloud or CloudConfig()
        if session is not None:
            EnvoyClient._cloud_login(session, username, password, cloud)
            return True
        with requests.Session() as own_session:
            EnvoyClient._cloud_login(own_session, username, password, cloud)
        return True

    def _request_session_id(self, username: str, password: str) -> str:
        resp = self._cloud_login(self.session, username, password, self.cloud)
        try:
            payload = resp.json()
        except ValueError:
            raise AuthError("Enphase login returned a non-JSON payload") from None

        session_id = payload.get("session_id") if isinstance(payload, dict) else None
        if not session_id:
            raise AuthError("Enphase login response did not contain a session_id")
        return str(session_id)

    def _request_token(self, session_id: str, username: str) -> str:
        try:
            resp = self.session.post(
                self.cloud.token_url,
                json={
                    "session_id": session_id,
                    "serial_num": self._device_serial,
                    "username": username,
                },
                timeout=self.cloud.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Could not reach Enphase token service: {exc}") from exc

        token = resp.text.strip() if _is_success(resp) else ""
        if not token:
            raise AuthError(
                f"An error occurred while retrieving an access token (HTTP {resp.status_code})"
            )
        return token

    def _check_jwt(self, token: str) -> str:
        try:
            resp = self._gateway_request(
                "POST",
                self.CHECK_JWT_PATH,
                {"Authorization": f"Bearer {token}"},
            )
        except requests.RequestException as exc:
            raise AuthError(f"Could not validate access token with Envoy: {exc}") from exc

        if not _is_success(resp):
            raise AuthError(f"Envoy rejected the access token (HTTP {resp.status_code})")

        match = _SESSION_COOKIE_RE.search(resp.headers.get("Set-Cookie") or "")
        if not match or not match.group(1):
            raise AuthError("Envoy accepted the access token but did not issue a session cookie")
        return match.group(1)

    def authenticate(self) -> None:
        if not self._address:
            raise ConfigError("Attempted to authenticate against an uninitialised Enphase device")

        username, password = self._credentials
        self.log.debug("Requesting new Envoy session for %s", self._device_serial)

        session_id = self._request_session_id(username, password)
        token = self._request_token(session_id, username)
        cookie = self._check_jwt(token)

        self._secrets = SessionSecrets(bearer_token=token, session_cookie=cookie)
        self.log.info("Envoy session refreshed for %s", self._device_serial)

    # ------------------------------------------------------------------
    def get_production_data(self) -> ProductionReport:
        return ProductionReport.from_payload(self._fetch_json(self.PRODUCTION_PATH))

    def get_meters(self) -> List[MeterDescriptor]:
        return MeterDescriptor.list_from_payload(self._fetch_json(self.METERS_PATH))

    def get_meter_readings(self) -> List[MeterReading]:
        return MeterReading.list_from_payload(self._fetch_json(self.METER_READINGS_PATH))
