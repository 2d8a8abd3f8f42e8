import logging
import os
import time
from typing import Any, Dict, Optional, Union

import certifi
import jwt  # PyJWT
import requests

from config import load_private_key
from errors import AuthError, ConfigurationError, RemoteError
from models import AppAssertion, CheckStatus, InstallationToken

log = logging.getLogger("webhook.github")

GITHUB_API = "https://api.github.com"
APP_JWT_TTL_S = 10 * 60  # platform maximum
USER_AGENT = "octo-rubocop/1.0"


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep * 2:
        return "…"
    return s[:keep] + "…" + s[-keep:]


def _ca_bundle() -> str:
    return (
        os.getenv("REQUESTS_CA_BUNDLE")
        or os.getenv("SSL_CERT_FILE")
        or certifi.where()
    )


def _bearer(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": USER_AGENT,
    }


def mint_app_jwt(app_id: str, private_key: Any, now: Optional[int] = None) -> AppAssertion:
    """Sign a short-lived RS256 JWT that identifies the App itself (not an installation)."""
    if not app_id:
        raise ConfigurationError("GitHub App id is missing")
    key = load_private_key(private_key) if isinstance(private_key, (str, type(None))) else private_key
    iat = int(time.time()) if now is None else int(now)
    claims = {"iat": iat, "exp": iat + APP_JWT_TTL_S, "iss": str(app_id)}
    try:
        token = jwt.encode(claims, key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise ConfigurationError(f"cannot sign App JWT with the configured key: {e}")
    if isinstance(token, (bytes, bytearray)):
        token = token.decode()
    return AppAssertion(token=token, issued_at=iat, expires_at=iat + APP_JWT_TTL_S, issuer=str(app_id))


def authenticate_installation(
    assertion: AppAssertion,
    installation_id: int,
    base_url: str = GITHUB_API,
    timeout: int = 25,
) -> InstallationToken:
    """Redeem an App JWT for an installation access token."""
    url = f"{base_url.rstrip('/')}/app/installations/{installation_id}/access_tokens"
    try:
        r = requests.post(url, headers=_bearer(assertion.token), timeout=timeout, verify=_ca_bundle())
    except requests.RequestException as e:
        raise RemoteError(f"token exchange transport failure: {e}", url=url) from e
    if r.status_code >= 400:
        log.error("POST %s -> %s %s: %s", url, r.status_code, r.reason, (r.text or "")[:800])
        raise AuthError(f"installation {installation_id} token exchange rejected ({r.status_code})")
    try:
        body = r.json()
        token = body["token"]
    except (ValueError, KeyError, TypeError) as e:
        raise AuthError(f"installation {installation_id} token exchange returned no token") from e
    log.info("installation token minted installation=%s token=%s", installation_id, _mask(token))
    return InstallationToken(token=token, installation_id=int(installation_id), expires_at=body.get("expires_at"))


class GitHubClient:
    """Installation-scoped REST client for the Checks API."""

    def __init__(self, token: Union[InstallationToken, str], base_url: str = GITHUB_API, timeout: int = 25):
        raw = token.token if isinstance(token, InstallationToken) else token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(_bearer(raw))

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, json=payload, timeout=self.timeout, verify=_ca_bundle())
        except requests.RequestException as e:
            log.error("%s %s -> transport error: %s", method, url, e)
            raise RemoteError(f"{method} {url} failed: {e}", url=url) from e
        try:
            try_json = r.json()
        except ValueError:
            try_json = None
        if r.status_code >= 400:
            log.error("%s %s -> %s %s body=%s resp=%s", method, url, r.status_code, r.reason,
                      str(payload)[:400], (r.text or str(try_json))[:800])
            raise RemoteError(f"{method} {url} -> {r.status_code}", status_code=r.status_code, url=url)
        log.debug("%s %s -> %s", method, url, r.status_code)
        return try_json or {}

    def create_check_run(self, full_name: str, head_sha: str, name: str) -> int:
        data = {"name": name, "head_sha": head_sha, "status": CheckStatus.QUEUED.value}
        resp = self._request("POST", f"/repos/{full_name}/check-runs", data)
        check_id = int(resp.get("id") or 0)
        log.info("check run queued repo=%s id=%s head=%s", full_name, check_id, head_sha[:7])
        return check_id

    def update_check_run(self, full_name: str, check_run_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/repos/{full_name}/check-runs/{check_run_id}", fields)

