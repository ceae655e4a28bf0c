"""DocuSign REST v2 client.

Only the calls the deal flow needs: envelope creation from a template,
embedded (in-app) signing urls, envelope status and signed document
download. Every call is synchronous and bounded by ``DOCUSIGN_TIMEOUT``.
"""
from __future__ import annotations

import random
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import requests
import structlog

from .config import (
    DOCUSIGN_ACCOUNT_ID,
    DOCUSIGN_INTEGRATOR_KEY,
    DOCUSIGN_PASSWORD,
    DOCUSIGN_TIMEOUT,
    DOCUSIGN_URL,
    DOCUSIGN_USERNAME,
    SERVER_DOMAIN,
    SERVER_PROTO,
)

logger = structlog.get_logger(__name__)

RETURN_PATH = "/u/#/pages/sign/"
TERMINAL_STATUSES = {"completed", "declined", "voided"}

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class DocusignError(Exception):
    """Base class for provider failures."""


class DocusignParamsError(DocusignError):
    pass


class DocusignNetworkError(DocusignError):
    pass


class DocusignAPIError(DocusignError):
    """The provider answered with an unexpected HTTP status."""


class DocusignResponseError(DocusignError):
    """The provider answered with a body that is not JSON."""


class DocusignCallError(DocusignError):
    """The JSON body is missing a field the call relies on."""


def parse_status_time(value: str) -> datetime:
    """Parse DocuSign's RFC 3339 timestamps into naive UTC.

    DocuSign reports 7 fractional digits, more than ``datetime`` accepts.
    """
    text = _FRACTION_RE.sub(r"\1", value.strip()).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def return_url(host: str, envelope_id: str) -> str:
    base = SERVER_DOMAIN
    if host:
        base = f"{SERVER_PROTO}{host}"
    return f"{base}{RETURN_PATH}{envelope_id}"


def _field(data: Dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise DocusignCallError(f"missing {key} in response")
    return value


class DocusignClient:
    def __init__(
        self,
        url: str = DOCUSIGN_URL,
        username: str = DOCUSIGN_USERNAME,
        password: str = DOCUSIGN_PASSWORD,
        account_id: str = DOCUSIGN_ACCOUNT_ID,
        integrator_key: str = DOCUSIGN_INTEGRATOR_KEY,
        timeout: float = DOCUSIGN_TIMEOUT,
        http: Optional[requests.Session] = None,
    ):
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.account_id = account_id
        self.integrator_key = integrator_key
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-DocuSign-Authentication": (
                f"<DocuSignCredentials><Username>{self.username}</Username>"
                f"<Password>{self.password}</Password>"
                f"<IntegratorKey>{self.integrator_key}</IntegratorKey></DocuSignCredentials>"
            ),
        }

    def _request(self, method: str, call: str, params: Optional[dict] = None, raw: bool = False):
        req_id = random.getrandbits(63)
        url = f"{self.url}/accounts/{self.account_id}/{call.lstrip('/')}"
        log = logger.bind(req_id=req_id, method=method, url=url)
        log.info("docusign request")
        try:
            if method == "POST":
                resp = self.http.post(url, json=params or {}, headers=self._headers(), timeout=self.timeout)
            else:
                resp = self.http.get(url, params=params or None, headers=self._headers(), timeout=self.timeout)
        except (TypeError, ValueError) as exc:
            log.warning("docusign bad params", error=str(exc))
            raise DocusignParamsError(str(exc)) from exc
        except requests.RequestException as exc:
            log.warning("docusign network error", error=str(exc))
            raise DocusignNetworkError(str(exc)) from exc

        expected = 201 if method == "POST" else 200
        if resp.status_code != expected:
            log.warning("docusign api error", status=resp.status_code, body=resp.text[:500])
            raise DocusignAPIError(f"unexpected status {resp.status_code}")

        if raw:
            log.info("docusign done", size=len(resp.content))
            return resp.content

        try:
            data = resp.json()
        except ValueError as exc:
            log.warning("docusign bad response", body=resp.text[:500])
            raise DocusignResponseError("response is not json") from exc
        if not isinstance(data, dict):
            raise DocusignResponseError("response is not an object")
        log.info("docusign done")
        return data

    def create_envelope_with_template(
        self,
        template_id: str,
        role_name: str,
        client_user_id: str,
        subject: str,
        email: str,
        name: str,
        substitutions: Dict[str, Any],
    ) -> Tuple[str, datetime]:
        """Send a new envelope built from a template.

        Returns the envelope id and the time the provider started the
        signing window. Substitutions fill the template's ``*label`` text tabs.
        """
        text_tabs = [
            {"tabLabel": "\\*" + key, "value": f"{value}"}
            for key, value in substitutions.items()
        ]
        params = {
            "status": "sent",
            "emailSubject": subject,
            "templateId": template_id,
            "templateRoles": [
                {
                    "email": email,
                    "name": name,
                    "roleName": role_name,
                    "clientUserId": client_user_id,
                    "tabs": {"textTabs": text_tabs},
                }
            ],
        }
        data = self._request("POST", "envelopes", params)
        envelope_id = _field(data, "envelopeId")
        try:
            started = parse_status_time(_field(data, "statusDateTime"))
        except ValueError as exc:
            raise DocusignCallError("bad statusDateTime") from exc
        return str(envelope_id), started

    def get_envelope_recipient(self, envelope_id: str) -> Dict[str, str]:
        """Canonical identity of the envelope's first signer.

        Names and emails can be edited on the provider side, so this is the
        only reliable way to know what the provider expects.
        """
        data = self._request("GET", f"envelopes/{envelope_id}/recipients")
        signers = data.get("signers") or []
        if not signers or not isinstance(signers[0], dict):
            raise DocusignCallError("no signers on envelope")
        signer = signers[0]
        return {key: str(_field(signer, key)) for key in ("name", "email", "clientUserId", "roleName")}

    def create_embedded_recipient_url(
        self, host: str, envelope_id: str, client_user_id: str, email: str, name: str
    ) -> str:
        params = {
            "userName": name,
            "email": email,
            "clientUserId": client_user_id,
            "authenticationMethod": "email",
            "returnUrl": return_url(host, envelope_id),
        }
        call = f"envelopes/{envelope_id}/views/recipient"
        try:
            data = self._request("POST", call, params)
        except DocusignAPIError as exc:
            # Recipient may have been edited on the provider side, retry once
            try:
                recipient = self.get_envelope_recipient(envelope_id)
            except DocusignError:
                raise exc
            params["userName"] = recipient["name"]
            params["email"] = recipient["email"]
            params["clientUserId"] = recipient["clientUserId"]
            data = self._request("POST", call, params)
        return str(_field(data, "url"))

    def get_envelope_status(self, envelope_id: str) -> Tuple[bool, bool]:
        """Return ``(completed, terminal)``."""
        data = self._request("GET", f"envelopes/{envelope_id}")
        status = str(_field(data, "status")).lower()
        return status == "completed", status in TERMINAL_STATUSES

    def download_envelope_document(self, envelope_id: str) -> bytes:
        # Always the first document in the envelope
        return self._request("GET", f"envelopes/{envelope_id}/documents/1", raw=True)


@lru_cache()
def get_docusign() -> DocusignClient:
    return DocusignClient()
