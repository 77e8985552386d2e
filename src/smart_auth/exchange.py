"""Token-endpoint exchanges: authorization code and refresh token grants."""

from __future__ import annotations

import json
from typing import Final
from urllib.parse import urlencode

from smart_auth.clock import Clock, default_clock
from smart_auth.errors import NetworkError, TokenRefreshFailed, TokenRequestFailed
from smart_auth.log_utils import get_auth_logger, mask_sensitive
from smart_auth.models import RawTokenResponse, Token
from smart_auth.transport import FORM_CONTENT_TYPE, JSON_CONTENT_TYPE, HttpTransport

GRANT_AUTHORIZATION_CODE: Final[str] = "authorization_code"
GRANT_REFRESH_TOKEN: Final[str] = "refresh_token"

_FORM_HEADERS: Final[dict[str, str]] = {
    "Content-Type": FORM_CONTENT_TYPE,
    "Accept": JSON_CONTENT_TYPE,
}


def encode_form(params: dict[str, str]) -> bytes:
    """Percent-encode *params* as an ``application/x-www-form-urlencoded`` body."""
    return urlencode(params).encode("ascii")


class TokenExchanger:
    """POST grants to one token endpoint and turn the answer into a :class:`Token`.

    A token is only ever produced from a fully received, fully decoded ``200``
    response; nothing is persisted here.
    """

    def __init__(
        self,
        token_url: str,
        transport: HttpTransport,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.token_url = token_url
        self._transport = transport
        self._clock = clock

    async def exchange_authorization_code(
        self,
        code: str,
        redirect_uri: str,
        client_id: str,
        code_verifier: str | None = None,
    ) -> Token:
        """Trade an authorization *code* (plus PKCE verifier) for a token.

        Raises
        ------
        TokenRequestFailed
            Non-200 status or undecodable body.
        NetworkError
            The transport failed before a response arrived.
        """
        params = {
            "grant_type": GRANT_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
        }
        if code_verifier is not None:
            params["code_verifier"] = code_verifier
        log = get_auth_logger(
            base_logger_name="smart-auth.exchange",
            client_id=client_id,
            grant_type=GRANT_AUTHORIZATION_CODE,
        )
        log.debug("Exchanging code=%s pkce=%s", mask_sensitive(code), code_verifier is not None)
        token = await self._request(params, TokenRequestFailed)
        log.info("Authorization code exchanged (expires_at=%s)", token.expires_at)
        return token

    async def exchange_refresh_token(self, refresh_token: str, client_id: str) -> Token:
        """Use *refresh_token* to obtain a new token.

        Raises
        ------
        TokenRefreshFailed
            Non-200 status or undecodable body.
        NetworkError
            The transport failed before a response arrived.
        """
        params = {
            "grant_type": GRANT_REFRESH_TOKEN,
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        log = get_auth_logger(
            base_logger_name="smart-auth.exchange",
            client_id=client_id,
            grant_type=GRANT_REFRESH_TOKEN,
        )
        token = await self._request(params, TokenRefreshFailed)
        log.info("Access token refreshed (expires_at=%s)", token.expires_at)
        return token

    # ---------------- internal helpers --------------------------------- #
    async def _request(
        self,
        params: dict[str, str],
        failure: type[TokenRequestFailed] | type[TokenRefreshFailed],
    ) -> Token:
        try:
            resp = await self._transport.send(
                "POST", self.token_url, _FORM_HEADERS, encode_form(params)
            )
        except Exception as exc:
            raise NetworkError(f"token request to {self.token_url} failed: {exc}") from exc
        captured_at = self._clock()

        body = resp.text()
        if resp.status != 200:
            raise failure(f"HTTP {resp.status}: {body}", status=resp.status, body=body)

        try:
            raw = RawTokenResponse.from_json(json.loads(body))
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            raise failure(
                f"failed to decode token response: {exc}", status=resp.status, body=body
            ) from exc
        return Token.from_response(raw, captured_at=captured_at)
