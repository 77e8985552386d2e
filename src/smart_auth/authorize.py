"""Authorization-endpoint redirect URL construction."""

from __future__ import annotations

import enum
import logging
from typing import Iterable
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from smart_auth.config import validate_url
from smart_auth.pkce import PkceParameters
from smart_auth.scopes import Scope, ScopeSet

_LOG = logging.getLogger("smart-auth.authorize")


class LaunchType(str, enum.Enum):
    """SMART App Launch flavour."""

    STANDALONE = "standalone"
    EHR_LAUNCH = "ehr_launch"


def build_authorization_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[Scope | str] | str,
    server_url: str,
    launch_type: LaunchType = LaunchType.STANDALONE,
    launch_context: str | None = None,
    state: str | None = None,
    pkce: PkceParameters | None = None,
) -> str:
    """Return the URL the user agent must open to start the authorization flow.

    Parameters are emitted in a fixed order: ``response_type``, ``client_id``,
    ``redirect_uri``, ``scope``, ``aud``, then ``state``, the PKCE pair and
    ``launch`` when applicable.  Query parameters already present on
    *authorize_url* are kept in front.

    *state* is passed through untouched; generating and checking it is the
    caller's job (see :mod:`smart_auth.state`).

    Raises
    ------
    InvalidConfiguration
        If *authorize_url* is not an absolute http(s) URL.
    """
    validate_url(authorize_url, "authorize_url")
    parts = urlsplit(authorize_url)

    params: list[tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
    params += [
        ("response_type", "code"),
        ("client_id", client_id),
        ("redirect_uri", redirect_uri),
        ("scope", ScopeSet(scopes).combine()),
        ("aud", server_url),
    ]
    if state is not None:
        params.append(("state", state))
    if pkce is not None:
        params.append(("code_challenge", pkce.code_challenge))
        params.append(("code_challenge_method", pkce.challenge_method))
    if launch_type is LaunchType.EHR_LAUNCH and launch_context:
        params.append(("launch", launch_context))

    url = urlunsplit(parts._replace(query=urlencode(params, quote_via=quote)))
    _LOG.debug(
        "Built authorization URL for client_id=%s launch=%s pkce=%s",
        client_id,
        launch_type.value,
        pkce is not None,
    )
    return url
