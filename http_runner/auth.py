"""Authentication dispatch on the request's Authorization header.

The scheme is the first whitespace-delimited token of the header value,
matched case-insensitively. Exactly one scheme applies per request:

    basic    credentials handed to httpx.BasicAuth, header removed
    digest   after-response hook answers the 401 challenge, header removed
    bearer   header sent as is
    aws      before-send SigV4 hook, header removed
    cognito  sign-in now, before-send bearer hook, header removed
    other    header sent as is, user warned

Malformed aws/cognito headers are sent as is with a warning; they never fail
the request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from http_runner.auth_hooks import (
    AwsCredentials,
    CognitoCredentials,
    CognitoSignIn,
    aws_signature_hook,
    bearer_token_hook,
    digest_hook,
    sign_in_with_cognito,
)
from http_runner.errors import AuthenticationError
from http_runner.headers import get_header, remove_header
from http_runner.notify import WarningChannel

if TYPE_CHECKING:
    from http_runner.options import TransportOptions

logger = logging.getLogger(__name__)

AUTHORIZATION = "Authorization"

AWS_FORMAT = (
    '"Authorization: AWS [region:<region>] [service:<service>] [token:<sessionToken>] '
    '<accessKeyId> <secretAccessKey>"'
)
COGNITO_FORMAT = '"Authorization: Cognito [...] <username> <password> <userPoolId> <clientId>"'

_AWS_TAGGED = re.compile(r"^(region|service|token):(\S*)$", re.IGNORECASE)


class AuthScheme(str, Enum):
    """Authorization schemes the engine knows how to handle."""

    BASIC = "basic"
    DIGEST = "digest"
    BEARER = "bearer"
    AWS = "aws"
    COGNITO = "cognito"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, token: str) -> AuthScheme:
        try:
            return cls(token.lower())
        except ValueError:
            return cls.UNRECOGNIZED


@dataclass(frozen=True)
class AuthorizationHeader:
    """A parsed Authorization header value."""

    value: str
    scheme: AuthScheme
    scheme_token: str
    arguments: list[str] = field(default_factory=list)


def parse_authorization(value: str) -> AuthorizationHeader:
    """Split an Authorization value into scheme and whitespace-separated arguments."""
    tokens = value.split()
    if not tokens:
        return AuthorizationHeader(value=value, scheme=AuthScheme.UNRECOGNIZED, scheme_token="")
    return AuthorizationHeader(
        value=value,
        scheme=AuthScheme.parse(tokens[0]),
        scheme_token=tokens[0],
        arguments=tokens[1:],
    )


def parse_basic_credentials(arguments: list[str]) -> tuple[str, str] | None:
    """Extract (username, password) from Basic arguments.

    ``alice secret`` -> ("alice", "secret"); ``alice:pw:x more`` ->
    ("alice", "pw:x more"). A lone token, with or without a colon, is assumed
    to be already base64-encoded, so None is returned and the header is sent
    as is.
    """
    if len(arguments) < 2:
        return None

    user, rest = arguments[0], arguments[1:]
    if ":" in user:
        username, first_chunk = user.split(":", 1)
        return username, " ".join([first_chunk, *rest])
    return user, " ".join(rest)


def parse_aws_credentials(header: AuthorizationHeader) -> AwsCredentials | None:
    """Extract AWS credentials; None when the header is too short to sign with.

    ``region:``, ``service:`` and ``token:`` may appear anywhere; the first two
    untagged arguments are the access key id and the secret key.
    """
    if len(header.arguments) < 3:
        return None

    tagged: dict[str, str] = {}
    positional: list[str] = []
    for argument in header.arguments:
        match = _AWS_TAGGED.match(argument)
        if match:
            tagged.setdefault(match.group(1).lower(), match.group(2))
        else:
            positional.append(argument)

    if len(positional) < 2:
        return None

    return AwsCredentials(
        access_key_id=positional[0],
        secret_access_key=positional[1],
        session_token=tagged.get("token") or None,
        region=tagged.get("region") or None,
        service=tagged.get("service") or None,
    )


def parse_cognito_credentials(header: AuthorizationHeader) -> CognitoCredentials | None:
    """Extract Cognito sign-in parameters from the last four arguments."""
    if len(header.arguments) < 4:
        return None
    username, password, user_pool_id, client_id = header.arguments[-4:]
    return CognitoCredentials(
        username=username,
        password=password,
        user_pool_id=user_pool_id,
        client_id=client_id,
    )


class AuthenticationDispatcher:
    """Applies the Authorization header's scheme to TransportOptions."""

    def __init__(
        self,
        warnings: WarningChannel | None = None,
        cognito_sign_in: CognitoSignIn | None = None,
    ) -> None:
        self._warnings = warnings or WarningChannel()
        self._cognito_sign_in = cognito_sign_in or sign_in_with_cognito

    async def apply(self, options: TransportOptions) -> AuthScheme | None:
        """Mutate ``options`` for its Authorization header.

        Returns the scheme that was recognized, or None when there is no
        Authorization header.

        Raises:
            AuthenticationError: If the Cognito sign-in fails.
        """
        value = get_header(options.headers, AUTHORIZATION)
        if not value:
            return None

        header = parse_authorization(value)
        scheme = header.scheme

        if scheme is AuthScheme.BASIC:
            credentials = parse_basic_credentials(header.arguments)
            if credentials is not None:
                remove_header(options.headers, AUTHORIZATION)
                options.username, options.password = credentials

        elif scheme is AuthScheme.DIGEST:
            if len(header.arguments) > 1:
                username = header.arguments[0]
                password = " ".join(header.arguments[1:])
                remove_header(options.headers, AUTHORIZATION)
                options.after_response.append(digest_hook(username, password))

        elif scheme is AuthScheme.BEARER:
            pass

        elif scheme is AuthScheme.AWS:
            aws = parse_aws_credentials(header)
            if aws is None:
                self._warnings.warn(
                    f"Invalid AWS authorization header, the format should be {AWS_FORMAT}. "
                    "The Authorization header will be sent as is."
                )
            else:
                remove_header(options.headers, AUTHORIZATION)
                options.before_send.append(aws_signature_hook(aws))

        elif scheme is AuthScheme.COGNITO:
            cognito = parse_cognito_credentials(header)
            if cognito is None:
                self._warnings.warn(
                    f"Invalid Cognito authorization header, the format should be {COGNITO_FORMAT}. "
                    "The Authorization header will be sent as is."
                )
            else:
                remove_header(options.headers, AUTHORIZATION)
                token = await self._sign_in(cognito)
                options.before_send.append(bearer_token_hook(token))

        else:
            self._warnings.warn(
                f"Authorization scheme {header.scheme_token} is not supported, "
                "the Authorization header will be sent as is."
            )

        logger.debug("Authorization scheme %s applied", scheme.value)
        return scheme

    async def _sign_in(self, credentials: CognitoCredentials) -> str:
        try:
            return await self._cognito_sign_in(credentials)
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"Cognito sign-in failed: {e}") from e
