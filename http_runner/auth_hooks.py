"""Hooks installed by the authentication dispatcher.

The signing algorithms themselves come from libraries: httpx.DigestAuth for
digest challenges, botocore for AWS Signature V4, and boto3's cognito-idp
client for the Cognito sign-in exchange.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import boto3
import httpx
from botocore import UNSIGNED
from botocore.auth import S3SigV4Auth, SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.config import Config
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError, ClientError

from http_runner.errors import AuthenticationError

if TYPE_CHECKING:
    from http_runner.options import AfterResponseHook, BeforeSendHook

logger = logging.getLogger(__name__)

DEFAULT_AWS_REGION = "us-east-1"

_AWS_REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d+$")

# Hop-by-hop headers can be rewritten in transit; leave them unsigned.
_UNSIGNED_HEADERS = frozenset({"connection", "keep-alive", "proxy-connection", "transfer-encoding"})


def _mask(value: str, visible: int = 4) -> str:
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)


@dataclass(frozen=True)
class AwsCredentials:
    """Credentials and scope parsed from an ``Authorization: AWS ...`` header."""

    access_key_id: str
    secret_access_key: str
    session_token: str | None = None
    region: str | None = None
    service: str | None = None

    def __repr__(self) -> str:
        return (
            f"AwsCredentials(access_key_id={_mask(self.access_key_id)!r}, "
            f"region={self.region!r}, service={self.service!r}, "
            f"has_session_token={self.session_token is not None})"
        )


@dataclass(frozen=True)
class CognitoCredentials:
    """Sign-in parameters parsed from an ``Authorization: Cognito ...`` header."""

    username: str
    password: str
    user_pool_id: str
    client_id: str

    @property
    def region(self) -> str:
        # Pool ids look like "us-east-1_AbCdEf123".
        return self.user_pool_id.split("_", 1)[0]

    def __repr__(self) -> str:
        return (
            f"CognitoCredentials(username={self.username!r}, password='***', "
            f"user_pool_id={self.user_pool_id!r}, client_id={self.client_id!r})"
        )


CognitoSignIn = Callable[[CognitoCredentials], Awaitable[str]]


# =============================================================================
# Bearer
# =============================================================================


def bearer_token_hook(token: str) -> BeforeSendHook:
    """Before-send hook that sets ``Authorization: Bearer <token>``."""

    async def set_bearer_token(request: httpx.Request) -> httpx.Request:
        request.headers["Authorization"] = f"Bearer {token}"
        return request

    return set_bearer_token


# =============================================================================
# Digest
# =============================================================================


def digest_hook(username: str, password: str) -> AfterResponseHook:
    """After-response hook answering one Digest challenge.

    On a 401 carrying a ``WWW-Authenticate: Digest`` challenge, the request is
    signed and sent exactly once more. Any other response is kept as is.
    """

    async def answer_digest_challenge(
        response: httpx.Response,
        resend: Callable[[httpx.Request], Awaitable[httpx.Response]],
    ) -> httpx.Response:
        if response.status_code != 401:
            return response

        # DigestAuth signs the request in place; the first exchange keeps what it sent.
        sent = response.request
        retry_base = httpx.Request(sent.method, sent.url, headers=sent.headers, content=sent.content)
        flow = httpx.DigestAuth(username, password).auth_flow(retry_base)
        next(flow)
        try:
            retry_request = flow.send(response)
        except StopIteration:
            logger.debug("401 without a Digest challenge; keeping response")
            return response

        logger.debug("Answering Digest challenge for %s", response.request.url)
        return await resend(retry_request)

    return answer_digest_challenge


# =============================================================================
# AWS Signature V4
# =============================================================================


def infer_aws_scope(host: str) -> tuple[str, str]:
    """Guess (service, region) from an AWS endpoint host name.

    ``s3.us-west-2.amazonaws.com`` -> ("s3", "us-west-2");
    ``abc.execute-api.eu-west-1.amazonaws.com`` -> ("execute-api", "eu-west-1");
    ``sqs.amazonaws.com`` -> ("sqs", "us-east-1").
    """
    parts = host.lower().split(".")
    for index, part in enumerate(parts):
        if _AWS_REGION_PATTERN.match(part):
            service = parts[index - 1] if index > 0 else parts[0]
            return service, part
    return parts[0], DEFAULT_AWS_REGION


def aws_signature_hook(credentials: AwsCredentials) -> BeforeSendHook:
    """Before-send hook signing the request with AWS Signature V4."""

    async def sign_request(request: httpx.Request) -> httpx.Request:
        service, region = infer_aws_scope(request.url.host)
        service = credentials.service or service
        region = credentials.region or region

        aws_request = AWSRequest(
            method=request.method,
            url=str(request.url),
            data=request.content,
            headers={
                name: value
                for name, value in request.headers.items()
                if name.lower() not in _UNSIGNED_HEADERS and name.lower() != "authorization"
            },
        )
        signer_cls = S3SigV4Auth if service == "s3" else SigV4Auth
        signer = signer_cls(
            Credentials(
                credentials.access_key_id,
                credentials.secret_access_key,
                credentials.session_token,
            ),
            service,
            region,
        )
        signer.add_auth(aws_request)

        for name, value in aws_request.headers.items():
            request.headers[name] = value

        logger.debug("Signed %s %s for %s/%s", request.method, request.url, service, region)
        return request

    return sign_request


# =============================================================================
# Cognito
# =============================================================================


async def sign_in_with_cognito(credentials: CognitoCredentials) -> str:
    """Exchange username/password for a Cognito access token.

    Uses the USER_PASSWORD_AUTH flow, which must be enabled on the app client.

    Raises:
        AuthenticationError: If sign-in is rejected or returns no tokens.
    """
    return await asyncio.to_thread(_initiate_auth, credentials)


def _initiate_auth(credentials: CognitoCredentials) -> str:
    client = boto3.client(
        "cognito-idp",
        region_name=credentials.region,
        config=Config(signature_version=UNSIGNED),
    )
    try:
        result = client.initiate_auth(
            ClientId=credentials.client_id,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters={
                "USERNAME": credentials.username,
                "PASSWORD": credentials.password,
            },
        )
    except (BotoCoreError, ClientError) as e:
        raise AuthenticationError(
            f"Cognito sign-in failed for {credentials.username}: {e}"
        ) from e

    tokens = result.get("AuthenticationResult") or {}
    access_token = tokens.get("AccessToken")
    if not access_token:
        challenge = result.get("ChallengeName", "none")
        raise AuthenticationError(
            f"Cognito sign-in for {credentials.username} returned no token (challenge: {challenge})"
        )
    return access_token
