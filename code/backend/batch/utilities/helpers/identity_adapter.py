"""
Caller identity handling for the Domain Expert gateway.

The calling agent presents an OAuth access token. The gateway checks the
token's shape, expiry and audience, then carries it unchanged to the
warehouse so every query runs under the caller's own privileges. The raw
token is never logged or persisted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import jwt

from ..common.errors import AuthenticationFailure

logger = logging.getLogger(__name__)

SIGNING_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384"]


@dataclass(frozen=True)
class IdentityConfig:
    """Expectations a caller's token must meet."""

    expected_audience: str
    expected_issuer: Optional[str] = None
    leeway_seconds: int = 30
    jwks_url: Optional[str] = None


@dataclass(frozen=True)
class CallerIdentity:
    """An authenticated caller. Lives for one request only."""

    subject: str
    audience: str
    expiry: datetime
    raw_credential: str = field(repr=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry


class IdentityAdapter:
    """
    Validates caller credentials and produces a CallerIdentity.

    Signature checking is delegated to the warehouse, which validates the
    token again on connect. When ``jwks_url`` is configured the signature
    is also verified here.
    """

    def __init__(self, config: IdentityConfig):
        """
        Initialize the identity adapter.

        Args:
            config: Audience, issuer and leeway the token must satisfy
        """
        self.config = config
        self._jwks_client = jwt.PyJWKClient(config.jwks_url) if config.jwks_url else None

    def authenticate(self, raw_credential) -> CallerIdentity:
        """
        Validate a raw credential.

        Args:
            raw_credential: The bearer token presented by the caller

        Returns:
            CallerIdentity carrying the unchanged token

        Raises:
            AuthenticationFailure: If the token is missing, malformed,
                expired or issued for another audience
        """
        if not isinstance(raw_credential, str) or not raw_credential.strip():
            raise AuthenticationFailure("credential missing")
        if raw_credential != raw_credential.strip():
            raise AuthenticationFailure("credential has surrounding whitespace")
        token = raw_credential
        if token.count(".") != 2:
            raise AuthenticationFailure("credential is not a JWT")

        try:
            header = jwt.get_unverified_header(token)
            payload = self._decode(token, header)
        except jwt.ExpiredSignatureError as e:
            logger.info("Rejected expired credential")
            raise AuthenticationFailure("credential expired") from e
        except jwt.InvalidAudienceError as e:
            logger.info("Rejected credential with unexpected audience")
            raise AuthenticationFailure("audience mismatch") from e
        except jwt.PyJWTError as e:
            logger.info("Rejected credential: %s", type(e).__name__)
            raise AuthenticationFailure(type(e).__name__) from e

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationFailure("credential has no subject")

        identity = CallerIdentity(
            subject=subject,
            audience=self.config.expected_audience,
            expiry=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            raw_credential=token,
        )
        logger.debug("Authenticated caller %s", identity.subject)
        return identity

    def _decode(self, token: str, header: dict) -> dict:
        options = {
            "verify_signature": self._jwks_client is not None,
            "verify_exp": True,
            "verify_aud": True,
            "verify_iss": self.config.expected_issuer is not None,
            "require": ["exp", "aud", "sub"],
        }
        if self._jwks_client is not None:
            if header.get("alg") not in SIGNING_ALGORITHMS:
                raise jwt.InvalidAlgorithmError("unsupported signing algorithm")
            key = self._jwks_client.get_signing_key_from_jwt(token).key
            return jwt.decode(
                token,
                key,
                algorithms=SIGNING_ALGORITHMS,
                audience=self.config.expected_audience,
                issuer=self.config.expected_issuer,
                leeway=self.config.leeway_seconds,
                options=options,
            )
        return jwt.decode(
            token,
            options=options,
            audience=self.config.expected_audience,
            issuer=self.config.expected_issuer,
            leeway=self.config.leeway_seconds,
        )
