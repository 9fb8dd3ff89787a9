"""Per-stage permission scopes and the capability tokens minted from them.

Every stage invocation receives its own :class:`CapabilityToken`, built from
the stage's declared :class:`PermissionScope`. The token is the only way to
obtain an identity or a publish credential, so a stage whose scope lacks
``write-environment`` has no path to the hosting platform at all.

Tokens are revoked when their stage finishes; a reference that leaks to a
sibling stage is useless afterwards.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from slipway.core.errors import AuthorizationError
from slipway.pipeline.types import Capability

logger = logging.getLogger("slipway.permissions")


@dataclass(frozen=True)
class PermissionScope:
    """Declarative capability set attached to a stage."""

    grants: frozenset[Capability] = frozenset()
    environment: str | None = None  # the only environment write-environment applies to

    @classmethod
    def of(cls, *capabilities: Capability | str, environment: str | None = None) -> "PermissionScope":
        return cls(grants=frozenset(Capability(c) for c in capabilities), environment=environment)

    @classmethod
    def parse(cls, declaration: Iterable[str], environment: str | None = None) -> "PermissionScope":
        """Build a scope from a capability list such as ``["read-source"]``.

        Raises ValueError on unknown capability names.
        """
        grants = set()
        for name in declaration:
            try:
                grants.add(Capability(name))
            except ValueError:
                raise ValueError(f"Unknown capability: {name!r}") from None
        if Capability.WRITE_ENVIRONMENT in grants and not environment:
            raise ValueError("write-environment must name the environment it applies to")
        return cls(grants=frozenset(grants), environment=environment)

    def allows(self, capability: Capability, environment: str | None = None) -> bool:
        if capability not in self.grants:
            return False
        if capability == Capability.WRITE_ENVIRONMENT:
            return environment is not None and environment == self.environment
        return True

    def to_list(self) -> list[str]:
        return sorted(c.value for c in self.grants)


BUILD_SCOPE = PermissionScope.of(Capability.READ_SOURCE)


def deploy_scope(environment: str) -> PermissionScope:
    return PermissionScope.of(
        Capability.READ_ID_TOKEN,
        Capability.WRITE_ENVIRONMENT,
        environment=environment,
    )


@dataclass(frozen=True)
class IdentityToken:
    """Short-lived identity of one stage invocation."""

    token_id: str
    run_id: str
    stage: str
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return datetime.now(tz=timezone.utc) >= self.expires_at


@dataclass(frozen=True)
class PublishCredential:
    """Signed, short-lived permission to write one environment for one run."""

    run_id: str
    environment: str
    expires_at: datetime
    token: str = field(repr=False)

    @property
    def expired(self) -> bool:
        return datetime.now(tz=timezone.utc) >= self.expires_at

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class IdentityProvider:
    """Mints capability tokens and signs the credentials they request.

    The signing secret lives only in this object; it is generated per
    process unless one is supplied.
    """

    def __init__(self, ttl_seconds: int = 600, secret: bytes | None = None):
        self.ttl_seconds = ttl_seconds
        self._secret = secret or secrets.token_bytes(32)
        self._issued: set[str] = set()

    def mint(self, run_id: str, stage: str, scope: PermissionScope) -> "CapabilityToken":
        """Mint a token for a single stage invocation."""
        logger.debug(f"Minting token for {stage} (run={run_id}) with {scope.to_list()}")
        return CapabilityToken(provider=self, run_id=run_id, stage=stage, scope=scope)

    def _issue_identity(self, run_id: str, stage: str) -> IdentityToken:
        token = IdentityToken(
            token_id=str(uuid.uuid4()),
            run_id=run_id,
            stage=stage,
            expires_at=datetime.now(tz=timezone.utc) + timedelta(seconds=self.ttl_seconds),
        )
        self._issued.add(token.token_id)
        return token

    def _issue_publish_credential(self, identity: IdentityToken, environment: str) -> PublishCredential:
        if identity.token_id not in self._issued or identity.expired:
            raise AuthorizationError("Identity token is unknown or expired")
        expires_at = min(
            identity.expires_at,
            datetime.now(tz=timezone.utc) + timedelta(seconds=self.ttl_seconds),
        )
        payload = f"{identity.run_id}|{environment}|{int(expires_at.timestamp())}"
        return PublishCredential(
            run_id=identity.run_id,
            environment=environment,
            expires_at=expires_at,
            token=self._sign(payload),
        )

    def _sign(self, payload: str) -> str:
        body = base64.urlsafe_b64encode(payload.encode()).decode().rstrip("=")
        mac = hmac.new(self._secret, body.encode(), hashlib.sha256).hexdigest()
        return f"{body}.{mac}"

    def verify(self, token: str, environment: str) -> str:
        """Check a publish credential string. Returns the run id it was issued to."""
        try:
            body, mac = token.rsplit(".", 1)
        except ValueError:
            raise AuthorizationError("Malformed publish credential") from None

        expected = hmac.new(self._secret, body.encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(mac, expected):
            raise AuthorizationError("Publish credential signature mismatch")

        padded = body + "=" * (-len(body) % 4)
        run_id, env, expires = base64.urlsafe_b64decode(padded).decode().split("|")
        if env != environment:
            raise AuthorizationError(f"Credential is for environment '{env}', not '{environment}'")
        if datetime.now(tz=timezone.utc).timestamp() >= int(expires):
            raise AuthorizationError("Publish credential expired")
        return run_id


class CapabilityToken:
    """The capabilities one stage invocation may exercise."""

    def __init__(self, provider: IdentityProvider, run_id: str, stage: str, scope: PermissionScope):
        self._provider = provider
        self.run_id = run_id
        self.stage = stage
        self.scope = scope
        self._revoked = False

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> None:
        self._revoked = True

    def require(self, capability: Capability, environment: str | None = None) -> None:
        """Raise AuthorizationError unless this token may exercise *capability*."""
        if self._revoked:
            raise AuthorizationError(f"Capability token for stage '{self.stage}' has been revoked")
        if not self.scope.allows(capability, environment):
            target = f" on '{environment}'" if environment else ""
            raise AuthorizationError(
                f"Stage '{self.stage}' is not permitted to use {capability.value}{target}"
            )

    def id_token(self) -> IdentityToken:
        self.require(Capability.READ_ID_TOKEN)
        return self._provider._issue_identity(self.run_id, self.stage)

    def publish_credential(self, environment: str) -> PublishCredential:
        """Exchange this stage's identity for a credential to write *environment*."""
        self.require(Capability.WRITE_ENVIRONMENT, environment)
        identity = self.id_token()
        return self._provider._issue_publish_credential(identity, environment)
