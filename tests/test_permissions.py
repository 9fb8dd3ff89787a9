"""Tests for stage permission scopes and capability tokens."""

from datetime import datetime, timezone

import pytest
from slipway.core.errors import AuthorizationError
from slipway.pipeline.permissions import (
    BUILD_SCOPE,
    IdentityProvider,
    PermissionScope,
    deploy_scope,
)
from slipway.pipeline.types import Capability


class TestPermissionScope:
    def test_build_scope_is_read_only(self):
        assert BUILD_SCOPE.to_list() == ["read-source"]
        assert BUILD_SCOPE.allows(Capability.READ_SOURCE)
        assert not BUILD_SCOPE.allows(Capability.READ_ID_TOKEN)
        assert not BUILD_SCOPE.allows(Capability.WRITE_ENVIRONMENT, "github-pages")

    def test_deploy_scope_bound_to_environment(self):
        scope = deploy_scope("github-pages")
        assert scope.allows(Capability.WRITE_ENVIRONMENT, "github-pages")
        assert not scope.allows(Capability.WRITE_ENVIRONMENT, "staging")
        assert not scope.allows(Capability.WRITE_ENVIRONMENT)
        assert not scope.allows(Capability.READ_SOURCE)

    def test_parse(self):
        scope = PermissionScope.parse(["read-id-token", "write-environment"], environment="prod")
        assert scope.to_list() == ["read-id-token", "write-environment"]

    def test_parse_unknown_capability(self):
        with pytest.raises(ValueError, match="Unknown capability"):
            PermissionScope.parse(["admin"])

    def test_parse_unbound_write(self):
        with pytest.raises(ValueError, match="environment"):
            PermissionScope.parse(["write-environment"])


class TestCapabilityToken:
    def test_build_token_cannot_obtain_credential(self, identity):
        token = identity.mint("run-1", "build", BUILD_SCOPE)
        with pytest.raises(AuthorizationError):
            token.publish_credential("github-pages")
        with pytest.raises(AuthorizationError):
            token.id_token()

    def test_deploy_token_obtains_credential(self, identity):
        token = identity.mint("run-1", "deploy", deploy_scope("github-pages"))
        credential = token.publish_credential("github-pages")

        assert credential.run_id == "run-1"
        assert credential.environment == "github-pages"
        assert credential.expires_at > datetime.now(tz=timezone.utc)
        assert identity.verify(credential.token, "github-pages") == "run-1"
        assert credential.authorization_header() == {"Authorization": f"Bearer {credential.token}"}

    def test_deploy_token_cannot_write_other_environment(self, identity):
        token = identity.mint("run-1", "deploy", deploy_scope("github-pages"))
        with pytest.raises(AuthorizationError):
            token.publish_credential("production")

    def test_revoked_token_is_inert(self, identity):
        token = identity.mint("run-1", "deploy", deploy_scope("github-pages"))
        token.revoke()
        with pytest.raises(AuthorizationError, match="revoked"):
            token.publish_credential("github-pages")

    def test_credential_not_valid_for_other_environment(self, identity):
        token = identity.mint("run-1", "deploy", deploy_scope("github-pages"))
        credential = token.publish_credential("github-pages")
        with pytest.raises(AuthorizationError, match="not 'staging'"):
            identity.verify(credential.token, "staging")

    def test_credential_from_other_provider_rejected(self, identity):
        other = IdentityProvider(ttl_seconds=60)
        credential = other.mint("run-1", "deploy", deploy_scope("github-pages")).publish_credential("github-pages")
        with pytest.raises(AuthorizationError, match="signature"):
            identity.verify(credential.token, "github-pages")

    def test_tampered_credential_rejected(self, identity):
        credential = identity.mint("run-1", "deploy", deploy_scope("github-pages")).publish_credential("github-pages")
        body, mac = credential.token.rsplit(".", 1)
        with pytest.raises(AuthorizationError):
            identity.verify(f"{body}x.{mac}", "github-pages")
        with pytest.raises(AuthorizationError, match="Malformed"):
            identity.verify("no-signature", "github-pages")

    def test_expired_credential_rejected(self):
        provider = IdentityProvider(ttl_seconds=0)
        token = provider.mint("run-1", "deploy", deploy_scope("github-pages"))
        with pytest.raises(AuthorizationError, match="expired"):
            token.publish_credential("github-pages")
