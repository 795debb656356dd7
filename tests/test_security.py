"""Tests for operator identity enforcement and audit logging.

The operator's own identity must be a Managed Identity; secret-based
operator credentials in the environment block startup.
"""

from __future__ import annotations

import logging
import os
from unittest import mock

import pytest

from clusterinfra.security import (
    FORBIDDEN_CREDENTIAL_ENV_VARS,
    SecretlessViolationError,
    enforce_secretless_architecture,
    get_managed_identity_credential,
    log_security_audit_event,
    mask_identifier,
)


class TestSecretlessEnforcement:
    """Tests for secretless architecture enforcement."""

    def test_clean_environment_passes(self) -> None:
        """Test that enforcement passes with no credential env vars."""
        with mock.patch.dict(os.environ, {}, clear=True):
            enforce_secretless_architecture()

    @pytest.mark.parametrize("env_var", FORBIDDEN_CREDENTIAL_ENV_VARS)
    def test_forbidden_env_var_raises(self, env_var: str) -> None:
        """Test that each forbidden env var raises SecretlessViolationError."""
        with mock.patch.dict(os.environ, {env_var: "some-secret-value"}, clear=True):
            with pytest.raises(SecretlessViolationError) as exc_info:
                enforce_secretless_architecture()

            assert env_var in str(exc_info.value)

    def test_empty_value_is_ignored(self) -> None:
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_SECRET": ""}, clear=True):
            enforce_secretless_architecture()


class TestGetManagedIdentityCredential:
    """Tests for managed identity credential getter."""

    def test_rejects_secret_env_var(self) -> None:
        with mock.patch.dict(os.environ, {"AZURE_CLIENT_SECRET": "secret"}):
            with pytest.raises(SecretlessViolationError):
                get_managed_identity_credential()

    @mock.patch("clusterinfra.security.ManagedIdentityCredential")
    def test_returns_system_assigned_by_default(self, mock_credential_class: mock.Mock) -> None:
        mock_credential = mock.Mock()
        mock_credential_class.return_value = mock_credential

        with mock.patch.dict(os.environ, {}, clear=True):
            result = get_managed_identity_credential()

        mock_credential_class.assert_called_once_with()
        assert result is mock_credential

    @mock.patch("clusterinfra.security.ManagedIdentityCredential")
    def test_returns_user_assigned_with_client_id(self, mock_credential_class: mock.Mock) -> None:
        client_id = "test-client-id-12345"

        with mock.patch.dict(os.environ, {}, clear=True):
            get_managed_identity_credential(client_id=client_id)

        mock_credential_class.assert_called_once_with(client_id=client_id)

    def test_client_id_is_masked_in_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        with (
            mock.patch("clusterinfra.security.ManagedIdentityCredential"),
            mock.patch.dict(os.environ, {}, clear=True),
            caplog.at_level(logging.INFO, logger="clusterinfra.security"),
        ):
            get_managed_identity_credential(client_id="0123456789abcdef")

        records = [r for r in caplog.records if hasattr(r, "client_id")]
        assert records[0].client_id == "01234567..."


class TestMaskIdentifier:
    def test_short_values_unchanged(self) -> None:
        assert mask_identifier("abc") == "abc"

    def test_long_values_truncated(self) -> None:
        assert mask_identifier("0123456789") == "01234567..."


class TestAuditEvents:
    def test_audit_event_carries_structured_fields(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="clusterinfra.security"):
            log_security_audit_event(
                "resource_created",
                "demo",
                target_resource="resource group/kubernetes-demo",
                action="created",
                result="success",
            )

        record = caplog.records[-1]
        assert record.security_audit is True
        assert record.cluster == "demo"
        assert record.result == "success"
        assert "resource_created" in record.getMessage()
