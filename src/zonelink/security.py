"""Credential acquisition for the governance commands.

The tools run either from an operator workstation (Azure CLI login) or from
automation with a User-Assigned Managed Identity. Long-lived secrets are
never accepted.

SECURITY INVARIANTS:
1. AZURE_CLIENT_SECRET and friends must never be present in the environment
2. Only ManagedIdentityCredential or AzureCliCredential are handed out
3. The credential is created once per run and passed explicitly to every client
"""

from __future__ import annotations

import logging
import os

from azure.core.credentials import TokenCredential
from azure.identity import AzureCliCredential, ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "SECURITY VIOLATION: {env_var} is set. Secret-based authentication is not allowed; "
    "sign in with 'az login' or run under a managed identity and unset the variable."
)


class SecretlessViolationError(Exception):
    """Raised when a credential secret is found in the environment."""

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to run when credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variables detected.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))


def get_credential(tenant_id: str, client_id: str | None = None) -> TokenCredential:
    """Get the credential for this run after verifying no secrets are configured.

    Args:
        tenant_id: Entra ID tenant the run is scoped to.
        client_id: Client ID of a user-assigned managed identity. When omitted
            the Azure CLI login is used.

    Returns:
        A token credential shared by all SDK clients of the run.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using Azure CLI credential", extra={"tenant_id": tenant_id})
    return AzureCliCredential(tenant_id=tenant_id)
