from __future__ import annotations

import typing

from appstack.deferred import DeferredValue

# Interim principal id used while a web app's managed identity has not been
# reported yet (pulumi/pulumi-azure#192).
PRINCIPAL_ID_PLACEHOLDER = "11111111-1111-1111-1111-111111111111"

KEYVAULT_REFERENCE_FORMAT = "@Microsoft.KeyVault(SecretUri={uri})"


def format_secret_uri(vault_uri: str, secret_name: str, secret_version: str) -> str:
    return f"{vault_uri.rstrip('/')}/secrets/{secret_name}/{secret_version}"


def secret_reference(
    vault_uri: DeferredValue[str] | str,
    secret_name: DeferredValue[str] | str,
    secret_version: DeferredValue[str] | str,
) -> DeferredValue[str]:
    """Compose the versioned URI of a vault secret without reading its value."""
    return DeferredValue.combine(
        [vault_uri, secret_name, secret_version],
        format_secret_uri,
        label="secret_reference",
    )


def secret_version(uri_with_version: str) -> str:
    """Return the version segment of ``.../secrets/{name}/{version}``."""
    return uri_with_version.rstrip("/").rsplit("/", 1)[-1]


def keyvault_reference(uri: DeferredValue[str] | str) -> DeferredValue[str]:
    return DeferredValue.from_input(uri).map(
        lambda value: KEYVAULT_REFERENCE_FORMAT.format(uri=value),
        label="keyvault_reference",
    )


def principal_id_or_placeholder(identity: DeferredValue[typing.Any]) -> DeferredValue[str]:
    def principal_id(value: typing.Any) -> str:
        if value is None:
            return PRINCIPAL_ID_PLACEHOLDER
        if isinstance(value, typing.Mapping):
            return value.get("principal_id") or PRINCIPAL_ID_PLACEHOLDER
        return getattr(value, "principal_id", None) or PRINCIPAL_ID_PLACEHOLDER

    return identity.map(principal_id, label="principal_id")
