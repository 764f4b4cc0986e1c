"""Shared pytest fixtures for appstack tests.

This module provides common fixtures used across test files:
- appstack_root: Sets APPSTACK_ROOT environment variable
- write_stage_config: Writes appstack.yaml files under APPSTACK_ROOT
- pulumi_mocks: Standard Pulumi mock class for resource tests
- make_context: Builds a StageContext for a stage from in-memory settings
- stage_context: A development StageContext with sensible defaults
"""

import pathlib
import typing

import pulumi
import pytest
import yaml

import appstack
import appstack.stage
from appstack.deferred import DeferredValue, Source

TEST_SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"
TEST_TENANT_ID = "87654321-4321-4321-4321-210987654321"
TEST_PRINCIPAL_ID = "abcdef12-3456-7890-abcd-ef1234567890"

# ============================================================================
# Environment Setup Fixtures
# ============================================================================


@pytest.fixture
def appstack_root(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> pathlib.Path:
    """Set APPSTACK_ROOT environment variable to a temporary directory.

    Usage:
        def test_something(appstack_root):
            paths = Paths()
            assert paths.root == appstack_root
    """
    monkeypatch.setenv("APPSTACK_ROOT", str(tmp_path))
    return tmp_path


@pytest.fixture
def write_stage_config(appstack_root: pathlib.Path) -> typing.Callable[..., pathlib.Path]:
    """Write an appstack.yaml; ``stage=None`` writes the shared defaults file.

    Usage:
        def test_something(write_stage_config):
            write_stage_config({"location": "westeurope"}, stage="development")
    """

    def write(spec: dict[str, typing.Any], stage: str | None = None, **header: str) -> pathlib.Path:
        d = appstack_root if stage is None else appstack_root / "stages" / stage
        d.mkdir(parents=True, exist_ok=True)
        path = d / appstack.CONFIG_FILENAME
        path.write_text(
            yaml.safe_dump(
                {
                    "apiVersion": header.get("api_version", appstack.API_VERSION),
                    "kind": header.get("kind", appstack.CONFIG_KIND),
                    "spec": spec,
                }
            )
        )
        return path

    return write


# ============================================================================
# Pulumi Mock Fixtures
# ============================================================================

# provider-reported attributes keyed by resource type token, in wire casing
MOCK_ATTRIBUTES: dict[str, typing.Callable[[str], dict[str, typing.Any]]] = {
    "azure-native:web:WebApp": lambda name: {
        "defaultHostName": f"{name}.azurewebsites.net",
        "outboundIpAddresses": "10.0.0.1,10.0.0.2",
        "identity": {"type": "SystemAssigned", "principalId": f"principal-{name}"},
    },
    "azure-native:sql:Server": lambda name: {"fullyQualifiedDomainName": f"{name}.database.windows.net"},
    "azure-native:cache:Redis": lambda name: {"hostName": f"{name}.redis.cache.windows.net", "sslPort": 6380},
    "azure-native:cdn:Endpoint": lambda name: {"hostName": f"{name}.azureedge.net"},
    "azure-native:storage:StorageAccount": lambda name: {
        "primaryEndpoints": {"blob": f"https://{name}.blob.core.windows.net/"},
    },
    "azure-native:keyvault:Vault": lambda name: {"properties": {"vaultUri": f"https://{name}.vault.azure.net/"}},
    "azure-native:keyvault:Secret": lambda name: {
        "properties": {
            "secretUri": f"https://vault.vault.azure.net/secrets/{name}",
            "secretUriWithVersion": f"https://vault.vault.azure.net/secrets/{name}/0123456789abcdef",
        },
    },
    "azure-native:insights:Component": lambda name: {"instrumentationKey": f"key-{name}"},
}


class StandardPulumiMocks(pulumi.runtime.Mocks):
    """Standard Pulumi mocks for testing Pulumi resources.

    Returns resource names as IDs and echoes back all inputs as outputs, plus
    the attributes in MOCK_ATTRIBUTES for the resource types that report them.
    Client config calls report the TEST_* identity.
    """

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        """Mock resource creation - returns resource name as ID and inputs as outputs."""
        outputs = {"name": args.name} | dict(args.inputs)
        extra = MOCK_ATTRIBUTES.get(args.typ)
        if extra is not None:
            outputs |= extra(args.name)
        return args.name, outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        """Mock function calls - reports the test identity for client config lookups."""
        if args.token == "azure-native:authorization:getClientConfig":
            return {
                "clientId": TEST_PRINCIPAL_ID,
                "objectId": TEST_PRINCIPAL_ID,
                "subscriptionId": TEST_SUBSCRIPTION_ID,
                "tenantId": TEST_TENANT_ID,
            }
        return {}


@pytest.fixture
def pulumi_mocks() -> type[pulumi.runtime.Mocks]:
    """Returns the standard Pulumi mocks class.

    The mocks are not automatically set - you must call set_mocks() in your
    test or at module level.
    """
    return StandardPulumiMocks


# ============================================================================
# Stage Context Fixtures
# ============================================================================


class FakeConfigSource:
    """An in-memory config source; identity values not given stay pending."""

    def __init__(
        self,
        stage_name: str,
        settings: dict[str, str] | None = None,
        secrets: dict[str, str] | None = None,
        identity: dict[str, str] | None = None,
    ):
        self.stage_name = stage_name
        self.settings = settings if settings is not None else {}
        self.secrets = secrets if secrets is not None else {}
        self.identity_values = identity if identity is not None else {}

    def get(self, key: str) -> str | None:
        return self.settings.get(key)

    def get_secret(self, key: str) -> DeferredValue[str] | None:
        if key not in self.secrets:
            return None
        return DeferredValue.known(self.secrets[key], secret=True)

    def identity(self) -> appstack.stage.ClientIdentity:
        def value(key: str) -> DeferredValue[str]:
            if key in self.identity_values:
                return DeferredValue.known(self.identity_values[key])
            return DeferredValue.from_source(Source(f"identity.{key}"))

        return appstack.stage.ClientIdentity(
            subscription_id=value("subscription_id"),
            tenant_id=value("tenant_id"),
            object_id=value("principal_id"),
        )


DEFAULT_SETTINGS = {"location": "westeurope", "domain": "events.example.com"}
DEFAULT_SECRETS = {"dbPassword": "hunter2-db", "paymentRapydSecretKey": "hunter2-rapyd"}
DEFAULT_IDENTITY = {
    "subscription_id": TEST_SUBSCRIPTION_ID,
    "tenant_id": TEST_TENANT_ID,
    "principal_id": TEST_PRINCIPAL_ID,
}


@pytest.fixture
def make_context() -> typing.Callable[..., appstack.stage.StageContext]:
    """Build a StageContext for a stage; keyword arguments override the defaults.

    Usage:
        def test_something(make_context):
            ctx = make_context("production")
            assert ctx.is_production
    """

    def make(
        stage_name: str = "development",
        settings: dict[str, str] | None = None,
        secrets: dict[str, str] | None = None,
        identity: dict[str, str] | None = None,
    ) -> appstack.stage.StageContext:
        source = FakeConfigSource(
            stage_name,
            settings=DEFAULT_SETTINGS | (settings or {}),
            secrets=DEFAULT_SECRETS if secrets is None else secrets,
            identity=DEFAULT_IDENTITY if identity is None else identity,
        )
        return appstack.stage.StageContext.from_source(source)

    return make


@pytest.fixture
def stage_context(make_context) -> appstack.stage.StageContext:
    """A development StageContext in westeurope with the TEST_* identity."""
    return make_context("development")


@pytest.fixture
def config_source() -> type[FakeConfigSource]:
    """Returns the in-memory config source class for tests that build contexts by hand."""
    return FakeConfigSource
