from unittest.mock import MagicMock

import pulumi
import pytest

import appstack.pulumi_resources.provisioner
from appstack import AppRoles, ResourceKind
from appstack.errors import GraphStateError
from appstack.graph import ResourceGraph
from appstack.pulumi_resources.app_stack import AppStack, PulumiConfigSource
from appstack.pulumi_resources.provisioner import PulumiProvisioner, resource_factory


def test_every_kind_has_a_resource_type():
    for kind in ResourceKind:
        assert callable(resource_factory(kind)), kind


def test_resource_factory_without_importable_candidates(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setitem(
        appstack.pulumi_resources.provisioner.RESOURCE_TYPES,
        ResourceKind.MEDIA_SERVICE,
        ("pulumi_azure_native.nope:MediaService",),
    )
    resource_factory.cache_clear()

    try:
        with pytest.raises(ValueError, match="no resource type available for MediaService"):
            resource_factory(ResourceKind.MEDIA_SERVICE)
    finally:
        resource_factory.cache_clear()


def test_unsealed_graphs_are_rejected():
    graph = ResourceGraph("g")

    with pytest.raises(GraphStateError):
        PulumiProvisioner().provision(graph)


def test_config_source_wraps_secrets():
    config = MagicMock()
    config.get.side_effect = {"location": "westeurope"}.get
    config.get_secret.side_effect = {"dbPassword": "db"}.get
    source = PulumiConfigSource("development", config=config)

    password = source.get_secret("dbPassword")

    assert source.stage_name == "development"
    assert source.get("location") == "westeurope"
    assert source.get("missing") is None
    assert source.get_secret("missing") is None
    assert password.secret
    assert password.source.handle == "db"
    assert password.describe() == "${config.dbPassword}"


@pulumi.runtime.test
def test_config_source_identity(pulumi_mocks: type[pulumi.runtime.Mocks]):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    identity = PulumiConfigSource("development", config=MagicMock()).identity()

    def check(args):
        subscription_id, tenant_id = args
        assert subscription_id == "12345678-1234-1234-1234-123456789012"
        assert tenant_id == "87654321-4321-4321-4321-210987654321"

    return pulumi.Output.all(
        identity.subscription_id.source.handle,
        identity.tenant_id.source.handle,
    ).apply(check)


@pulumi.runtime.test
def test_provision_small_graph(pulumi_mocks: type[pulumi.runtime.Mocks]):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    graph = ResourceGraph("testing01-development")
    rg = graph.declare(ResourceKind.RESOURCE_GROUP, "rg", {"resource_group_name": "rg", "location": "westeurope"})
    sa = graph.declare(
        ResourceKind.STORAGE_ACCOUNT,
        "sttesting01",
        {
            "account_name": "sttesting01",
            "resource_group_name": rg.output("name"),
            "kind": "StorageV2",
            "sku": {"name": "Standard_LRS"},
        },
    )
    graph.export("storageAccountName", sa.output("name"))
    graph.export("blobEndpoint", sa.output("primary_endpoints.blob"))
    graph.seal()

    provisioner = PulumiProvisioner()
    outputs = provisioner.provision(graph)

    assert list(provisioner.resources) == ["rg", "sttesting01"]
    assert list(outputs) == ["storageAccountName", "blobEndpoint"]

    def check(args):
        name, blob = args
        assert name == "sttesting01"
        assert blob == "https://sttesting01.blob.core.windows.net/"

    return pulumi.Output.all(outputs["storageAccountName"], outputs["blobEndpoint"]).apply(check)


@pulumi.runtime.test
def test_app_stack(pulumi_mocks: type[pulumi.runtime.Mocks], stage_context):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    stack = AppStack(stage_context)
    web_app_names = [stage_context.web_app_name(role) for role in AppRoles]

    assert all(name in stack.resources for name in web_app_names)
    assert stage_context.sql_server_name in stack.resources
    assert "certificateOrderId" not in stack.outputs

    def check(args):
        identity_endpoint, cors_origins, secret_uri, stack_name = args
        assert identity_endpoint == "https://app-mytest-development-identity.azurewebsites.net"
        assert cors_origins == (
            "https://app-mytest-development-web.azurewebsites.net,"
            "https://app-mytest-development-blazor.azurewebsites.net"
        )
        assert secret_uri.startswith("https://kv-mytest-development.vault.azure.net/secrets/")
        assert secret_uri.endswith("/0123456789abcdef")
        assert stack_name == "development"

    return pulumi.Output.all(
        stack.outputs["identityEndpoint"],
        stack.outputs["corsOrigins"],
        stack.outputs["connectionStringSecretUri"],
        stack.outputs["stackName"],
    ).apply(check)


@pulumi.runtime.test
def test_app_stack_expands_firewall_rules(pulumi_mocks: type[pulumi.runtime.Mocks], stage_context):
    registered: list[str] = []

    class RecordingMocks(pulumi_mocks):
        def new_resource(self, args: pulumi.runtime.MockResourceArgs):
            registered.append(args.name)
            return super().new_resource(args)

    pulumi.runtime.set_mocks(RecordingMocks(), preview=False)

    stack = AppStack(stage_context)
    graph = stack.builder.graph
    admin = stack.resources[f"{stage_context.sql_server_name}-ad-admin"]
    expansions = [stack.provisioner.to_output(value) for value in graph.expansions]

    def check(_):
        rules = sorted(name for name in stack.resources if name.startswith("fr-"))
        assert rules == [
            "fr-api-10.0.0.1",
            "fr-api-10.0.0.2",
            "fr-identity-10.0.0.1",
            "fr-identity-10.0.0.2",
        ]
        assert all(graph.node(name).deferred for name in rules)

        # the admin registers only after the identity app's rules
        admin_index = registered.index(f"{stage_context.sql_server_name}-ad-admin")
        assert registered.index("fr-identity-10.0.0.1") < admin_index
        assert registered.index("fr-identity-10.0.0.2") < admin_index

    return pulumi.Output.all(admin.urn, *expansions).apply(check)
