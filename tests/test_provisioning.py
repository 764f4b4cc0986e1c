import pytest

from appstack import AppRoles, ResourceKind
from appstack.app_graph import AppGraphBuilder, build_app_graph
from appstack.deferred import DeferredValue, Resolution, Source, resolve_structure
from appstack.errors import GraphStateError, ResolutionPending, UpstreamResolutionFailed
from appstack.graph import ResourceGraph
from appstack.provisioning import LocalProvisioner, echo_attributes


def test_unsealed_graphs_are_rejected():
    graph = ResourceGraph("g")
    graph.declare(ResourceKind.RESOURCE_GROUP, "rg")

    with pytest.raises(GraphStateError, match="sealed"):
        LocalProvisioner().provision(graph)


def test_echo_attributes():
    graph = ResourceGraph("g")
    node = graph.declare(ResourceKind.STORAGE_ACCOUNT, "st-node", {"account_name": "stmytest"})

    attributes = echo_attributes(node, {"account_name": "stmytest"})

    assert attributes["name"] == "stmytest"
    assert attributes["account_name"] == "stmytest"
    assert attributes["id"] == "/appstack/g/StorageAccount/st-node"
    assert attributes["primary_endpoints"]["blob"] == "https://st-node.blob.core.windows.net/"


def test_secret_attributes_do_not_echo_the_value():
    graph = ResourceGraph("g")
    node = graph.declare(ResourceKind.SECRET, "kv-db", {"secret_name": "db", "vault_name": "kv"})

    attributes = echo_attributes(node, {"secret_name": "db", "vault_name": "kv", "properties": {"value": "hunter2"}})

    assert "value" not in attributes["properties"]
    assert attributes["properties"]["secret_uri"] == "https://kv.vault.azure.net/secrets/db"


def test_provision_resolves_every_output(make_context):
    ctx = make_context("production")
    outputs = LocalProvisioner().provision(build_app_graph(ctx))

    assert outputs["stackName"] == "production"
    assert outputs["currentSubscriptionId"] == "12345678-1234-1234-1234-123456789012"
    assert outputs["resourceGroupName"] == "rg-mytest-production"
    assert outputs["sqlServerName"] == "sql-mytest-production"
    assert outputs["connectionString"] == (
        "Server=tcp:sql-mytest-production.database.windows.net;Database=sqldb-mytest-production;"
    )
    assert outputs["connectionStringSecretUri"].startswith(
        "https://kv-mytest-production.vault.azure.net/secrets/connectionStringSecret/"
    )
    assert outputs["identityEndpoint"] == "https://app-mytest-production-identity.azurewebsites.net"
    assert outputs["corsOrigins"] == (
        "https://app-mytest-production-web.azurewebsites.net,https://app-mytest-production-blazor.azurewebsites.net"
    )
    assert outputs["cdnEndpoint"] == "https://cdne-mytest-production.azureedge.net"
    assert outputs["certificateOrderId"].endswith("/CertificateOrder/cert-mytest-production")


def test_provision_expands_firewall_rules(stage_context):
    builder = AppGraphBuilder(stage_context)
    graph = builder.build()
    provisioner = LocalProvisioner()

    provisioner.provision(graph)

    rules = [node for node in graph if node.kind is ResourceKind.FIREWALL_RULE]
    assert len(rules) == 4
    assert all(node.deferred for node in rules)
    assert all(node.resolution is Resolution.RESOLVED for node in graph)
    assert {node.name.rsplit("-", 1)[0] for node in rules} == {"fr-identity", "fr-api"}

    # the sql admin settles after the identity app's firewall rules
    settled = [node.name for node in provisioner.settled]
    identity_rules = [node.name for node in builder.firewall_rules[AppRoles.IDENTITY].result()]
    admin_index = settled.index(f"{stage_context.sql_server_name}-ad-admin")
    assert all(settled.index(name) < admin_index for name in identity_rules)


def test_resolver_failure_fails_downstream_outputs(stage_context):
    def resolver(node, arguments):
        if node.kind is ResourceKind.SQL_SERVER:
            msg = "quota exceeded"
            raise RuntimeError(msg)
        return echo_attributes(node, arguments)

    graph = build_app_graph(stage_context)

    with pytest.raises(UpstreamResolutionFailed) as excinfo:
        LocalProvisioner(resolver=resolver).provision(graph)
    assert excinfo.value.origin.startswith(stage_context.sql_server_name)
    assert isinstance(excinfo.value.cause, RuntimeError)

    # unrelated resources still settle
    assert graph.node(stage_context.resource_group_name).resolution is Resolution.RESOLVED
    assert graph.node(stage_context.sql_server_name).resolution is Resolution.FAILED
    assert graph.node(stage_context.sql_database_name).resolution is Resolution.FAILED
    assert graph.outputs["publicWebAppEndpoint"].result() == "https://app-mytest-development-web.azurewebsites.net"
    assert graph.outputs["apiEndpoint"].state is Resolution.FAILED


def test_pending_identity_needs_lookups(make_context):
    graph = build_app_graph(make_context("development", identity={}))

    with pytest.raises(ResolutionPending):
        LocalProvisioner().provision(graph)


def test_lookups_bind_identity(make_context):
    graph = build_app_graph(make_context("development", identity={}))
    lookups = {
        "identity.subscription_id": "sub",
        "identity.tenant_id": "tenant",
        "identity.principal_id": "principal",
    }

    outputs = LocalProvisioner(lookups=lookups).provision(graph)

    assert outputs["currentSubscriptionId"] == "sub"
    assert outputs["tenantId"] == "tenant"


def test_echo_attributes_leaves_out_secret_arguments():
    graph = ResourceGraph("g")
    node = graph.declare(
        ResourceKind.SQL_SERVER,
        "sql",
        {
            "server_name": "sql",
            "administrator_login": "manualadmin",
            "administrator_login_password": DeferredValue.known("hunter2", secret=True),
            "nested": {"token": DeferredValue.known("hunter3", secret=True), "plain": "ok"},
        },
    )

    attributes = echo_attributes(node, resolve_structure(dict(node.arguments)))

    assert "administrator_login_password" not in attributes
    assert attributes["administrator_login"] == "manualadmin"
    assert attributes["nested"] == {"plain": "ok"}
    assert "hunter" not in str(attributes)


def failing(kind: ResourceKind):
    def resolver(node, arguments):
        if node.kind is kind:
            msg = f"{kind} is unavailable"
            raise RuntimeError(msg)
        return echo_attributes(node, arguments)

    return resolver


def test_explicit_dependency_failure_fails_the_dependent():
    graph = ResourceGraph("g")
    rg = graph.declare(ResourceKind.RESOURCE_GROUP, "rg", {"resource_group_name": "rg"})
    role = graph.declare(ResourceKind.ROLE_ASSIGNMENT, "role", {"scope": "/subscriptions/sub"}, depends_on=[rg])
    graph.seal()

    LocalProvisioner(resolver=failing(ResourceKind.RESOURCE_GROUP)).provision(graph)

    assert rg.resolution is Resolution.FAILED
    assert role.resolution is Resolution.FAILED
    assert isinstance(role.failure, UpstreamResolutionFailed)
    assert role.failure.origin == "rg"


def test_explicit_dependency_pending_holds_the_dependent():
    graph = ResourceGraph("g")
    tenant_id = DeferredValue.from_source(Source("identity.tenant_id"))
    rg = graph.declare(ResourceKind.RESOURCE_GROUP, "rg", {"resource_group_name": "rg", "tenant_id": tenant_id})
    role = graph.declare(ResourceKind.ROLE_ASSIGNMENT, "role", {"scope": "/subscriptions/sub"}, depends_on=[rg])
    graph.seal()

    provisioner = LocalProvisioner()
    provisioner.provision(graph)

    assert rg.resolution is Resolution.PENDING
    assert role.resolution is Resolution.PENDING
    assert provisioner.settled == []


def test_failed_firewall_rules_fail_the_sql_admin(stage_context):
    builder = AppGraphBuilder(stage_context)
    graph = builder.build()

    LocalProvisioner(resolver=failing(ResourceKind.FIREWALL_RULE)).provision(graph)

    rules = [node for node in graph if node.kind is ResourceKind.FIREWALL_RULE]
    (admin,) = [node for node in graph if node.kind is ResourceKind.SQL_AD_ADMINISTRATOR]
    assert rules
    assert all(node.resolution is Resolution.FAILED for node in rules)
    assert admin.resolution is Resolution.FAILED
    assert admin.failure.origin.startswith("fr-identity-")
