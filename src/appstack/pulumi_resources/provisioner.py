from __future__ import annotations

import functools
import typing

import pulumi

from appstack import ResourceKind, junkdrawer
from appstack.deferred import DeferredValue, Resolution, Source
from appstack.errors import ResolutionPending
from appstack.graph import ResourceGraph, ResourceNode, nodes_in
from appstack.provisioning import Provisioner
from appstack.pulumi_resources import ResourceFactory

# candidates are tried in order; module layouts differ across provider releases
RESOURCE_TYPES: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.RESOURCE_GROUP: ("pulumi_azure_native.resources:ResourceGroup",),
    ResourceKind.STORAGE_ACCOUNT: ("pulumi_azure_native.storage:StorageAccount",),
    ResourceKind.BLOB_CONTAINER: ("pulumi_azure_native.storage:BlobContainer",),
    ResourceKind.APP_SERVICE_PLAN: ("pulumi_azure_native.web:AppServicePlan",),
    ResourceKind.WEB_APP: ("pulumi_azure_native.web:WebApp",),
    ResourceKind.KEY_VAULT: ("pulumi_azure_native.keyvault:Vault",),
    ResourceKind.SECRET: ("pulumi_azure_native.keyvault:Secret",),
    ResourceKind.REDIS_CACHE: ("pulumi_azure_native.cache:Redis",),
    ResourceKind.APPLICATION_INSIGHTS: (
        "pulumi_azure_native.insights:Component",
        "pulumi_azure_native.applicationinsights:Component",
    ),
    ResourceKind.MEDIA_SERVICE: ("pulumi_azure_native.media:MediaService",),
    ResourceKind.SQL_SERVER: ("pulumi_azure_native.sql:Server",),
    ResourceKind.SQL_DATABASE: ("pulumi_azure_native.sql:Database",),
    ResourceKind.SQL_AD_ADMINISTRATOR: ("pulumi_azure_native.sql:ServerAzureADAdministrator",),
    ResourceKind.FIREWALL_RULE: ("pulumi_azure_native.sql:FirewallRule",),
    ResourceKind.ROLE_ASSIGNMENT: ("pulumi_azure_native.authorization:RoleAssignment",),
    ResourceKind.CDN_PROFILE: ("pulumi_azure_native.cdn:Profile",),
    ResourceKind.CDN_ENDPOINT: ("pulumi_azure_native.cdn:Endpoint",),
    ResourceKind.CERTIFICATE_ORDER: ("pulumi_azure_native.certificateregistration:AppServiceCertificateOrder",),
}


@functools.cache
def resource_factory(kind: ResourceKind) -> ResourceFactory:
    for import_name in RESOURCE_TYPES[kind]:
        factory = junkdrawer.import_string(import_name)
        if factory is not None:
            return factory

    msg = f"no resource type available for {kind} (tried {', '.join(RESOURCE_TYPES[kind])})"
    raise ValueError(msg)


class PulumiProvisioner(Provisioner):
    """Materializes graph nodes as ``pulumi_azure_native`` resources.

    Deferred values become ``pulumi.Output`` values: sources map to resource
    attributes, provider handles or lookups, and derivations run through
    ``Output.apply`` with the same memoized function local evaluation uses.
    Nodes declared later by an expansion are materialized as they appear.
    """

    def __init__(
        self,
        parent: pulumi.Resource | None = None,
        lookups: typing.Mapping[str, typing.Any] | None = None,
    ):
        self.parent = parent
        self.lookups = dict(lookups or {})
        self.resources: dict[str, pulumi.CustomResource] = {}
        self._outputs: dict[int, tuple[DeferredValue[typing.Any], pulumi.Output]] = {}

    def provision(self, graph: ResourceGraph) -> dict[str, pulumi.Output]:
        self._check_sealed(graph)
        graph.subscribe(self._materialize)

        for node in graph.nodes:
            self._materialize(node)

        for value in graph.expansions:
            self.to_output(value)

        return {name: self.to_output(value) for name, value in graph.outputs.items()}

    def _materialize(self, node: ResourceNode) -> pulumi.CustomResource:
        if node.name in self.resources:
            return self.resources[node.name]

        depends_on: list[pulumi.Resource] = [
            self.resources[dep.name] for dep in sorted(node.depends_on, key=lambda n: n.index)
        ]
        if node.waits_for:
            waits_for = [self.to_output(value) for value in node.waits_for]
            depends_on = pulumi.Output.all(*waits_for).apply(
                lambda produced, static=depends_on: static + [self.resources[n.name] for n in nodes_in(produced)]
            )

        resource = resource_factory(node.kind)(
            node.name,
            opts=pulumi.ResourceOptions(
                parent=self.parent,
                protect=node.protect,
                depends_on=depends_on,
            ),
            **{key: self.to_input(value) for key, value in node.arguments.items()},
        )
        self.resources[node.name] = resource
        return resource

    def to_input(self, obj: typing.Any) -> typing.Any:
        if isinstance(obj, DeferredValue):
            return self.to_output(obj)
        if isinstance(obj, dict):
            return {key: self.to_input(value) for key, value in obj.items()}
        if isinstance(obj, list | tuple):
            return [self.to_input(value) for value in obj]
        return obj

    def to_output(self, value: DeferredValue[typing.Any]) -> pulumi.Output:
        cached = self._outputs.get(id(value))
        if cached is not None:
            return cached[1]

        if value.source is not None:
            output = self._source_output(value.source)
        else:
            inputs = [self.to_output(upstream) for upstream in value.inputs]
            output = pulumi.Output.all(*inputs).apply(value.apply_resolved)

        if value.secret:
            output = pulumi.Output.secret(output)

        self._outputs[id(value)] = (value, output)
        return output

    def _source_output(self, source: Source) -> pulumi.Output:
        if source.state is Resolution.RESOLVED:
            return pulumi.Output.from_input(source.value)
        if source.state is Resolution.FAILED:
            raise typing.cast(BaseException, source.error)
        if source.handle is not None:
            return pulumi.Output.from_input(source.handle)

        if source.node is not None:
            head, _, rest = typing.cast(str, source.attribute).partition(".")
            output = getattr(self.resources[source.node.name], head)
            if rest:
                output = output.apply(lambda value: junkdrawer.field_path(value, rest))
            return output

        if source.label in self.lookups:
            return pulumi.Output.from_input(self.lookups[source.label])

        raise ResolutionPending(source.label)

