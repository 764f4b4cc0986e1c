from __future__ import annotations

import abc
import typing
import uuid

import pulumi

from appstack import NAME_ARGUMENTS, ResourceKind, junkdrawer
from appstack.deferred import DeferredValue, Resolution, iter_deferred, iter_sources, resolve_structure
from appstack.errors import GraphStateError, ResolutionPending, UpstreamResolutionFailed
from appstack.graph import ResourceGraph, ResourceNode, nodes_in

AttributeResolver = typing.Callable[[ResourceNode, dict[str, typing.Any]], typing.Mapping[str, typing.Any]]


class Provisioner(abc.ABC):
    """Turns a sealed resource graph into provisioned resources and resolved outputs."""

    @abc.abstractmethod
    def provision(self, graph: ResourceGraph) -> dict[str, typing.Any]: ...

    @staticmethod
    def _check_sealed(graph: ResourceGraph) -> None:
        if not graph.sealed:
            raise GraphStateError(graph.name, "only sealed graphs can be provisioned")


def _stable_suffix(*parts: str, length: int = 8) -> str:
    return junkdrawer.json_signature(list(parts))[:length]


def _stable_address(name: str, index: int) -> str:
    digest = junkdrawer.json_signature([name, index])
    return f"10.{int(digest[0:2], 16)}.{int(digest[2:4], 16)}.{index + 1}"


def _synthetic_attributes(node: ResourceNode, arguments: dict[str, typing.Any]) -> dict[str, typing.Any]:
    name = node.name
    match node.kind:
        case ResourceKind.STORAGE_ACCOUNT:
            return {"primary_endpoints": {"blob": f"https://{name}.blob.core.windows.net/"}}
        case ResourceKind.KEY_VAULT:
            return {"properties": (arguments.get("properties") or {}) | {"vault_uri": f"https://{name}.vault.azure.net/"}}
        case ResourceKind.SECRET:
            vault_name = arguments.get("vault_name")
            secret_name = arguments.get("secret_name")
            uri = f"https://{vault_name}.vault.azure.net/secrets/{secret_name}"
            # plaintext values are not echoed back
            return {
                "properties": {
                    "secret_uri": uri,
                    "secret_uri_with_version": f"{uri}/{_stable_suffix(name, length=32)}",
                },
            }
        case ResourceKind.REDIS_CACHE:
            return {"host_name": f"{name}.redis.cache.windows.net", "ssl_port": 6380, "port": 6379}
        case ResourceKind.APPLICATION_INSIGHTS:
            key = str(uuid.uuid5(uuid.NAMESPACE_URL, name))
            return {"instrumentation_key": key, "connection_string": f"InstrumentationKey={key}"}
        case ResourceKind.SQL_SERVER:
            return {"fully_qualified_domain_name": f"{name}.database.windows.net"}
        case ResourceKind.WEB_APP:
            return {
                "default_host_name": f"{name}.azurewebsites.net",
                "outbound_ip_addresses": ",".join(_stable_address(name, i) for i in range(2)),
                "identity": {"type": "SystemAssigned", "principal_id": str(uuid.uuid5(uuid.NAMESPACE_DNS, name))},
            }
        case ResourceKind.CDN_ENDPOINT:
            return {"host_name": f"{name}.azureedge.net"}

    return {}


def _public_arguments(declared: typing.Mapping[str, typing.Any], resolved: dict[str, typing.Any]) -> dict[str, typing.Any]:
    public = {}
    for key, value in resolved.items():
        spec = declared.get(key)
        if isinstance(spec, DeferredValue) and spec.secret:
            continue
        if isinstance(spec, dict) and isinstance(value, dict):
            value = _public_arguments(spec, value)
        public[key] = value
    return public


def echo_attributes(node: ResourceNode, arguments: dict[str, typing.Any]) -> dict[str, typing.Any]:
    """Report a node's resolved arguments back as its attributes.

    Arguments declared as secrets are left out. Adds a synthetic ``id``, the
    provider-side ``name`` and deterministic stand-ins for the attributes the
    topology reads from each kind.
    """
    attributes = _public_arguments(node.arguments, arguments)
    if node.kind in NAME_ARGUMENTS:
        attributes.setdefault("name", arguments.get(NAME_ARGUMENTS[node.kind], node.name))
    else:
        attributes.setdefault("name", node.name)

    attributes["id"] = f"/appstack/{node.graph.name}/{node.kind}/{node.name}"
    return attributes | _synthetic_attributes(node, arguments)


class LocalProvisioner(Provisioner):
    """Settles every node in-process through an attribute resolver.

    ``lookups`` binds pending sources that do not belong to a node, such as
    ``identity.subscription_id``, by label.
    """

    def __init__(
        self,
        resolver: AttributeResolver = echo_attributes,
        lookups: typing.Mapping[str, typing.Any] | None = None,
    ):
        self.resolver = resolver
        self.lookups = dict(lookups or {})
        self.settled: list[ResourceNode] = []

    def provision(self, graph: ResourceGraph) -> dict[str, typing.Any]:
        self._check_sealed(graph)
        self._bind_lookups(graph)

        while self._step(graph):
            pass

        pulumi.log.info(f"{graph.name}: settled {len(self.settled)} of {len(graph)} resources")

        return {name: value.result() for name, value in graph.outputs.items()}

    def _bind_lookups(self, graph: ResourceGraph) -> None:
        values = list(graph.outputs.values()) + list(graph.expansions)
        for node in graph.nodes:
            values.extend(self._deferred_arguments(node))
            values.extend(node.waits_for)

        for value in values:
            for source in iter_sources(value):
                if source.node is None and source.state is Resolution.PENDING and source.label in self.lookups:
                    source.resolve(self.lookups[source.label])

    @staticmethod
    def _deferred_arguments(node: ResourceNode) -> list[DeferredValue[typing.Any]]:
        return list(iter_deferred(dict(node.arguments)))

    def _step(self, graph: ResourceGraph) -> bool:
        before = len(graph)
        progressed = False
        for node in graph.nodes:
            if node.resolution is Resolution.PENDING and self._settle(node):
                progressed = True

        for value in graph.expansions:
            # evaluating an expansion may declare more nodes
            value.state  # noqa: B018

        return progressed or len(graph) != before

    def _settle(self, node: ResourceNode) -> bool:
        dependencies = list(node.depends_on)
        for value in node.waits_for:
            state = value.state
            if state is Resolution.PENDING:
                return False
            if state is Resolution.FAILED:
                return self._fail(node, typing.cast(BaseException, value.error))

            dependencies.extend(nodes_in(value.result()))

        for dep in sorted(dependencies, key=lambda n: n.index):
            if dep.resolution is Resolution.FAILED:
                error = dep.failure
                if not isinstance(error, UpstreamResolutionFailed):
                    error = UpstreamResolutionFailed(dep.name, error)
                return self._fail(node, error)
            if dep.resolution is Resolution.PENDING:
                return False

        try:
            arguments = resolve_structure(dict(node.arguments))
        except ResolutionPending:
            return False
        except UpstreamResolutionFailed as e:
            return self._fail(node, e)

        try:
            attributes = self.resolver(node, arguments)
        except Exception as e:  # noqa: BLE001
            pulumi.log.warn(f"{node.graph.name}: resolving {node.kind} {node.name!r} failed: {e}")
            return self._fail(node, e)

        node.settle(attributes)
        self.settled.append(node)
        pulumi.log.debug(f"{node.graph.name}: settled {node.kind} {node.name!r}")
        return True

    def _fail(self, node: ResourceNode, error: BaseException) -> bool:
        node.fail(error)
        return True

