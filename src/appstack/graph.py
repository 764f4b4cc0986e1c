from __future__ import annotations

import types
import typing

import pulumi

from appstack import ResourceKind, junkdrawer
from appstack.deferred import DeferredValue, Resolution, Source, iter_deferred
from appstack.errors import DependencyNotYetConstructed, DuplicateResourceName, GraphStateError

NodeListener = typing.Callable[["ResourceNode"], None]


class ResourceNode:
    """A declared resource: its kind, graph-unique name and input arguments.

    Attributes reported by the provisioning engine are reached through
    :meth:`output`, which returns the same deferred value for repeated calls
    with the same attribute. Dotted attributes (``properties.vault_uri``)
    address nested fields of the reported value.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        kind: ResourceKind,
        name: str,
        arguments: dict[str, typing.Any],
        *,
        index: int,
        depends_on: frozenset[ResourceNode],
        waits_for: tuple[DeferredValue[typing.Any], ...] = (),
        protect: bool = False,
        deferred: bool = False,
    ):
        self._graph = graph
        self._kind = kind
        self._name = name
        self._arguments = types.MappingProxyType(arguments)
        self._index = index
        self._depends_on = depends_on
        self._waits_for = waits_for
        self._protect = protect
        self._deferred = deferred

        self._sources: dict[str, Source] = {}
        self._attributes: typing.Mapping[str, typing.Any] | None = None
        self._failure: BaseException | None = None

    @property
    def graph(self) -> ResourceGraph:
        return self._graph

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def name(self) -> str:
        return self._name

    @property
    def arguments(self) -> typing.Mapping[str, typing.Any]:
        return self._arguments

    @property
    def index(self) -> int:
        return self._index

    @property
    def depends_on(self) -> frozenset[ResourceNode]:
        return self._depends_on

    @property
    def waits_for(self) -> tuple[DeferredValue[typing.Any], ...]:
        return self._waits_for

    @property
    def protect(self) -> bool:
        return self._protect

    @property
    def deferred(self) -> bool:
        return self._deferred

    @property
    def resolution(self) -> Resolution:
        if self._failure is not None:
            return Resolution.FAILED
        if self._attributes is not None:
            return Resolution.RESOLVED
        return Resolution.PENDING

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def id(self) -> DeferredValue[str]:
        return self.output("id")

    def output(self, attribute: str) -> DeferredValue[typing.Any]:
        source = self._sources.get(attribute)
        if source is None:
            source = Source(f"{self._name}.{attribute}", node=self, attribute=attribute)
            self._sources[attribute] = source
            if self.resolution is not Resolution.PENDING:
                self._settle_source(source)

        return DeferredValue.from_source(source)

    def settle(self, attributes: typing.Mapping[str, typing.Any]) -> None:
        """Record the attributes the provisioning engine reported for this node."""
        if self.resolution is not Resolution.PENDING:
            msg = f"resource {self._name!r} is already {self.resolution}"
            raise ValueError(msg)

        self._attributes = dict(attributes)
        for source in self._sources.values():
            self._settle_source(source)

    def fail(self, error: BaseException) -> None:
        if self.resolution is not Resolution.PENDING:
            msg = f"resource {self._name!r} is already {self.resolution}"
            raise ValueError(msg)

        self._failure = error
        for source in self._sources.values():
            self._settle_source(source)

    def _settle_source(self, source: Source) -> None:
        if self._failure is not None:
            source.fail(self._failure)
            return

        attribute = typing.cast(str, source.attribute)
        head, _, rest = attribute.partition(".")
        if head not in self._attributes:
            source.fail(KeyError(f"{self._name!r} reported no attribute {head!r}"))
            return

        value = self._attributes[head]
        source.resolve(junkdrawer.field_path(value, rest) if rest else value)

    def __repr__(self) -> str:
        return f"ResourceNode({self._kind}, {self._name!r})"


class ResourceGraph:
    """Declares resource nodes in dependency order and publishes outputs.

    The graph is a DAG by construction: arguments can only carry deferred
    values of nodes that were already declared here, and any other reference
    raises DependencyNotYetConstructed.
    """

    def __init__(self, name: str):
        self.name = name
        self._nodes: dict[str, ResourceNode] = {}
        self._outputs: dict[str, DeferredValue[typing.Any]] = {}
        self._expansions: list[DeferredValue[typing.Any]] = []
        self._listeners: list[NodeListener] = []
        self._sealed = False

    @property
    def nodes(self) -> tuple[ResourceNode, ...]:
        return tuple(self._nodes.values())

    @property
    def outputs(self) -> typing.Mapping[str, DeferredValue[typing.Any]]:
        return types.MappingProxyType(self._outputs)

    @property
    def expansions(self) -> tuple[DeferredValue[typing.Any], ...]:
        return tuple(self._expansions)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> typing.Iterator[ResourceNode]:
        return iter(self.nodes)

    def declare(
        self,
        kind: ResourceKind,
        name: str,
        arguments: typing.Mapping[str, typing.Any] | None = None,
        *,
        protect: bool = False,
        depends_on: typing.Iterable[ResourceNode | DeferredValue[typing.Any]] = (),
    ) -> ResourceNode:
        if name in self._nodes:
            raise DuplicateResourceName(name)

        arguments = dict(arguments or {})

        dependencies: set[ResourceNode] = set()
        for value in iter_deferred(arguments):
            dependencies |= self._require_declared(value.resources, name)

        waits_for = []
        for dep in depends_on:
            if isinstance(dep, ResourceNode):
                dependencies |= self._require_declared({dep}, name)
            elif isinstance(dep, DeferredValue):
                dependencies |= self._require_declared(dep.resources, name)
                waits_for.append(dep)
            else:
                msg = f"depends_on for {name!r} accepts resource nodes or deferred values, not {type(dep).__name__}"
                raise TypeError(msg)

        node = ResourceNode(
            self,
            kind,
            name,
            arguments,
            index=len(self._nodes),
            depends_on=frozenset(dependencies),
            waits_for=tuple(waits_for),
            protect=protect,
            deferred=self._sealed,
        )
        self._nodes[name] = node

        pulumi.log.debug(
            f"{self.name}: declared {kind} {name!r} depends_on={sorted(n.name for n in node.depends_on)}"
        )

        if self._sealed:
            for listener in self._listeners:
                listener(node)

        return node

    def node(self, name: str) -> ResourceNode:
        try:
            return self._nodes[name]
        except KeyError:
            raise DependencyNotYetConstructed(name) from None

    def ref(self, name: str, attribute: str) -> DeferredValue[typing.Any]:
        return self.node(name).output(attribute)

    def export(self, name: str, value: DeferredValue[typing.Any] | typing.Any) -> None:
        if self._sealed:
            raise GraphStateError(self.name, f"cannot export {name!r} after the declaration pass")
        if name in self._outputs:
            msg = f"output {name!r} is already exported from graph {self.name!r}"
            raise ValueError(msg)

        value = DeferredValue.from_input(value)
        self._require_declared(value.resources, f"output {name}")
        self._outputs[name] = value

    def track(self, value: DeferredValue[typing.Any]) -> DeferredValue[typing.Any]:
        """Register a deferred value a provisioner must drive even if nothing consumes it."""
        self._require_declared(value.resources, "tracked value")
        self._expansions.append(value)
        return value

    def seal(self) -> None:
        self._sealed = True
        pulumi.log.info(f"{self.name}: declared {len(self._nodes)} resources and {len(self._outputs)} outputs")

    def subscribe(self, listener: NodeListener) -> None:
        """Call ``listener`` for every node declared after the graph is sealed."""
        self._listeners.append(listener)

    def edges(self) -> list[tuple[str, str]]:
        return [
            (dep.name, node.name)
            for node in self._nodes.values()
            for dep in sorted(node.depends_on, key=lambda n: n.index)
        ]

    def describe(self) -> dict[str, typing.Any]:
        return {
            "name": self.name,
            "nodes": [
                {
                    "name": node.name,
                    "kind": str(node.kind),
                    "protect": node.protect,
                    "deferred": node.deferred,
                    "depends_on": sorted(dep.name for dep in node.depends_on),
                    "waits_for": [value.describe() for value in node.waits_for],
                    "arguments": _render(dict(node.arguments)),
                }
                for node in self._nodes.values()
            ],
            "outputs": {name: value.describe() for name, value in self._outputs.items()},
        }

    def signature(self) -> str:
        return junkdrawer.json_signature(self.describe())

    def _require_declared(self, nodes: typing.Iterable[ResourceNode], consumer: str) -> set[ResourceNode]:
        found = set()
        for node in nodes:
            if node.graph is not self or self._nodes.get(node.name) is not node:
                raise DependencyNotYetConstructed(node.name, consumer)
            found.add(node)
        return found


def _render(obj: typing.Any) -> typing.Any:
    if isinstance(obj, DeferredValue):
        return obj.describe()
    if isinstance(obj, dict):
        return {str(key): _render(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return [_render(value) for value in obj]
    if obj is None or isinstance(obj, bool | int | float):
        return obj
    return str(obj)


def nodes_in(obj: typing.Any) -> list[ResourceNode]:
    """Collect the resource nodes in an expansion result."""
    if isinstance(obj, ResourceNode):
        return [obj]
    if isinstance(obj, list | tuple):
        return [node for item in obj for node in nodes_in(item)]
    return []
