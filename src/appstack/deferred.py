"""Values that are not known while the resource graph is being declared.

A :class:`DeferredValue` is either a leaf backed by a :class:`Source` (a known
value, a failure, an attribute a provisioner reports for a node, or an opaque
provider handle such as a ``pulumi.Output``) or a derivation of other deferred
values via :meth:`DeferredValue.map` / :meth:`DeferredValue.combine`.

Evaluation is pull-style: asking for :attr:`DeferredValue.state` or
:meth:`DeferredValue.result` walks the derivation and runs each function at
most once, and only when every input is resolved. A failed input fails every
value derived from it without running the derivation's function.
"""

from __future__ import annotations

import enum
import typing

from appstack.errors import ResolutionPending, UpstreamResolutionFailed

if typing.TYPE_CHECKING:
    from appstack.graph import ResourceNode

T = typing.TypeVar("T")
U = typing.TypeVar("U")

KNOWN = "known"
SECRET_MASK = "[secret]"


class Resolution(enum.StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class Source:
    """A single-assignment cell settled by whoever provisions the graph."""

    def __init__(
        self,
        label: str,
        *,
        node: ResourceNode | None = None,
        attribute: str | None = None,
        handle: typing.Any = None,
        secret: bool = False,
    ):
        self.label = label
        self.node = node
        self.attribute = attribute
        self.handle = handle
        self.secret = secret
        self.state = Resolution.PENDING
        self._value: typing.Any = None
        self._error: BaseException | None = None

    @property
    def value(self) -> typing.Any:
        return self._value

    @property
    def error(self) -> BaseException | None:
        return self._error

    def resolve(self, value: typing.Any) -> None:
        self._check_pending()
        self._value = value
        self.state = Resolution.RESOLVED

    def fail(self, error: BaseException) -> None:
        self._check_pending()
        self._error = error
        self.state = Resolution.FAILED

    def _check_pending(self) -> None:
        if self.state is not Resolution.PENDING:
            msg = f"source {self.label!r} is already {self.state}"
            raise ValueError(msg)

    def __repr__(self) -> str:
        return f"Source({self.label!r}, {self.state})"


class DeferredValue(typing.Generic[T]):
    __slots__ = ("_error", "_fn", "_inputs", "_label", "_resources", "_secret", "_source", "_state", "_value")

    def __init__(
        self,
        *,
        source: Source | None = None,
        inputs: typing.Sequence[DeferredValue[typing.Any]] = (),
        fn: typing.Callable[..., T] | None = None,
        label: str = "map",
        secret: bool = False,
    ):
        if (source is None) == (fn is None):
            msg = "a deferred value needs exactly one of a source or a function over inputs"
            raise ValueError(msg)

        self._source = source
        self._inputs = tuple(inputs)
        self._fn = fn
        self._label = label

        resources: set[ResourceNode] = set()
        if source is not None and source.node is not None:
            resources.add(source.node)
        for value in self._inputs:
            resources |= value.resources
        self._resources = frozenset(resources)

        self._secret = secret or (source is not None and source.secret) or any(v.secret for v in self._inputs)
        self._state = Resolution.PENDING
        self._value: typing.Any = None
        self._error: UpstreamResolutionFailed | None = None

    @classmethod
    def known(cls, value: T, *, secret: bool = False) -> DeferredValue[T]:
        source = Source(KNOWN, secret=secret)
        source.resolve(value)
        return cls(source=source)

    @classmethod
    def failed(cls, error: BaseException, label: str = "failed") -> DeferredValue[typing.Any]:
        source = Source(label)
        source.fail(error)
        return cls(source=source)

    @classmethod
    def from_source(cls, source: Source) -> DeferredValue[typing.Any]:
        return cls(source=source)

    @classmethod
    def from_input(cls, value: DeferredValue[T] | T) -> DeferredValue[T]:
        if isinstance(value, DeferredValue):
            return value
        return cls.known(value)

    @classmethod
    def combine(
        cls,
        values: typing.Sequence[DeferredValue[typing.Any] | typing.Any],
        fn: typing.Callable[..., U],
        *,
        label: str = "combine",
    ) -> DeferredValue[U]:
        """Derive a value from several inputs; ``fn`` receives them positionally."""
        return DeferredValue(inputs=[cls.from_input(v) for v in values], fn=fn, label=label)

    @classmethod
    def format(cls, template: str, **values: DeferredValue[typing.Any] | typing.Any) -> DeferredValue[str]:
        names = list(values)

        def render(*resolved: typing.Any) -> str:
            return template.format(**dict(zip(names, resolved, strict=True)))

        return cls.combine([values[name] for name in names], render, label=f"format({template!r})")

    @classmethod
    def join(cls, separator: str, values: typing.Sequence[DeferredValue[str] | str]) -> DeferredValue[str]:
        return cls.combine(values, lambda *resolved: separator.join(resolved), label=f"join({separator!r})")

    def map(self, fn: typing.Callable[[T], U], *, label: str = "map") -> DeferredValue[U]:
        return DeferredValue(inputs=(self,), fn=fn, label=label)

    def as_secret(self) -> DeferredValue[T]:
        return DeferredValue(inputs=(self,), fn=lambda value: value, label="secret", secret=True)

    @property
    def source(self) -> Source | None:
        return self._source

    @property
    def inputs(self) -> tuple[DeferredValue[typing.Any], ...]:
        return self._inputs

    @property
    def secret(self) -> bool:
        return self._secret

    @property
    def resources(self) -> frozenset[ResourceNode]:
        return self._resources

    @property
    def state(self) -> Resolution:
        self._evaluate()
        return self._state

    @property
    def error(self) -> UpstreamResolutionFailed | None:
        self._evaluate()
        return self._error

    def result(self) -> T:
        self._evaluate()
        if self._state is Resolution.FAILED:
            raise self._error
        if self._state is Resolution.PENDING:
            raise ResolutionPending(self.describe())
        return self._value

    def apply_resolved(self, values: typing.Sequence[typing.Any]) -> T:
        """Run this value's function over already-resolved inputs, at most once.

        Provisioners that resolve inputs themselves (e.g. through
        ``pulumi.Output.apply``) call this so that the function, and any
        declarations it makes, is shared with local pull evaluation.
        """
        if self._state is Resolution.RESOLVED:
            return self._value
        if self._state is Resolution.FAILED:
            raise self._error
        if self._fn is None:
            msg = "only derived deferred values can be applied"
            raise ValueError(msg)

        value = self._fn(*values)
        self._value = value
        self._state = Resolution.RESOLVED
        return value

    def _evaluate(self) -> None:
        if self._state is not Resolution.PENDING:
            return

        if self._source is not None:
            if self._source.state is Resolution.RESOLVED:
                self._value = self._source.value
                self._state = Resolution.RESOLVED
            elif self._source.state is Resolution.FAILED:
                error = self._source.error
                if not isinstance(error, UpstreamResolutionFailed):
                    error = UpstreamResolutionFailed(self._source.label, error)
                self._error = error
                self._state = Resolution.FAILED
            return

        pending = False
        values = []
        for value in self._inputs:
            value._evaluate()  # noqa: SLF001
            if value._state is Resolution.FAILED:  # noqa: SLF001
                self._error = value._error  # noqa: SLF001
                self._state = Resolution.FAILED
                return
            if value._state is Resolution.PENDING:  # noqa: SLF001
                pending = True
            values.append(value._value)  # noqa: SLF001

        if not pending:
            self.apply_resolved(values)

    def describe(self) -> str:
        """Structural description; stable across builds and free of secret values."""
        if self._source is not None:
            if self._source.label != KNOWN:
                return "${" + self._source.label + "}"
            if self._secret:
                return SECRET_MASK
            return repr(self._source.value)

        return f"{self._label}({', '.join(v.describe() for v in self._inputs)})"

    def __repr__(self) -> str:
        return f"DeferredValue({self.describe()})"


def iter_deferred(obj: typing.Any) -> typing.Iterator[DeferredValue[typing.Any]]:
    """Yield every deferred value nested in dicts, lists, tuples and sets."""
    if isinstance(obj, DeferredValue):
        yield obj
    elif isinstance(obj, dict):
        for value in obj.values():
            yield from iter_deferred(value)
    elif isinstance(obj, list | tuple | set | frozenset):
        for value in obj:
            yield from iter_deferred(value)


def iter_sources(value: DeferredValue[typing.Any]) -> typing.Iterator[Source]:
    if value.source is not None:
        yield value.source
    for upstream in value.inputs:
        yield from iter_sources(upstream)


def resolve_structure(obj: typing.Any) -> typing.Any:
    """Replace nested deferred values by their results.

    Raises UpstreamResolutionFailed or ResolutionPending like
    :meth:`DeferredValue.result`.
    """
    if isinstance(obj, DeferredValue):
        return obj.result()
    if isinstance(obj, dict):
        return {key: resolve_structure(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return [resolve_structure(value) for value in obj]
    return obj
