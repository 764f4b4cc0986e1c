from __future__ import annotations


class AppStackError(Exception):
    """Base class for every error that aborts a graph build."""


class MissingRequiredConfig(AppStackError):
    def __init__(self, key: str, stage_name: str | None = None):
        self.key = key
        self.stage_name = stage_name
        msg = f"missing required config key {key!r}"
        if stage_name is not None:
            msg += f" for stage {stage_name!r}"
        super().__init__(msg)


class UnsupportedStage(AppStackError):
    def __init__(self, stage_name: str, choices: tuple[str, ...] = ()):
        self.stage_name = stage_name
        self.choices = choices
        msg = f"stage {stage_name!r} is not supported"
        if choices:
            msg += f" (expected one of {', '.join(repr(c) for c in choices)})"
        super().__init__(msg)


class DependencyNotYetConstructed(AppStackError):
    def __init__(self, name: str, consumer: str | None = None):
        self.name = name
        self.consumer = consumer
        msg = f"resource {name!r} has not been declared in this graph yet"
        if consumer is not None:
            msg += f" (referenced by {consumer!r})"
        super().__init__(msg)


class DuplicateResourceName(AppStackError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"resource name {name!r} is already declared in this graph")


class UpstreamResolutionFailed(AppStackError):
    """A deferred value could not resolve because one of its sources failed.

    ``origin`` is the label of the source that failed first, e.g.
    ``sql-mytest-development.fully_qualified_domain_name``; ``cause`` is the
    error reported by the provisioning engine.
    """

    def __init__(self, origin: str, cause: BaseException | None = None):
        self.origin = origin
        self.cause = cause
        msg = f"upstream resolution failed at {origin!r}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class ResolutionPending(AppStackError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(f"deferred value {label!r} is not resolved yet")


class GraphStateError(AppStackError):
    """An operation was attempted before or after the declaration pass allows it."""

    def __init__(self, graph_name: str, reason: str):
        self.graph_name = graph_name
        super().__init__(f"graph {graph_name!r}: {reason}")
