import typing

import pulumi

ResourceFactory = typing.Callable[..., pulumi.CustomResource]
