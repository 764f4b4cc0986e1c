from __future__ import annotations

import hashlib
import json
import os
import sys
import traceback
import typing

import click


def print_steps(steps: list[tuple[str, typing.Any]]):
    click.secho(
        "∙ " + ("\n∙ ".join([name for name, _ in steps])) + "\n\n",
        fg="white",
        bold=True,
    )


def json_signature(obj: typing.Any) -> str:
    return hashlib.sha256(
        json.dumps(obj, sort_keys=True).encode(),
        usedforsecurity=False,
    ).hexdigest()


def unique(items: typing.Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


def field(obj: typing.Any, key: str) -> typing.Any:
    """Read ``key`` from a mapping or an attribute-style provider output object."""
    if obj is None:
        return None
    if isinstance(obj, typing.Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def field_path(obj: typing.Any, path: str) -> typing.Any:
    for key in path.split("."):
        obj = field(obj, key)
    return obj


def import_string(import_name: str) -> typing.Any:
    """This function in borrowed and modified from werkzeug.utils.import_string"""
    try:
        try:
            __import__(import_name)
        except ImportError:
            if ":" not in import_name:
                raise
        else:
            return sys.modules[import_name]

        module_name, obj_name = import_name.rsplit(":", 1)
        module = __import__(module_name, globals(), locals(), [obj_name])

        return getattr(module, obj_name, None)

    except ImportError:
        if os.environ.get("APPSTACK_IMPORT_STRING_DEBUG") == "1":
            traceback.print_exc(file=sys.stdout)

    return None
