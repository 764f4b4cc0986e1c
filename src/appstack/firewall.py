from __future__ import annotations

import typing

import pulumi

from appstack import ResourceKind, junkdrawer
from appstack.deferred import DeferredValue

if typing.TYPE_CHECKING:
    from appstack.graph import ResourceGraph, ResourceNode


def firewall_rule_name(prefix: str, address: str) -> str:
    return f"{prefix}{address}"


def split_addresses(addresses: str | None) -> list[str]:
    if not addresses:
        return []

    return junkdrawer.unique(address.strip() for address in addresses.split(",") if address.strip())


def expand_firewall_rules(
    graph: ResourceGraph,
    addresses: DeferredValue[str],
    prefix: str,
    *,
    server_name: DeferredValue[str] | str,
    resource_group_name: DeferredValue[str] | str,
) -> DeferredValue[list[ResourceNode]]:
    """Declare one SQL firewall rule per outbound address once the addresses are known.

    The declarations happen inside the deferred expansion, so the resulting
    nodes are flagged ``deferred`` on the graph. The expansion is tracked,
    which makes provisioners drive it even when nothing else consumes it.
    """

    def declare_rules(resolved: str) -> list[ResourceNode]:
        nodes = []
        for address in split_addresses(resolved):
            name = firewall_rule_name(prefix, address)
            nodes.append(
                graph.declare(
                    ResourceKind.FIREWALL_RULE,
                    name,
                    {
                        "firewall_rule_name": name,
                        "resource_group_name": resource_group_name,
                        "server_name": server_name,
                        "start_ip_address": address,
                        "end_ip_address": address,
                    },
                )
            )

        pulumi.log.debug(f"{graph.name}: expanded {len(nodes)} firewall rules with prefix {prefix!r}")
        return nodes

    return graph.track(addresses.map(declare_rules, label=f"firewall_rules({prefix!r})"))
