import typing

import pulumi
from pulumi_azure_native import authorization

import appstack.app_graph
import appstack.stage
from appstack.deferred import DeferredValue, Source
from appstack.pulumi_resources.provisioner import PulumiProvisioner


class PulumiConfigSource:
    """Stage configuration from the Pulumi stack config; the stack name is the stage."""

    def __init__(self, stage_name: str | None = None, config: pulumi.Config | None = None):
        self.stage_name = stage_name or pulumi.get_stack()
        self.config = config if config is not None else pulumi.Config()

    def get(self, key: str) -> str | None:
        return self.config.get(key)

    def get_secret(self, key: str) -> DeferredValue[str] | None:
        value = self.config.get_secret(key)
        if value is None:
            return None

        return DeferredValue.from_source(Source(f"config.{key}", handle=value, secret=True))

    def identity(self) -> appstack.stage.ClientIdentity:
        client_config = authorization.get_client_config_output()
        return appstack.stage.ClientIdentity(
            subscription_id=DeferredValue.from_source(
                Source("identity.subscription_id", handle=client_config.subscription_id)
            ),
            tenant_id=DeferredValue.from_source(Source("identity.tenant_id", handle=client_config.tenant_id)),
            object_id=DeferredValue.from_source(Source("identity.principal_id", handle=client_config.object_id)),
        )


class AppStack(pulumi.ComponentResource):
    ctx: appstack.stage.StageContext
    builder: appstack.app_graph.AppGraphBuilder
    provisioner: PulumiProvisioner
    outputs: dict[str, pulumi.Output]

    @classmethod
    def autoload(cls) -> "AppStack":
        return cls(ctx=appstack.stage.StageContext.from_source(PulumiConfigSource()))

    def __init__(
        self,
        ctx: appstack.stage.StageContext,
        *args,
        **kwargs,
    ):
        super().__init__(
            f"appstack:{self.__class__.__name__}",
            ctx.compound_name,
            *args,
            **kwargs,
        )

        self.ctx = ctx
        self.builder = appstack.app_graph.AppGraphBuilder(ctx)
        graph = self.builder.build()

        self.provisioner = PulumiProvisioner(parent=self)
        self.outputs = self.provisioner.provision(graph)

        for key, value in self.outputs.items():
            pulumi.export(key, value)

        self.register_outputs(typing.cast(dict[str, typing.Any], self.outputs))

    @property
    def resources(self) -> dict[str, pulumi.CustomResource]:
        return self.provisioner.resources
