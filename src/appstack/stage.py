from __future__ import annotations

import dataclasses
import os
import re
import types
import typing

import deepmerge  # type: ignore
import pulumi
import yaml

import appstack
import appstack.azure_sdk
import appstack.paths
from appstack.deferred import DeferredValue, Source
from appstack.errors import MissingRequiredConfig, UnsupportedStage

T = typing.TypeVar("T")

_NOTSET = object()

SETTING_KEYS = ("location", "name_prefix", "variant", "domain")
REQUIRED_SETTINGS = ("location",)
REQUIRED_SECRETS = (appstack.Secrets.DB_PASSWORD, appstack.Secrets.PAYMENT_RAPYD_SECRET_KEY)
IDENTITY_KEYS = ("subscription_id", "tenant_id", "principal_id")


@dataclasses.dataclass(frozen=True)
class RedisSku:
    name: str
    family: str
    capacity: int
    shard_count: int | None = None
    replicas_per_primary: int | None = None
    zones: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class StageVariant:
    name: str
    app_service_plan_tier: str
    app_service_plan_size: str
    sql_service_objective: str
    redis: RedisSku
    include_certificate: bool = False
    protect_persistent_resources: bool = False
    branch: str = "develop"


VARIANTS: dict[str, StageVariant] = {
    appstack.Stages.development: StageVariant(
        name=appstack.Stages.development,
        app_service_plan_tier="Basic",
        app_service_plan_size="B1",
        sql_service_objective="S0",
        redis=RedisSku(name="Basic", family="C", capacity=0),
        branch="develop",
    ),
    appstack.Stages.staging: StageVariant(
        name=appstack.Stages.staging,
        app_service_plan_tier="Standard",
        app_service_plan_size="S1",
        sql_service_objective="S1",
        redis=RedisSku(name="Standard", family="C", capacity=1),
        protect_persistent_resources=True,
        branch="release",
    ),
    appstack.Stages.production: StageVariant(
        name=appstack.Stages.production,
        app_service_plan_tier="PremiumV3",
        app_service_plan_size="P1v3",
        sql_service_objective="S3",
        redis=RedisSku(
            name="Premium",
            family="P",
            capacity=1,
            shard_count=2,
            replicas_per_primary=2,
            zones=("1",),
        ),
        include_certificate=True,
        protect_persistent_resources=True,
        branch="main",
    ),
}


def resolve_variant(stage_name: str, variant_name: str | None = None) -> StageVariant:
    name = variant_name or stage_name
    if name not in VARIANTS:
        raise UnsupportedStage(stage_name, tuple(VARIANTS))

    return VARIANTS[name]


@dataclasses.dataclass(frozen=True)
class ClientIdentity:
    subscription_id: DeferredValue[str]
    tenant_id: DeferredValue[str]
    object_id: DeferredValue[str]


class ConfigSource(typing.Protocol):
    stage_name: str

    def get(self, key: str) -> str | None: ...

    def get_secret(self, key: str) -> DeferredValue[str] | None: ...

    def identity(self) -> ClientIdentity: ...


def _sanitize(name: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", name.lower())


@dataclasses.dataclass(frozen=True)
class StageContext:
    stage_name: str
    variant: StageVariant
    settings: typing.Mapping[str, str] = dataclasses.field(default_factory=lambda: types.MappingProxyType({}))
    secrets: typing.Mapping[str, DeferredValue[str]] = dataclasses.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    subscription_id: DeferredValue[str] = dataclasses.field(default_factory=lambda: DeferredValue.known(""))
    tenant_id: DeferredValue[str] = dataclasses.field(default_factory=lambda: DeferredValue.known(""))
    principal_id: DeferredValue[str] = dataclasses.field(default_factory=lambda: DeferredValue.known(""))

    @classmethod
    def from_source(cls, source: ConfigSource) -> StageContext:
        settings = {}
        for key in SETTING_KEYS:
            value = source.get(key)
            if value is not None:
                settings[key] = value

        for key in REQUIRED_SETTINGS:
            if key not in settings:
                raise MissingRequiredConfig(key, source.stage_name)

        secrets = {}
        for key in REQUIRED_SECRETS:
            value = source.get_secret(key)
            if value is None:
                raise MissingRequiredConfig(key, source.stage_name)
            secrets[str(key)] = value if value.secret else value.as_secret()

        variant = resolve_variant(source.stage_name, settings.get("variant"))
        identity = source.identity()

        pulumi.log.info(f"stage {source.stage_name!r} uses variant {str(variant.name)!r} in {settings['location']!r}")

        return cls(
            stage_name=source.stage_name,
            variant=variant,
            settings=types.MappingProxyType(settings),
            secrets=types.MappingProxyType(secrets),
            subscription_id=identity.subscription_id,
            tenant_id=identity.tenant_id,
            principal_id=identity.object_id,
        )

    def require(self, key: str) -> str:
        if key not in self.settings:
            raise MissingRequiredConfig(key, self.stage_name)

        return self.settings[key]

    def require_secret(self, key: str) -> DeferredValue[str]:
        if key not in self.secrets:
            raise MissingRequiredConfig(key, self.stage_name)

        return self.secrets[key]

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.settings.get(key, default)

    def select(self, choices: typing.Mapping[str, T], default: typing.Any = _NOTSET) -> T:
        """Pick the entry for this stage, falling back to its variant name, then ``default``."""
        for name in (self.stage_name, self.variant.name):
            if name in choices:
                return choices[name]

        if default is _NOTSET:
            raise UnsupportedStage(self.stage_name, tuple(choices))

        return default

    @property
    def is_production(self) -> bool:
        return self.variant.name == appstack.Stages.production

    @property
    def location(self) -> str:
        return self.require("location")

    @property
    def name_prefix(self) -> str:
        return self.get("name_prefix", appstack.DEFAULT_NAME_PREFIX)

    @property
    def compound_name(self) -> str:
        return f"{self.name_prefix}-{self.stage_name}"

    @property
    def required_tags(self) -> dict[str, str]:
        return {
            appstack.azure_tag_key_format(str(appstack.TagKeys.ENVIRONMENT)): self.stage_name,
            appstack.azure_tag_key_format(str(appstack.TagKeys.BRANCH)): self.variant.branch,
            appstack.azure_tag_key_format(str(appstack.TagKeys.MANAGED_BY)): appstack.MANAGED_BY,
        }

    @property
    def resource_group_name(self) -> str:
        return f"rg-{_sanitize(self.compound_name)}"

    # Storage account names must be lowercase alphanumerics, 3-24 chars
    @property
    def storage_account_name(self) -> str:
        return f"st{_sanitize(self.compound_name).replace('-', '')[:22]}"

    @property
    def app_service_plan_name(self) -> str:
        return f"plan-{_sanitize(self.compound_name)}"

    # Key vault names are limited to 24 chars
    @property
    def key_vault_name(self) -> str:
        name = _sanitize(self.compound_name)[:21].rstrip("-")
        return f"kv-{name}"

    @property
    def redis_cache_name(self) -> str:
        return f"redis-{_sanitize(self.compound_name)}"

    @property
    def application_insights_name(self) -> str:
        return f"appi-{_sanitize(self.compound_name)}"

    @property
    def media_service_name(self) -> str:
        return f"ms{_sanitize(self.compound_name).replace('-', '')[:22]}"

    @property
    def sql_server_name(self) -> str:
        return f"sql-{_sanitize(self.compound_name)}"

    @property
    def sql_database_name(self) -> str:
        return f"sqldb-{_sanitize(self.compound_name)}"

    def web_app_name(self, role: str) -> str:
        return f"app-{_sanitize(self.compound_name)}-{role}"

    @property
    def cdn_profile_name(self) -> str:
        return f"cdnp-{_sanitize(self.compound_name)}"

    @property
    def cdn_endpoint_name(self) -> str:
        return f"cdne-{_sanitize(self.compound_name)}"

    @property
    def certificate_order_name(self) -> str:
        return f"cert-{_sanitize(self.compound_name)}"


def _identity_value(field: str, value: str | None) -> DeferredValue[str]:
    if value is not None:
        return DeferredValue.known(value)

    return DeferredValue.from_source(Source(f"identity.{field}"))


class YamlConfigSource:
    """Stage configuration from ``appstack.yaml`` files under ``Paths.root``.

    The root file holds defaults shared by every stage; the stage file at
    ``stages/<stage>/appstack.yaml`` is deep-merged on top of it. Secrets live
    under ``spec.secrets`` as one of::

        dbPassword:
          value: literal
        paymentRapydSecretKey:
          env: PAYMENT_RAPYD_SECRET_KEY
        other:
          keyvault:
            vault: kv-shared
            name: other
    """

    def __init__(self, stage_name: str, paths: appstack.paths.Paths | None = None):
        self.stage_name = stage_name
        self.paths = paths if paths is not None else appstack.paths.Paths()
        self.spec = self._load()

    @property
    def defaults_yaml(self):
        return self.paths.root / appstack.CONFIG_FILENAME

    @property
    def stage_yaml(self):
        return self.paths.stage(self.stage_name) / appstack.CONFIG_FILENAME

    def _load(self) -> dict[str, typing.Any]:
        if not self.stage_yaml.exists():
            choices = ()
            if self.paths.stages.exists():
                choices = tuple(sorted(p.name for p in self.paths.stages.iterdir() if p.is_dir()))
            raise UnsupportedStage(self.stage_name, choices)

        spec: dict[str, typing.Any] = {}
        for path in (self.defaults_yaml, self.stage_yaml):
            if not path.exists():
                continue

            cfg_dict = yaml.safe_load(path.read_text()) or {}
            if cfg_dict.get("kind") != appstack.CONFIG_KIND or cfg_dict.get("apiVersion") != appstack.API_VERSION:
                msg = (
                    f"mismatched stage config kind={cfg_dict.get('kind')!r} "
                    f"apiVersion={cfg_dict.get('apiVersion')!r} in {str(path)!r}"
                )
                raise ValueError(msg)

            deepmerge.always_merger.merge(spec, cfg_dict.get("spec") or {})

        for key in list(spec.keys()):
            spec[key.replace("-", "_")] = spec.pop(key)

        return spec

    def get(self, key: str) -> str | None:
        value = self.spec.get(key)
        if value is None:
            return None

        return str(value)

    def get_secret(self, key: str) -> DeferredValue[str] | None:
        ref = (self.spec.get("secrets") or {}).get(key)
        if ref is None:
            return None

        if not isinstance(ref, dict):
            ref = {"value": ref}

        if "value" in ref:
            value = ref["value"]
        elif "env" in ref:
            value = os.environ.get(ref["env"])
        elif "keyvault" in ref:
            value = appstack.azure_sdk.get_secret(ref["keyvault"]["name"], ref["keyvault"]["vault"])
        else:
            msg = f"secret {key!r} for stage {self.stage_name!r} needs one of 'value', 'env' or 'keyvault'"
            raise ValueError(msg)

        if value is None:
            return None

        return DeferredValue.known(str(value), secret=True)

    def identity(self) -> ClientIdentity:
        subscription_id, tenant_id, object_id = (
            _identity_value(key, self.get(key)) for key in IDENTITY_KEYS
        )
        return ClientIdentity(subscription_id=subscription_id, tenant_id=tenant_id, object_id=object_id)
