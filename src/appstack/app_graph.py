"""The application topology for one stage, declared as a resource graph.

``AppGraphBuilder`` runs its ``STEPS`` in order. Each step declares nodes on
the graph and keeps the ones later steps consume as attributes; outputs are
exported at the end and the graph is sealed before it is handed to a
provisioner.
"""

from __future__ import annotations

import typing

import pulumi

import appstack
import appstack.firewall
import appstack.secrecy
from appstack import AppRoles, AppSettings, ResourceKind, RoleDefinitions, Secrets
from appstack.deferred import DeferredValue
from appstack.graph import ResourceGraph, ResourceNode

if typing.TYPE_CHECKING:
    from appstack.stage import StageContext

POSTER_IMAGES_CONTAINER = "event-poster-images"
UPLOADED_VIDEOS_CONTAINER = "uploaded-videos"
SQL_ADMIN_LOGIN = "manualadmin"
SQL_AD_ADMIN_LOGIN = "adadmin"
APPLICATION_INSIGHTS_AGENT_VERSION = "~2"

FIREWALL_RULE_PREFIXES = {
    AppRoles.IDENTITY: "fr-identity-",
    AppRoles.API: "fr-api-",
}

ASPNETCORE_ENVIRONMENTS = {
    appstack.Stages.development: "Development",
    appstack.Stages.staging: "Staging",
    appstack.Stages.production: "Production",
}

ROLE_DEFINITION_ID_FORMAT = "/subscriptions/{subscription_id}/providers/Microsoft.Authorization/roleDefinitions/{role}"


class AppGraphBuilder:
    ctx: StageContext
    graph: ResourceGraph
    required_tags: dict[str, str]
    resource_group: ResourceNode
    storage_account: ResourceNode
    containers: dict[str, ResourceNode]
    service_plan: ResourceNode
    key_vault: ResourceNode
    redis: ResourceNode
    application_insights: ResourceNode
    media_service: ResourceNode
    sql_server: ResourceNode
    sql_database: ResourceNode
    connection_string: DeferredValue[str]
    connection_string_secret: ResourceNode
    certificate_order: ResourceNode | None
    web_apps: dict[str, ResourceNode]
    endpoints: dict[str, DeferredValue[str]]
    firewall_rules: dict[str, DeferredValue[list[ResourceNode]]]
    cdn_endpoint: ResourceNode

    STEPS: typing.ClassVar[tuple[tuple[str, str], ...]] = (
        ("resource group", "_define_resource_group"),
        ("storage", "_define_storage"),
        ("service plan", "_define_service_plan"),
        ("key vault", "_define_key_vault"),
        ("redis", "_define_redis"),
        ("application insights", "_define_application_insights"),
        ("media service", "_define_media_service"),
        ("sql", "_define_sql"),
        ("certificate", "_define_certificate"),
        ("public web", "_define_public_web"),
        ("blazor", "_define_blazor"),
        ("identity", "_define_identity"),
        ("api", "_define_api"),
        ("cdn", "_define_cdn"),
        ("outputs", "_define_outputs"),
    )

    def __init__(self, ctx: StageContext):
        self.ctx = ctx
        self.graph = ResourceGraph(ctx.compound_name)
        self.required_tags = ctx.required_tags
        self.containers = {}
        self.certificate_order = None
        self.web_apps = {}
        self.endpoints = {}
        self.firewall_rules = {}

    def build(self) -> ResourceGraph:
        for name, method in self.STEPS:
            pulumi.log.debug(f"{self.graph.name}: {name}")
            getattr(self, method)()

        self.graph.seal()
        return self.graph

    @property
    def protect(self) -> bool:
        return self.ctx.variant.protect_persistent_resources

    @property
    def resource_group_name(self) -> DeferredValue[str]:
        return self.resource_group.output("name")

    def role_definition_id(self, role: RoleDefinitions) -> DeferredValue[str]:
        return DeferredValue.format(ROLE_DEFINITION_ID_FORMAT, subscription_id=self.ctx.subscription_id, role=str(role))

    def _define_resource_group(self):
        self.resource_group = self.graph.declare(
            ResourceKind.RESOURCE_GROUP,
            self.ctx.resource_group_name,
            {
                "resource_group_name": self.ctx.resource_group_name,
                "location": self.ctx.location,
                "tags": self.required_tags,
            },
        )

    def _define_storage(self):
        self.storage_account = self.graph.declare(
            ResourceKind.STORAGE_ACCOUNT,
            self.ctx.storage_account_name,
            {
                "account_name": self.ctx.storage_account_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "kind": "StorageV2",
                "sku": {"name": "Standard_LRS"},
                "minimum_tls_version": "TLS1_2",
                "allow_blob_public_access": False,
                "tags": self.required_tags,
            },
            protect=self.protect,
        )

        for container_name in (POSTER_IMAGES_CONTAINER, UPLOADED_VIDEOS_CONTAINER):
            self.containers[container_name] = self.graph.declare(
                ResourceKind.BLOB_CONTAINER,
                f"{self.ctx.storage_account_name}-{container_name}",
                {
                    "account_name": self.storage_account.output("name"),
                    "container_name": container_name,
                    "resource_group_name": self.resource_group_name,
                    "public_access": "None",
                },
                protect=self.protect,
            )

    def _define_service_plan(self):
        self.service_plan = self.graph.declare(
            ResourceKind.APP_SERVICE_PLAN,
            self.ctx.app_service_plan_name,
            {
                "name": self.ctx.app_service_plan_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "kind": "app",
                "sku": {
                    "name": self.ctx.variant.app_service_plan_size,
                    "tier": self.ctx.variant.app_service_plan_tier,
                },
                "tags": self.required_tags,
            },
        )

    def _define_key_vault(self):
        self.key_vault = self.graph.declare(
            ResourceKind.KEY_VAULT,
            self.ctx.key_vault_name,
            {
                "vault_name": self.ctx.key_vault_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "properties": {
                    "tenant_id": self.ctx.tenant_id,
                    "sku": {"family": "A", "name": "standard"},
                    "enable_rbac_authorization": True,
                },
                "tags": self.required_tags,
            },
            protect=self.protect,
        )

        # the deployer adds and removes secrets during updates and destroys
        self.graph.declare(
            ResourceKind.ROLE_ASSIGNMENT,
            f"{self.ctx.key_vault_name}-deployer-secrets-officer",
            {
                "principal_id": self.ctx.principal_id,
                "role_definition_id": self.role_definition_id(RoleDefinitions.KEY_VAULT_SECRETS_OFFICER),
                "scope": self.key_vault.id,
            },
        )

    def _define_redis(self):
        sku = self.ctx.variant.redis
        arguments = {
            "name": self.ctx.redis_cache_name,
            "resource_group_name": self.resource_group_name,
            "location": self.ctx.location,
            "sku": {"name": sku.name, "family": sku.family, "capacity": sku.capacity},
            "enable_non_ssl_port": False,
            "minimum_tls_version": "1.2",
            "redis_configuration": {"maxmemory_policy": "allkeys-lru"},
            "tags": self.required_tags,
        }
        if sku.shard_count is not None:
            arguments["shard_count"] = sku.shard_count
        if sku.replicas_per_primary is not None:
            arguments["replicas_per_primary"] = sku.replicas_per_primary
        if sku.zones:
            arguments["zones"] = list(sku.zones)

        self.redis = self.graph.declare(ResourceKind.REDIS_CACHE, self.ctx.redis_cache_name, arguments)

    def _define_application_insights(self):
        self.application_insights = self.graph.declare(
            ResourceKind.APPLICATION_INSIGHTS,
            self.ctx.application_insights_name,
            {
                "resource_name_": self.ctx.application_insights_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "kind": "web",
                "application_type": "web",
                "tags": self.required_tags,
            },
        )

    def _define_media_service(self):
        self.media_service = self.graph.declare(
            ResourceKind.MEDIA_SERVICE,
            self.ctx.media_service_name,
            {
                "account_name": self.ctx.media_service_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "storage_accounts": [{"id": self.storage_account.id, "type": "Primary"}],
                "tags": self.required_tags,
            },
        )

    def _define_sql(self):
        self.sql_server = self.graph.declare(
            ResourceKind.SQL_SERVER,
            self.ctx.sql_server_name,
            {
                "server_name": self.ctx.sql_server_name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                # required by the provider; applications authenticate with managed identities
                "administrator_login": SQL_ADMIN_LOGIN,
                "administrator_login_password": self.ctx.require_secret(Secrets.DB_PASSWORD),
                "version": "12.0",
                "tags": self.required_tags,
            },
            protect=self.protect,
        )

        self.sql_database = self.graph.declare(
            ResourceKind.SQL_DATABASE,
            self.ctx.sql_database_name,
            {
                "database_name": self.ctx.sql_database_name,
                "server_name": self.sql_server.output("name"),
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "sku": {"name": self.ctx.variant.sql_service_objective},
                "tags": self.required_tags,
            },
            protect=self.protect,
        )

        # no credentials: applications authenticate with their managed identity
        self.connection_string = DeferredValue.format(
            "Server=tcp:{server}.database.windows.net;Database={database};",
            server=self.sql_server.output("name"),
            database=self.sql_database.output("name"),
        )

        self.connection_string_secret = self._define_secret(Secrets.CONNECTION_STRING, self.connection_string)

    def _define_secret(self, secret_name: str, value: DeferredValue[str]) -> ResourceNode:
        return self.graph.declare(
            ResourceKind.SECRET,
            f"{self.ctx.key_vault_name}-{secret_name}",
            {
                "secret_name": secret_name,
                "vault_name": self.key_vault.output("name"),
                "resource_group_name": self.resource_group_name,
                "properties": {"value": value},
                "tags": self.required_tags,
            },
        )

    def _secret_uri(self, secret: ResourceNode) -> DeferredValue[str]:
        return appstack.secrecy.secret_reference(
            self.key_vault.output("properties.vault_uri"),
            secret.output("name"),
            secret.output("properties.secret_uri_with_version").map(
                appstack.secrecy.secret_version, label="secret_version"
            ),
        )

    def _define_certificate(self):
        if not self.ctx.variant.include_certificate:
            return

        self.certificate_order = self.graph.declare(
            ResourceKind.CERTIFICATE_ORDER,
            self.ctx.certificate_order_name,
            {
                "certificate_order_name": self.ctx.certificate_order_name,
                "resource_group_name": self.resource_group_name,
                "location": appstack.GLOBAL,
                "product_type": "StandardDomainValidatedSsl",
                "distinguished_name": f"CN={self.ctx.require('domain')}",
                "auto_renew": True,
                "validity_in_years": 1,
                "tags": self.required_tags,
            },
            protect=self.protect,
        )

    def _monitoring_settings(self) -> dict[str, typing.Any]:
        instrumentation_key = self.application_insights.output("instrumentation_key")
        return {
            AppSettings.APPINSIGHTS_INSTRUMENTATIONKEY: instrumentation_key,
            AppSettings.APPLICATIONINSIGHTS_CONNECTION_STRING: instrumentation_key.map(
                lambda key: f"InstrumentationKey={key}", label="connection_string"
            ),
            AppSettings.APPLICATIONINSIGHTS_AGENT_VERSION: APPLICATION_INSIGHTS_AGENT_VERSION,
            AppSettings.ASPNETCORE_ENVIRONMENT: self.ctx.select(ASPNETCORE_ENVIRONMENTS),
        }

    def _define_web_app(
        self,
        role: AppRoles,
        app_settings: dict[str, typing.Any],
        connection_strings: list[dict[str, typing.Any]] | None = None,
    ) -> ResourceNode:
        name = self.ctx.web_app_name(role)
        site_config: dict[str, typing.Any] = {
            "app_settings": [{"name": str(key), "value": value} for key, value in app_settings.items()],
        }
        if connection_strings:
            site_config["connection_strings"] = connection_strings

        node = self.graph.declare(
            ResourceKind.WEB_APP,
            name,
            {
                "name": name,
                "resource_group_name": self.resource_group_name,
                "location": self.ctx.location,
                "server_farm_id": self.service_plan.id,
                "identity": {"type": "SystemAssigned"},
                "https_only": True,
                "site_config": site_config,
                "tags": self.required_tags,
            },
        )

        self.web_apps[role] = node
        self.endpoints[role] = DeferredValue.format("https://{host}", host=node.output("default_host_name"))
        return node

    def _principal_id(self, role: AppRoles) -> DeferredValue[str]:
        return appstack.secrecy.principal_id_or_placeholder(self.web_apps[role].output("identity"))

    def _grant_key_vault_secrets(self, role: AppRoles):
        self.graph.declare(
            ResourceKind.ROLE_ASSIGNMENT,
            f"{self.ctx.web_app_name(role)}-secrets-user",
            {
                "principal_id": self._principal_id(role),
                "principal_type": "ServicePrincipal",
                "role_definition_id": self.role_definition_id(RoleDefinitions.KEY_VAULT_SECRETS_USER),
                "scope": self.key_vault.id,
            },
        )

    def _define_firewall_rules(self, role: AppRoles) -> DeferredValue[list[ResourceNode]]:
        self.firewall_rules[role] = appstack.firewall.expand_firewall_rules(
            self.graph,
            self.web_apps[role].output("outbound_ip_addresses"),
            FIREWALL_RULE_PREFIXES[role],
            server_name=self.sql_server.output("name"),
            resource_group_name=self.resource_group_name,
        )
        return self.firewall_rules[role]

    def _define_public_web(self):
        self._define_web_app(AppRoles.PUBLIC_WEB, self._monitoring_settings())

    def _define_blazor(self):
        self._define_web_app(
            AppRoles.BLAZOR,
            {AppSettings.ASPNETCORE_ENVIRONMENT: self.ctx.select(ASPNETCORE_ENVIRONMENTS)},
        )

    @property
    def cors_origins(self) -> DeferredValue[str]:
        return DeferredValue.join(",", [self.endpoints[AppRoles.PUBLIC_WEB], self.endpoints[AppRoles.BLAZOR]])

    def _define_identity(self):
        payment_secret = self._define_secret(
            Secrets.PAYMENT_RAPYD_SECRET_KEY,
            self.ctx.require_secret(Secrets.PAYMENT_RAPYD_SECRET_KEY),
        )

        self._define_web_app(
            AppRoles.IDENTITY,
            self._monitoring_settings()
            | {
                AppSettings.PAYMENT_RAPYD_SECRET_KEY: appstack.secrecy.keyvault_reference(
                    self._secret_uri(payment_secret)
                ),
                AppSettings.CONNECTION_STRINGS_DEFAULT: appstack.secrecy.keyvault_reference(
                    self._secret_uri(self.connection_string_secret)
                ),
                AppSettings.CORS_ORIGINS: self.cors_origins,
            },
            connection_strings=[{"name": "db", "type": "SQLAzure", "connection_string": self.connection_string}],
        )

        self._grant_key_vault_secrets(AppRoles.IDENTITY)
        firewall_rules = self._define_firewall_rules(AppRoles.IDENTITY)

        # the identity app administers the database; it needs network access first
        self.graph.declare(
            ResourceKind.SQL_AD_ADMINISTRATOR,
            f"{self.ctx.sql_server_name}-ad-admin",
            {
                "administrator_name": "ActiveDirectory",
                "administrator_type": "ActiveDirectory",
                "server_name": self.sql_server.output("name"),
                "resource_group_name": self.resource_group_name,
                "login": SQL_AD_ADMIN_LOGIN,
                "sid": self._principal_id(AppRoles.IDENTITY),
                "tenant_id": self.ctx.tenant_id,
            },
            depends_on=[firewall_rules],
        )

    def _define_api(self):
        self._define_web_app(
            AppRoles.API,
            self._monitoring_settings()
            | {
                AppSettings.AUTH_SERVER_AUTHORITY: self.endpoints[AppRoles.IDENTITY],
                AppSettings.CORS_ORIGINS: self.cors_origins,
                AppSettings.REDIS_CONFIGURATION: DeferredValue.format(
                    "{host}:{port},ssl=True,abortConnect=False",
                    host=self.redis.output("host_name"),
                    port=self.redis.output("ssl_port"),
                ),
                AppSettings.STORAGE_BLOB_ENDPOINT: self.storage_account.output("primary_endpoints.blob"),
                AppSettings.STORAGE_POSTER_IMAGES_CONTAINER: POSTER_IMAGES_CONTAINER,
                AppSettings.STORAGE_UPLOADED_VIDEOS_CONTAINER: UPLOADED_VIDEOS_CONTAINER,
            },
            connection_strings=[{"name": "db", "type": "SQLAzure", "connection_string": self.connection_string}],
        )

        self._grant_key_vault_secrets(AppRoles.API)
        self._define_firewall_rules(AppRoles.API)

        for container_name, container in self.containers.items():
            self.graph.declare(
                ResourceKind.ROLE_ASSIGNMENT,
                f"{self.ctx.web_app_name(AppRoles.API)}-{container_name}-reader",
                {
                    "principal_id": self._principal_id(AppRoles.API),
                    "principal_type": "ServicePrincipal",
                    "role_definition_id": self.role_definition_id(RoleDefinitions.STORAGE_BLOB_DATA_READER),
                    "scope": DeferredValue.format(
                        "{account_id}/blobServices/default/containers/{container}",
                        account_id=self.storage_account.id,
                        container=container.output("name"),
                    ),
                },
            )

    def _define_cdn(self):
        profile = self.graph.declare(
            ResourceKind.CDN_PROFILE,
            self.ctx.cdn_profile_name,
            {
                "profile_name": self.ctx.cdn_profile_name,
                "resource_group_name": self.resource_group_name,
                "location": appstack.GLOBAL,
                "sku": {"name": "Standard_Microsoft"},
                "tags": self.required_tags,
            },
        )

        public_web_host = self.web_apps[AppRoles.PUBLIC_WEB].output("default_host_name")
        self.cdn_endpoint = self.graph.declare(
            ResourceKind.CDN_ENDPOINT,
            self.ctx.cdn_endpoint_name,
            {
                "endpoint_name": self.ctx.cdn_endpoint_name,
                "profile_name": profile.output("name"),
                "resource_group_name": self.resource_group_name,
                "location": appstack.GLOBAL,
                "is_http_allowed": False,
                "origin_host_header": public_web_host,
                "origins": [{"name": "public-web", "host_name": public_web_host}],
                "tags": self.required_tags,
            },
        )

    def _define_outputs(self):
        outputs = {
            "stackName": self.ctx.stage_name,
            "currentSubscriptionId": self.ctx.subscription_id,
            "tenantId": self.ctx.tenant_id,
            "resourceGroupName": self.resource_group_name,
            "storageAccountId": self.storage_account.id,
            "storageAccountName": self.storage_account.output("name"),
            "sqlServerName": self.sql_server.output("name"),
            "connectionString": self.connection_string,
            "connectionStringSecretUri": self._secret_uri(self.connection_string_secret),
            "instrumentationKey": self.application_insights.output("instrumentation_key"),
            "keyVaultUri": self.key_vault.output("properties.vault_uri"),
            "redisHostName": self.redis.output("host_name"),
            "identityEndpoint": self.endpoints[AppRoles.IDENTITY],
            "apiEndpoint": self.endpoints[AppRoles.API],
            "publicWebAppEndpoint": self.endpoints[AppRoles.PUBLIC_WEB],
            "blazorEndpoint": self.endpoints[AppRoles.BLAZOR],
            "cdnEndpoint": DeferredValue.format("https://{host}", host=self.cdn_endpoint.output("host_name")),
            "corsOrigins": self.cors_origins,
        }

        if self.certificate_order is not None:
            outputs["certificateOrderId"] = self.certificate_order.id

        for key, value in outputs.items():
            self.graph.export(key, value)


def build_app_graph(ctx: StageContext) -> ResourceGraph:
    return AppGraphBuilder(ctx).build()
