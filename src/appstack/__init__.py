from __future__ import annotations

import enum

API_VERSION = "appstack/v1"
CONFIG_FILENAME = "appstack.yaml"
CONFIG_KIND = "AppStackConfig"
DEFAULT_NAME_PREFIX = "mytest"
GLOBAL = "global"
MANAGED_BY = "appstack"


class Stages(enum.StrEnum):
    development = "development"
    staging = "staging"
    production = "production"


class ResourceKind(enum.StrEnum):
    RESOURCE_GROUP = "ResourceGroup"
    STORAGE_ACCOUNT = "StorageAccount"
    BLOB_CONTAINER = "BlobContainer"
    APP_SERVICE_PLAN = "AppServicePlan"
    WEB_APP = "WebApp"
    KEY_VAULT = "KeyVault"
    SECRET = "Secret"  # noqa: S105
    REDIS_CACHE = "RedisCache"
    APPLICATION_INSIGHTS = "ApplicationInsights"
    MEDIA_SERVICE = "MediaService"
    SQL_SERVER = "SqlServer"
    SQL_DATABASE = "SqlDatabase"
    SQL_AD_ADMINISTRATOR = "SqlAdAdministrator"
    FIREWALL_RULE = "FirewallRule"
    ROLE_ASSIGNMENT = "RoleAssignment"
    CDN_PROFILE = "CdnProfile"
    CDN_ENDPOINT = "CdnEndpoint"
    CERTIFICATE_ORDER = "CertificateOrder"


# the argument that carries the provider-side name for each kind
NAME_ARGUMENTS: dict[ResourceKind, str] = {
    ResourceKind.RESOURCE_GROUP: "resource_group_name",
    ResourceKind.STORAGE_ACCOUNT: "account_name",
    ResourceKind.BLOB_CONTAINER: "container_name",
    ResourceKind.APP_SERVICE_PLAN: "name",
    ResourceKind.WEB_APP: "name",
    ResourceKind.KEY_VAULT: "vault_name",
    ResourceKind.SECRET: "secret_name",
    ResourceKind.REDIS_CACHE: "name",
    ResourceKind.APPLICATION_INSIGHTS: "resource_name_",
    ResourceKind.MEDIA_SERVICE: "account_name",
    ResourceKind.SQL_SERVER: "server_name",
    ResourceKind.SQL_DATABASE: "database_name",
    ResourceKind.SQL_AD_ADMINISTRATOR: "administrator_name",
    ResourceKind.FIREWALL_RULE: "firewall_rule_name",
    ResourceKind.CDN_PROFILE: "profile_name",
    ResourceKind.CDN_ENDPOINT: "endpoint_name",
    ResourceKind.CERTIFICATE_ORDER: "certificate_order_name",
}


class TagKeys(enum.StrEnum):
    ENVIRONMENT = "environment"
    BRANCH = "appstack/branch"
    MANAGED_BY = "appstack/managed-by"


def azure_tag_key_format(tag_key: str) -> str:
    return tag_key.replace("/", ":")


# built-in role definition ids
class RoleDefinitions(enum.StrEnum):
    KEY_VAULT_SECRETS_OFFICER = "b86a8fe4-44ce-4948-aee5-eccb2c155cd7"  # noqa: S105
    KEY_VAULT_SECRETS_USER = "4633458b-17de-408a-b874-0445c86b69e6"  # noqa: S105
    STORAGE_BLOB_DATA_READER = "2a2b9908-6ea1-4ae2-8e65-a410df84e7d1"


class AppRoles(enum.StrEnum):
    IDENTITY = "identity"
    API = "api"
    PUBLIC_WEB = "web"
    BLAZOR = "blazor"


class AppSettings(enum.StrEnum):
    APPINSIGHTS_INSTRUMENTATIONKEY = "APPINSIGHTS_INSTRUMENTATIONKEY"
    APPLICATIONINSIGHTS_CONNECTION_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
    APPLICATIONINSIGHTS_AGENT_VERSION = "ApplicationInsightsAgent_EXTENSION_VERSION"
    ASPNETCORE_ENVIRONMENT = "ASPNETCORE_ENVIRONMENT"
    AUTH_SERVER_AUTHORITY = "AuthServer:Authority"
    CONNECTION_STRINGS_DEFAULT = "ConnectionStrings:Default"
    CORS_ORIGINS = "App:CorsOrigins"
    PAYMENT_RAPYD_SECRET_KEY = "Payment:Rapyd:SecretKey"  # noqa: S105
    REDIS_CONFIGURATION = "Redis:Configuration"
    STORAGE_BLOB_ENDPOINT = "Storage:BlobEndpoint"
    STORAGE_POSTER_IMAGES_CONTAINER = "Storage:PosterImagesContainer"
    STORAGE_UPLOADED_VIDEOS_CONTAINER = "Storage:UploadedVideosContainer"


class Secrets(enum.StrEnum):
    CONNECTION_STRING = "connectionStringSecret"  # noqa: S105
    DB_PASSWORD = "dbPassword"  # noqa: S105
    PAYMENT_RAPYD_SECRET_KEY = "paymentRapydSecretKey"  # noqa: S105
