import azure.identity
import azure.keyvault.secrets


def secret_client(vault_name: str) -> azure.keyvault.secrets.SecretClient:
    return azure.keyvault.secrets.SecretClient(
        vault_url=f"https://{vault_name}.vault.azure.net",
        credential=azure.identity.DefaultAzureCredential(),
    )


def get_secret(secret_name: str, vault_name: str) -> str:
    secret = secret_client(vault_name).get_secret(secret_name)
    return secret.value
