# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_valkey_url,
    get_document_config,
    reset_vault_client,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.document_client import DocumentGatewayClient, DocumentGenerationError
