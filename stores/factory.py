from core.settings import Settings
from stores.host_state_store import SQLiteStateStore
from stores.memory_store import MemorySecretStore


def build_secret_store(settings: Settings):
    backend = settings.secret_backend.lower()
    if backend == "memory":
        return MemorySecretStore()
    if backend == "keyring":
        from stores.keyring_store import KeyringSecretStore

        return KeyringSecretStore(settings.keyring_service)
    if backend == "azure_table":
        from stores.azure_table_store import AzureTableSecretStore

        return AzureTableSecretStore(settings)
    raise ValueError(f"Unsupported SECRET_BACKEND: {settings.secret_backend}")


def build_state_store(settings: Settings) -> SQLiteStateStore:
    return SQLiteStateStore(settings.state_db_path)
