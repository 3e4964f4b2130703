from __future__ import annotations

from typing import Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.data.tables import TableClient, TableServiceClient, UpdateMode
from azure.identity import DefaultAzureCredential

from core.settings import Settings


class AzureTableSecretStore:
    """Secrets kept as entities in an Azure Table, one row per key.

    Writes are plain upserts; when two machines refresh the same account the
    last writer wins, the same as with the local keyring.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._table_client: Optional[TableClient] = None

    def _get_table_client(self) -> TableClient:
        if self._table_client:
            return self._table_client

        if self.settings.table_endpoint:
            credential = DefaultAzureCredential()
            self._table_client = TableClient(
                endpoint=self.settings.table_endpoint,
                credential=credential,
                table_name=self.settings.table_name,
            )
        elif self.settings.table_connection_string:
            service = TableServiceClient.from_connection_string(self.settings.table_connection_string)
            self._table_client = service.get_table_client(self.settings.table_name)

        if not self._table_client:
            raise RuntimeError(
                "Table client could not be initialized. Set SECRET_TABLE_ENDPOINT or SECRET_TABLE_CONNECTION_STRING."
            )

        try:
            self._table_client.create_table()
        except AzureError:
            pass

        return self._table_client

    def get(self, key: str) -> Optional[str]:
        table_client = self._get_table_client()
        try:
            entity = table_client.get_entity(partition_key=self.settings.partition_key, row_key=key)
        except ResourceNotFoundError:
            return None
        value = entity.get("value")
        return str(value) if value is not None else None

    def set(self, key: str, value: str) -> None:
        table_client = self._get_table_client()
        table_client.upsert_entity(
            {
                "PartitionKey": self.settings.partition_key,
                "RowKey": key,
                "value": value,
            },
            mode=UpdateMode.REPLACE,
        )

    def delete(self, key: str) -> None:
        table_client = self._get_table_client()
        table_client.delete_entity(partition_key=self.settings.partition_key, row_key=key)
