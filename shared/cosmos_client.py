"""
Cosmos DB Repository Backend.

Implements core.data.Repository on top of Azure Cosmos DB containers.
Uses DefaultAzureCredential unless an account key is configured.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from azure.core import MatchConditions
from azure.cosmos import CosmosClient
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential

from config import settings
from core.data import Document, DuplicateDocument, QueryOptions, QueryResult, Repository
from core.errors import ConcurrencyConflict, NotFound
from shared.cosmos_config import COSMOS_ENDPOINT, DATABASE_NAME, get_container_name

logger = logging.getLogger(__name__)


class CosmosRepository(Repository):
    """Repository over a single Cosmos DB container partitioned on /id."""

    def __init__(self, container, name: str = ""):
        self._container = container
        self.name = name or getattr(container, "id", "container")

    def get_by_id(self, id: str) -> Optional[Document]:
        try:
            return self._container.read_item(item=id, partition_key=id)
        except CosmosResourceNotFoundError:
            return None

    def _where(self, options: QueryOptions) -> Tuple[str, List[Dict[str, Any]]]:
        clauses: List[str] = []
        params: List[Dict[str, Any]] = []

        def bind(value: Any) -> str:
            name = f"@p{len(params)}"
            params.append({"name": name, "value": value})
            return name

        for path, value in options.filters.items():
            clauses.append(f"c.{path} = {bind(value)}")
        for path, value in options.exclude.items():
            clauses.append(f"c.{path} != {bind(value)}")
        for path, prefix in options.prefix_filters.items():
            clauses.append(f"STARTSWITH(c.{path}, {bind(prefix)})")
        for path, value in options.min_filters.items():
            clauses.append(f"c.{path} >= {bind(value)}")
        for path, value in options.max_filters.items():
            clauses.append(f"c.{path} <= {bind(value)}")
        if options.search and options.search_fields:
            term = bind(options.search)
            matches = [f"CONTAINS(LOWER(c.{path}), LOWER({term}))" for path in options.search_fields]
            clauses.append("(" + " OR ".join(matches) + ")")

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def find(self, options: Optional[QueryOptions] = None) -> QueryResult[Document]:
        options = options or QueryOptions()
        where, params = self._where(options)

        count_query = f"SELECT VALUE COUNT(1) FROM c{where}"
        counts = list(self._container.query_items(
            count_query, parameters=params, enable_cross_partition_query=True
        ))
        total = counts[0] if counts else 0

        data: List[Document] = []
        if options.limit > 0:
            query = f"SELECT * FROM c{where}"
            if options.order_by:
                query += f" ORDER BY c.{options.order_by} {'DESC' if options.order_desc else 'ASC'}"
            query += f" OFFSET {int(options.offset)} LIMIT {int(options.limit)}"
            data = list(self._container.query_items(
                query, parameters=params, enable_cross_partition_query=True
            ))

        next_offset = options.offset + len(data)
        has_more = next_offset < total
        return QueryResult(
            data=data,
            total_count=total,
            has_more=has_more,
            next_offset=next_offset if has_more else None,
        )

    def create(self, entity: Document) -> Document:
        try:
            return self._container.create_item(body=entity)
        except CosmosResourceExistsError:
            raise DuplicateDocument(f"{self.name} document {entity['id']} already exists")

    def save(self, entity: Document) -> Document:
        return self._container.upsert_item(body=entity)

    def replace(self, entity: Document, etag: str) -> Document:
        try:
            return self._container.replace_item(
                item=entity["id"],
                body=entity,
                etag=etag,
                match_condition=MatchConditions.IfNotModified,
            )
        except CosmosAccessConditionFailedError:
            raise ConcurrencyConflict(
                f"{self.name} document {entity['id']} was modified concurrently"
            )
        except CosmosResourceNotFoundError:
            raise NotFound(f"{self.name} document {entity['id']} not found")

    def increment(
        self,
        id: str,
        deltas: Dict[str, float],
        set_fields: Optional[Dict[str, Any]] = None,
    ) -> Document:
        operations = [
            {"op": "incr", "path": f"/{field_name}", "value": delta}
            for field_name, delta in deltas.items()
        ]
        operations += [
            {"op": "set", "path": f"/{field_name}", "value": value}
            for field_name, value in (set_fields or {}).items()
        ]
        try:
            return self._container.patch_item(
                item=id,
                partition_key=id,
                patch_operations=operations,
            )
        except CosmosResourceNotFoundError:
            raise NotFound(f"{self.name} document {id} not found")

    def delete(self, id: str) -> bool:
        try:
            self._container.delete_item(item=id, partition_key=id)
            return True
        except CosmosResourceNotFoundError:
            return False


class PosCosmosClient:
    """Client for accessing POS containers in Cosmos DB."""

    def __init__(self, endpoint: str = COSMOS_ENDPOINT, database_name: str = DATABASE_NAME):
        """Initialize the Cosmos DB client."""
        logger.info("Initializing POS Cosmos DB client...")
        if settings.cosmos_key:
            credential = settings.cosmos_key
        else:
            credential = DefaultAzureCredential(
                exclude_interactive_browser_credential=False,
                exclude_shared_token_cache_credential=False,
            )
        self._client = CosmosClient(endpoint, credential=credential)
        self._database = self._client.get_database_client(database_name)
        self._repositories: Dict[str, CosmosRepository] = {}
        logger.info(f"POS Cosmos DB client initialized: {database_name}")

    def repository(self, name: str) -> CosmosRepository:
        """Get a repository for a logical container, caching for reuse."""
        if name not in self._repositories:
            container = self._database.get_container_client(get_container_name(name))
            self._repositories[name] = CosmosRepository(container, name=name)
        return self._repositories[name]


# Singleton instance
_client: Optional[PosCosmosClient] = None


def get_cosmos_client() -> PosCosmosClient:
    """Get the singleton Cosmos DB client instance."""
    global _client
    if _client is None:
        _client = PosCosmosClient()
    return _client
