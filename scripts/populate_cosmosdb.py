"""
Cosmos DB Data Population Script for the Surgical Mart POS backend.

Creates the POS containers (when the account allows data plane container
creation) and seeds sample sales and stock using DefaultAzureCredential,
or the account key when COSMOS_KEY is set.

Usage:
    python scripts/populate_cosmosdb.py

Environment:
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name
    COSMOS_KEY      - Account key (optional)

Containers:
    - Sales           (partition: /id) - seeded
    - Stock           (partition: /id) - seeded
    - Returns         (partition: /id) - populated at runtime
    - StockMovements  (partition: /id) - populated at runtime
    - Expenses        (partition: /id) - populated at runtime
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from azure.cosmos import CosmosClient, PartitionKey
from azure.cosmos.exceptions import CosmosHttpResponseError
from azure.identity import DefaultAzureCredential

from config import settings
from core.domain import utc_now

# Import configuration from shared module
from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    POS_CONTAINERS,
)

# Import sample data
from data.sample.pos_data import SALES, STOCK

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


# =============================================================================
# DATA PREPARATION
# =============================================================================

def prepare_stock() -> List[Dict[str, Any]]:
    """Stamp stock documents with the population time."""
    now = utc_now().isoformat()
    return [{**s, "lastUpdated": now} for s in STOCK]


# =============================================================================
# COSMOS DB OPERATIONS
# =============================================================================

def upsert_items(container, items: List[Dict[str, Any]]) -> int:
    """Upsert items into a container."""
    count = 0
    for item in items:
        try:
            container.upsert_item(item)
            count += 1
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to upsert item {item.get('id')}: {e}")
    return count


def ensure_containers(database) -> None:
    """Create any missing POS container."""
    for key, (container_name, partition_key) in POS_CONTAINERS.items():
        try:
            database.create_container_if_not_exists(
                id=container_name,
                partition_key=PartitionKey(path=partition_key),
            )
            logger.info(f"  {container_name} (partition: {partition_key})")
        except CosmosHttpResponseError as e:
            logger.warning(f"  Could not create {container_name}: {e.message}")


def main():
    """Main function to populate Cosmos DB with POS sample data."""
    logger.info("=" * 60)
    logger.info("Surgical Mart POS - Cosmos DB Population Script")
    logger.info("=" * 60)
    logger.info(f"Endpoint: {COSMOS_ENDPOINT}")
    logger.info(f"Database: {DATABASE_NAME}")
    logger.info("Authentication: " + ("account key" if settings.cosmos_key else "DefaultAzureCredential"))
    logger.info("=" * 60)

    credential = settings.cosmos_key or DefaultAzureCredential()
    client = CosmosClient(COSMOS_ENDPOINT, credential=credential)

    # Get database
    logger.info(f"Connecting to database '{DATABASE_NAME}'...")
    try:
        database = client.create_database_if_not_exists(DATABASE_NAME)
        logger.info(f"Database '{DATABASE_NAME}' ready")
    except CosmosHttpResponseError as e:
        logger.error(f"Database '{DATABASE_NAME}' not found or access denied: {e}")
        logger.error("Please create the database first or check RBAC permissions")
        return

    logger.info("\n--- POS Containers ---")
    ensure_containers(database)

    # Data to populate
    data_sets = [
        ("sales", [dict(s) for s in SALES]),
        ("stock", prepare_stock()),
    ]

    logger.info("\n--- Populating Sample Data ---")
    total_items = 0
    for key, items in data_sets:
        container_name, _ = POS_CONTAINERS[key]
        container = database.get_container_client(container_name)
        count = upsert_items(container, items)
        logger.info(f"  {container_name}: {count} items")
        total_items += count

    logger.info("\n" + "=" * 60)
    logger.info(f"COMPLETE: {total_items} total items populated")
    logger.info("Returns, StockMovements and Expenses are populated at runtime")
    logger.info("=" * 60)

    # Print Azure CLI commands for accounts with data plane container creation disabled
    logger.info("\n--- Azure CLI Commands to Create All Containers ---")
    logger.info("# If containers could not be created above, run these commands:")
    for key, (container_name, partition_key) in POS_CONTAINERS.items():
        logger.info(f'az cosmosdb sql container create --account-name "<account>" --database-name "{DATABASE_NAME}" --name "{container_name}" --partition-key-path "{partition_key}" --resource-group "<resource-group>"')


if __name__ == "__main__":
    main()
