"""
Azure Cosmos DB Configuration.

Centralized configuration for all Cosmos DB settings used across the application.
This ensures consistency between the application, scripts, and data population tools.

Environment Variables (optional overrides):
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name
"""

from config import settings

# =============================================================================
# COSMOS DB CONNECTION
# =============================================================================

COSMOS_ENDPOINT = settings.cosmos_endpoint

DATABASE_NAME = settings.cosmos_database

# =============================================================================
# POS DATA CONTAINERS
# =============================================================================

# Format: logical_name -> (container_name, partition_key_path)
POS_CONTAINERS = {
    "sales": ("Sales", "/id"),
    "stock": ("Stock", "/id"),
    "returns": ("Returns", "/id"),
    "stock_movements": ("StockMovements", "/id"),
    "expenses": ("Expenses", "/id"),
}

# Simple container name lookup (without partition key)
POS_CONTAINER_NAMES = {
    key: name for key, (name, _) in POS_CONTAINERS.items()
}

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_container_name(logical_name: str) -> str:
    """Get the actual container name for a logical container name."""
    if logical_name in POS_CONTAINER_NAMES:
        return POS_CONTAINER_NAMES[logical_name]
    return logical_name
