"""Built-in sample listing, served only in development and test environments."""
from typing import List

from app.schemas.server import RegistryServerEntry

SAMPLE_SERVERS = [
    {
        "name": "web-scraper",
        "image": "toolhive/web-scraper:1.2.0",
        "version": "1.2.0",
        "description": "A web scraping tool with JavaScript rendering support",
        "tags": ["web", "scraping", "automation"],
        "capabilities": ["tools", "resources"],
        "author": "ToolHive Team",
        "repository": "https://github.com/toolhive/web-scraper",
        "documentation": "https://docs.toolhive.com/web-scraper",
    },
    {
        "name": "database-manager",
        "image": "toolhive/database-manager:2.1.0",
        "version": "2.1.0",
        "description": "Multi-database management tool with query capabilities",
        "tags": ["database", "sql", "management"],
        "capabilities": ["tools"],
        "author": "Database Team",
        "repository": "https://github.com/toolhive/database-manager",
    },
    {
        "name": "file-processor",
        "image": "toolhive/file-processor:latest",
        "description": "Process and transform files in various formats",
        "tags": ["files", "processing", "utility"],
        "capabilities": ["tools", "resources"],
        "author": "Utils Team",
    },
]


def sample_servers() -> List[RegistryServerEntry]:
    return [RegistryServerEntry.model_validate(raw) for raw in SAMPLE_SERVERS]
