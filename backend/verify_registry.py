import asyncio
import sys
import os

# Add current directory to path so we can import app
sys.path.append(os.getcwd())

from app.api.deps import create_cluster_store
from app.core.errors import RegistryManagerError
from app.services.cluster_store import InMemoryClusterStore
from app.services.endpoint_fetcher import CLUSTER_INTERNAL, EndpointFetcher, parse_endpoint
from app.services.server_filter import apply_query

async def main(endpoint: str, server_name: str = None):
    target = parse_endpoint(endpoint)
    print(f"Endpoint {endpoint} -> {target.mode} mode")
    store = create_cluster_store() if target.mode == CLUSTER_INTERNAL else InMemoryClusterStore()
    fetcher = EndpointFetcher(store, sample_fallback=False)
    try:
        servers = await fetcher.fetch_servers(endpoint)
        print(f"Total servers found: {len(servers)}")

        page = apply_query(servers, limit=10)
        for s in page.servers:
            print(f" - {s.name} ({s.image}) tags={s.tags}")

        if server_name:
            print(f"\nFetching specific server '{server_name}'...")
            server = await fetcher.fetch_server(endpoint, server_name)
            if server:
                print(f"Found server: {server.name} {server.version or ''}")
                print(f"Capabilities: {server.capabilities}")
            else:
                print(f"Server '{server_name}' not found")

    except RegistryManagerError as e:
        print(f"ERROR ({type(e).__name__}): {e.message}")
        sys.exit(1)

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: python verify_registry.py <registry-api-endpoint> [server-name]")
        sys.exit(2)
    asyncio.run(main(*sys.argv[1:3]))
