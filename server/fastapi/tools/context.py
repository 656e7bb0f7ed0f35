from langchain_core.runnables import RunnableConfig

from maps import MapProvider, ProviderUnavailable


def get_map_provider(config: RunnableConfig | None) -> MapProvider:
    """Pull the map provider the server put into the run config."""
    provider = ((config or {}).get("configurable") or {}).get("map_provider")
    if provider is None:
        raise ProviderUnavailable("No map provider in run config")
    return provider
