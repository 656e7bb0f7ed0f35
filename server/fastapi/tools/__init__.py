from .navigation import get_navigation
from .places import search_nearby_places

# Register all tools - add new tools here
tools = [get_navigation, search_nearby_places]
tools_by_name = {t.name: t for t in tools}

TOOL_LABELS = {
    "get_navigation": "Finding route...",
    "search_nearby_places": "Searching nearby...",
}

__all__ = ["tools", "tools_by_name", "TOOL_LABELS"]
