from .web_search import WebSearchClient, client_from_settings as web_search_client_from_settings
from .fetcher import ContentFetcher

__all__ = ["WebSearchClient", "web_search_client_from_settings", "ContentFetcher"]
