# Remote Source Clients
"""
リモートシステムから変更ドキュメントを取得するクライアント
"""

from tidemark.remote.base import RemoteClientConfig, RemoteSystemClient
from tidemark.remote.get_json import GetJSONClient, create_get_json_client

__all__ = [
    "RemoteClientConfig",
    "RemoteSystemClient",
    "GetJSONClient",
    "create_get_json_client",
]
