from shoppe_core.data.remote_client import RemoteDatabaseClient, SupabaseRemoteClient

__all__ = ["RemoteDatabaseClient", "SupabaseRemoteClient"]
