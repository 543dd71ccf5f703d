from .client import AnythingLLMClient, AnythingLLMError
from .sync_engine import SyncEngine

__all__ = ["AnythingLLMClient", "AnythingLLMError", "SyncEngine"]
