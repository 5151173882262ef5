from backoffice.storage.object_store import ObjectStore, StoredObject, get_object_store

__all__ = ["ObjectStore", "StoredObject", "get_object_store"]
