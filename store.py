# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
from datetime import datetime, timezone

# Third-Party: Firebase
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter


# Write sentinels handlers put straight into update payloads.
SERVER_TIMESTAMP = firestore.SERVER_TIMESTAMP
Increment = firestore.Increment
ArrayUnion = firestore.ArrayUnion
ArrayRemove = firestore.ArrayRemove


# ============================================================================
# DOCUMENT STORE
# ============================================================================

class DocumentStore:
    """Thin wrapper around a Firestore client.

    Every read returns plain dicts carrying the document id under "id" so
    handlers never touch snapshots directly.
    """

    def __init__(self, client):
        self.client = client

    def _ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    @staticmethod
    def _to_dict(snap) -> dict:
        data = snap.to_dict() or {}
        data["id"] = snap.id
        return data

    def get(self, collection: str, doc_id: str) -> dict | None:
        if not doc_id:
            return None
        snap = self._ref(collection, doc_id).get()
        if not snap.exists:
            return None
        return self._to_dict(snap)

    def query(
        self,
        collection: str,
        filters: list[tuple] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        q = self.client.collection(collection)
        for field, op, value in filters or []:
            q = q.where(filter=FieldFilter(field, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            q = q.order_by(order_by, direction=direction)
        if limit:
            q = q.limit(limit)
        return [self._to_dict(snap) for snap in q.stream()]

    def add(self, collection: str, data: dict) -> str:
        _, ref = self.client.collection(collection).add(data)
        return ref.id

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._ref(collection, doc_id).set(data, merge=merge)

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        self._ref(collection, doc_id).update(data)

    def delete(self, collection: str, doc_id: str) -> None:
        self._ref(collection, doc_id).delete()

    def transact(self, collection: str, doc_id: str, fn):
        """Read a document and write fn's updates atomically.

        fn receives the current document (or None) and returns a dict of
        updates, or None to leave the document untouched. Returns whatever
        fn returned.
        """
        ref = self._ref(collection, doc_id)
        transaction = self.client.transaction()

        @firestore.transactional
        def run(txn):
            snap = ref.get(transaction=txn)
            current = self._to_dict(snap) if snap.exists else None
            updates = fn(current)
            if updates:
                txn.update(ref, updates)
            return updates

        return run(transaction)

    def run_transaction(self, fn):
        """Run fn(txn) in one Firestore transaction spanning any documents.

        txn offers get/update/delete; Firestore requires every get to come
        before the first write. Returns whatever fn returned.
        """
        transaction = self.client.transaction()

        @firestore.transactional
        def run(txn):
            return fn(_TransactionView(self, txn))

        return run(transaction)


class _TransactionView:
    """Document reads and writes bound to one open transaction."""

    def __init__(self, store: DocumentStore, txn):
        self.store = store
        self.txn = txn

    def get(self, collection: str, doc_id: str) -> dict | None:
        snap = self.store._ref(collection, doc_id).get(transaction=self.txn)
        return self.store._to_dict(snap) if snap.exists else None

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        self.txn.update(self.store._ref(collection, doc_id), data)

    def delete(self, collection: str, doc_id: str) -> None:
        self.txn.delete(self.store._ref(collection, doc_id))


# ============================================================================
# SERIALIZATION
# ============================================================================

def serialize_doc(value):
    """Convert Firestore values (timestamps included) into JSON-safe data."""
    if value is SERVER_TIMESTAMP:
        return datetime.now(timezone.utc).isoformat()
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items() if k != "password_hash"}
    if isinstance(value, (list, tuple)):
        return [serialize_doc(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "isoformat") and callable(value.isoformat):
        return value.isoformat()
    return value
