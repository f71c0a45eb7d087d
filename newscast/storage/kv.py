import json
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from newscast.db import KeyValueEntry, get_db_session

from .base import KeyValueStore


class SqlKeyValueStore(KeyValueStore):
    """A key-value store persisted in the ``kv_entries`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_json(self, key: str) -> Optional[Any]:
        with get_db_session(self.session_factory) as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                return None
            raw = entry.value
        if not raw or not raw.strip():
            return None
        return json.loads(raw)

    def put_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with get_db_session(self.session_factory) as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=payload))
            else:
                entry.value = payload
            session.commit()

    def delete(self, key: str) -> None:
        with get_db_session(self.session_factory) as session:
            entry = session.get(KeyValueEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()
