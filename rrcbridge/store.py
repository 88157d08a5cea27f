"""Document store for bridge state.

Documents are plain dicts grouped in named collections and keyed by an
opaque ``_id``. The whole database can be persisted to a TOML file
(maintained with tomlkit) after every mutation.

Layout of the file::

    [conversations."5f0c..."]
    provider = "rrc"
    native_id = "lobby"
    title = "lobby"

    [connections."65aa..."]
    left = "5f0c..."
    token = "AbCd..."
    created_at = 1730000000.0
    direction = "two_way"

``None`` values are omitted from the file and read back as missing keys.
"""

from __future__ import annotations

import copy
import logging
import os
import re
import threading
from typing import Any, Callable, Iterable

from .constants import C_CONNECTIONS, C_CONVERSATIONS, C_PERSONS
from .util import expand_path

Document = dict[str, Any]
Predicate = Callable[[Document], bool]

_ID_RE = re.compile(r"^[0-9a-f]{24}$")


def new_id() -> str:
    return os.urandom(12).hex()


def parse_id(text: str) -> str:
    """Validate a document id typed by a user. Raises ValueError."""
    if not isinstance(text, str):
        raise ValueError("document id must be a string")
    s = text.strip().lower()
    if not _ID_RE.match(s):
        raise ValueError(f"invalid document id {text!r}")
    return s


class DocumentStore:
    COLLECTIONS = (C_CONVERSATIONS, C_PERSONS, C_CONNECTIONS)

    def __init__(
        self, path: str | None = None, *, collections: Iterable[str] | None = None
    ) -> None:
        self.log = logging.getLogger("rrcbridge.store")
        self.path = expand_path(path) if path else None

        # Individual operations are atomic under this lock. Composite
        # check-then-act sequences take it via locked().
        self._lock = threading.RLock()
        self._data: dict[str, dict[str, Document]] = {
            name: {} for name in (collections or self.COLLECTIONS)
        }

        if self.path and os.path.exists(self.path):
            self._load()

    def locked(self) -> threading.RLock:
        return self._lock

    def _collection(self, name: str) -> dict[str, Document]:
        try:
            return self._data[name]
        except KeyError:
            raise KeyError(f"unknown collection {name!r}") from None

    @staticmethod
    def _matches(doc: Document, predicate: Predicate | None, fields: dict[str, Any]) -> bool:
        for k, v in fields.items():
            if doc.get(k) != v:
                return False
        return predicate is None or bool(predicate(doc))

    def insert(self, collection: str, doc: Document) -> str:
        with self._lock:
            coll = self._collection(collection)
            stored = copy.deepcopy(doc)
            doc_id = stored.get("_id") or new_id()
            if doc_id in coll:
                raise ValueError(f"duplicate id {doc_id} in {collection}")
            stored["_id"] = doc_id
            coll[doc_id] = stored
            self._commit(coll, {doc_id: None})
            return doc_id

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        *,
        expect: dict[str, Any] | None = None,
    ) -> bool:
        """Apply ``changes`` to a document.

        With ``expect``, the update only happens when every expected field
        currently has the given value (missing fields compare as None).
        Returns False when the document is absent or the expectation fails.
        """
        with self._lock:
            coll = self._collection(collection)
            doc = coll.get(doc_id)
            if doc is None:
                return False
            if expect and not self._matches(doc, None, expect):
                return False
            changed = dict(doc)
            for k, v in changes.items():
                if k == "_id":
                    continue
                changed[k] = copy.deepcopy(v)
            coll[doc_id] = changed
            self._commit(coll, {doc_id: doc})
            return True

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            coll = self._collection(collection)
            removed = coll.pop(doc_id, None)
            if removed is None:
                return False
            self._commit(coll, {doc_id: removed})
            return True

    def delete_where(
        self, collection: str, predicate: Predicate | None = None, **fields: Any
    ) -> int:
        with self._lock:
            coll = self._collection(collection)
            doomed = [
                doc_id
                for doc_id, doc in coll.items()
                if self._matches(doc, predicate, fields)
            ]
            removed = {doc_id: coll.pop(doc_id) for doc_id in doomed}
            if removed:
                self._commit(coll, removed)
            return len(doomed)

    def find_one(
        self, collection: str, predicate: Predicate | None = None, **fields: Any
    ) -> Document | None:
        with self._lock:
            for doc in self._collection(collection).values():
                if self._matches(doc, predicate, fields):
                    return copy.deepcopy(doc)
        return None

    def find_all(
        self, collection: str, predicate: Predicate | None = None, **fields: Any
    ) -> list[Document]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collection(collection).values()
                if self._matches(doc, predicate, fields)
            ]

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collection(collection))

    def _commit(self, coll: dict[str, Document], before: dict[str, Document | None]) -> None:
        """Persist, or put the touched documents back as they were and re-raise."""
        try:
            self._persist()
        except Exception:
            for doc_id, doc in before.items():
                if doc is None:
                    coll.pop(doc_id, None)
                else:
                    coll[doc_id] = doc
            raise

    def _load(self) -> None:
        from tomlkit import parse

        assert self.path is not None
        with open(self.path, encoding="utf-8") as f:
            doc = parse(f.read()).unwrap()

        loaded = 0
        for name in self._data:
            table = doc.get(name)
            if table is None:
                continue
            if not isinstance(table, dict):
                raise ValueError(f"store {self.path}: [{name}] must be a table")
            for doc_id, fields in table.items():
                if not isinstance(fields, dict):
                    continue
                try:
                    key = parse_id(str(doc_id))
                except ValueError:
                    self.log.warning("Skipping document with bad id %r in %s", doc_id, name)
                    continue
                self._data[name][key] = {**fields, "_id": key}
                loaded += 1

        self.log.info("Loaded %s document(s) from %s", loaded, self.path)

    def _persist(self) -> None:
        if not self.path:
            return

        from tomlkit import comment, document, dumps, table

        doc = document()
        doc.add(comment("rrcbridge store (TOML)"))
        doc.add(comment("This file is maintained by rrcbridge; keep it valid TOML if you edit it."))
        for name, coll in self._data.items():
            tbl = table()
            for doc_id in sorted(coll):
                row = table()
                for k, v in coll[doc_id].items():
                    if k == "_id" or v is None:
                        continue
                    row[k] = v
                tbl[doc_id] = row
            doc[name] = tbl

        text = dumps(doc)

        file_stat = None
        try:
            file_stat = os.stat(self.path)
        except OSError:
            file_stat = None

        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        try:
            os.chmod(tmp_path, file_stat.st_mode if file_stat is not None else 0o600)
        except OSError:
            pass
        os.replace(tmp_path, self.path)
