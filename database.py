"""
Snapshot store: the whole database is one JSON document.

Readers call load_snapshot() without locking; every read-modify-write must
go through transaction(), which holds the store lock from load to commit.
"""

import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog
from pydantic import ValidationError as SchemaError

from errors import PersistenceFailure
from schemas import Snapshot

logger = structlog.get_logger(__name__)


def generate_id() -> str:
    return uuid.uuid4().hex


class JsonStore:
    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_snapshot(self) -> Snapshot:
        """Read the full document. A missing file is an empty store."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Snapshot()
        except OSError as exc:
            logger.error("Error reading database", path=str(self.path), error=str(exc))
            raise PersistenceFailure(f"Could not read database at {self.path}")
        try:
            return Snapshot.model_validate_json(raw)
        except SchemaError as exc:
            logger.error("Database document is corrupt", path=str(self.path), errors=exc.error_count())
            raise PersistenceFailure(f"Database at {self.path} is not a valid snapshot document")

    def commit_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the persisted state with snapshot. Not a merge."""
        payload = snapshot.model_dump_json(indent=2)
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            logger.error("Error writing database", path=str(self.path), error=str(exc))
            raise PersistenceFailure(f"Could not write database at {self.path}; changes were not saved")
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.debug(
            "Snapshot committed",
            products=len(snapshot.products),
            users=len(snapshot.users),
            orders=len(snapshot.orders),
        )

    @contextmanager
    def transaction(self) -> Iterator[Snapshot]:
        """Hold the store lock across load, mutate and commit.

        The snapshot is committed only if the block exits normally; any
        exception leaves the persisted state untouched.
        """
        with self._lock:
            snapshot = self.load_snapshot()
            yield snapshot
            self.commit_snapshot(snapshot)
