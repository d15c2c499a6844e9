from __future__ import annotations

import io
import json
import os
import re
import tempfile
from contextlib import contextmanager
from typing import Iterator, List

from cartmerge.config import Settings
from cartmerge.core.models import Cart, CartEvent
from cartmerge.services.exceptions import RepoError
from cartmerge.services.repo.base import CartStore, EventRepo

_ORDER_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


# Cross-platform file lock (fcntl for *nix; msvcrt for Windows)
@contextmanager
def _locked(path: str) -> Iterator[io.FileIO]:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    f = open(path, "a+b")  # create if missing
    try:
        try:
            import fcntl  # type: ignore
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            locker = "fcntl"
        except ImportError:
            import msvcrt  # type: ignore
            msvcrt.locking(f.fileno(), msvcrt.LK_LOCK, 1)
            locker = "msvcrt"
    except (ImportError, OSError) as e:
        f.close()
        raise RepoError(f"Could not lock file {path}: {e}") from e
    try:
        yield f
    finally:
        try:
            if locker == "fcntl":
                import fcntl  # type: ignore
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            else:
                import msvcrt  # type: ignore
                msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
        finally:
            f.close()


def _atomic_write(path: str, data: bytes) -> None:
    d = os.path.dirname(path) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=d)
    try:
        with os.fdopen(fd, "wb") as w:
            w.write(data)
            w.flush()
            os.fsync(w.fileno())
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise RepoError(f"Atomic write failed for {path}: {e}") from e


class JSONCartStore(CartStore):
    """One JSON document per order; each save replaces the whole cart collection."""

    def __init__(self, settings: Settings):
        self.root = settings.orders_dir

    def path_for(self, order_id: str) -> str:
        if not _ORDER_ID.match(order_id or ""):
            raise RepoError(f"Invalid order id: {order_id!r}")
        return os.path.join(self.root, f"{order_id}.json")

    def fetch_carts(self, order_id: str) -> List[Cart]:
        path = self.path_for(order_id)
        try:
            if not os.path.exists(path):
                return []
            with open(path, "rb") as f:
                raw = f.read() or b"{}"
            obj = json.loads(raw.decode("utf-8"))
            return [Cart.model_validate(c) for c in obj.get("carts", [])]
        except (OSError, ValueError) as e:
            raise RepoError(f"Failed to load carts from {path}: {e}") from e

    def persist_carts(self, order_id: str, carts: List[Cart]) -> None:
        path = self.path_for(order_id)
        payload = json.dumps(
            {"order_id": order_id, "carts": [c.model_dump(mode="json") for c in carts]},
            ensure_ascii=False, separators=(",", ":"),
        ).encode("utf-8")
        _atomic_write(path, payload)


class JSONEventRepo(EventRepo):
    """Append-only JSONL audit trail of cart mutations."""

    def __init__(self, settings: Settings):
        self.path = settings.events_file

    def append(self, event: CartEvent) -> None:
        try:
            line = (json.dumps(event.model_dump(mode="json"), ensure_ascii=False,
                               separators=(",", ":")) + "\n").encode("utf-8")
            with _locked(self.path) as f:
                f.seek(0, os.SEEK_END)
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise RepoError(f"Failed to append event to {self.path}: {e}") from e

    def read_all(self) -> List[CartEvent]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return [CartEvent.model_validate_json(line) for line in f if line.strip()]
        except (OSError, ValueError) as e:
            raise RepoError(f"Failed to read events from {self.path}: {e}") from e
