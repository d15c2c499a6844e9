from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from cartmerge.config import Settings
from cartmerge.services.repo.json_repo import _locked  # reuse existing cross-platform lock

logger = logging.getLogger(__name__)


class MetricsLogger:
    """Append-only JSONL logger for latency metrics under data/.

    Writes one JSON object per line with fields:
      - ts: ISO timestamp (UTC)
      - kind: "latency"
      - name: operation name (e.g., "merge", "auto_merge", "rename")
      - duration_ms: float
      - order: order id, when known
      - extra: optional dict with contextual fields
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self.path = os.path.join(self.settings.data_dir, self.settings.metrics_file)

    def log_latency(
        self,
        name: str,
        duration_ms: float,
        order_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "kind": "latency",
            "name": name,
            "duration_ms": float(duration_ms),
        }
        if order_id:
            entry["order"] = order_id
        if extra:
            entry["extra"] = extra
        line = (json.dumps(entry, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")
        try:
            with _locked(self.path) as f:
                f.seek(0, os.SEEK_END)
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except Exception as e:
            # Metrics should never impact user flows.
            logger.warning("metrics write to %s failed: %s", self.path, e)

    @contextmanager
    def timed(self, name: str, order_id: Optional[str] = None, **extra: Any) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.log_latency(name, (time.perf_counter() - t0) * 1000.0, order_id=order_id, extra=extra or None)
