"""Breadcrumb state store.

A flat ``key=value`` text file recording which replication direction is
active and which failover has completed. Health checks read it; the
replication state machine writes it.

There is no locking: the playground is driven by a single operator, one
command at a time.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

REPLICATION_ATOB_ACTIVE = "ReplicationAtoBActive"
REPLICATION_BTOA_ACTIVE = "ReplicationBtoAActive"
FAILOVER_ATOB_DONE = "FailoverAtoBDone"
FAILOVER_BTOA_DONE = "FailoverBtoADone"
LOAD_MOVR_OK = "LoadMovrOk"
LOAD_MOVR_VB_OK = "LoadMovrVbOk"

_TRUTHY = ("1", "true", "yes", "on")


class BreadcrumbStore:
    """Key/value breadcrumbs persisted as ``key=value`` lines."""

    def __init__(self, path):
        self.path = Path(path)

    def _read_lines(self):
        if not self.path.exists():
            return []
        return self.path.read_text().splitlines()

    def _write_lines(self, lines):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=self.path.name + ".")
        try:
            with os.fdopen(fd, "w") as f:
                f.write("".join(f"{line}\n" for line in lines))
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> Optional[str]:
        for line in self._read_lines():
            k, sep, value = line.partition("=")
            if sep and k == key:
                return value
        return None

    def set(self, key: str, value) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, object]) -> None:
        """Apply several keys with a single rewrite of the file.

        Existing lines are replaced in place, new keys are appended in the
        order given.
        """
        if "=" in "".join(values) or "\n" in "".join(values):
            raise ValueError("breadcrumb keys may not contain '=' or newlines")
        pending = {k: str(v) for k, v in values.items()}
        lines = []
        for line in self._read_lines():
            k, sep, _ = line.partition("=")
            if sep and k in pending:
                # drop duplicates of a key already rewritten
                if pending[k] is None:
                    continue
                lines.append(f"{k}={pending[k]}")
                pending[k] = None
            else:
                lines.append(line)
        lines.extend(f"{k}={v}" for k, v in pending.items() if v is not None)
        self._write_lines(lines)
        logger.debug("breadcrumbs updated: %s", values)

    def delete(self, key: str) -> None:
        if not self.path.exists():
            return
        lines = [l for l in self._read_lines() if l.partition("=")[0] != key]
        self._write_lines(lines)

    def is_true(self, key: str) -> bool:
        value = self.get(key)
        return value is not None and value.strip().lower() in _TRUTHY

    def items(self) -> Dict[str, str]:
        result = {}
        for line in self._read_lines():
            k, sep, value = line.partition("=")
            if sep:
                result[k] = value
        return result
