"""
Deployment ledger backed by a JSON document.

Layout:

    {
      "version": 1,
      "updated_at": "...",
      "networks": {
        "<network>": {
          "modules":  {"bondModule": {...}},
          "accounts": {"<account address>": {...DeploymentRecord...}}
        }
      }
    }

Every write re-reads the file, merges, and replaces it atomically, so
writers for different accounts never lose each other's entries. The ledger
is a local record of outcomes; chain state is authoritative.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from bondflow.protocol.models import DeploymentRecord
from bondflow.protocol.validators import checksum
from bondflow.utils.timestamps import now_iso

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge `update` into a copy of `base`.

    Nested dicts merge key by key; None in `update` never overwrites an
    existing value; anything else is last-writer-wins.
    """
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if value is None and key in merged:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class DeploymentLedger:
    """
    Keyed record store for deployment outcomes.

    Thread-safe within a process; across processes it relies on
    read-merge-write plus atomic rename, which is enough while writers
    target distinct accounts.
    """

    def __init__(self, path: str, network: str = "baseSepolia") -> None:
        self._path = Path(path)
        self._network = network
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def network(self) -> str:
        return self._network

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {"version": LEDGER_VERSION, "networks": {}}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            # Refuse to overwrite a ledger we cannot parse
            raise IOError(f"Ledger {self._path} is unreadable: {e}") from e
        data.setdefault("networks", {})
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        """Persist atomically (temp file, fsync, rename)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data["version"] = LEDGER_VERSION
        data["updated_at"] = now_iso()
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(self._path))

    def _section(self, data: Dict[str, Any], name: str) -> Dict[str, Any]:
        network = data["networks"].setdefault(self._network, {})
        return network.setdefault(name, {})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def upsert(self, record: DeploymentRecord) -> DeploymentRecord:
        """Merge `record` into the stored entry for its account. Returns the stored result."""
        key = checksum(record.account)
        with self._lock:
            data = self._load()
            accounts = self._section(data, "accounts")
            merged = deep_merge(accounts.get(key, {}), record.to_dict())
            merged["account"] = key
            accounts[key] = merged
            self._save(data)
        logger.info("Ledger %s: recorded %s (%s)", self._path, key, merged.get("status"))
        return DeploymentRecord.from_dict(merged)

    def get(self, account: str) -> Optional[DeploymentRecord]:
        key = checksum(account)
        with self._lock:
            data = self._load()
        entry = data["networks"].get(self._network, {}).get("accounts", {}).get(key)
        return DeploymentRecord.from_dict(entry) if entry else None

    def list_all(self) -> List[DeploymentRecord]:
        """All records for this network, ordered by timestamp."""
        with self._lock:
            data = self._load()
        entries = data["networks"].get(self._network, {}).get("accounts", {}).values()
        records = [DeploymentRecord.from_dict(e) for e in entries]
        records.sort(key=lambda r: r.timestamp or "")
        return records

    def record_module(self, name: str, info: Dict[str, Any]) -> None:
        """Merge deployment metadata for a module (addresses, features, vaults)."""
        with self._lock:
            data = self._load()
            modules = self._section(data, "modules")
            modules[name] = deep_merge(modules.get(name, {}), info)
            self._save(data)

    def module(self, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._load()
        return data["networks"].get(self._network, {}).get("modules", {}).get(name)
