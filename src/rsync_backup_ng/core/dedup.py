"""Deduplication against previous backup sessions.

A finished session stores the signature of every module in its snapshot
folder. Later sessions look for snapshots containing the same source and
hand their folders to rsync as ``--link-dest``, so unchanged files become
hardlinks instead of copies.
"""

import base64
import hashlib
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .paths import get_relative_paths, normalize_rsync_url

logger = logging.getLogger(__name__)

SIGNATURE_FILE_NAME = "~backup_nodes~.signatures"
BACKUP_FOLDER_PREFIX = "~rsync_backup_"
INCOMPLETE_MARKER = "(incomplete)_"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# rsync refuses more --link-dest options than this in a single call.
MAX_LINK_DEST = 20


def get_backup_folder_name(incomplete: bool, when: datetime) -> str:
    """Snapshot folder name, e.g. ``~rsync_backup_20240101-120000~``."""
    marker = INCOMPLETE_MARKER if incomplete else ""
    return f"{BACKUP_FOLDER_PREFIX}{marker}{when.strftime(TIMESTAMP_FORMAT)}~"


def is_incomplete_backup_folder(name: str) -> bool:
    return name.startswith(BACKUP_FOLDER_PREFIX + INCOMPLETE_MARKER)


def generate_source_id(source: str) -> str:
    """Identity of an rsync source which survives cosmetic URL changes."""
    digest = hashlib.sha256(normalize_rsync_url(source).encode()).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class NodeSignature:
    source_id: str
    dest_subpath: str

    @classmethod
    def for_module(cls, module) -> "NodeSignature":
        return cls(generate_source_id(module.src_rsync), module.dest_subpath)


def get_node_signatures(modules: Iterable) -> list[NodeSignature]:
    return [NodeSignature.for_module(m) for m in modules]


def encode_signatures(signatures: list[NodeSignature]) -> str:
    return "".join(json.dumps(asdict(s), sort_keys=True) + "\n" for s in signatures)


def decode_signatures(text: str) -> list[NodeSignature]:
    """Parse a signatures file.

    Raises:
        ValueError: If a line is not a valid signature
    """
    signatures = []
    for line in text.splitlines():
        if not line.strip():
            continue
        data = json.loads(line)
        try:
            signatures.append(NodeSignature(data["source_id"], data["dest_subpath"]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed signature line: {line!r}") from e
    return signatures


def create_signature_file(modules: Iterable, backup_path: str) -> Path:
    os.makedirs(backup_path, exist_ok=True)
    path = Path(backup_path) / SIGNATURE_FILE_NAME
    path.write_text(encode_signatures(get_node_signatures(modules)))
    return path


@dataclass(frozen=True)
class PrevBackup:
    """A module found in an earlier snapshot.

    Attributes:
        signature_file: Full path of the snapshot's signatures file
        signature: The matching module signature
        mtime: Modification time of the signatures file
    """

    signature_file: str
    signature: NodeSignature
    mtime: float = 0.0

    @property
    def dir_path(self) -> str:
        """Folder holding the module's data in that snapshot."""
        return os.path.join(
            os.path.dirname(self.signature_file), self.signature.dest_subpath
        )


@dataclass
class PreviousBackups:
    backups: list[PrevBackup] = field(default_factory=list)

    def get_dir_paths(self) -> list[str]:
        return [b.dir_path for b in self.backups]

    def filter_by_source_id(self, source_id: str) -> "PreviousBackups":
        return PreviousBackups(
            [b for b in self.backups if b.signature.source_id == source_id]
        )

    def get_relative_paths(self, root: str) -> list[str]:
        return get_relative_paths(root, self.get_dir_paths())

    def __len__(self) -> int:
        return len(self.backups)


def find_previous_backups(
    log: Optional[logging.Logger],
    dest_root: str,
    signatures: list[NodeSignature],
    last_n: int,
) -> PreviousBackups:
    """Find snapshots under ``dest_root`` which contain the same sources.

    For every source at most ``min(last_n, 20)`` snapshots are kept, the
    most recent first.
    """
    log = log or logger
    wanted = {s.source_id for s in signatures}
    candidates: dict[str, list[PrevBackup]] = {}

    with os.scandir(dest_root) as it:
        items = sorted(it, key=lambda e: e.name)
    for item in items:
        if not item.is_dir():
            continue
        sig_path = os.path.join(item.path, SIGNATURE_FILE_NAME)
        try:
            mtime = os.stat(sig_path).st_mtime
            text = Path(sig_path).read_text()
        except FileNotFoundError:
            continue
        except PermissionError:
            log.warning("Permission denied reading previous backup %s", item.name)
            continue
        except OSError as e:
            log.warning("Cannot read previous backup %s: %s", item.name, e)
            continue
        try:
            found = decode_signatures(text)
        except ValueError as e:
            log.warning("Ignoring corrupted signatures in %s: %s", item.name, e)
            continue
        for sig in found:
            if sig.source_id in wanted:
                candidates.setdefault(sig.source_id, []).append(
                    PrevBackup(sig_path, sig, mtime)
                )

    limit = min(last_n, MAX_LINK_DEST)
    backups = []
    for source_id in sorted(candidates):
        newest = sorted(candidates[source_id], key=lambda b: b.mtime, reverse=True)
        backups.extend(newest[: max(0, limit)])
    return PreviousBackups(backups)
