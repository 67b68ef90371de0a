"""
Boundary to the document provenance ledger.

The ledger is reached through its command line client (``LEDGER_CLI_COMMAND``), which
prints the documents registered for a person as a JSON array::

    <command> list-docs <idType> <idNumber>
"""
import json
import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any

from ..core.settings import settings

log = logging.getLogger(__name__)


class LedgerError(Exception):
    pass


@dataclass(frozen=True)
class LedgerRecord:
    doc_id: str
    title: str
    issuing_entity: str
    created_at: str
    size_bytes: int | None
    file_path: str

    @classmethod
    def from_json(cls, item: dict[str, Any]) -> "LedgerRecord":
        return cls(
            doc_id=_as_str(item.get("docId")),
            title=_as_str(item.get("title")),
            issuing_entity=_as_str(item.get("issuingEntity")),
            created_at=_as_str(item.get("createdAt")),
            size_bytes=_as_int(item.get("sizeBytes")),
            file_path=_as_str(item.get("filePath")),
        )


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _extract_json_array(stdout: str) -> list:
    # The client may print progress lines around the payload
    start = stdout.find("[")
    end = stdout.rfind("]")
    if start < 0 or end <= start:
        return []
    try:
        payload = json.loads(stdout[start:end + 1])
    except ValueError as exc:
        raise LedgerError("Ledger client printed malformed JSON") from exc
    return payload if isinstance(payload, list) else []


class LedgerGateway:
    def __init__(self, command: str | None = None, timeout_seconds: float | None = None,
                 network_name: str | None = None):
        self.command = settings.LEDGER_CLI_COMMAND if command is None else command
        self.timeout_seconds = timeout_seconds or settings.LEDGER_TIMEOUT_SECONDS
        self.network_name = network_name or settings.LEDGER_NETWORK_NAME

    def list_documents(self, id_type: str, id_number: str) -> list[LedgerRecord]:
        if not self.command.strip():
            raise LedgerError("LEDGER_CLI_COMMAND is not configured")

        argv = shlex.split(self.command) + ["list-docs", id_type, id_number]
        try:
            completed = subprocess.run(
                argv, capture_output=True, text=True, timeout=self.timeout_seconds, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise LedgerError(f"Ledger client could not run: {exc}") from exc

        if completed.returncode != 0:
            first_line = (completed.stderr or "").strip().splitlines()[:1]
            raise LedgerError(f"Ledger client failed (exit={completed.returncode}): {''.join(first_line)}")

        return [LedgerRecord.from_json(item) for item in _extract_json_array(completed.stdout)
                if isinstance(item, dict)]

    def find_document(self, id_type: str, id_number: str, file_path: str | None,
                      title: str | None) -> LedgerRecord | None:
        """Matches by stored path suffix first, then by case-insensitive title."""
        records = self.list_documents(id_type, id_number)

        wanted_path = (file_path or "").replace("\\", "/").strip("/")
        if wanted_path:
            for record in records:
                path = record.file_path.replace("\\", "/")
                if path and (path.endswith("/" + wanted_path) or path == wanted_path):
                    return record

        wanted_title = (title or "").strip().casefold()
        if wanted_title:
            for record in records:
                if record.title.strip().casefold() == wanted_title:
                    return record
        return None
