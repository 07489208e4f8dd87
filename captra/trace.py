# captra/trace.py
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from enum import Enum
from pathlib import Path
from typing import List, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CAP_CALL = "cap.call"
    CAP_ERROR = "cap.error"

    def __str__(self) -> str:
        return self.value


class CapEventSubtype(str, Enum):
    INVALID_PATH = "invalid_path"
    NO_FS_CAPABILITY = "no_fs_capability"
    NO_READ_PATTERNS = "no_read_patterns"
    GLOB_MISMATCH = "glob_mismatch"
    INVALID_GLOB = "invalid_glob"

    def __str__(self) -> str:
        return self.value

    @property
    def event_type(self) -> EventType:
        # A mismatch is a completed check; every other reason means the check
        # could not be evaluated.
        if self is CapEventSubtype.GLOB_MISMATCH:
            return EventType.CAP_CALL
        return EventType.CAP_ERROR

    def describe(self, detail: str) -> str:
        return f"{self.value}: {detail}"


# ---------------------------
# Errors
# ---------------------------

class TraceError(Exception):
    pass


class TraceSerializeError(TraceError):
    pass


class TraceIOError(TraceError):
    def __init__(self, path: Union[str, Path], cause: OSError) -> None:
        super().__init__(f"trace I/O failed for {str(path)!r}: {cause}")
        self.path = str(path)
        self.cause = cause


class SignatureDecodeError(TraceError):
    pass


# ---------------------------
# Models
# ---------------------------

class TraceEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    run_id: str
    seq: int = Field(..., ge=1)
    event_type: EventType
    input: str
    outcome: bool
    ts_seed: int = Field(..., ge=0, lt=1 << 64)


class SignedTrace(BaseModel):
    """
    Exported, tamper-evident trace.

    `signature` is standard base64 of an Ed25519 signature over
    sha256(trace_json.encode("utf-8")).
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    manifest_hash: str = Field(..., description="sha256 hex of the canonical manifest")
    trace_json: str
    signature: str

    @classmethod
    def from_signature(
        cls,
        run_id: str,
        manifest_hash: str,
        trace_json: str,
        signature: bytes,
    ) -> "SignedTrace":
        return cls(
            run_id=run_id,
            manifest_hash=manifest_hash,
            trace_json=trace_json,
            signature=base64.b64encode(signature).decode("ascii"),
        )

    def signature_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.signature.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise SignatureDecodeError(f"signature is not valid base64: {e}") from e

    def digest(self) -> bytes:
        return trace_digest(self.trace_json)

    def events(self) -> List[TraceEvent]:
        return parse_trace(self.trace_json)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), indent=2, sort_keys=True)


# ---------------------------
# Materialization
# ---------------------------

def serialize_trace(trace: Sequence[TraceEvent]) -> str:
    """Pretty JSON array (2-space indent, field order as declared)."""
    try:
        return json.dumps([ev.model_dump(mode="json") for ev in trace], indent=2)
    except (TypeError, ValueError) as e:
        raise TraceSerializeError(f"trace serialization failed: {e}") from e


def finalize_trace(trace: Sequence[TraceEvent]) -> str:
    """Best-effort variant of serialize_trace(): "[]" instead of an exception."""
    try:
        return serialize_trace(trace)
    except TraceSerializeError:
        logger.exception("trace serialization failed; returning empty trace")
        return "[]"


def parse_trace(raw: Union[str, bytes]) -> List[TraceEvent]:
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TraceSerializeError(f"trace is not valid JSON: {e}") from e
    if not isinstance(obj, list):
        raise TraceSerializeError("trace must be a JSON array")
    try:
        return [TraceEvent.model_validate(item) for item in obj]
    except ValidationError as e:
        raise TraceSerializeError(f"invalid trace event: {e}") from e


def trace_digest(trace_json: str) -> bytes:
    return hashlib.sha256(trace_json.encode("utf-8")).digest()


# ---------------------------
# Persistence
# ---------------------------

def _write_text_atomic(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise TraceIOError(path, e) from e


def save_trace(trace: Sequence[TraceEvent], path: Union[str, Path]) -> None:
    _write_text_atomic(Path(path), serialize_trace(trace))


def load_trace(path: Union[str, Path]) -> List[TraceEvent]:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise TraceIOError(path, e) from e
    except UnicodeDecodeError as e:
        raise TraceSerializeError(f"trace file is not UTF-8: {e}") from e
    return parse_trace(raw)


def save_signed_trace(signed: SignedTrace, path: Union[str, Path]) -> None:
    _write_text_atomic(Path(path), signed.to_json())


def load_signed_trace(path: Union[str, Path]) -> SignedTrace:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise TraceIOError(path, e) from e
    except UnicodeDecodeError as e:
        raise TraceSerializeError(f"signed trace is not UTF-8: {e}") from e
    try:
        return SignedTrace.model_validate_json(raw)
    except ValidationError as e:
        raise TraceSerializeError(f"invalid signed trace: {e}") from e


# ---------------------------
# Logging
# ---------------------------

def log_trace_event(event: TraceEvent, plugin: str) -> None:
    """Mirror a recorded event into the log stream with the same fields."""
    level = logging.INFO if event.outcome else logging.WARNING
    logger.log(
        level,
        "event=%s seq=%d ts_seed=%d outcome=%s input=%r plugin=%s run_id=%s",
        event.event_type.value,
        event.seq,
        event.ts_seed,
        str(event.outcome).lower(),
        event.input,
        plugin,
        event.run_id,
        extra={"trace_event": event.model_dump(mode="json"), "plugin": plugin},
    )


__all__ = [
    "CapEventSubtype",
    "EventType",
    "SignatureDecodeError",
    "SignedTrace",
    "TraceError",
    "TraceEvent",
    "TraceIOError",
    "TraceSerializeError",
    "finalize_trace",
    "load_signed_trace",
    "load_trace",
    "log_trace_event",
    "parse_trace",
    "save_signed_trace",
    "save_trace",
    "serialize_trace",
    "trace_digest",
]
