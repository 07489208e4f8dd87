# captra/host.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .determinism import run_id_for_seed, ts_seed
from .globs import GlobError, compile_glob
from .keys import encode_public_key, public_key_bytes
from .manifest import CapabilityManifest, manifest_fingerprint, validate_manifest
from .trace import (
    CapEventSubtype,
    EventType,
    SignedTrace,
    TraceEvent,
    finalize_trace,
    log_trace_event,
    save_trace,
    serialize_trace,
    trace_digest,
)

logger = logging.getLogger(__name__)

PathInput = Union[str, bytes, "os.PathLike[str]", "os.PathLike[bytes]"]


class CapError(Exception):
    """A single enforcement decision that did not grant access."""

    reason: CapEventSubtype

    def __init__(self, detail: str = "") -> None:
        super().__init__(self.reason.describe(detail) if detail else self.reason.value)
        self.detail = detail

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapError):
            return NotImplemented
        return self.reason is other.reason

    def __hash__(self) -> int:
        return hash(self.reason)


class InvalidPath(CapError):
    reason = CapEventSubtype.INVALID_PATH


class NoFsCapability(CapError):
    reason = CapEventSubtype.NO_FS_CAPABILITY


class NoReadPatterns(CapError):
    reason = CapEventSubtype.NO_READ_PATTERNS


class GlobMismatch(CapError):
    reason = CapEventSubtype.GLOB_MISMATCH


def _path_text(path: object) -> Optional[str]:
    """Return the path as UTF-8-representable text, or None if it is not one."""
    try:
        raw = os.fspath(path)  # type: ignore[arg-type]
    except TypeError:
        return None
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    else:
        text = raw
        try:
            text.encode("utf-8")
        except UnicodeEncodeError:
            # lone surrogates, e.g. from os.fsdecode(surrogateescape)
            return None
    return text or None


class HostState:
    """
    Enforcement engine for one plugin run.

    Owns the validated manifest, the seed, the signing key and the trace.
    Single owner: share across threads only behind external locking.
    """

    def __init__(self, manifest: CapabilityManifest, seed: int, keypair: Ed25519PrivateKey) -> None:
        validate_manifest(manifest)
        self._manifest = manifest.model_copy(deep=True)
        self._seed = seed
        self._run_id = run_id_for_seed(seed)
        self._keypair = keypair
        self._public_key = public_key_bytes(keypair)
        self._manifest_hash = manifest_fingerprint(self._manifest)
        self._trace: List[TraceEvent] = []

    def __repr__(self) -> str:
        return (
            f"HostState(plugin={self.plugin!r}, run_id={self._run_id!r}, "
            f"manifest_hash={self._manifest_hash[:12]}…, events={len(self._trace)})"
        )

    # ---------------------------
    # Accessors
    # ---------------------------

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def manifest_hash(self) -> str:
        return self._manifest_hash

    @property
    def manifest(self) -> CapabilityManifest:
        return self._manifest.model_copy(deep=True)

    @property
    def plugin(self) -> str:
        return self._manifest.plugin

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def public_key_b64(self) -> str:
        return encode_public_key(self._keypair)

    @property
    def trace(self) -> List[TraceEvent]:
        return list(self._trace)

    # ---------------------------
    # Enforcement
    # ---------------------------

    def _record(self, event_type: EventType, input_: str, outcome: bool) -> TraceEvent:
        # The only place the trace grows.
        seq = len(self._trace) + 1
        event = TraceEvent(
            run_id=self._run_id,
            seq=seq,
            event_type=event_type,
            input=input_,
            outcome=outcome,
            ts_seed=ts_seed(self._seed, seq),
        )
        self._trace.append(event)
        log_trace_event(event, self.plugin)
        return event

    def _fail(self, error: CapError) -> CapError:
        self._record(error.reason.event_type, error.reason.describe(error.detail), False)
        return error

    def execute_plugin(self, path: PathInput) -> bool:
        """
        Decide whether the plugin may read `path`.

        Returns True when access is granted; otherwise raises a CapError
        subclass. Every decision after the path check appends one event.
        """
        path_str = _path_text(path)
        if path_str is None:
            raise InvalidPath("path is empty or not valid UTF-8 text")
        if ".." in path_str.split("/"):
            raise InvalidPath(f"path {path_str!r} contains a '..' component")

        fs_cap = self._manifest.capabilities.fs
        if fs_cap is None:
            raise self._fail(NoFsCapability(f"plugin {self.plugin!r} declares no fs capability"))

        patterns = fs_cap.read
        if not patterns:
            raise self._fail(NoReadPatterns(f"plugin {self.plugin!r} declares no fs.read patterns"))

        for index, pattern in enumerate(patterns):
            try:
                compiled = compile_glob(pattern)
            except GlobError as e:
                # Skipped, not fatal: the remaining patterns still apply.
                self._record(
                    CapEventSubtype.INVALID_GLOB.event_type,
                    CapEventSubtype.INVALID_GLOB.describe(f"{pattern} (index {index}): {e.detail}"),
                    False,
                )
                continue
            if compiled.matches(path_str):
                self._record(EventType.CAP_CALL, path_str, True)
                return True

        raise self._fail(
            GlobMismatch(f"{path_str} matched none of {len(patterns)} read pattern(s)")
        )

    # ---------------------------
    # Trace export
    # ---------------------------

    def get_trace_json(self) -> str:
        return finalize_trace(self._trace)

    def save_current_trace(self, path: Union[str, Path]) -> None:
        save_trace(self._trace, path)

    def sign_current_trace(self) -> SignedTrace:
        trace_json = serialize_trace(self._trace)
        signature = self._keypair.sign(trace_digest(trace_json))
        logger.debug(
            "signed trace run_id=%s events=%d manifest_hash=%s",
            self._run_id,
            len(self._trace),
            self._manifest_hash,
        )
        return SignedTrace.from_signature(
            run_id=self._run_id,
            manifest_hash=self._manifest_hash,
            trace_json=trace_json,
            signature=signature,
        )


__all__ = [
    "CapError",
    "GlobMismatch",
    "HostState",
    "InvalidPath",
    "NoFsCapability",
    "NoReadPatterns",
]
