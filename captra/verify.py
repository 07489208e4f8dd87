# captra/verify.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .keys import SIGNATURE_LENGTH
from .manifest import CapabilityManifest, manifest_fingerprint
from .trace import SignatureDecodeError, SignedTrace, TraceSerializeError

PublicKeyLike = Union[Ed25519PublicKey, Ed25519PrivateKey, bytes]


def _as_public_key(key: PublicKeyLike) -> Ed25519PublicKey:
    if isinstance(key, Ed25519PrivateKey):
        return key.public_key()
    if isinstance(key, (bytes, bytearray)):
        return Ed25519PublicKey.from_public_bytes(bytes(key))
    return key


def verify_signature(signed: SignedTrace, public_key: PublicKeyLike) -> bool:
    """
    True iff `signed.signature` is a valid signature over sha256(trace_json).

    Raises SignatureDecodeError if the signature is not base64 at all.
    """
    sig = signed.signature_bytes()
    if len(sig) != SIGNATURE_LENGTH:
        return False
    try:
        _as_public_key(public_key).verify(sig, signed.digest())
    except InvalidSignature:
        return False
    return True


def _check_sequence(signed: SignedTrace) -> Tuple[Optional[bool], Optional[str], int]:
    try:
        events = signed.events()
    except TraceSerializeError as e:
        return False, str(e), 0
    for expected_seq, ev in enumerate(events, start=1):
        if ev.run_id != signed.run_id:
            return False, f"event seq={ev.seq} carries run_id {ev.run_id!r}", len(events)
        if ev.seq != expected_seq:
            return False, f"expected seq={expected_seq}, found seq={ev.seq}", len(events)
    return True, None, len(events)


def verify_signed_trace(
    signed: SignedTrace,
    public_key: PublicKeyLike,
    manifest: Optional[CapabilityManifest] = None,
) -> Tuple[bool, Dict[str, Any]]:
    """
    Core verification logic. Returns (ok, summary_dict).

    Order: signature, then policy fingerprint (only when a trusted manifest
    is supplied), then the embedded event sequence.
    """
    summary: Dict[str, Any] = {
        "run_id": signed.run_id,
        "events": None,
        "error": None,
        "error_kind": None,  # "env" for undecodable input; None => verification failure
        "signature": {
            "ok": False,
            "error": None,
        },
        "manifest": {
            "checked": manifest is not None,
            "ok": None,
            "expected": None,
            "actual": signed.manifest_hash,
            "error": None,
        },
        "sequence": {
            "ok": None,
            "error": None,
        },
    }

    # 1) Signature over the trace digest
    try:
        key = _as_public_key(public_key)
    except ValueError as e:
        summary["signature"]["error"] = f"public key is not a raw Ed25519 key: {e}"
        summary["error"] = summary["signature"]["error"]
        summary["error_kind"] = "env"
        return False, summary

    try:
        sig_ok = verify_signature(signed, key)
    except SignatureDecodeError as e:
        summary["signature"]["error"] = str(e)
        summary["error"] = str(e)
        summary["error_kind"] = "env"
        return False, summary

    summary["signature"]["ok"] = sig_ok
    if not sig_ok:
        summary["signature"]["error"] = "trace signature verification failed"
        summary["error"] = summary["signature"]["error"]
        return False, summary

    # 2) Policy substitution check
    if manifest is not None:
        expected = manifest_fingerprint(manifest)
        summary["manifest"]["expected"] = expected
        summary["manifest"]["ok"] = expected == signed.manifest_hash
        if not summary["manifest"]["ok"]:
            summary["manifest"]["error"] = "manifest_hash does not match the trusted policy"
            summary["error"] = summary["manifest"]["error"]
            return False, summary

    # 3) Events belong to this run and are sequenced 1..N
    seq_ok, seq_err, count = _check_sequence(signed)
    summary["events"] = count
    summary["sequence"]["ok"] = seq_ok
    summary["sequence"]["error"] = seq_err
    if not seq_ok:
        summary["error"] = seq_err
        return False, summary

    return True, summary


__all__ = [
    "verify_signature",
    "verify_signed_trace",
]
