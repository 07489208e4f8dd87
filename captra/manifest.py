# captra/manifest.py
from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .globs import GlobError, compile_glob


# ---------------------------
# Errors
# ---------------------------

class ManifestError(Exception):
    """Base class for everything that can go wrong loading a policy."""


class ManifestIOError(ManifestError):
    def __init__(self, path: Union[str, Path], cause: OSError) -> None:
        super().__init__(f"cannot read manifest {str(path)!r}: {cause}")
        self.path = str(path)
        self.cause = cause


class ManifestParseError(ManifestError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"manifest is not a valid policy document: {detail}")
        self.detail = detail


class ManifestValidationError(ManifestError):
    pass


class InvalidPlugin(ManifestValidationError):
    def __init__(self) -> None:
        super().__init__("manifest 'plugin' must be a non-empty string")


class InvalidVersion(ManifestValidationError):
    def __init__(self) -> None:
        super().__init__("manifest 'version' must be a non-empty string")


class InvalidIssuer(ManifestValidationError):
    def __init__(self) -> None:
        super().__init__("manifest 'issued_by' must be a non-empty string")


class InvalidGlob(ManifestValidationError):
    def __init__(self, index: int, pattern: str, detail: str) -> None:
        super().__init__(f"fs.read[{index}] = {pattern!r} is not a valid glob: {detail}")
        self.index = index
        self.pattern = pattern
        self.detail = detail


# ---------------------------
# Models
# ---------------------------

class FsCapability(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    read: Optional[List[str]] = Field(
        None,
        description="Glob patterns; a path is readable if it matches any of them, e.g. './workspace/*'",
    )
    write: Optional[List[str]] = Field(
        None,
        description="Reserved. Parsed and carried, never enforced",
    )


class Capabilities(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fs: Optional[FsCapability] = Field(
        None,
        description="Filesystem grant; absent or null means no filesystem access",
    )
    # Reserved capability kinds. No enforcement is attached to them.
    net: Optional[Dict[str, Any]] = None
    cpu: Optional[Dict[str, Any]] = None


class CapabilityManifest(BaseModel):
    """
    Policy document for one plugin.

        CapabilityManifest(
            plugin="formatter-v1",
            version="0.1",
            capabilities=Capabilities(fs=FsCapability(read=["./workspace/*"])),
            issued_by="dev-team",
        )

    Parsing does not validate; run validate_manifest() (or use load_manifest)
    before handing it to an engine.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    plugin: str = Field(..., description="Identifier of the governed plugin")
    version: str = Field(..., description="Opaque policy version string, e.g. '0.1'")
    capabilities: Capabilities = Field(default_factory=Capabilities)
    issued_by: str = Field(..., description="Issuing authority, e.g. 'dev-team'")

    @property
    def read_patterns(self) -> Optional[List[str]]:
        fs = self.capabilities.fs
        return None if fs is None else fs.read

    def canonical_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)

    def canonical_bytes(self) -> bytes:
        """
        JCS-style canonical bytes: sorted keys, tight separators, UTF-8.

        Null/absent optional fields are dropped so `"fs": null` and a missing
        `fs` key fingerprint identically.
        """
        return json.dumps(
            self.canonical_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")


def manifest_fingerprint(manifest: CapabilityManifest) -> str:
    return hashlib.sha256(manifest.canonical_bytes()).hexdigest()


# ---------------------------
# Validation + loading
# ---------------------------

def validate_manifest(manifest: CapabilityManifest) -> None:
    """Raise the first ManifestValidationError that applies, else return None."""
    if not manifest.plugin.strip():
        raise InvalidPlugin()
    if not manifest.version.strip():
        raise InvalidVersion()
    if not manifest.issued_by.strip():
        raise InvalidIssuer()

    for index, pattern in enumerate(manifest.read_patterns or []):
        try:
            compile_glob(pattern)
        except GlobError as e:
            raise InvalidGlob(index, pattern, e.detail) from e


def parse_manifest(raw: Union[str, bytes]) -> CapabilityManifest:
    try:
        return CapabilityManifest.model_validate_json(raw)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        parts = []
        for err in errors:
            loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            parts.append(f"{loc}: {err.get('msg')}")
        raise ManifestParseError("; ".join(parts)) from e


def load_manifest(path: Union[str, Path]) -> CapabilityManifest:
    """read → deserialize → validate; each stage fails with its own error type."""
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise ManifestIOError(path, e) from e

    manifest = parse_manifest(raw)
    validate_manifest(manifest)
    return manifest


__all__ = [
    "Capabilities",
    "CapabilityManifest",
    "FsCapability",
    "InvalidGlob",
    "InvalidIssuer",
    "InvalidPlugin",
    "InvalidVersion",
    "ManifestError",
    "ManifestIOError",
    "ManifestParseError",
    "ManifestValidationError",
    "load_manifest",
    "manifest_fingerprint",
    "parse_manifest",
    "validate_manifest",
]
