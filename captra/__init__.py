from .bridge import HostStatus, SandboxBridge
from .determinism import run_id_for_seed, ts_seed
from .globs import GlobError, GlobPattern, compile_glob
from .host import (
    CapError,
    GlobMismatch,
    HostState,
    InvalidPath,
    NoFsCapability,
    NoReadPatterns,
)
from .logs import init_logging
from .manifest import (
    Capabilities,
    CapabilityManifest,
    FsCapability,
    InvalidGlob,
    InvalidIssuer,
    InvalidPlugin,
    InvalidVersion,
    ManifestError,
    ManifestIOError,
    ManifestParseError,
    ManifestValidationError,
    load_manifest,
    manifest_fingerprint,
    parse_manifest,
    validate_manifest,
)
from .trace import (
    CapEventSubtype,
    EventType,
    SignatureDecodeError,
    SignedTrace,
    TraceError,
    TraceEvent,
    TraceIOError,
    TraceSerializeError,
    load_signed_trace,
    load_trace,
    save_signed_trace,
)
from .verify import verify_signature, verify_signed_trace

__version__ = "0.1.0"
