#!/usr/bin/env python3
import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from captra.bridge import HostStatus, status_for
from captra.config import (
    DEFAULT_CONFIG_NAME,
    SEED_ENV,
    ConfigError,
    KeysConfig,
    LoggingConfig,
    RunConfig,
    TraceConfig,
    load_config,
    parse_seed,
)
from captra.host import CapError, HostState
from captra.keys import (
    KeyFileError,
    encode_public_key,
    generate_signing_key,
    load_public_key,
    load_signing_key,
    save_public_key,
    save_signing_key,
)
from captra.logs import init_logging
from captra.manifest import ManifestError, load_manifest
from captra.trace import TraceError, load_signed_trace, save_signed_trace
from captra.verify import verify_signed_trace

KEY_FILE = "captra_ed25519.pem"
PUB_FILE = "captra_ed25519.pub"
TRACE_FILE = "trace.json"
SIGNED_FILE = "signed_trace.json"


# ---------------------------
# captra run
# ---------------------------

def _display_path(path: str) -> str:
    # argv may carry surrogate escapes for non-UTF-8 bytes
    return path.encode("utf-8", "backslashreplace").decode("utf-8")


def _resolve_run_config(args: argparse.Namespace) -> RunConfig:
    """
    Flags > config file > $CAPTRA_SEED. A config file is optional when
    --manifest and a seed are both given on the command line.
    """
    cfg_path = Path(args.config) if args.config else Path(DEFAULT_CONFIG_NAME)
    base: Optional[RunConfig] = None
    if args.config or cfg_path.is_file():
        base = load_config(cfg_path)

    if args.seed is not None:
        seed = parse_seed(args.seed, source="--seed")
    elif base is not None:
        seed = base.seed
    elif os.environ.get(SEED_ENV, "").strip():
        seed = parse_seed(os.environ[SEED_ENV], source=SEED_ENV)
    else:
        raise ConfigError(f"no seed: pass --seed, set ${SEED_ENV}, or provide {DEFAULT_CONFIG_NAME}")

    if args.manifest:
        manifest = Path(args.manifest).expanduser()
    elif base is not None:
        manifest = base.manifest
    else:
        raise ConfigError(f"no manifest: pass --manifest or provide {DEFAULT_CONFIG_NAME}")

    key = Path(args.key).expanduser() if args.key else (base.keys.signing_key if base else None)
    out_dir = Path(args.out).expanduser() if args.out else (base.trace.out_dir if base else Path("_out"))
    level = args.log_level or (base.logging.level if base else "INFO")

    return RunConfig(
        seed=seed,
        manifest=manifest,
        keys=KeysConfig(signing_key=key),
        trace=TraceConfig(out_dir=out_dir),
        logging=LoggingConfig(level=level.upper()),
    )


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        cfg = _resolve_run_config(args)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    init_logging(cfg.logging.level)

    try:
        manifest = load_manifest(cfg.manifest)
    except ManifestError as e:
        print(f"❌ manifest rejected: {e}", file=sys.stderr)
        return 2

    try:
        keypair = load_signing_key(cfg.keys.signing_key) if cfg.keys.signing_key else generate_signing_key()
    except KeyFileError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    host = HostState(manifest, cfg.seed, keypair)

    for path in args.paths:
        try:
            host.execute_plugin(path)
            status = HostStatus.ALLOWED
        except CapError as e:
            status = status_for(e)
        print(f"{status.name} {_display_path(path)}")

    out_dir = cfg.trace.out_dir.resolve()
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        host.save_current_trace(out_dir / TRACE_FILE)
        signed = host.sign_current_trace()
        signed_path = out_dir / SIGNED_FILE
        save_signed_trace(signed, signed_path)
        if not cfg.keys.signing_key:
            # ephemeral key: publish the public half next to the export
            save_public_key(keypair, out_dir / PUB_FILE)
    except (TraceError, KeyFileError, OSError) as e:
        print(f"❌ writing trace failed: {e}", file=sys.stderr)
        return 2

    print(f"run_id={host.run_id} manifest_hash={host.manifest_hash} public_key={host.public_key_b64}")
    print(str(signed_path))
    return 0


# ---------------------------
# captra verify
# ---------------------------

def _print_human(summary: Dict[str, Any], ok: bool, path: Path) -> None:
    print(f"Signed trace: {path}")
    print(f"Run: {summary.get('run_id') or '-'}")

    sig = summary.get("signature", {})
    print(f"Signature: {'OK' if sig.get('ok') else 'FAIL'}")
    if not sig.get("ok") and sig.get("error"):
        print(f"  Signature error: {sig['error']}")

    man = summary.get("manifest", {})
    if man.get("checked"):
        if man.get("ok") is None:
            print("Manifest: SKIPPED")
        else:
            print(
                f"Manifest: {'OK' if man.get('ok') else 'FAIL'} "
                f"(expected={man.get('expected') or '-'}, actual={man.get('actual') or '-'})"
            )
    else:
        print("Manifest: NOT CHECKED")

    seq = summary.get("sequence", {})
    if seq.get("ok") is None:
        print("Events: SKIPPED")
    else:
        print(f"Events: {'OK' if seq.get('ok') else 'FAIL'} (count={summary.get('events')})")
        if not seq.get("ok") and seq.get("error"):
            print(f"  Events error: {seq['error']}")

    print("OK" if ok else "FAIL")


def _cmd_verify(args: argparse.Namespace) -> int:
    path = Path(args.signed).expanduser().resolve()
    try:
        signed = load_signed_trace(path)
        public_key = load_public_key(Path(args.public_key).expanduser())
        manifest = load_manifest(Path(args.manifest).expanduser()) if args.manifest else None
    except (TraceError, KeyFileError, ManifestError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    ok, summary = verify_signed_trace(signed, public_key, manifest)

    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        _print_human(summary, ok, path)

    if ok:
        return 0
    return 2 if summary.get("error_kind") == "env" else 1


# ---------------------------
# captra keygen
# ---------------------------

def _cmd_keygen(args: argparse.Namespace) -> int:
    out_dir = Path(args.out or ".").expanduser().resolve()
    key_path = out_dir / KEY_FILE
    if key_path.exists() and not args.force:
        print(f"❌ {key_path} exists (use --force to overwrite)", file=sys.stderr)
        return 2
    key = generate_signing_key()
    try:
        save_signing_key(key, key_path)
        pub_path = save_public_key(key, out_dir / PUB_FILE)
    except KeyFileError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    print(f"public_key={encode_public_key(key)}")
    print(str(key_path))
    print(str(pub_path))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(prog="captra", description="Captra CLI (run / verify / keygen)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # captra run
    p_run = subparsers.add_parser("run", help="Enforce a manifest against paths and sign the trace")
    p_run.add_argument("paths", nargs="*", help="Paths the plugin requests to read")
    p_run.add_argument(
        "--config",
        help=f"Path to run config TOML (default: ./{DEFAULT_CONFIG_NAME} if present)",
    )
    p_run.add_argument("--manifest", help="Capability manifest JSON (overrides config)")
    p_run.add_argument("--seed", help=f"Run seed, unsigned 64-bit (overrides config and ${SEED_ENV})")
    p_run.add_argument(
        "--key",
        help="Ed25519 PEM signing key (default: config keys.signing_key, else an ephemeral key)",
    )
    p_run.add_argument("--out", help="Output directory for trace.json / signed_trace.json")
    p_run.add_argument("--log-level", help="DEBUG|INFO|WARNING|ERROR (overrides config)")
    p_run.set_defaults(func=_cmd_run)

    # captra verify
    p_verify = subparsers.add_parser("verify", help="Verify a signed trace export")
    p_verify.add_argument("signed", help="Path to signed_trace.json")
    p_verify.add_argument("--public-key", required=True, help="File holding the base64 Ed25519 public key")
    p_verify.add_argument(
        "--manifest",
        help="Trusted manifest JSON; its fingerprint must match the export's manifest_hash",
    )
    p_verify.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON summary instead of human-readable text",
    )
    p_verify.set_defaults(func=_cmd_verify)

    # captra keygen
    p_keygen = subparsers.add_parser("keygen", help="Create an Ed25519 signing key pair")
    p_keygen.add_argument("--out", help="Output directory (default: current directory)")
    p_keygen.add_argument("--force", action="store_true", help="Overwrite an existing key")
    p_keygen.set_defaults(func=_cmd_keygen)

    args = parser.parse_args(argv)
    code = args.func(args)
    sys.exit(code)


if __name__ == "__main__":
    main()
