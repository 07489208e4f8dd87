# captra/bridge.py
"""
Host functions handed to a sandboxed guest.

The guest gets exactly two imports (module "host"):

    read_file(ptr: i32, len: i32) -> i32
    status_allowed() -> i32

and learns only ALLOWED / DENIED / ERROR. Reasons stay in the host trace.
The WASM runtime wires these up; this module only needs the guest's linear
memory as a bytes-like object.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Callable, Dict, Union

from .host import CapError, HostState, InvalidPath

logger = logging.getLogger(__name__)

HOST_MODULE = "host"

GuestMemory = Union[bytes, bytearray, memoryview]


class HostStatus(IntEnum):
    ALLOWED = 1
    DENIED = 0
    ERROR = -1


def status_for(error: CapError) -> HostStatus:
    if isinstance(error, InvalidPath):
        return HostStatus.ERROR
    return HostStatus.DENIED


def read_guest_str(memory: GuestMemory, ptr: int, length: int) -> str:
    """Copy a UTF-8 string out of guest memory; InvalidPath when out of bounds or undecodable."""
    size = len(memory)
    if ptr < 0 or length < 0 or ptr + length > size:
        raise InvalidPath(f"guest range [{ptr}, {ptr + length}) outside memory of {size} bytes")
    raw = bytes(memory[ptr : ptr + length])
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidPath(f"guest path is not valid UTF-8: {e}") from e


class SandboxBridge:
    def __init__(self, host: HostState) -> None:
        self.host = host

    def read_file(self, memory: GuestMemory, ptr: int, length: int) -> int:
        try:
            path = read_guest_str(memory, ptr, length)
            self.host.execute_plugin(path)
        except CapError as e:
            status = status_for(e)
            logger.debug("read_file denied status=%d reason=%s", int(status), e.reason.value)
            return int(status)
        return int(HostStatus.ALLOWED)

    @staticmethod
    def status_allowed() -> int:
        return int(HostStatus.ALLOWED)

    def host_functions(self, memory_source: Callable[[], GuestMemory]) -> Dict[str, Callable[..., int]]:
        """
        Guest-facing callables keyed by import name.

        `memory_source` is called on every read so a grown guest memory is
        always seen in full.
        """

        def read_file(ptr: int, length: int) -> int:
            return self.read_file(memory_source(), ptr, length)

        return {
            "read_file": read_file,
            "status_allowed": self.status_allowed,
        }


__all__ = [
    "HOST_MODULE",
    "HostStatus",
    "SandboxBridge",
    "read_guest_str",
    "status_for",
]
