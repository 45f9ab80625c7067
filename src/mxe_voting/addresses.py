"""Program-derived address resolution.

An address derived from seeds is the SHA-256 of the seeds, a bump byte, the
owning program id and a fixed marker, searched from bump 255 downwards until
the digest is not a valid ed25519 point (so no private key can exist for it).
"""

from __future__ import annotations

import hashlib
from typing import Dict, Sequence, Tuple

PDA_MARKER = b"ProgramDerivedAddress"

# Program owning all MXE, cluster, mempool and computation accounts
ARCIUM_PROGRAM_ID = hashlib.sha256(b"arcium:program").digest()

# Default deployment of the voting program
DEFAULT_PROGRAM_ID = hashlib.sha256(b"arcium:voting").digest()

_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(candidate: bytes) -> bool:
    """True when 32 bytes decompress to a point of the ed25519 curve"""

    y = int.from_bytes(candidate, "little")
    sign = y >> 255
    y &= (1 << 255) - 1
    if y >= _P:
        return False
    y2 = y * y % _P
    x2 = (y2 - 1) * pow(_D * y2 + 1, _P - 2, _P) % _P
    if x2 == 0:
        return sign == 0
    return pow(x2, (_P - 1) // 2, _P) == 1


def find_program_address(seeds: Sequence[bytes], program_id: bytes) -> Tuple[bytes, int]:
    for bump in range(255, -1, -1):
        h = hashlib.sha256()
        for seed in seeds:
            if len(seed) > 32:
                raise ValueError("seeds are limited to 32 bytes")
            h.update(seed)
        h.update(bytes([bump]))
        h.update(program_id)
        h.update(PDA_MARKER)
        candidate = h.digest()
        if not is_on_curve(candidate):
            return candidate, bump
    raise ValueError("unable to find a viable program address bump")


def _pda(seeds: Sequence[bytes], program_id: bytes = ARCIUM_PROGRAM_ID) -> bytes:
    return find_program_address(seeds, program_id)[0]


def _u32(value: int) -> bytes:
    return int(value).to_bytes(4, "little")


def _u64(value: int) -> bytes:
    return int(value).to_bytes(8, "little")


def comp_def_offset(name: str) -> int:
    """Computation definition offset: first 4 bytes of sha256(name), little-endian"""

    return int.from_bytes(hashlib.sha256(name.encode("utf-8")).digest()[:4], "little")


def mxe_address(program_id: bytes) -> bytes:
    return _pda([b"MXEAccount", program_id])


def cluster_address(cluster_offset: int) -> bytes:
    return _pda([b"Cluster", _u32(cluster_offset)])


def mempool_address(cluster_offset: int) -> bytes:
    return _pda([b"Mempool", _u32(cluster_offset)])


def executing_pool_address(cluster_offset: int) -> bytes:
    return _pda([b"Execpool", _u32(cluster_offset)])


def computation_address(cluster_offset: int, computation_offset: int) -> bytes:
    return _pda([b"ComputationAccount", _u32(cluster_offset), _u64(computation_offset)])


def comp_def_address(program_id: bytes, comp_def_name: str) -> bytes:
    return _pda([b"ComputationDefinitionAccount", program_id, _u32(comp_def_offset(comp_def_name))])


def poll_address(program_id: bytes, authority: bytes, poll_id: int) -> bytes:
    return _pda([b"poll", authority, _u32(poll_id)], program_id)


def computation_accounts(
    program_id: bytes,
    cluster_offset: int,
    computation_offset: int,
    comp_def_name: str,
) -> Dict[str, str]:
    """Every account a queued computation touches, keyed by account name (hex values)"""

    return {
        "computationAccount": computation_address(cluster_offset, computation_offset).hex(),
        "clusterAccount": cluster_address(cluster_offset).hex(),
        "mxeAccount": mxe_address(program_id).hex(),
        "mempoolAccount": mempool_address(cluster_offset).hex(),
        "executingPool": executing_pool_address(cluster_offset).hex(),
        "compDefAccount": comp_def_address(program_id, comp_def_name).hex(),
    }
