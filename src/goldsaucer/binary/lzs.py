"""LZSS codec used by field files inside flevel.lgp.

The stream is the classic Okumura layout: a flag byte whose bits (LSB
first) announce eight tokens, 1 for a literal byte and 0 for a two-byte
back-reference into a 4096-byte ring buffer that starts writing at 0xFEE.
Field files wrap the stream as ``[u32 compressed size][stream]``.
"""

import struct

RING_SIZE = 4096
RING_START = 0xFEE
MIN_MATCH = 3
MAX_MATCH = 18
# A reference may not point at ring bytes that the copy itself overwrites
WINDOW = RING_SIZE - MAX_MATCH
MAX_CANDIDATES = 48


class LZSError(ValueError):
    """Raised for malformed LZS data."""


def decompress_raw(payload: bytes) -> bytes:
    """Decompress a headerless LZS stream."""
    ring = bytearray(RING_SIZE)
    r = RING_START
    out = bytearray()
    pos = 0
    n = len(payload)

    while pos < n:
        flags = payload[pos]
        pos += 1
        for bit in range(8):
            if pos >= n:
                break
            if flags & (1 << bit):
                c = payload[pos]
                pos += 1
                out.append(c)
                ring[r] = c
                r = (r + 1) & 0xFFF
                continue

            if pos + 1 >= n:
                return bytes(out)
            lo, hi = payload[pos], payload[pos + 1]
            pos += 2
            offset = lo | ((hi & 0xF0) << 4)
            for k in range((hi & 0x0F) + MIN_MATCH):
                c = ring[(offset + k) & 0xFFF]
                out.append(c)
                ring[r] = c
                r = (r + 1) & 0xFFF

    return bytes(out)


def compress_raw(data: bytes) -> bytes:
    """Compress ``data`` into a headerless LZS stream.

    Greedy longest match over hash chains of 3-byte prefixes. Matches only
    reach back into bytes already produced by this stream.
    """
    out = bytearray()
    chains: dict[bytes, list[int]] = {}
    n = len(data)
    i = 0

    def remember(start: int, stop: int) -> None:
        for k in range(start, min(stop, n - MIN_MATCH + 1)):
            chains.setdefault(data[k : k + MIN_MATCH], []).append(k)

    while i < n:
        flag_pos = len(out)
        out.append(0)
        flags = 0
        for bit in range(8):
            if i >= n:
                break

            best_len = 0
            best_pos = 0
            limit = min(MAX_MATCH, n - i)
            if limit >= MIN_MATCH:
                candidates = chains.get(data[i : i + MIN_MATCH], ())
                for src in reversed(candidates[-MAX_CANDIDATES:]):
                    if i - src > WINDOW:
                        break
                    length = MIN_MATCH
                    while length < limit and data[src + length] == data[i + length]:
                        length += 1
                    if length > best_len:
                        best_len, best_pos = length, src
                        if length == limit:
                            break

            if best_len >= MIN_MATCH:
                ring_pos = (RING_START + best_pos) & 0xFFF
                out.append(ring_pos & 0xFF)
                out.append(((ring_pos >> 4) & 0xF0) | (best_len - MIN_MATCH))
                step = best_len
            else:
                flags |= 1 << bit
                out.append(data[i])
                step = 1

            remember(i, i + step)
            i += step
        out[flag_pos] = flags

    return bytes(out)


def decompress(data: bytes) -> bytes:
    """Decompress a ``[u32 size][stream]`` LZS file."""
    if len(data) < 4:
        raise LZSError("LZS file is shorter than its size header")
    (size,) = struct.unpack_from("<I", data, 0)
    if size > len(data) - 4:
        raise LZSError(f"LZS header declares {size} bytes but only {len(data) - 4} follow")
    return decompress_raw(data[4 : 4 + size])


def compress(data: bytes) -> bytes:
    """Compress ``data`` into a ``[u32 size][stream]`` LZS file."""
    payload = compress_raw(data)
    return struct.pack("<I", len(payload)) + payload
