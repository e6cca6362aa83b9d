"""
FMSketch has Numba implementations of Flajolet-Martin cardinality sketches and
the hash functions that feed them.

Copyright (C) 2022 Matthew Hendrey

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.


Numba implementation of fasthash taken from

https://github.com/rurban/smhasher/blob/master/fasthash.cpp

fasthash64() is the base hash applied to every stream element. It is seeded and
deterministic across processes, unlike Python's builtin hash() of a str.

"""
from numba import njit, uint8, uint32, uint64, types
import numpy as np
from typing import Union

MASK64 = (1 << 64) - 1


@njit(uint64(uint64))
def mix(h):
    h ^= h >> uint64(23)
    h *= uint64(0x2127599BF4325C37)
    h ^= h >> uint64(47)
    return h


@njit(uint64(types.Bytes(uint8, 1, "C"), uint64))
def fasthash64(key, seed):
    """
    64-bit fasthash of `key`

    Parameters
    ----------
    key : bytes
        Data to be hashed
    seed : np.uint64
        Seed value for the hash function

    Returns
    -------
    np.uint64
    """
    m = uint64(0x880355F21E6D1965)
    n_bytes = uint64(len(key))
    n_words = n_bytes // uint64(8)
    h = seed ^ (n_bytes * m)

    # Full 8-byte words, read little endian
    for i in range(n_words):
        v = uint64(0)
        for j in range(8):
            v |= uint64(key[i * uint64(8) + uint64(j)]) << uint64(8 * j)
        h ^= mix(v)
        h *= m

    start = n_words * uint64(8)
    remainder = n_bytes - start
    if remainder > uint64(0):
        v = uint64(0)
        for k in range(remainder):
            v ^= uint64(key[start + k]) << (uint64(8) * k)
        h ^= mix(v)
        h *= m

    return mix(h)


@njit(uint32(types.Bytes(uint8, 1, "C"), uint32))
def fasthash32(key, seed):
    """
    32-bit fasthash of `key`. Folds the 64-bit hash down to 32 bits.

    Parameters
    ----------
    key : bytes
        Data to be hashed
    seed : np.uint32
        Seed value for the hash function

    Returns
    -------
    np.uint32
    """
    h = fasthash64(key, uint64(seed))
    return uint32(h - (h >> uint64(32)))


def to_bytes(key: Union[bytes, str]) -> bytes:
    """
    Convert a stream element into the bytes that get hashed. A str is encoded
    as UTF-8.

    Parameters
    ----------
    key : bytes | str

    Returns
    -------
    bytes

    Raises
    ------
    TypeError
        If `key` is neither bytes-like nor a str
    """
    if isinstance(key, bytes):
        return key
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytearray, memoryview)):
        return bytes(key)
    raise TypeError(f"{type(key)=:}. Must be bytes or str")


def check_hash_seed(hash_seed: int) -> int:
    """
    Validate a fasthash64() seed

    Parameters
    ----------
    hash_seed : int

    Returns
    -------
    int

    Raises
    ------
    ValueError
        If `hash_seed` is not an integer in [0, 2**64)
    """
    if (
        not isinstance(hash_seed, (int, np.integer))
        or isinstance(hash_seed, bool)
        or not (0 <= hash_seed <= MASK64)
    ):
        raise ValueError(f"{hash_seed=:}. Must be an integer in [0, 2**64)")
    return int(hash_seed)


def base_hash(key: Union[bytes, str], seed: int = 0) -> int:
    """
    Seeded 64-bit base hash of a stream element as a Python int

    Parameters
    ----------
    key : bytes | str
        Stream element. A str is encoded as UTF-8 first.
    seed : int, optional
        Seed passed to fasthash64(). Default is 0

    Returns
    -------
    int
        Value in [0, 2**64)
    """
    return int(fasthash64(to_bytes(key), np.uint64(seed)))
