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


Numba implementation of the probabilistic counting algorithm from

P. Flajolet and G. N. Martin, "Probabilistic Counting Algorithms for Data Base
Applications", Journal of Computer and System Sciences **31**, 182-209 (1985).

Each key is hashed and the index of the lowest set bit of the hash is recorded in a
fixed-width bitmap. The estimate is ceil(2**i / PHI) where i is the highest index
recorded. A single bitmap has a large variance, so MedianFlajoletMartin runs one
sketch per hash function of a HashFamily and reports the median estimate.

"""
import logging
import math
from functools import partial
from numba import njit, uint8, uint64, types
import numpy as np
from typing import Callable, Iterable, List, Sequence, Union

from fmsketch.hashes import MASK64, base_hash, check_hash_seed, to_bytes
from fmsketch.hashfamily import HashFamily

logger = logging.getLogger(__name__)

# Flajolet-Martin bias-correction constant
PHI = 0.77351

MAX_WIDTH = 64

# Bit-scan policies
DISCARD_ZERO = 0
SHIFT_FIRST = 1
POLICIES = {"discard_zero": DISCARD_ZERO, "shift_first": SHIFT_FIRST}


@njit(uint64(uint64, uint64))
def lowest_set_bit(value, width):
    """
    Index of the lowest set bit of `value`, bounded to [0, `width`). A value with
    no set bit below `width - 1` maps to `width - 1`.

    Parameters
    ----------
    value : np.uint64
    width : np.uint64

    Returns
    -------
    np.uint64
    """
    position = uint64(0)
    while (value & uint64(1)) == uint64(0) and position < width - uint64(1):
        value >>= uint64(1)
        position += uint64(1)
    return position


@njit(uint64(uint8[:]))
def highest_set_bit(bitmap):
    """
    Index of the highest set bit in `bitmap`, or 0 if no bit is set

    Parameters
    ----------
    bitmap : np.ndarray, dtype=np.uint8

    Returns
    -------
    np.uint64
    """
    for i in range(bitmap.shape[0] - 1, 0, -1):
        if bitmap[i] != uint8(0):
            return uint64(i)
    return uint64(0)


@njit(types.void(uint8[:], uint64, uint64, uint8))
def _record(bitmap, hash_value, width, policy):
    if policy == SHIFT_FIRST:
        bitmap[lowest_set_bit(hash_value >> uint64(1), width)] = uint8(1)
    else:
        position = lowest_set_bit(hash_value, width)
        if position > uint64(0):
            bitmap[position] = uint8(1)


def estimate(position: int) -> int:
    """
    Bias-corrected cardinality for a highest set bit at `position`

    Parameters
    ----------
    position : int

    Returns
    -------
    int
        ceil(2**position / PHI)
    """
    return math.ceil(float(1 << int(position)) / PHI)


def upper_median(values: Sequence[int]) -> int:
    """
    Element at index len(values) // 2 of the ascending sorted values. For an even
    number of values this is the upper of the two middle elements; the two are
    never averaged.

    Parameters
    ----------
    values : Sequence[int]
        Must not be empty

    Returns
    -------
    int
    """
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


class FlajoletMartin:
    """
    Single Flajolet-Martin sketch. Bits of the bitmap are only ever set, never
    cleared.

    Parameters
    ----------
    hashfunc : Callable, optional
        Maps a key to an unsigned 64-bit integer, normally a HashFunction from a
        HashFamily. Default is None which uses fasthash64() with `hash_seed`
    width : int, optional
        Number of bits in the bitmap. Must be in [1, 64]. Default is 64
    policy : str, optional
        Bit-scan policy. "discard_zero" records the lowest set bit of the hash but
        drops any observation whose lowest set bit is 0. "shift_first" drops bit 0
        of the hash before scanning and always records. Default is "discard_zero"
    hash_seed : int, optional
        Seed of the default hash function. Ignored if `hashfunc` is given.
        Default is 0

    Attributes
    ----------
    bitmap : np.ndarray, shape=(width,), dtype=np.uint8
        One entry per bit. 1 if the bit has been set.
    width : np.uint64
    policy : str
    hashfunc : Callable
    """

    def __init__(
        self,
        hashfunc: Callable[[Union[bytes, str]], int] = None,
        width: int = MAX_WIDTH,
        policy: str = "discard_zero",
        hash_seed: int = 0,
    ) -> None:
        int_types = (int, np.integer)
        if (
            not isinstance(width, int_types)
            or isinstance(width, bool)
            or not (1 <= width <= MAX_WIDTH)
        ):
            raise ValueError(f"{width=:}. Must be an integer in [1, {MAX_WIDTH}]")
        if policy not in POLICIES:
            raise ValueError(f"{policy=:}. Must be one of {list(POLICIES)}")
        hash_seed = check_hash_seed(hash_seed)

        if hashfunc is None:
            hashfunc = partial(base_hash, seed=hash_seed)

        self.hashfunc = hashfunc
        self.width = np.uint64(width)
        self.policy = policy
        self._policy_code = np.uint8(POLICIES[policy])
        self.bitmap = np.zeros(width, np.uint8)
        self._n_added = 0

    def add(self, key: Union[bytes, str]) -> None:
        """
        Hash `key` and record the position of its lowest set bit

        Parameters
        ----------
        key : bytes | str
            Element to be added to the sketch

        Returns
        -------
        None
        """
        self.add_hash(self.hashfunc(key))

    def add_hash(self, hash_value: int) -> None:
        """
        Record an already hashed key

        Parameters
        ----------
        hash_value : int
            Only the lowest 64 bits are used

        Returns
        -------
        None
        """
        _record(
            self.bitmap,
            np.uint64(int(hash_value) & MASK64),
            self.width,
            self._policy_code,
        )
        self._n_added += 1

    def update(self, keys: Iterable[Union[bytes, str]]) -> None:
        """
        Add an iterable of `keys` to the sketch. This follows the convention of
        collections.Counter

        Parameters
        ----------
        keys : Iterable[bytes | str]

        Returns
        -------
        None
        """
        for key in keys:
            self.add(key)

    def highest_bit(self) -> int:
        return int(highest_set_bit(self.bitmap))

    def query(self) -> int:
        """
        Estimated number of distinct keys added so far. Does not modify the sketch.

        Returns
        -------
        int
        """
        return estimate(self.highest_bit())

    def cardinality(self) -> int:
        return self.query()

    def n_added(self) -> int:
        """
        Number of keys that have been added to the sketch, duplicates included

        Returns
        -------
        int
        """
        return self._n_added


class MedianFlajoletMartin:
    """
    Runs one FlajoletMartin per hash function of `family` and reports the median
    of their estimates. Every key is given to every sketch, so all sketches always
    observe the same stream.

    Parameters
    ----------
    family : HashFamily
        Hash functions, one per sketch, in the order the sketches are built
    width : int, optional
        Number of bits in each bitmap. Must be in [1, 64]. Default is 64
    policy : str, optional
        Bit-scan policy of every sketch. See FlajoletMartin. Default is
        "discard_zero"

    Attributes
    ----------
    family : HashFamily
    sketches : List[FlajoletMartin]
    """

    def __init__(
        self, family: HashFamily, width: int = MAX_WIDTH, policy: str = "discard_zero"
    ) -> None:
        if len(family) == 0:
            raise ValueError("family must contain at least one hash function")

        self.family = family
        self.sketches: List[FlajoletMartin] = [
            FlajoletMartin(hashfunc, width, policy) for hashfunc in family
        ]

        if family.odd and policy == "discard_zero":
            logger.warning(
                "Odd hash tables with the discard_zero policy discard every "
                + "observation. The estimate will always be "
                + f"{estimate(0)}"
            )
        logger.debug(
            f"Built {len(self.sketches)} sketches with width={width}, policy={policy}"
        )

    def add(self, key: Union[bytes, str]) -> None:
        """
        Add `key` to every sketch. The base hash is computed once and then mapped
        through each sketch's lookup table.

        Parameters
        ----------
        key : bytes | str
            Element to be added to the sketches

        Returns
        -------
        None
        """
        hash_value = self.family.base_hash(to_bytes(key))
        for sketch in self.sketches:
            sketch.add_hash(sketch.hashfunc.lookup(hash_value))

    def update(self, keys: Iterable[Union[bytes, str]]) -> None:
        """
        Add an iterable of `keys` to the sketches

        Parameters
        ----------
        keys : Iterable[bytes | str]

        Returns
        -------
        None
        """
        for key in keys:
            self.add(key)

    def estimates(self) -> List[int]:
        """
        Current estimate of each sketch in family order

        Returns
        -------
        List[int]
        """
        return [sketch.query() for sketch in self.sketches]

    def query(self) -> int:
        """
        Median of the sketch estimates. With an even number of sketches this is the
        upper of the two middle estimates.

        Returns
        -------
        int
        """
        return upper_median(self.estimates())

    def cardinality(self) -> int:
        return self.query()

    def n_added(self) -> int:
        return self.sketches[0].n_added()

    def __len__(self) -> int:
        return len(self.sketches)
