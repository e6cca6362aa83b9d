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


Family of table-based hash functions used to decorrelate the sketches of a
MedianFlajoletMartin. Each function maps a key to

    table[fasthash64(key, hash_seed) % radix]

where `table` holds `radix` pseudo-random 64-bit integers drawn from an explicit
numpy.random.Generator.

"""
import logging
import numpy as np
from typing import Iterator, Union

from fmsketch.hashes import base_hash, check_hash_seed

logger = logging.getLogger(__name__)

UINT64_MAX = np.iinfo(np.uint64).max


def _draw_table(rng: np.random.Generator, radix: int, odd: bool) -> np.ndarray:
    table = rng.integers(0, UINT64_MAX, size=radix, dtype=np.uint64, endpoint=True)
    if odd:
        # Redraw even entries until every entry has its lowest bit set
        even = (table & np.uint64(1)) == np.uint64(0)
        while even.any():
            table[even] = rng.integers(
                0, UINT64_MAX, size=int(even.sum()), dtype=np.uint64, endpoint=True
            )
            even = (table & np.uint64(1)) == np.uint64(0)
    return table


class HashFunction:
    """
    A single lookup-table hash function. The function owns a private, read-only
    copy of its table.

    Parameters
    ----------
    table : np.ndarray, shape=(radix,), dtype=np.uint64
        Pseudo-random values indexed by the base hash modulo radix
    hash_seed : int, optional
        Seed for the fasthash64() base hash. Default is 0

    Attributes
    ----------
    table : np.ndarray, shape=(radix,), dtype=np.uint64
        Read-only lookup table
    radix : int
        Number of entries in the lookup table
    hash_seed : int
        Seed for the base hash
    """

    def __init__(self, table: np.ndarray, hash_seed: int = 0) -> None:
        table = np.array(table, dtype=np.uint64)
        if table.ndim != 1 or table.shape[0] == 0:
            raise ValueError(f"{table.shape=:}. Must be a non-empty 1-d array")
        table.flags.writeable = False

        self.table = table
        self.radix = int(table.shape[0])
        self.hash_seed = check_hash_seed(hash_seed)

    def base_hash(self, key: Union[bytes, str]) -> int:
        return base_hash(key, self.hash_seed)

    def lookup(self, hash_value: int) -> int:
        """
        Map an already computed base hash through the lookup table

        Parameters
        ----------
        hash_value : int
            Output of base_hash()

        Returns
        -------
        int
        """
        return int(self.table[hash_value % self.radix])

    def __call__(self, key: Union[bytes, str]) -> int:
        return self.lookup(self.base_hash(key))


class HashFamily:
    """
    Fixed-size, ordered collection of independent HashFunction. All tables are
    filled from the same generator so that a fixed seed reproduces the family
    exactly.

    Parameters
    ----------
    n_functions : int
        Number of hash functions to generate. Must be greater than 0
    radix : int
        Number of entries in each lookup table. Must be greater than 0
    rng : np.random.Generator | int, optional
        Generator used to fill the tables, or a seed used to create one with
        np.random.default_rng(). Default is None, an unseeded generator
    odd : bool, optional
        If True, every table entry is redrawn until it is odd. Default is False
    hash_seed : int, optional
        Seed for the fasthash64() base hash shared by every function.
        Default is 0

    Attributes
    ----------
    functions : Tuple[HashFunction, ...]
        The hash functions in generation order
    n_functions : int
    radix : int
    odd : bool
    hash_seed : int
    """

    def __init__(
        self,
        n_functions: int,
        radix: int,
        rng: Union[np.random.Generator, int] = None,
        odd: bool = False,
        hash_seed: int = 0,
    ) -> None:
        int_types = (int, np.integer)
        if (
            not isinstance(n_functions, int_types)
            or isinstance(n_functions, bool)
            or n_functions <= 0
        ):
            raise ValueError(f"{n_functions=:}. Must be an integer greater than 0")
        if not isinstance(radix, int_types) or isinstance(radix, bool) or radix <= 0:
            raise ValueError(f"{radix=:}. Must be an integer greater than 0")
        if not isinstance(odd, bool):
            raise ValueError(f"{type(odd)=:}. Must be a boolean")

        self.n_functions = int(n_functions)
        self.radix = int(radix)
        self.odd = odd
        self.hash_seed = check_hash_seed(hash_seed)

        rng = np.random.default_rng(rng)
        self.functions = tuple(
            HashFunction(_draw_table(rng, self.radix, odd), self.hash_seed)
            for _ in range(self.n_functions)
        )
        logger.debug(
            f"Generated {self.n_functions} hash functions with radix={self.radix}, "
            + f"odd={odd}"
        )

    def base_hash(self, key: Union[bytes, str]) -> int:
        """
        Base hash shared by every function in the family. Compute it once per key
        and pass it to HashFunction.lookup() for each function.

        Parameters
        ----------
        key : bytes | str

        Returns
        -------
        int
        """
        return base_hash(key, self.hash_seed)

    def __len__(self) -> int:
        return len(self.functions)

    def __getitem__(self, index: int) -> HashFunction:
        return self.functions[index]

    def __iter__(self) -> Iterator[HashFunction]:
        return iter(self.functions)
