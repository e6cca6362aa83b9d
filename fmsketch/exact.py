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


Exact distinct counter. Used as the ground truth the sketches are compared to.

"""
from typing import Hashable, Iterable


class ExactCounter:
    """
    Stores every distinct key it is given. Memory grows with the cardinality.
    """

    def __init__(self) -> None:
        self.seen = set()

    def add(self, key: Hashable) -> None:
        self.seen.add(key)

    def update(self, keys: Iterable[Hashable]) -> None:
        self.seen.update(keys)

    def query(self) -> int:
        return len(self.seen)

    def cardinality(self) -> int:
        return self.query()
