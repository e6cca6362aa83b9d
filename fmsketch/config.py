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


Run configuration for estimating the cardinality of a token stream. Values can be
read from a YAML file such as configs/default.yaml:

    seed: 1327
    n_functions: 100
    radix: 100000
    width: 64
    policy: discard_zero
    odd: false
    hash_seed: 0

"""
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from fmsketch.flajoletmartin import MAX_WIDTH, POLICIES
from fmsketch.hashes import check_hash_seed


@dataclass(frozen=True)
class Config:
    """
    Parameters
    ----------
    seed : int
        Seed of the generator that fills the hash family tables. Default is 1327
    n_functions : int
        Number of hash functions, and so of sketches, in the median estimator.
        Default is 100
    radix : int
        Number of entries in each hash function's lookup table. Default is 100000
    width : int
        Number of bits in each sketch's bitmap. Default is 64
    policy : str
        Bit-scan policy, "discard_zero" or "shift_first". Default is "discard_zero"
    odd : bool
        Only draw odd lookup table values. Default is False
    hash_seed : int
        Seed of the fasthash64() base hash. Default is 0
    """

    seed: int = 1327
    n_functions: int = 100
    radix: int = 100000
    width: int = MAX_WIDTH
    policy: str = "discard_zero"
    odd: bool = False
    hash_seed: int = 0

    def __post_init__(self) -> None:
        for name in ["seed", "n_functions", "radix", "width", "hash_seed"]:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name}={value!r}. Must be an integer")
        if self.seed < 0:
            raise ValueError(f"{self.seed=:}. Must be a non-negative integer")
        check_hash_seed(self.hash_seed)
        if self.n_functions <= 0:
            raise ValueError(f"{self.n_functions=:}. Must be an integer greater than 0")
        if self.radix <= 0:
            raise ValueError(f"{self.radix=:}. Must be an integer greater than 0")
        if not (1 <= self.width <= MAX_WIDTH):
            raise ValueError(f"{self.width=:}. Must be an integer in [1, {MAX_WIDTH}]")
        if self.policy not in POLICIES:
            raise ValueError(f"{self.policy=:}. Must be one of {list(POLICIES)}")
        if not isinstance(self.odd, bool):
            raise ValueError(f"{type(self.odd)=:}. Must be a boolean")


def load_config(path: Union[str, Path]) -> Config:
    """
    Read a Config from a YAML file. Keys that are not given keep their defaults.

    Parameters
    ----------
    path : str | Path
        YAML file holding a mapping of Config field names to values

    Returns
    -------
    Config

    Raises
    ------
    ValueError
        If the file does not hold a mapping, has unknown keys, or has invalid values
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return config_from_dict(data or {})


def config_from_dict(data: Dict[str, Any]) -> Config:
    if not isinstance(data, dict):
        raise ValueError(f"{type(data)=:}. Configuration must be a mapping")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    return Config(**data)
