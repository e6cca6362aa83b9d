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


Helper functions for reading a token stream and comparing the sketch estimates
against the exact count.

"""
import logging
from pathlib import Path
import sys
from typing import Iterable, Iterator, NamedTuple, Union

from fmsketch.config import Config
from fmsketch.exact import ExactCounter
from fmsketch.flajoletmartin import FlajoletMartin, MedianFlajoletMartin
from fmsketch.hashfamily import HashFamily

logger = logging.getLogger(__name__)


class Estimates(NamedTuple):
    exact: int
    single: int
    median: int


def setup_logger(level: int = logging.INFO) -> logging.Logger:
    """
    Set up the "fmsketch" logger to write to the current stderr. Calling it again
    replaces the handler from the previous call.

    Parameters
    ----------
    level : int, optional
        Logging level. Default is logging.INFO

    Returns
    -------
    logging.Logger
    """
    fmsketch_logger = logging.getLogger("fmsketch")
    for handler in list(fmsketch_logger.handlers):
        fmsketch_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    fmsketch_logger.addHandler(handler)
    fmsketch_logger.setLevel(level)

    return fmsketch_logger


def read_tokens(filename: Union[str, Path]) -> Iterator[bytes]:
    """
    Yield the whitespace separated tokens of `filename`, line by line. Tokens are
    raw bytes so no encoding is assumed. If the file cannot be read, the error is
    logged and the stream ends.

    Parameters
    ----------
    filename : str | Path

    Yields
    ------
    bytes
    """
    try:
        with open(filename, "rb") as f:
            for line in f:
                yield from line.split()
    except OSError as exc:
        logger.error(f"Failed to read {filename}: {exc}")


def estimate_stream(
    tokens: Iterable[Union[bytes, str]], config: Config = None
) -> Estimates:
    """
    Single pass over `tokens` that feeds an ExactCounter, a FlajoletMartin on the
    base hash, and a MedianFlajoletMartin built from the configured HashFamily.

    Parameters
    ----------
    tokens : Iterable[bytes | str]
    config : Config, optional
        Default is None which uses Config()

    Returns
    -------
    Estimates
        (exact, single, median) distinct counts
    """
    if config is None:
        config = Config()

    family = HashFamily(
        config.n_functions,
        config.radix,
        rng=config.seed,
        odd=config.odd,
        hash_seed=config.hash_seed,
    )
    exact = ExactCounter()
    single = FlajoletMartin(
        width=config.width, policy=config.policy, hash_seed=config.hash_seed
    )
    median = MedianFlajoletMartin(family, width=config.width, policy=config.policy)

    for token in tokens:
        exact.add(token)
        single.add(token)
        median.add(token)

    logger.info(f"Processed {single.n_added():,} tokens")

    return Estimates(exact.query(), single.query(), median.query())
