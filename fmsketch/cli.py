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


Command line estimate of the number of distinct tokens in a text file.

Usage:
    fmsketch corpus.txt --config configs/default.yaml --functions 50

"""
import argparse
from dataclasses import replace
import logging
from typing import List

import yaml

from fmsketch.config import Config, load_config
from fmsketch.flajoletmartin import POLICIES
from fmsketch.helpers import estimate_stream, read_tokens, setup_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmsketch",
        description="Estimate the number of distinct whitespace separated tokens "
        + "in a file with Flajolet-Martin sketches",
    )
    parser.add_argument("filename", help="Text file to read tokens from")
    parser.add_argument("--config", help="YAML file with configuration values")
    parser.add_argument("--seed", type=int, help="Seed of the hash family generator")
    parser.add_argument(
        "--functions",
        dest="n_functions",
        type=int,
        help="Number of hash functions in the median estimator",
    )
    parser.add_argument("--radix", type=int, help="Size of each lookup table")
    parser.add_argument("--width", type=int, help="Number of bits in each bitmap")
    parser.add_argument("--policy", choices=list(POLICIES), help="Bit-scan policy")
    parser.add_argument(
        "--odd",
        action="store_true",
        default=None,
        help="Only draw odd lookup table values",
    )
    parser.add_argument(
        "--no-odd",
        dest="odd",
        action="store_false",
        default=None,
        help="Draw unconstrained lookup table values, overriding the config file",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Default is WARNING",
    )
    return parser


def main(argv: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger(getattr(logging, args.log_level))

    overrides = {
        name: getattr(args, name)
        for name in ["seed", "n_functions", "radix", "width", "policy", "odd"]
        if getattr(args, name) is not None
    }
    try:
        config = load_config(args.config) if args.config else Config()
        config = replace(config, **overrides)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        parser.error(str(exc))

    estimates = estimate_stream(read_tokens(args.filename), config)

    print(f"exact {estimates.exact}")
    print(f"flajolet {estimates.single}")
    print(f"median flajolet {estimates.median}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
