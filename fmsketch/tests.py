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

"""
import logging
import math

import numpy as np
import pytest

from fmsketch.cli import main
from fmsketch.config import Config, config_from_dict, load_config
from fmsketch.exact import ExactCounter
from fmsketch.flajoletmartin import (
    PHI,
    FlajoletMartin,
    MedianFlajoletMartin,
    estimate,
    highest_set_bit,
    lowest_set_bit,
    upper_median,
)
from fmsketch.hashes import base_hash, fasthash32, fasthash64
from fmsketch.hashfamily import HashFamily, HashFunction
from fmsketch.helpers import Estimates, estimate_stream, read_tokens

VALID_ESTIMATES = {estimate(i) for i in range(64)}


def random_keys(n_keys: int, seed: int = 0):
    """Random distinct 16-byte keys"""
    rng = np.random.default_rng(seed)
    keys = [bytes(r) for r in rng.integers(0, 256, (n_keys, 16), dtype=np.uint8)]
    return list(dict.fromkeys(keys))


def test_fasthash():
    """
    Compare the fasthash32 against the smhasher C++ version. Since the
    fasthash32() calls fasthash64() and then does some bit mixing, by testing
    the fasthash32() we are also testing the fasthash64().

    Values we assert against are from running the C++ version with the given
    keys and seeds. C++ code was taken from
    https://github.com/rurban/smhasher/blob/master/fasthash.cpp
    https://github.com/rurban/smhasher/blob/master/fasthash.h

    """
    key = b"0123456789abcdef"

    assert fasthash32(key, 0) == 128551002
    assert fasthash32(key, 5) == 571860520

    # Now check the different lengths
    assert fasthash32(key[:15], 3) == 4264631007
    assert fasthash32(key[:14], 4) == 3611610185
    assert fasthash32(key[:13], 5) == 2978977373
    assert fasthash32(key[:12], 6) == 2071843509
    assert fasthash32(key[:11], 7) == 3386775091
    assert fasthash32(key[:10], 8) == 2472970926
    assert fasthash32(key[:9], 21) == 1787443542
    assert fasthash32(key[:8], 22) == 2970440548
    assert fasthash32(key[:7], 23) == 3793135117
    assert fasthash32(key[:6], 24) == 3662885582
    assert fasthash32(key[:5], 25) == 2453668041
    assert fasthash32(key[:4], 26) == 635486060
    assert fasthash32(key[:3], 27) == 58999216
    assert fasthash32(key[:2], 28) == 3486011618
    assert fasthash32(key[:1], 29) == 3407281718

    hv1 = fasthash32(b"test", 0)
    assert hv1 == 2542785854

    hv2 = fasthash32(b"abc", 1)
    assert hv2 == 558486214

    hv3 = fasthash32(b"123", 2)
    assert hv3 == 3103508967


def test_base_hash():
    """
    The base hash of a str is the fasthash64 of its UTF-8 encoding, and other
    key types are rejected.
    """
    assert base_hash("résumé", 3) == int(
        fasthash64("résumé".encode("utf-8"), np.uint64(3))
    )
    assert base_hash(b"abc") == base_hash("abc")
    assert base_hash(b"abc", 0) != base_hash(b"abc", 1)
    assert 0 <= base_hash(b"abc") < 2 ** 64

    with pytest.raises(TypeError):
        base_hash(3.5)


def test_family_reproducible(n_functions: int = 8, radix: int = 128):
    """
    Two families generated from the same seed have identical tables. A different
    seed gives different tables. Passing a Generator is the same as passing the
    seed it was created with.
    """
    family1 = HashFamily(n_functions, radix, rng=1327)
    family2 = HashFamily(n_functions, radix, rng=1327)
    family3 = HashFamily(n_functions, radix, rng=1328)
    family4 = HashFamily(n_functions, radix, rng=np.random.default_rng(1327))

    assert len(family1) == n_functions
    for f1, f2, f3, f4 in zip(family1, family2, family3, family4):
        assert f1.radix == radix
        assert np.array_equal(f1.table, f2.table)
        assert np.array_equal(f1.table, f4.table)
        assert not np.array_equal(f1.table, f3.table)

    for key in [b"a", "b", "token"]:
        assert family1[0](key) == family2[0](key)


def test_family_functions_differ(n_functions: int = 10, radix: int = 256):
    """
    Every function in a family has its own table in its own, read-only buffer
    """
    family = HashFamily(n_functions, radix, rng=7)

    for i in range(n_functions):
        assert not family[i].table.flags.writeable
        with pytest.raises(ValueError):
            family[i].table[0] = 1
        for j in range(i + 1, n_functions):
            assert not np.shares_memory(family[i].table, family[j].table)
            assert not np.array_equal(family[i].table, family[j].table)


def test_family_odd(n_functions: int = 5, radix: int = 1000):
    """
    The odd-constrained policy only produces odd table values, and is reproducible
    """
    family = HashFamily(n_functions, radix, rng=11, odd=True)
    again = HashFamily(n_functions, radix, rng=11, odd=True)
    for hashfunc, other in zip(family, again):
        assert np.all((hashfunc.table & np.uint64(1)) == np.uint64(1))
        assert np.array_equal(hashfunc.table, other.table)

    # The unconstrained policy with this many values will draw some even ones
    family = HashFamily(n_functions, radix, rng=11)
    assert np.any((family[0].table & np.uint64(1)) == np.uint64(0))


def test_family_invalid():
    for n_functions, radix in [
        (0, 10),
        (10, 0),
        (-1, 10),
        (2.5, 10),
        (10, "10"),
        (True, 8),
        (4, True),
    ]:
        with pytest.raises(ValueError):
            HashFamily(n_functions, radix, rng=0)

    with pytest.raises(ValueError):
        HashFamily(2, 10, rng=0, odd=1)


def test_hash_seed_invalid():
    """
    A base hash seed outside [0, 2**64) is rejected at construction instead of
    failing on the first key.
    """
    for hash_seed in [-1, 2 ** 64, 1.5, True]:
        with pytest.raises(ValueError):
            HashFamily(2, 8, rng=0, hash_seed=hash_seed)
        with pytest.raises(ValueError):
            HashFunction(np.arange(4, dtype=np.uint64), hash_seed=hash_seed)
        with pytest.raises(ValueError):
            FlajoletMartin(hash_seed=hash_seed)

    # The largest seed is accepted and usable
    family = HashFamily(2, 8, rng=0, hash_seed=2 ** 64 - 1)
    assert 0 <= family[0]("a") < 2 ** 64
    fm = FlajoletMartin(hash_seed=2 ** 64 - 1)
    fm.add("a")
    assert fm.n_added() == 1


def test_hash_function_lookup():
    """
    A HashFunction maps a key to table[base_hash % radix] and owns a copy of the
    table it was given.
    """
    table = np.arange(1, 11, dtype=np.uint64)
    hashfunc = HashFunction(table, hash_seed=4)
    table[0] = 99

    key = b"stream element"
    h = base_hash(key, 4)
    assert hashfunc(key) == int(h % 10) + 1
    assert hashfunc.lookup(h) == hashfunc(key)
    assert hashfunc.table[0] == 1

    with pytest.raises(ValueError):
        HashFunction(np.array([], dtype=np.uint64))


def test_bit_scans():
    width = np.uint64(64)
    assert lowest_set_bit(np.uint64(1), width) == 0
    assert lowest_set_bit(np.uint64(8), width) == 3
    assert lowest_set_bit(np.uint64(2 ** 63), width) == 63
    # No set bit is bounded to width - 1
    assert lowest_set_bit(np.uint64(0), width) == 63
    assert lowest_set_bit(np.uint64(0), np.uint64(8)) == 7
    assert lowest_set_bit(np.uint64(2 ** 20), np.uint64(8)) == 7

    bitmap = np.zeros(64, np.uint8)
    assert highest_set_bit(bitmap) == 0
    bitmap[[1, 5, 12]] = 1
    assert highest_set_bit(bitmap) == 12
    bitmap[63] = 1
    assert highest_set_bit(bitmap) == 63


def test_estimate():
    assert estimate(0) == 2
    assert estimate(1) == 3
    assert estimate(2) == 6
    assert estimate(10) == math.ceil(1024 / PHI)


def test_empty_sketch():
    """
    A sketch that has seen nothing reports ceil(1 / PHI) = 2 for either policy
    """
    for policy in ["discard_zero", "shift_first"]:
        fm = FlajoletMartin(policy=policy)
        assert fm.query() == 2
        assert fm.cardinality() == 2
        assert fm.n_added() == 0
        assert not fm.bitmap.any()


def test_discard_zero_policy():
    """
    A hash whose lowest set bit is 0 is discarded. Any other position is recorded.
    """
    fm = FlajoletMartin(hashfunc=lambda key: 0b1011)
    fm.add("a")
    assert not fm.bitmap.any()
    assert fm.query() == 2
    assert fm.n_added() == 1

    fm = FlajoletMartin(hashfunc=lambda key: 0b1000)
    fm.add("a")
    assert fm.highest_bit() == 3
    assert fm.query() == estimate(3)


def test_shift_first_policy():
    """
    Bit 0 of the hash is dropped before the scan and the result is always recorded
    """
    fm = FlajoletMartin(hashfunc=lambda key: 0b11, policy="shift_first")
    fm.add("a")
    assert fm.bitmap[0] == 1
    assert fm.query() == 2

    fm = FlajoletMartin(hashfunc=lambda key: 0b10001, policy="shift_first")
    fm.add("a")
    assert fm.highest_bit() == 3

    # Only bit 0 set scans as zero after the shift and lands on the last bit
    fm = FlajoletMartin(hashfunc=lambda key: 1, width=16, policy="shift_first")
    fm.add("a")
    assert fm.highest_bit() == 15


def test_bounded_width():
    """
    A hash with no set bit within the bitmap lands on the last bit
    """
    fm = FlajoletMartin(hashfunc=lambda key: 0, width=8)
    fm.add("a")
    assert fm.highest_bit() == 7
    assert fm.query() == math.ceil(2 ** 7 / PHI)

    fm = FlajoletMartin(hashfunc=lambda key: 2 ** 40, width=8)
    fm.add("a")
    assert fm.highest_bit() == 7

    # Negative and oversized hash values are masked to 64 bits
    fm = FlajoletMartin(hashfunc=lambda key: -2)
    fm.add("a")
    assert fm.highest_bit() == 1
    fm = FlajoletMartin(hashfunc=lambda key: 2 ** 64 + 4)
    fm.add("a")
    assert fm.highest_bit() == 2


def test_sketch_invalid():
    for width in [0, 65, -3, 8.0, True]:
        with pytest.raises(ValueError):
            FlajoletMartin(width=width)
    with pytest.raises(ValueError):
        FlajoletMartin(policy="lowest")
    with pytest.raises(TypeError):
        FlajoletMartin().add(12)


def test_single_add(n_keys: int = 200):
    """
    Adding one key to an empty sketch sets at most one bit, and the estimate
    matches the position of the lowest set bit of its hash.
    """
    for key in random_keys(n_keys):
        h = base_hash(key)
        position = int(lowest_set_bit(np.uint64(h), np.uint64(64)))

        fm = FlajoletMartin()
        fm.add(key)
        assert fm.bitmap.sum() <= 1
        if position == 0:
            assert fm.query() == 2
        else:
            assert fm.bitmap[position] == 1
            assert fm.query() == estimate(position)


def test_idempotent(n_keys: int = 100, n_repeats: int = 20):
    """
    Adding the same keys many times gives the same bitmap as adding them once
    """
    keys = random_keys(n_keys)
    for policy in ["discard_zero", "shift_first"]:
        once = FlajoletMartin(policy=policy)
        once.update(keys)
        many = FlajoletMartin(policy=policy)
        for _ in range(n_repeats):
            many.update(keys)

        assert np.array_equal(once.bitmap, many.bitmap)
        assert once.query() == many.query()
        assert many.n_added() == n_keys * n_repeats


def test_order_independent(n_keys: int = 500):
    keys = random_keys(n_keys)
    shuffled = [keys[i] for i in np.random.default_rng(3).permutation(len(keys))]
    family = HashFamily(9, 1024, rng=5)

    fm1 = MedianFlajoletMartin(family)
    fm1.update(keys)
    fm2 = MedianFlajoletMartin(family)
    fm2.update(shuffled)

    assert fm1.estimates() == fm2.estimates()
    assert fm1.query() == fm2.query()
    for s1, s2 in zip(fm1.sketches, fm2.sketches):
        assert np.array_equal(s1.bitmap, s2.bitmap)


def test_bitmap_monotonic(n_keys: int = 300):
    """
    Once set, a bit is never cleared, so the estimate never decreases
    """
    fm = FlajoletMartin()
    previous = fm.bitmap.copy()
    previous_estimate = fm.query()
    for key in random_keys(n_keys):
        fm.add(key)
        assert np.all(fm.bitmap >= previous)
        assert fm.query() >= previous_estimate
        previous = fm.bitmap.copy()
        previous_estimate = fm.query()


def test_upper_median():
    assert upper_median([2, 8, 16, 32]) == 16
    assert upper_median([32, 16, 2, 8]) == 16
    assert upper_median([5]) == 5
    assert upper_median([3, 1, 2]) == 2
    assert upper_median([2, 2, 3, 3]) == 3


def test_ensemble_upper_median():
    """
    Four sketches with fixed hash values have known estimates. The ensemble
    reports the upper of the two middle estimates, not their average.
    """
    family = HashFamily(4, 1, rng=0)
    # Single entry tables map every key to the same hash value
    family.functions = tuple(
        HashFunction(np.array([value], dtype=np.uint64)) for value in [32, 1, 16, 8]
    )
    ensemble = MedianFlajoletMartin(family)
    ensemble.update(["a", "b", "c"])

    assert ensemble.estimates() == [estimate(5), 2, estimate(4), estimate(3)]
    assert ensemble.estimates() == [42, 2, 21, 11]
    assert ensemble.query() == 21
    assert ensemble.cardinality() == upper_median(ensemble.estimates())


def test_ensemble_single_function(n_keys: int = 300):
    """
    An ensemble of one hash function reports the same as that function's sketch
    """
    family = HashFamily(1, 4096, rng=21)
    ensemble = MedianFlajoletMartin(family)
    sketch = FlajoletMartin(family[0])

    for key in random_keys(n_keys):
        ensemble.add(key)
        sketch.add(key)

    assert len(ensemble) == 1
    assert ensemble.query() == sketch.query()
    assert ensemble.cardinality() == sketch.cardinality()
    assert np.array_equal(ensemble.sketches[0].bitmap, sketch.bitmap)


def test_ensemble_median(n_functions: int = 10, n_keys: int = 1000):
    """
    The ensemble reports the estimate at index N // 2 of the sorted sketch
    estimates, and every sketch sees every key.
    """
    family = HashFamily(n_functions, 4096, rng=1327)
    ensemble = MedianFlajoletMartin(family, policy="shift_first")
    ensemble.update(random_keys(n_keys))

    estimates = ensemble.estimates()
    assert len(estimates) == n_functions
    assert ensemble.query() == sorted(estimates)[n_functions // 2]
    assert all(e in VALID_ESTIMATES for e in estimates)
    assert all(s.n_added() == n_keys for s in ensemble.sketches)
    assert ensemble.n_added() == n_keys

    # Each sketch matches a standalone sketch with the same hash function
    for hashfunc, sketch in zip(family, ensemble.sketches):
        standalone = FlajoletMartin(hashfunc, policy="shift_first")
        standalone.update(random_keys(n_keys))
        assert np.array_equal(standalone.bitmap, sketch.bitmap)
        assert not np.shares_memory(standalone.bitmap, sketch.bitmap)


def test_ensemble_accuracy(n_keys: int = 2000, n_functions: int = 15):
    """
    Loose sanity check that the median estimate is in the right ballpark. No
    error bound is guaranteed.
    """
    keys = random_keys(n_keys, seed=99)
    n_keys = len(keys)

    for policy in ["discard_zero", "shift_first"]:
        family = HashFamily(n_functions, 2 ** 16, rng=1327)
        ensemble = MedianFlajoletMartin(family, policy=policy)
        ensemble.update(keys)
        assert n_keys / 8 <= ensemble.query() <= n_keys * 16


def test_ensemble_odd_discard_zero(caplog):
    """
    With odd tables every hash has bit 0 set, so discard_zero drops every key
    """
    family = HashFamily(4, 64, rng=0, odd=True)
    with caplog.at_level(logging.WARNING):
        ensemble = MedianFlajoletMartin(family)
    assert "discard every observation" in caplog.text

    ensemble.update(["a", "b", "c", "d", "e"])
    assert ensemble.estimates() == [2, 2, 2, 2]
    assert ensemble.query() == 2

    # shift_first on the same tables records every key
    ensemble = MedianFlajoletMartin(family, policy="shift_first")
    ensemble.update(random_keys(200))
    assert ensemble.query() > 2


def test_ensemble_invalid():
    family = HashFamily(3, 16, rng=0)
    with pytest.raises(ValueError):
        MedianFlajoletMartin(family, width=0)
    with pytest.raises(ValueError):
        MedianFlajoletMartin(family, policy="nope")


def test_exact_counter():
    exact = ExactCounter()
    assert exact.query() == 0
    exact.update("a b c a b c d".split())
    exact.add("a")
    assert exact.query() == 4
    assert exact.cardinality() == 4


def test_read_tokens(tmp_path):
    path = tmp_path / "input.txt"
    path.write_text("a b  c\n\n  a\tb c d\n", encoding="utf-8")
    assert list(read_tokens(path)) == [b"a", b"b", b"c", b"a", b"b", b"c", b"d"]


def test_read_tokens_invalid_utf8(tmp_path):
    """
    Bytes that are not valid UTF-8 are kept as tokens and do not end the stream
    """
    path = tmp_path / "input.txt"
    path.write_bytes(b"a b c\nd e \xff\nf g h\n")

    tokens = list(read_tokens(path))
    assert len(tokens) == 9
    assert b"\xff" in tokens
    assert tokens[-1] == b"h"

    config = Config(n_functions=3, radix=64)
    assert estimate_stream(read_tokens(path), config).exact == 9


def test_read_tokens_missing(tmp_path, caplog):
    """
    An unreadable file is logged and gives an empty stream
    """
    with caplog.at_level(logging.ERROR):
        tokens = list(read_tokens(tmp_path / "missing.txt"))
    assert tokens == []
    assert "missing.txt" in caplog.text


def test_estimate_stream():
    """
    The example stream has four distinct tokens. The sketch estimates only have
    to be of the form ceil(2**i / PHI).
    """
    config = Config(n_functions=9, radix=256)
    estimates = estimate_stream("a b c a b c d".split(), config)

    assert estimates.exact == 4
    assert estimates.single in VALID_ESTIMATES
    assert estimates.median in VALID_ESTIMATES


def test_estimate_stream_empty(tmp_path):
    config = Config(n_functions=4, radix=32)
    assert estimate_stream([], config) == Estimates(0, 2, 2)
    assert estimate_stream(read_tokens(tmp_path / "missing.txt"), config) == (0, 2, 2)


def test_estimate_stream_deterministic():
    """
    Same seed, sizing and stream give identical results
    """
    tokens = [f"token{i % 700}" for i in range(3000)]
    for policy in ["discard_zero", "shift_first"]:
        config = Config(n_functions=11, radix=2048, seed=42, policy=policy)
        first = estimate_stream(tokens, config)
        second = estimate_stream(iter(tokens), config)
        assert first == second
        assert first.exact == 700


def test_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("seed: 7\nn_functions: 3\npolicy: shift_first\n", encoding="utf-8")
    config = load_config(path)
    assert config == Config(seed=7, n_functions=3, policy="shift_first")
    assert config.radix == 100000
    assert config.width == 64

    # An empty file gives the defaults
    path.write_text("", encoding="utf-8")
    assert load_config(path) == Config()

    for data in [
        {"radix": 0},
        {"n_functions": 0},
        {"width": 65},
        {"policy": "other"},
        {"odd": "yes"},
        {"seed": "1327"},
        {"hash_seed": -1},
        {"hash_seed": 2 ** 64},
        {"n_functions": True},
        {"buckets": 4},
    ]:
        with pytest.raises(ValueError):
            config_from_dict(data)

    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_cli(tmp_path, capsys):
    path = tmp_path / "input.txt"
    path.write_text("a b c a b c d\n", encoding="utf-8")

    assert main([str(path), "--functions", "5", "--radix", "64"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "exact 4"
    assert lines[1].startswith("flajolet ")
    assert lines[2].startswith("median flajolet ")
    assert int(lines[1].split()[-1]) in VALID_ESTIMATES
    assert int(lines[2].split()[-1]) in VALID_ESTIMATES

    # Same arguments give byte identical output
    assert main([str(path), "--functions", "5", "--radix", "64"]) == 0
    assert capsys.readouterr().out.splitlines() == lines


def test_cli_config_file(tmp_path, capsys):
    data = tmp_path / "input.txt"
    data.write_text("x y z\n", encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text("n_functions: 3\nradix: 16\npolicy: shift_first\n", encoding="utf-8")

    assert main([str(data), "--config", str(config), "--odd"]) == 0
    out = capsys.readouterr().out
    assert "exact 3" in out

    # Command line values are validated like file values
    with pytest.raises(SystemExit):
        main([str(data), "--config", str(config), "--radix", "0"])
    with pytest.raises(SystemExit):
        main([str(data), "--config", str(tmp_path / "missing.yaml")])


def test_cli_no_odd(tmp_path, capsys):
    """
    --no-odd turns off odd tables set in the config file. Odd tables with the
    discard_zero policy always report 2.
    """
    data = tmp_path / "input.txt"
    data.write_text(" ".join(f"w{i}" for i in range(200)) + "\n", encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text("n_functions: 5\nradix: 256\nodd: true\n", encoding="utf-8")

    assert main([str(data), "--config", str(config)]) == 0
    assert "median flajolet 2" in capsys.readouterr().out.splitlines()

    assert main([str(data), "--config", str(config), "--no-odd"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "exact 200"
    assert int(lines[2].split()[-1]) > 2


def test_cli_missing_input(tmp_path, capsys):
    assert main([str(tmp_path / "missing.txt"), "--functions", "3", "--radix", "8"]) == 0
    assert capsys.readouterr().out.splitlines() == [
        "exact 0",
        "flajolet 2",
        "median flajolet 2",
    ]
