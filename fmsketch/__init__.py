__version__ = "1.0.0"

from fmsketch.config import Config, load_config
from fmsketch.exact import ExactCounter
from fmsketch.flajoletmartin import FlajoletMartin, MedianFlajoletMartin, PHI
from fmsketch.hashes import fasthash64, fasthash32
from fmsketch.hashfamily import HashFamily, HashFunction
from fmsketch.helpers import (
    Estimates,
    estimate_stream,
    read_tokens,
    setup_logger,
)
