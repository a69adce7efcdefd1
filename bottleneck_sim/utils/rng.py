import zlib
from typing import Dict

import numpy as np


class RandomStreams:
    """
    Hands out independent, reproducible NumPy generators keyed by component name.

    Each stream is seeded from the run seed and a CRC of the component name, so
    the numbers a component draws do not depend on how many other components
    exist or in which order they were created.
    """

    def __init__(self, seed: int):
        """
        Args:
            seed (int): Run seed. Must be a non-negative integer.
        """
        if seed < 0:
            raise ValueError("Seed must be a non-negative integer")
        self.seed = seed
        self._streams: Dict[str, np.random.Generator] = {}

    def stream(self, name: str) -> np.random.Generator:
        """
        Return the generator for a component, creating it on first use.

        Args:
            name (str): Stable component name, e.g. "red:router/2".

        Returns:
            np.random.Generator: The component's generator.
        """
        if name not in self._streams:
            sequence = np.random.SeedSequence([self.seed, zlib.crc32(name.encode())])
            self._streams[name] = np.random.default_rng(sequence)
        return self._streams[name]

    def __contains__(self, name: str) -> bool:
        return name in self._streams
