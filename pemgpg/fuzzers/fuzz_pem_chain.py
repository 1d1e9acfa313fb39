#!/usr/bin/env python3
"""Fuzzer for PEM chain decomposition.

Feeds arbitrary bytes to decompose_chain. An empty chain is the only
expected failure; every other exception is a finding. Successful results
are checked for the shape the API promises: a sha256 id over the raw
input, first/last matching the ordered list, and every element
re-decoding to exactly one block.

Usage:
    python fuzz_pem_chain.py seeds/pem_chain/
"""

import hashlib
import os
import sys

import atheris

# Add repo root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

with atheris.instrument_imports():
    from pemgpg.src.errors import EmptyChainError
    from pemgpg.src.pem_chain import decompose_chain, iter_blocks


def TestOneInput(data: bytes) -> None:
    """Fuzz target for decompose_chain."""
    try:
        result = decompose_chain(data)
    except EmptyChainError:
        return

    assert result.id == hashlib.sha256(data).hexdigest(), "id must hash the raw input"
    assert result.ordered, "a successful result has at least one element"
    assert result.first == result.ordered[0]
    assert result.last == result.ordered[-1]
    for element in result.ordered:
        blocks = list(iter_blocks(element.encode("ascii")))
        assert len(blocks) == 1, "element must hold exactly one block"
        assert blocks[0].encode() == element, "element must be canonical"


def main():
    """Main entry point."""
    seed_dir = os.path.join(os.path.dirname(__file__), "seeds", "pem_chain")

    if os.path.isdir(seed_dir) and os.listdir(seed_dir):
        atheris.Setup(sys.argv + [seed_dir], TestOneInput)
    else:
        atheris.Setup(sys.argv, TestOneInput)

    atheris.Fuzz()


if __name__ == "__main__":
    main()
