"""Reorg target selection shared by the slot loop and the proof-of-work prologue."""

import logging
import random

from ..chain import Block, MockChain
from ..exceptions import NotFoundError

logger = logging.getLogger(__name__)


def calc_reorg_target(chain: MockChain, rng: random.Random, max_depth: int,
                      parent_number: int, minimum: int) -> Block:
    """Pick a canonical ancestor up to max_depth blocks back, never below minimum."""
    depth = rng.random() * max_depth
    target = int(max(parent_number - depth, minimum))
    block = chain.get_block_by_number(target)
    if block is None:
        raise NotFoundError(f"no canonical block at height {target}")
    logger.debug(f"Reorg target: parent={parent_number}, depth={depth:.2f}, target={target}")
    return block
