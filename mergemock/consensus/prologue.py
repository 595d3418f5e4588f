"""Proof-of-work prologue: feed mined blocks to a peer until terminal total difficulty."""

import asyncio
import logging
import random
from typing import Awaitable, Callable

from .reorg import calc_reorg_target
from ..chain import MockChain
from ..config import ConsensusBehavior
from ..exceptions import FatalSetupError, MergeMockError
from ..p2p import Enode, LegacyPeer, parse_enode

logger = logging.getLogger(__name__)

PeerDialer = Callable[[Enode], Awaitable[LegacyPeer]]


async def proof_of_work_prologue(
    chain: MockChain,
    enode: str,
    rng: random.Random,
    behavior: ConsensusBehavior,
    dial: PeerDialer = LegacyPeer.dial,
) -> int:
    """Mine and announce PoW blocks until the chain reaches its terminal total difficulty.

    Returns:
        The number of the terminal block, or 0 if the chain already transitioned.

    Raises:
        FatalSetupError: if the peer cannot be reached or the blocks cannot be fed to it
    """
    ttd = chain.terminal_total_difficulty
    if ttd is None or ttd <= 0:
        logger.info("Chain already transitioned, skipping PoW prologue")
        return 0

    node = parse_enode(enode)
    try:
        peer = await dial(node)
    except MergeMockError as e:
        raise FatalSetupError(f"unable to connect to client: {e}") from e

    keep_alive = None
    try:
        try:
            await peer.peer(chain)
        except MergeMockError as e:
            raise FatalSetupError(f"unable to peer with client: {e}") from e

        keep_alive = asyncio.create_task(peer.keep_alive(), name="peer-keep-alive")

        while True:
            parent = chain.current_block()
            if rng.random() < behavior.reorg_freq:
                parent = calc_reorg_target(chain, rng, behavior.reorg_max_depth, parent.number, 0)

            try:
                block = chain.mine_block(parent)
            except MergeMockError as e:
                raise FatalSetupError(f"failed to mine block: {e}") from e

            td = chain.current_td()
            try:
                await peer.send_new_block(block, td)
            except MergeMockError as e:
                raise FatalSetupError(f"failed to msg peer: {e}") from e

            logger.debug(f"Comparing TD to terminal TD: td={td}, ttd={ttd}")
            if td >= ttd:
                logger.info("Terminal total difficulty reached, transitioning to POS")
                return chain.current_block().number
            # Give the keep-alive reader a turn between blocks.
            await asyncio.sleep(0)
    finally:
        if keep_alive is not None:
            keep_alive.cancel()
            await asyncio.gather(keep_alive, return_exceptions=True)
        await peer.close()
