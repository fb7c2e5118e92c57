# nat/stun_client.py
import asyncio
from typing import List

import aioice

from nat.candidate import Candidate
from nat.ice_agent import from_aioice
from util.config import IceConfig


async def discover_candidates(config: IceConfig) -> List[Candidate]:
    """Gather local candidates once (host, plus srflx/relay when STUN/TURN servers are set) and close."""
    connection = aioice.Connection(
        ice_controlling=True,
        components=config.comp_cnt,
        stun_server=config.stun_server,
        use_ipv6=config.use_ipv6,
        **config.turn_kwargs(),
    )
    try:
        await connection.gather_candidates()
        found = [from_aioice(c) for c in connection.local_candidates]
    finally:
        await connection.close()
    return [c for c in found if c is not None]


if __name__ == "__main__":
    for candidate in asyncio.run(discover_candidates(IceConfig(stun_server=("stun.l.google.com", 19302)))):
        print(f"[STUN] Found candidate: {candidate}")
