import argparse
import asyncio
import sys
import os

# Add backend to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from peercall.config.redis import get_redis, close_redis
from peercall.services.signaling import RedisSignalingChannel


async def clear_calls(call_id: str | None = None):
    channel = RedisSignalingChannel(client=await get_redis())
    call_ids = [call_id] if call_id else await channel.call_ids()

    if not call_ids:
        print("✅ No call records to clear.")
    for cid in call_ids:
        await channel.purge(cid)
        print(f"🧹 Cleared call record {cid}")

    await close_redis()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Remove leftover call records from Redis")
    parser.add_argument("--call-id", help="Only clear this call (e.g. alice_bob)")
    args = parser.parse_args()

    asyncio.run(clear_calls(args.call_id))
