#!/usr/bin/env python3
"""Daily cap load test: fire concurrent message-sent awards at one learner.

RUN:  python scripts/load_test_daily_cap.py [--requests 60] [--concurrency 20]

Runs the app in-process over httpx's ASGI transport (in-memory store, no
server needed), sends the awards concurrently, then prints how many
succeeded.  Exactly 20 must succeed no matter how the requests interleave,
and the learner's balance must be 20 * 2 = 40.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time
import uuid

import httpx

# Every request contends on the same learner document; give each award
# enough attempts to outlast the other in-flight ones.
os.environ.setdefault("STORE_MAX_ATTEMPTS", "100")

from app.main import app  # noqa: E402
from app.services import token_service  # noqa: E402

MESSAGE_CAP = 20
MESSAGE_POINTS = 2


async def run(total: int, concurrency: int) -> int:
    user_id = f"load-{uuid.uuid4().hex[:8]}"
    token = token_service.create_access_token(sub=user_id)
    headers = {"Authorization": f"Bearer {token}"}
    limit = asyncio.Semaphore(concurrency)
    transport = httpx.ASGITransport(app=app)

    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:

        async def send(i: int) -> bool:
            async with limit:
                resp = await client.post(
                    "/v1/points/message-sent",
                    json={"conversation_id": f"conv-{i}"},
                    headers=headers,
                )
                resp.raise_for_status()
                return resp.json()["success"]

        start = time.monotonic()
        outcomes = await asyncio.gather(*(send(i) for i in range(total)))
        elapsed = time.monotonic() - start

        balance = (await client.get("/v1/points/me", headers=headers)).json()

    awarded = sum(outcomes)
    print(f"Daily cap load test: {total} requests, concurrency {concurrency}")
    print("-" * 50)
    print(f"  Awarded:      {awarded:>4}")
    print(f"  Capped:       {total - awarded:>4}")
    print(f"  Balance:      {balance['points']:>4}")
    print(f"  Elapsed:      {elapsed:.2f}s")

    expected = min(total, MESSAGE_CAP)
    if awarded != expected or balance["points"] != expected * MESSAGE_POINTS:
        print(f"FAIL: expected {expected} awards and {expected * MESSAGE_POINTS} points")
        return 1
    print("OK: cap held under concurrency.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--requests", type=int, default=60)
    parser.add_argument("--concurrency", type=int, default=20)
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.requests, args.concurrency)))


if __name__ == "__main__":
    main()
