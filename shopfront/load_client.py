#!/usr/bin/env python3
"""
shopfront load client (async)

Simulates the shopper flow against the server:
  1) POST /checkout  ({cart: [{id, qty}]}) -> {order_id, url}
  2) Extract psid from url (/mockpay/{psid})
  3) POST /mockpay/{psid}/emit  (t=succeeded|failed|canceled)
  4) Poll GET /api/orders/{order_id} until status != pending (or timeout)

Point it at a product with little stock to watch the advisory reservation
race: every shopper gets a session, but the number of PAID orders never
exceeds the stock the product started with.

Usage:
  python -m shopfront.load_client --base http://localhost:8000 \
                                  --product shoe-1 --total 50 --concurrency 50

Notes:
- This targets the MockPay flow.
- Keep server workers=1 with the json store; it has no cross-process locking.
"""

import asyncio
import random
import time
import argparse
from dataclasses import dataclass, field
from typing import Optional, List, Dict

import httpx

TERMINAL = ("paid", "paid_unfulfilled")


@dataclass
class Result:
    ok: bool
    # PAID/PAID_UNFULFILLED/REJECTED/FAILED/CANCELED/TIMEOUT/ERROR
    outcome: str
    t_checkout: float = 0.0
    t_emit: float = 0.0
    t_observed: float = 0.0  # time until a terminal status was observed
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def summary(self) -> Dict[str, float]:
        lat = [r.t_observed for r in self.results if r.t_observed > 0]

        def pct(p):
            if not lat:
                return 0.0
            x = sorted(lat)
            k = int(max(0, min(len(x)-1, round(p/100*(len(x)-1)))))
            return x[k]
        return {
            "total": len(self.results),
            "ok": sum(1 for r in self.results if r.ok),
            "paid": self.count("PAID"),
            "unfulfilled": self.count("PAID_UNFULFILLED"),
            "rejected": self.count("REJECTED"),
            "failed": self.count("FAILED"),
            "canceled": self.count("CANCELED"),
            "timeout": self.count("TIMEOUT"),
            "error": self.count("ERROR"),
            "p50_s": pct(50),
            "p90_s": pct(90),
            "p99_s": pct(99),
            "avg_s": (sum(lat)/len(lat)) if lat else 0.0,
        }

    def print(self, elapsed_s: float, stock_before: Optional[int],
              stock_after: Optional[int]):
        s = self.summary()
        print("\n=== Load Summary ===")
        print(
            f"Total: {int(s['total'])}   OK: {int(s['ok'])}   "
            f"PAID: {int(s['paid'])}   UNFULFILLED: {int(s['unfulfilled'])}"
            f"   REJECTED: {int(s['rejected'])}   FAILED: {int(s['failed'])}"
            f"   CANCELED: {int(s['canceled'])}   "
            f"TIMEOUT: {int(s['timeout'])}   ERROR: {int(s['error'])}"
        )
        print(
            f"Latency (observed confirmation): "
            f"avg {s['avg_s']:.3f}s   p50 {s['p50_s']:.3f}s   "
            f"p90 {s['p90_s']:.3f}s   p99 {s['p99_s']:.3f}s"
        )
        if stock_before is not None and stock_after is not None:
            print(f"Stock: {stock_before} -> {stock_after}")
        print(
            f"Wall time: {elapsed_s:.3f}s   "
            f"Throughput: {s['total']/elapsed_s:.1f} ops/s"
        )


async def product_stock(client: httpx.AsyncClient, base: str,
                        product_id: str) -> Optional[int]:
    resp = await client.get(f"{base}/api/products/{product_id}")
    if resp.status_code != 200:
        return None
    return int(resp.json().get("inventory", 0))


async def one_order(
    client: httpx.AsyncClient,
    base: str,
    product_id: str,
    qty: int,
    emit_kind: str,
    poll_interval_s: float,
    poll_timeout_s: float,
) -> Result:
    r = Result(ok=False, outcome="ERROR")

    # 1) checkout
    t0 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/checkout",
            json={"cart": [{"id": product_id, "qty": qty}]},
            timeout=30.0,
        )
        if resp.status_code == 409:
            r.ok = True
            r.outcome = "REJECTED"
            return r
        resp.raise_for_status()
        j = resp.json()
        order_id = j["order_id"]
        redirect_url = j["url"]
    except (httpx.HTTPError, KeyError, ValueError) as e:
        r.err = f"checkout: {e}"
        return r
    r.t_checkout = time.perf_counter() - t0

    # 2) extract psid; url is like "/mockpay/{psid}"
    parts = redirect_url.strip("/").split("/")
    psid = parts[1] if len(parts) >= 2 else None
    if not psid:
        r.err = f"bad redirect url: {redirect_url}"
        return r

    # 3) emit outcome (simulate clicking the button on the MockPay page)
    t1 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/mockpay/{psid}/emit",
            data={"t": emit_kind, "name": "Load Tester",
                  "email": "load@example.com"},
            follow_redirects=False,
            timeout=30.0,
        )
        if resp.status_code >= 400:
            r.err = f"emit HTTP {resp.status_code}"
            return r
    except httpx.HTTPError as e:
        r.err = f"emit: {e}"
        return r
    r.t_emit = time.perf_counter() - t1

    if emit_kind != "succeeded":
        # failed/canceled payments leave the order pending
        r.ok = True
        r.outcome = emit_kind.upper()
        return r

    # 4) poll order status until terminal or timeout
    t2 = time.perf_counter()
    deadline = t2 + poll_timeout_s
    status = "pending"
    try:
        while time.perf_counter() < deadline:
            g = await client.get(f"{base}/api/orders/{order_id}",
                                 timeout=10.0)
            if g.status_code == 200:
                status = g.json().get("status", status)
                if status in TERMINAL:
                    break
            await asyncio.sleep(poll_interval_s)
    except httpx.HTTPError as e:
        r.err = f"poll: {e}"
        return r

    r.t_observed = time.perf_counter() - t2
    r.ok = True
    r.outcome = status.upper() if status in TERMINAL else "TIMEOUT"
    return r


async def run_load(
    base: str,
    product_id: str,
    qty: int,
    total: int,
    concurrency: int,
    fail_rate: float,
    cancel_rate: float,
    poll_interval_s: float,
    poll_timeout_s: float,
):
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "ShopfrontLoad/1.0"}
    ) as client:
        before = await product_stock(client, base, product_id)

        async def worker(n: int):
            async with sem:
                rnd = random.random()
                if rnd < fail_rate:
                    emit_kind = "failed"
                elif rnd < fail_rate + cancel_rate:
                    emit_kind = "canceled"
                else:
                    emit_kind = "succeeded"

                res = await one_order(
                    client, base, product_id, qty, emit_kind,
                    poll_interval_s, poll_timeout_s
                )
                stats.add(res)

        tasks = [asyncio.create_task(worker(i)) for i in range(total)]
        await asyncio.gather(*tasks)

        after = await product_stock(client, base, product_id)
    return stats, before, after


def main():
    ap = argparse.ArgumentParser(description="shopfront load client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--product", default="shoe-1",
                    help="Product id every shopper buys")
    ap.add_argument("--qty", type=int, default=1,
                    help="Quantity per order")
    ap.add_argument("--total", type=int, default=100,
                    help="Total orders to run")
    ap.add_argument("--concurrency", type=int, default=20,
                    help="Concurrent workers")
    ap.add_argument("--fail-rate", type=float, default=0.0,
                    help="Fraction of orders to mark as failed")
    ap.add_argument("--cancel-rate", type=float, default=0.0,
                    help="Fraction of orders to mark as canceled")
    ap.add_argument("--poll-interval", type=float, default=0.05,
                    help="Seconds between status polls")
    ap.add_argument("--poll-timeout", type=float, default=10.0,
                    help="Max seconds to wait for a terminal status")
    args = ap.parse_args()

    t_start = time.perf_counter()
    stats, before, after = asyncio.run(run_load(
        base=args.base.rstrip("/"),
        product_id=args.product,
        qty=args.qty,
        total=args.total,
        concurrency=args.concurrency,
        fail_rate=args.fail_rate,
        cancel_rate=args.cancel_rate,
        poll_interval_s=args.poll_interval,
        poll_timeout_s=args.poll_timeout,
    ))
    elapsed = time.perf_counter() - t_start
    stats.print(elapsed, before, after)


if __name__ == "__main__":
    main()
