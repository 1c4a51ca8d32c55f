"""Drive a running server with concurrent traffic, then check the recorded history."""
from __future__ import annotations

import asyncio
import json
import os
import random
import time
from pathlib import Path
from typing import List, Tuple

import httpx
import matplotlib.pyplot as plt
import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACT_DIR = PROJECT_ROOT / "artifacts"
ARTIFACT_DIR.mkdir(exist_ok=True)

KV_URL = os.getenv("KV_URL", "http://localhost:8080")
CLIENTS = 10
OPS_PER_CLIENT = 50
RETRY_PROBABILITY = 0.2
READ_PROBABILITY = 0.5
KEYS = [f"hist-key-{i}" for i in range(5)]


def wait_for(url: str, retries: int = 60, delay: float = 1.0) -> None:
    for _ in range(retries):
        try:
            response = httpx.get(f"{url}/health", timeout=2.0)
            if response.status_code == 200:
                return
        except httpx.HTTPError:
            pass
        time.sleep(delay)
    raise RuntimeError(f"Service at {url} failed to become healthy")


async def issue_write(client: httpx.AsyncClient, request_id: str, key: str, value: str) -> Tuple[str, float]:
    start = time.perf_counter()
    response = await client.put(
        f"{KV_URL}/kv", json={"requestId": request_id, "key": key, "value": value}
    )
    response.raise_for_status()
    return response.json()["result"], (time.perf_counter() - start) * 1000


async def issue_read(client: httpx.AsyncClient, request_id: str, key: str) -> Tuple[str, float]:
    start = time.perf_counter()
    response = await client.get(
        f"{KV_URL}/kv", params={"key": key}, headers={"X-Request-ID": request_id}
    )
    response.raise_for_status()
    return response.json()["result"], (time.perf_counter() - start) * 1000


async def run_client(client: httpx.AsyncClient, client_id: int, samples: List[dict]) -> None:
    issued: List[Tuple[str, str, str]] = []
    for seq in range(OPS_PER_CLIENT):
        key = random.choice(KEYS)
        if issued and random.random() < RETRY_PROBABILITY:
            request_id, key, value = random.choice(issued)
            result, latency = await issue_write(client, request_id, key, value)
            op = "PUT"
        elif random.random() < READ_PROBABILITY:
            result, latency = await issue_read(client, f"{client_id}-{seq}", key)
            op = "GET"
        else:
            request_id = f"{client_id}-{seq}"
            value = f"v-{client_id}-{seq}-{time.time_ns()}"
            issued.append((request_id, key, value))
            result, latency = await issue_write(client, request_id, key, value)
            op = "PUT"
        samples.append({"client": client_id, "op": op, "result": result, "latency_ms": latency})


async def perform_workload() -> List[dict]:
    samples: List[dict] = []
    async with httpx.AsyncClient(timeout=10.0) as client:
        await asyncio.gather(*(run_client(client, i, samples) for i in range(CLIENTS)))
    return samples


def fetch_json(path: str):
    response = httpx.get(f"{KV_URL}{path}", timeout=30)
    response.raise_for_status()
    return response.json()


def main() -> None:
    wait_for(KV_URL)
    print(f"Running {CLIENTS}x{OPS_PER_CLIENT} operations against {KV_URL}")
    samples = asyncio.run(perform_workload())

    check = fetch_json("/check")
    history = fetch_json("/history")
    print(f"History holds {check['totalOps']} operations, linearizable={check['isLinearizable']}")
    for violation in check["violations"]:
        print(f"  violation: {violation}")

    df = pd.DataFrame(samples)
    summary_by_op = (
        df.groupby(["op", "result"])["latency_ms"].agg(["count", "mean", "min", "max"]).reset_index()
    )
    plt.figure(figsize=(8, 4))
    for op, group in df.groupby("op"):
        plt.hist(group["latency_ms"], bins=30, alpha=0.6, label=op)
    plt.title("Request latency by operation")
    plt.xlabel("Latency (ms)")
    plt.ylabel("Requests")
    plt.legend()
    plt.grid(True, linestyle="--", alpha=0.4)
    plot_path = ARTIFACT_DIR / "latency_histogram.png"
    plt.savefig(plot_path, bbox_inches="tight")

    summary = {
        "clients": CLIENTS,
        "ops_per_client": OPS_PER_CLIENT,
        "key_count": len(KEYS),
        "is_linearizable": check["isLinearizable"],
        "violations": check["violations"],
        "total_ops": check["totalOps"],
        "duplicates": sum(1 for entry in history if entry["result"] == "duplicate"),
        "latency": summary_by_op.to_dict(orient="records"),
    }
    summary_path = ARTIFACT_DIR / "history_summary.json"
    summary_path.write_text(json.dumps(summary, indent=2))
    print(f"Saved latency plot to {plot_path}")
    print(f"Saved JSON summary to {summary_path}")


if __name__ == "__main__":
    main()
