#!/usr/bin/env python3
"""
Helper script to trigger a bulk re-index via the API and watch the queue drain.
Usage: python scripts/reindex.py [--url http://localhost:8000] [--ids 1 2 3]
"""

import argparse
import sys
import time
import requests


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Queue documents for embedding and poll the queue.")
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--ids", type=int, nargs="*", help="Document ids (default: every document)")
    parser.add_argument("--interval", type=float, default=2.0, help="Seconds between polls")
    parser.add_argument("--no-wait", action="store_true", help="Queue and exit without polling")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    base_url = args.url.rstrip("/")

    print(f"🔌 Connecting to {base_url}...")

    # 1. Health Check
    try:
        resp = requests.get(f"{base_url}/health", timeout=10)
        resp.raise_for_status()
        print("✅ Backend is up and running.")
    except requests.exceptions.ConnectionError:
        print(f"❌ Could not connect to {base_url}. Is the backend running?")
        print("   Try: uvicorn main:app --reload")
        return 1
    except requests.exceptions.RequestException as e:
        print(f"❌ Health check failed: {e}")
        return 1

    # 2. Queue documents
    print("\n🚀 Queueing documents for embedding...")
    body = {"document_ids": args.ids} if args.ids else {}
    try:
        resp = requests.post(f"{base_url}/documents/embed/batch", json=body, timeout=30)
        resp.raise_for_status()
        data = resp.json()
        print(f"✅ Queued {data['queued']} documents (queue length {data['queue_length']}).")
    except requests.exceptions.RequestException as e:
        print(f"❌ Failed to queue documents: {e}")
        return 1

    if args.no_wait or not data["queued"]:
        return 0

    # 3. Poll queue
    print("\n⏳ Polling queue until it drains...")
    start_time = time.time()
    while True:
        try:
            resp = requests.get(f"{base_url}/documents/embed/queue", timeout=10)
            resp.raise_for_status()
            snapshot = resp.json()
        except KeyboardInterrupt:
            print("\n👋 Monitoring stopped (queue keeps running in background).")
            return 0
        except requests.exceptions.RequestException as e:
            print(f"❌ Error polling queue: {e}")
            return 1

        elapsed = int(time.time() - start_time)
        print(
            f"   [{elapsed}s] queued: {snapshot['queue_length']}, "
            f"processing: {snapshot['processing_count']}"
        )
        if snapshot["queue_length"] == 0 and snapshot["processing_count"] == 0:
            break
        try:
            time.sleep(args.interval)
        except KeyboardInterrupt:
            print("\n👋 Monitoring stopped (queue keeps running in background).")
            return 0

    # 4. Report failures
    failed = []
    for document_id in args.ids or []:
        resp = requests.get(f"{base_url}/documents/{document_id}/embed", timeout=10)
        if resp.ok and resp.json()["status"] == "failed":
            failed.append((document_id, resp.json().get("error")))

    if failed:
        print(f"\n⚠️ {len(failed)} documents failed:")
        for document_id, error in failed:
            print(f"   - {document_id}: {error}")
        return 1

    print("\n✅ Re-index completed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
