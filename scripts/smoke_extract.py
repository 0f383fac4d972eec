"""Manual smoke check against a running backend.

    python scripts/smoke_extract.py "http://xhslink.com/o/xxxx" [more links...]
"""

import json
import os
import sys

import requests

API_URL = os.getenv("XHS_RELAY_API_URL", "http://localhost:8000/api/v1")


def smoke(links: list[str]) -> int:
    print(">> /health")
    try:
        resp = requests.get(API_URL.replace("/api/v1", "") + "/health", timeout=10)
    except requests.RequestException as e:
        print(f"❌ Connection Failed: {e}")
        return 1
    print(f"   {resp.status_code} {resp.text}")

    if len(links) == 1:
        print(f"\n>> /extract {links[0]}")
        resp = requests.post(f"{API_URL}/extract", json={"url": links[0], "verify": True}, timeout=120)
    else:
        print(f"\n>> /extract-batch ({len(links)} links)")
        resp = requests.post(f"{API_URL}/extract-batch", json={"urls": links}, timeout=300)

    if not resp.ok:
        print(f"❌ Failed: {resp.status_code} - {resp.text}")
        return 1
    data = resp.json()
    if "posts" in data:
        for i, post in enumerate(data["posts"], 1):
            print(f"   [{i}] images={len(post.get('images', []))} videos={len(post.get('videos', []))} error={post.get('error')}")
    else:
        print(f"✅ images={len(data.get('imageLinks', []))} videos={len(data.get('videoLinks', []))}")
        if data.get("error"):
            print(f"   note: {data['error']}")
    print(json.dumps(data, ensure_ascii=False, indent=2)[:4000])
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(smoke(sys.argv[1:]))
