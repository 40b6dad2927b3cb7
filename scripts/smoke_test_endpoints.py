"""
Smoke test against a running VOLAPI service.

Usage:
    python scripts/smoke_test_endpoints.py --base-url http://127.0.0.1:8080
"""
import argparse

import requests

ENDPOINTS = ["/ping", "/volumes", "/volumesizes", "/volumereservations", "/v1/ping"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Check that the VOLAPI endpoints answer")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080")
    args = parser.parse_args()

    for ep in ENDPOINTS:
        try:
            r = requests.get(f"{args.base_url}{ep}", timeout=5)
            print(f"{ep}: {r.status_code}")
        except requests.RequestException as e:
            print(f"{ep}: ERROR - {e}")


if __name__ == "__main__":
    main()
