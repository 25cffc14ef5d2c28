#!/usr/bin/env python3
"""
API health check for the hardware manager.
Probes every endpoint and validates the response shape.
"""

from __future__ import annotations

import argparse
import sys
import requests
from typing import Any, Dict, List, Optional
from dataclasses import dataclass


@dataclass
class EndpointTest:
    """Test case for an API endpoint."""
    path: str
    name: str
    expected_status: int = 200
    expected_fields: Optional[List[str]] = None


class APIHealthChecker:
    """Runs endpoint tests against a running hardware manager."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.results: List[Dict[str, Any]] = []

    def test_endpoint(self, test: EndpointTest) -> Dict[str, Any]:
        """Test a single endpoint."""
        url = f"{self.base_url}{test.path}"
        result: Dict[str, Any] = {
            "name": test.name,
            "path": test.path,
            "status": "ok",
            "status_code": None,
            "response_time_ms": None,
            "errors": [],
        }

        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            result["status"] = "error"
            result["errors"].append(f"Request failed: {e}")
            return result

        result["status_code"] = response.status_code
        result["response_time_ms"] = response.elapsed.total_seconds() * 1000

        if response.status_code != test.expected_status:
            result["errors"].append(f"Expected status {test.expected_status}, got {response.status_code}")

        if test.expected_fields:
            try:
                data = response.json()
            except ValueError:
                result["errors"].append("Response is not JSON")
            else:
                missing = [f for f in test.expected_fields if f not in data]
                if missing:
                    result["errors"].append(f"Missing fields: {', '.join(missing)}")

        if result["errors"]:
            result["status"] = "error"
        return result

    def run(self, cloud_id: Optional[str] = None) -> List[Dict[str, Any]]:
        tests = [
            EndpointTest("/healthz", "health", expected_fields=["status"]),
            EndpointTest("/readyz", "readiness", expected_fields=["status"]),
            EndpointTest("/inventory", "inventory", expected_fields=["profiles", "nodes", "free", "allocations"]),
        ]
        if cloud_id:
            tests.append(EndpointTest(
                f"/nodepools/{cloud_id}/allocations",
                "cloud allocations",
                expected_fields=["cloudID", "nodegroups", "nodeNames"],
            ))
        self.results = [self.test_endpoint(t) for t in tests]
        return self.results


def main() -> None:
    parser = argparse.ArgumentParser(description="Check the hardware manager HTTP endpoints")
    parser.add_argument("--base-url", default="http://localhost:8080")
    parser.add_argument("--cloud-id", help="Also check the allocations of this cloud")
    args = parser.parse_args()

    checker = APIHealthChecker(args.base_url)
    results = checker.run(cloud_id=args.cloud_id)

    failed = 0
    for r in results:
        mark = "✓" if r["status"] == "ok" else "✗"
        elapsed = f"{r['response_time_ms']:.1f}ms" if r["response_time_ms"] is not None else "-"
        print(f"{mark} {r['name']:<18} {r['path']:<40} {r['status_code']} {elapsed}")
        for err in r["errors"]:
            print(f"    {err}")
        failed += r["status"] != "ok"

    print(f"\nPassed: {len(results) - failed}/{len(results)}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
