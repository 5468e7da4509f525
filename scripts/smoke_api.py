#!/usr/bin/env python3
"""
Smoke check of a running OPD queue server.

Logs in as each demo role created by ``manage.py seed_queue`` and walks
the queue endpoints, checking status codes against what the role is
allowed to do. Exits non-zero if anything is off.

    python scripts/smoke_api.py --base-url http://127.0.0.1:8000
"""
import argparse
import sys
import time
from dataclasses import dataclass
from typing import Optional

import requests

DEMO_PASSWORD = "123456"
CLINICAL_ROLES = {"admin", "doctor", "nurse", "staff"}


@dataclass
class CheckResult:
    success: bool
    role: str
    method: str
    endpoint: str
    status_code: int
    response_time: float
    error_message: str = ""


class QueueSmokeTester:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.headers = {}
        self.role = ""
        self.results: list[CheckResult] = []

    def login(self, username: str, role: str) -> bool:
        self.role = role
        self.headers = {}
        response = self.call("POST", "/api/auth/token", {"username": username, "password": DEMO_PASSWORD}, 200)
        if response is None:
            return False
        self.headers = {"Authorization": f"Token {response.json()['token']}"}
        return True

    def call(self, method: str, endpoint: str, data: Optional[dict] = None,
             expected_status: int = 200) -> Optional[requests.Response]:
        start = time.time()
        try:
            response = self.session.request(method, f"{self.base_url}{endpoint}", json=data,
                                            headers=self.headers, timeout=10)
        except requests.RequestException as e:
            self.record(False, method, endpoint, 0, 0.0, str(e))
            return None
        elapsed = time.time() - start
        ok = response.status_code == expected_status
        self.record(ok, method, endpoint, response.status_code, elapsed,
                    "" if ok else f"expected {expected_status}: {response.text[:200]}")
        return response if ok else None

    def record(self, success, method, endpoint, status_code, elapsed, error=""):
        result = CheckResult(success, self.role, method, endpoint, status_code, elapsed, error)
        self.results.append(result)
        mark = "ok  " if success else "FAIL"
        print(f"{mark} [{self.role or '-':7}] {method:4} {endpoint} -> {status_code} ({elapsed:.2f}s) {error}")

    def run_role(self, username: str, role: str):
        if not self.login(username, role):
            return
        self.call("GET", "/api/access/features")
        allowed = role in CLINICAL_ROLES
        code = 200 if allowed else 403
        self.call("GET", "/api/opd/queue", expected_status=code)
        self.call("GET", "/api/opd/queue/board", expected_status=code)
        self.call("GET", "/api/opd/queue/stats", expected_status=code)

        joined = self.call("POST", "/api/opd/queue/join",
                           {"name": f"Smoke {role}", "department": "General", "symptoms": "smoke check"}, 201)
        if joined is None:
            return
        entry_id = joined.json()["id"]
        if allowed:
            self.call("POST", "/api/opd/queue/assign", {"id": entry_id, "doctor": "Dr. Smoke"})
            self.call("POST", "/api/opd/queue/complete", {"id": entry_id})
            self.call("POST", "/api/opd/queue/assign", {"id": entry_id, "doctor": "Dr. Smoke"}, 400)
            self.call("POST", "/api/opd/queue/remove", {"id": entry_id})
        else:
            self.call("POST", "/api/opd/queue/remove", {"id": entry_id}, 403)

    def run(self, users) -> bool:
        self.role = ""
        self.call("GET", "/healthz")
        for username, role in users:
            self.run_role(username, role)
        failed = [r for r in self.results if not r.success]
        print(f"\n{len(self.results) - len(failed)}/{len(self.results)} checks passed")
        return not failed


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    args = parser.parse_args()

    users = [("admin1", "admin"), ("doctor1", "doctor"), ("nurse1", "nurse"),
             ("staff1", "staff"), ("patient1", "patient")]
    sys.exit(0 if QueueSmokeTester(args.base_url).run(users) else 1)


if __name__ == "__main__":
    main()
