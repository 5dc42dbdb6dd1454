#!/usr/bin/env python3
"""
Order Save Service - E2E Integration Checks

Run against a running service:
  python order_save_e2e.py

Optional env:
  ORDER_BASE=http://localhost:8001
  REQUEST_TIMEOUT=8
  DEBUG=1
"""

import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests


# =========================
# Output
# =========================

RESET = "\033[0m"
BOLD = "\033[1m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
GRAY = "\033[90m"


def info(msg: str):
    print(msg)


def ok(msg: str):
    print(f"{GREEN}PASS{RESET} {msg}")


def fail(msg: str):
    print(f"{RED}FAIL{RESET} {msg}")


def heading(text: str):
    print(f"\n{BOLD}== {text}{RESET}")


# =========================
# Config
# =========================

ORDER_BASE = os.getenv("ORDER_BASE", "http://localhost:8001")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "8"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

ORDERS_PATH = "/api/v1/orders"
ORDER_PATH = "/api/v1/orders/{order_id}"

# Line costs of the test order and their expected persisted total.
DETAIL_COSTS = (100.0, 250.50)
EXPECTED_TOTAL = 350.50


def debug(msg: str):
    if DEBUG:
        print(f"{GRAY}{msg}{RESET}")


@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    debug(f"{method} {url} json={kwargs.get('json')}")
    return requests.request(method, url, **kwargs)


def wait_for_health(timeout: int = 30) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", ORDER_BASE + "/").status_code == 200:
                ok("order service is healthy.")
                return True
        except requests.exceptions.RequestException as e:
            debug(f"order service not ready: {e}")
        time.sleep(1)
    fail(f"order service did not become healthy in {timeout} seconds.")
    return False


def new_order_payload(name: str) -> Dict[str, Any]:
    return {
        "header": {"order_name": name, "order_date": time.strftime("%Y-%m-%d")},
        "details": [
            {"temp_id": -(i + 1), "detail_number": i + 1, "detail_cost": cost}
            for i, cost in enumerate(DETAIL_COSTS)
        ],
        "payments": [{"temp_id": -10, "amount": 50.0, "type_paid_id": 1}],
    }


def get_order(order_id: int) -> Dict[str, Any]:
    resp = http("GET", ORDER_BASE + ORDER_PATH.format(order_id=order_id))
    if resp.status_code != 200:
        raise AssertionError(f"GET order {order_id}: expected HTTP 200, got {resp.status_code}, body={resp.text}")
    return resp.json()


# =========================
# Checks
# =========================

def check_create() -> Tuple[CheckResult, Optional[int]]:
    heading("Create Order")
    resp = http("POST", ORDER_BASE + ORDERS_PATH, json=new_order_payload("E2E order"))
    if resp.status_code != 200:
        fail(f"Unexpected status {resp.status_code}: {resp.text}")
        return CheckResult("Create Order", False, resp.text), None

    data = resp.json()
    order_id = data.get("order_id")
    total = data["aggregate"]["header"].get("total_amount")
    success = isinstance(order_id, int) and total == EXPECTED_TOTAL
    msg = f"order_id={order_id}, total_amount={total} (expected {EXPECTED_TOTAL})"
    (ok if success else fail)(msg)
    return CheckResult("Create Order", success, msg), order_id


def check_edit(order_id: int) -> Tuple[CheckResult, Dict[str, Any]]:
    heading(f"Edit Order {order_id}")
    loaded = get_order(order_id)
    stale = dict(loaded)
    loaded["details"] = loaded["details"][1:]
    info(f"PUT with {len(loaded['details'])} detail(s), version={loaded['header'].get('version')}")

    resp = http("PUT", ORDER_BASE + ORDER_PATH.format(order_id=order_id), json=loaded)
    if resp.status_code != 200:
        fail(f"Unexpected status {resp.status_code}: {resp.text}")
        return CheckResult("Edit Order", False, resp.text), stale

    fresh = get_order(order_id)
    total = fresh["header"].get("total_amount")
    success = total == DETAIL_COSTS[1] and len(fresh["details"]) == 1
    msg = f"total_amount={total} (expected {DETAIL_COSTS[1]}), details={len(fresh['details'])}"
    (ok if success else fail)(msg)
    return CheckResult("Edit Order", success, msg), stale


def check_version_conflict(order_id: int, stale: Dict[str, Any]) -> CheckResult:
    heading("Stale Edit Is Rejected")
    resp = http("PUT", ORDER_BASE + ORDER_PATH.format(order_id=order_id), json=stale)
    detail = resp.json().get("detail", {}) if resp.content else {}
    success = resp.status_code == 409 and isinstance(detail, dict) and detail.get("action") == "reload"
    msg = f"HTTP {resp.status_code}, detail={detail}"
    (ok if success else fail)(msg)
    return CheckResult("Version Conflict", success, msg)


def check_failed_create_rolls_back() -> CheckResult:
    heading("Failed Create Is Rolled Back")
    payload = new_order_payload("E2E rollback")
    payload["payments"] = [{"temp_id": -10, "amount": None}]

    resp = http("POST", ORDER_BASE + ORDERS_PATH, json=payload)
    detail = resp.json().get("detail", {}) if resp.content else {}
    if not isinstance(detail, dict):
        detail = {}
    order_id = detail.get("order_id")
    success = resp.status_code >= 400 and detail.get("rolled_back") is True
    if success and order_id is not None:
        gone = http("GET", ORDER_BASE + ORDER_PATH.format(order_id=order_id)).status_code == 404
        success = gone
    msg = f"HTTP {resp.status_code}, phase={detail.get('phase')}, rolled_back={detail.get('rolled_back')}"
    (ok if success else fail)(msg)
    return CheckResult("Rollback On Create", success, msg)


# =========================
# Summary
# =========================

def print_results(results: List[CheckResult]):
    heading("Results")
    for r in results:
        (ok if r.success else fail)(f"{r.name}: {r.details}" if r.details else r.name)

    passed = sum(r.success for r in results)
    print(f"\n{passed}/{len(results)} checks passed")
    if passed < len(results):
        print(f"{YELLOW}Check the service log for 'Error saving order' lines. With DATA_API_URL set, "
              f"the data API must answer 409 on stale versions.{RESET}")


def main():
    heading("Order save service E2E checks")
    info(f"Waiting for {ORDER_BASE} to become healthy...")
    if not wait_for_health():
        sys.exit(1)

    results: List[CheckResult] = []
    created, order_id = check_create()
    results.append(created)
    if order_id is not None:
        edited, stale = check_edit(order_id)
        results.append(edited)
        if edited.success:
            results.append(check_version_conflict(order_id, stale))
    results.append(check_failed_create_rolls_back())

    print_results(results)
    sys.exit(0 if all(r.success for r in results) else 1)


if __name__ == "__main__":
    main()
