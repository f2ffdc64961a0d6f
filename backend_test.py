#!/usr/bin/env python3
"""Smoke test against a running server: python backend_test.py [base_url]"""

import json
import sys
import uuid

import requests


class IeltsApiTester:
    def __init__(self, base_url="http://localhost:8000/api"):
        self.base_url = base_url.rstrip("/")
        self.token = None
        self.tests_run = 0
        self.tests_passed = 0
        self.user_id = None
        self.email = f"smoke-{uuid.uuid4().hex[:8]}@example.com"
        self.password = "SmokePass123"

    def run_test(self, name, method, endpoint, expected_status, data=None, auth=True):
        """Run a single API test"""
        url = f"{self.base_url}/{endpoint}"
        headers = {'Content-Type': 'application/json'}
        if auth and self.token:
            headers['Authorization'] = f'Bearer {self.token}'

        self.tests_run += 1
        print(f"\n🔍 Testing {name}...")
        print(f"   URL: {url}")

        try:
            response = requests.request(method, url, json=data, headers=headers, timeout=30)
        except requests.exceptions.Timeout:
            print("❌ Failed - Request timeout")
            return False, {}
        except requests.exceptions.RequestException as e:
            print(f"❌ Failed - Error: {str(e)}")
            return False, {}

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != expected_status:
            print(f"❌ Failed - Expected {expected_status}, got {response.status_code}")
            print(f"   Error: {body or response.text}")
            return False, body

        self.tests_passed += 1
        print(f"✅ Passed - Status: {response.status_code}")
        print(f"   Response: {json.dumps(body, indent=2)[:200]}...")
        return True, body

    def test_root_endpoint(self):
        success, _ = self.run_test("Root API Endpoint", "GET", "", 200, auth=False)
        return success

    def test_register(self):
        success, response = self.run_test(
            "User Registration",
            "POST",
            "auth/register",
            200,
            data={"email": self.email, "password": self.password, "name": "Smoke Test"},
            auth=False,
        )
        if success:
            self.token = response["token"]
            self.user_id = response["user"]["id"]
        return success

    def test_login(self):
        success, response = self.run_test(
            "User Login",
            "POST",
            "auth/login",
            200,
            data={"email": self.email, "password": self.password},
            auth=False,
        )
        if success:
            self.token = response["token"]
        return success

    def test_invalid_login(self):
        success, _ = self.run_test(
            "Invalid Login",
            "POST",
            "auth/login",
            401,
            data={"email": self.email, "password": "wrong-password"},
            auth=False,
        )
        return success

    def test_get_me(self):
        success, response = self.run_test("Get Current User", "GET", "auth/me", 200)
        return success and response.get("email") == self.email

    def test_balance_starts_at_zero(self):
        success, response = self.run_test("Credit Balance", "GET", "credits/balance", 200)
        return success and response.get("credits") == 0

    def test_packs(self):
        success, response = self.run_test("Credit Packs", "GET", "credits/packs", 200, auth=False)
        if success:
            print(f"   Packs: {[p['id'] for p in response]}")
        return success

    def test_start_without_credits(self):
        """A new account has no credits, so starting an exam must be refused."""
        success, response = self.run_test(
            "Start Exam (No Credits)", "POST", "exam/start", 402, data={"type": "READING"}
        )
        return success and response.get("detail", {}).get("code") == "INSUFFICIENT_FUNDS"

    def test_history_empty(self):
        success, response = self.run_test("Exam History", "GET", "exams/history", 200)
        return success and response.get("total") == 0

    def test_unauthorized_access(self):
        success, _ = self.run_test("Unauthorized Access", "GET", "credits/balance", 401, auth=False)
        return success

    def test_admin_forbidden(self):
        success, _ = self.run_test("Admin Users (Non-admin)", "GET", "admin/users", 403)
        return success


def main():
    print("🚀 Starting IELTS API Smoke Tests")
    print("=" * 50)

    tester = IeltsApiTester(*sys.argv[1:2])

    tests = [
        ("Root Endpoint", tester.test_root_endpoint),
        ("User Registration", tester.test_register),
        ("User Login", tester.test_login),
        ("Invalid Login", tester.test_invalid_login),
        ("Get Current User", tester.test_get_me),
        ("Credit Balance", tester.test_balance_starts_at_zero),
        ("Credit Packs", tester.test_packs),
        ("Start Exam (No Credits)", tester.test_start_without_credits),
        ("Exam History", tester.test_history_empty),
        ("Unauthorized Access", tester.test_unauthorized_access),
        ("Admin Users (Non-admin)", tester.test_admin_forbidden),
    ]

    failed_tests = [name for name, test_func in tests if not test_func()]

    print("\n" + "=" * 50)
    print("📊 TEST RESULTS")
    print("=" * 50)
    print(f"Tests run: {tester.tests_run}")
    print(f"Tests passed: {tester.tests_passed}")
    print(f"Tests failed: {len(failed_tests)}")

    if failed_tests:
        print("\n❌ Failed tests:")
        for test in failed_tests:
            print(f"   - {test}")
    else:
        print("\n✅ All tests passed!")

    return 0 if not failed_tests else 1


if __name__ == "__main__":
    sys.exit(main())
