#!/usr/bin/env python3
"""
Inspect and retry appointments whose payment intent or ledger record failed.

Usage:
    python scripts/reconcile_appointments.py report
    python scripts/reconcile_appointments.py report --older-than 60
    python scripts/reconcile_appointments.py retry-payment <appointment_id>
    python scripts/reconcile_appointments.py retry-ledger <appointment_id>
    python scripts/reconcile_appointments.py retry-ledger --all

Environment Variables:
    ADMIN_SECRET: Secret key of the reconciliation endpoints
    API_URL: Base API URL (default: http://localhost:8000)
"""

import argparse
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()


def _request(method: str, path: str, params: dict | None = None) -> dict:
    """Call a reconciliation endpoint and return its JSON body."""
    admin_secret = os.getenv("ADMIN_SECRET")
    if not admin_secret:
        print("Error: ADMIN_SECRET environment variable not set", file=sys.stderr)
        sys.exit(1)

    api_url = os.getenv("API_URL", "http://localhost:8000")
    url = f"{api_url}/api/v1/reconciliation{path}"

    try:
        response = requests.request(
            method,
            url,
            params=params,
            headers={"X-Admin-Secret": admin_secret},
            timeout=60,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def report(older_than: int) -> dict:
    """Fetch orphaned bookings and ledger failures."""
    result = _request("GET", "/", params={"older_than_minutes": older_than})

    print(f"Orphaned bookings: {len(result['orphaned_bookings'])}")
    for appointment in result["orphaned_bookings"]:
        print(
            f"   {appointment['id']}  created {appointment['created_at']}"
            f"  error: {appointment.get('payment_error') or '-'}"
        )

    print(f"Ledger failures:   {len(result['ledger_failures'])}")
    for appointment in result["ledger_failures"]:
        print(
            f"   {appointment['id']}  retries {appointment['ledger_retry_count']}"
            f"  error: {appointment.get('ledger_error_message') or '-'}"
        )

    return result


def retry_payment(appointment_id: str) -> None:
    """Re-request the payment intent of an orphaned booking."""
    result = _request("POST", f"/appointments/{appointment_id}/payment-intent")
    print(f"Payment intent created: {result['appointment']['payment_intent_id']}")


def retry_ledger(appointment_id: str) -> bool:
    """Re-run ledger recording for one appointment."""
    result = _request("POST", f"/appointments/{appointment_id}/ledger")
    if result["ledger_recording_failed"]:
        print(f"{appointment_id}: still failing ({result['ledger_error_message']})")
        return False
    print(f"{appointment_id}: recorded ({result['ledger_transaction_ref']})")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Reconcile appointments with failed side effects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  export ADMIN_SECRET=your-secret-key
  export API_URL=https://api.example.com
  python reconcile_appointments.py report
  python reconcile_appointments.py retry-ledger --all
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    report_parser = subparsers.add_parser("report", help="List appointments needing attention")
    report_parser.add_argument(
        "--older-than",
        type=int,
        default=15,
        help="Minimum age in minutes of orphaned bookings (default: 15)",
    )

    payment_parser = subparsers.add_parser("retry-payment", help="Retry a payment intent")
    payment_parser.add_argument("appointment_id", help="Appointment ID")

    ledger_parser = subparsers.add_parser("retry-ledger", help="Retry ledger recording")
    ledger_group = ledger_parser.add_mutually_exclusive_group(required=True)
    ledger_group.add_argument("appointment_id", nargs="?", help="Appointment ID")
    ledger_group.add_argument("--all", action="store_true", help="Retry every ledger failure")

    args = parser.parse_args()

    if args.command == "report":
        report(args.older_than)
    elif args.command == "retry-payment":
        retry_payment(args.appointment_id)
    elif args.all:
        failures = _request("GET", "/")["ledger_failures"]
        recorded = sum(retry_ledger(appointment["id"]) for appointment in failures)
        print(f"Recorded {recorded} of {len(failures)} appointment(s)")
    else:
        retry_ledger(args.appointment_id)


if __name__ == "__main__":
    main()
