#!/usr/bin/env -S uv run --script

import sys
import argparse
import glob
import yaml
from invoice_engine.config import config, setup_logging
from invoice_engine.invoice_controller import (
    compute_invoice,
    export_context,
    load_yaml,
    preview_schedule,
    sanitize_context_for_export,
)


def print_totals(result):
    display = result["display"]
    print(f"Invoice {result['invoice']['number']} ({result['invoice']['currency']})")
    for item in result["items"]:
        print(f"  {item['description'][:40]:<40} {item['quantity']:>8} x {item['rate']:>10} = {item['amount']:>12}")
    print(f"  {'Subtotal':<40} {display['subtotal']:>35}")
    print(f"  {'Tax':<40} {display['tax']:>35}")
    print(f"  {'Round Off':<40} {display['round_off']:>35}")
    print(f"  {'Total':<40} {display['total']:>35}")


def handle_totals(args):
    processed = 0
    for path in args.filenames:
        result = compute_invoice(path, target_currency=args.currency)
        if not result:
            continue
        print_totals(result)
        if args.output:
            export_context(result, args.output)
            print(f"Wrote {args.output}")
        processed += 1
    return processed == len(args.filenames)


def handle_schedule(args):
    raw = load_yaml(args.filename)
    schedule = raw.get("recurring", raw)
    preview = sanitize_context_for_export(preview_schedule(schedule, count=args.count))
    print(yaml.dump(preview, sort_keys=False))
    return not preview["warnings"]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Compute invoice totals and recurring schedules from YAML files.")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command")

    totals = sub.add_parser("totals", help="Compute totals for invoice YAML files")
    totals.add_argument("filenames", nargs="*", help="Invoice YAML files (default: all in data/)")
    totals.add_argument("--currency", help="Re-price items into this currency first")
    totals.add_argument("--output", help="Write the computed context to this YAML file")

    schedule = sub.add_parser("schedule", help="Preview a recurring schedule")
    schedule.add_argument("filename", help="YAML file with a schedule or a 'recurring' section")
    schedule.add_argument("--count", type=int, help="Number of upcoming dates to list")

    args = parser.parse_args()
    setup_logging(config, level="DEBUG" if args.verbose else "INFO")

    if args.command == "schedule":
        ok = handle_schedule(args)
    elif args.command == "totals":
        if not args.filenames:
            args.filenames = sorted(glob.glob(str(config.data_dir / "*.yaml")))
            print(f"No filenames provided. Found {len(args.filenames)} invoices in {config.data_dir}")
        ok = handle_totals(args)
    else:
        parser.print_help()
        ok = False

    sys.exit(0 if ok else 1)
