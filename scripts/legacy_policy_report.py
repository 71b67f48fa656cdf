from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any

from jitgroups.core.logging import configure_logging
from jitgroups.domain.permissions import to_string
from jitgroups.services.legacy import InMemoryBindingSource, LegacyPolicyImporter
from jitgroups.services.policy.constraints import ConstraintClass
from jitgroups.services.policy.model import EnvironmentPolicy


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import exported IAM bindings and print the resulting JIT groups")
    parser.add_argument("path", help="JSON document with root_bindings and projects")
    parser.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="List systems only, without loading their groups",
    )
    return parser


def _describe(environment: EnvironmentPolicy, load_groups: bool) -> dict[str, Any]:
    systems = []
    for system in environment.systems():
        entry: dict[str, Any] = {"name": system.name, "description": system.description}
        if load_groups:
            entry["groups"] = [
                {
                    "name": group.name,
                    "description": group.description,
                    "acl": [
                        {"principal": str(e.principal), "permissions": to_string(e.mask)}
                        for e in group.effective_access_control_list()
                    ],
                    "constraints": [c.name for c in group.effective_constraints(ConstraintClass.JOIN)],
                    "privileges": [str(p) for p in group.privileges],
                }
                for group in system.groups()
            ]
        systems.append(entry)
    return {
        "environment": environment.name,
        "description": environment.description,
        "acl": [
            {"principal": str(e.principal), "permissions": to_string(e.mask)}
            for e in environment.effective_access_control_list()
        ],
        "systems": systems,
    }


def _print_text(report: dict[str, Any]) -> None:
    print(f"{report['environment']}\t{report['description']}")
    for entry in report["acl"]:
        print(f"  acl\t{entry['principal']}\t{entry['permissions']}")
    for system in report["systems"]:
        print(f"  {system['name']}\t{system['description']}")
        for group in system.get("groups", []):
            print(f"    {group['name']}\t{group['description']}")
            for entry in group["acl"]:
                print(f"      acl\t{entry['principal']}\t{entry['permissions']}")
            print(f"      constraints\t{', '.join(group['constraints'])}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    try:
        document = json.loads(Path(args.path).read_text(encoding="utf-8"))
        environment = LegacyPolicyImporter(InMemoryBindingSource.from_document(document)).load()
        report = _describe(environment, load_groups=not args.summary)
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"legacy_policy_report failed: {exc}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        _print_text(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
