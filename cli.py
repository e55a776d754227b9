from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _load_templates(path: str | None) -> list[dict] | None:
    if not path:
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="PlatformAdmin Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_list = sub.add_parser("list", help="List PlatformAdmins")
    s_list.add_argument("--namespace")

    for cmd, help_ in (
        ("get", "Show one PlatformAdmin"),
        ("delete", "Request deletion of a PlatformAdmin"),
        ("children", "List the children owned by a PlatformAdmin"),
        ("reconcile", "Run one reconcile pass now"),
    ):
        s = sub.add_parser(cmd, help=help_)
        s.add_argument("name")
        s.add_argument("--namespace", default="default")

    s_apply = sub.add_parser("apply", help="Create or update a PlatformAdmin")
    s_apply.add_argument("name")
    s_apply.add_argument("--namespace", default="default")
    s_apply.add_argument("--version", required=True)
    s_apply.add_argument("--pool", required=True, help="Node pool name")
    s_apply.add_argument("--security", action="store_true", help="Use the security-enabled catalog")
    s_apply.add_argument("--deployments", help="JSON file with additional deployment templates [{name, spec}]")
    s_apply.add_argument("--services", help="JSON file with additional service templates [{name, spec}]")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    sub.add_parser("metrics", help="Show controller counters")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "list":
        params = {"namespace": args.namespace} if args.namespace else {}
        _print(requests.get(f"{base}/platformadmins", params=params, timeout=10).json())
        return 0

    if args.cmd in {"get", "delete", "children", "reconcile"}:
        url = f"{base}/platformadmins/{args.namespace}/{args.name}"
        if args.cmd == "get":
            r = requests.get(url, timeout=10)
        elif args.cmd == "delete":
            r = requests.delete(url, timeout=10)
        elif args.cmd == "children":
            r = requests.get(f"{url}/children", timeout=10)
        else:
            r = requests.post(f"{url}/reconcile", timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "apply":
        payload = {
            "namespace": args.namespace,
            "name": args.name,
            "version": args.version,
            "security": args.security,
            "pool_name": args.pool,
            "additional_deployments": _load_templates(args.deployments),
            "additional_services": _load_templates(args.services),
        }
        r = requests.put(f"{base}/platformadmins", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "metrics":
        _print(requests.get(f"{base}/metrics", timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
