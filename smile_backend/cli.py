from __future__ import annotations

import argparse
import json
import mimetypes
from pathlib import Path

from smile_backend import config
from smile_backend.db import configure_database
from smile_backend.logging_setup import setup_logging
from smile_backend.services import (
    DetailLine,
    ImageUpload,
    create_client,
    create_provider,
    create_visit,
    delete_visit,
    get_visit,
    import_billables,
    init_db,
    list_billables,
    list_clients,
    list_providers,
    list_visits,
)


def _parse_detail(raw: str) -> DetailLine:
    """CODE or CODE:QTY"""
    code, _, qty = raw.partition(":")
    return DetailLine(billable_code=code, quantity=int(qty) if qty else None)


def _read_image(path: str) -> ImageUpload:
    p = Path(path)
    mime, _ = mimetypes.guess_type(p.name)
    return ImageUpload(name=p.name, type=mime or "application/octet-stream", data=p.read_bytes())


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    print("Database initialised.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "clients":
        for c in list_clients():
            print(f"{c['id']} | {c['last_name']} {c['first_name']} | {c['email'] or '-'}")
    elif args.entity == "providers":
        for p in list_providers():
            print(f"{p['id']} | {p['last_name']} {p['first_name']} | {p['specialty'] or '-'}")
    elif args.entity == "billables":
        for b in list_billables():
            print(f"{b['code']} | {b['description']} | {b['cost']:.2f}")
    elif args.entity == "visits":
        for v in list_visits():
            paid = "paid" if v["paid"] else "unpaid"
            print(f"{v['id']} | {v['visit_date'] or '-'} | {v['client_name']} / {v['provider_name']} | {paid}")


def cmd_add_client(args: argparse.Namespace) -> None:
    c = create_client(args.first_name, args.last_name, dob=args.dob, phone=args.phone, email=args.email)
    print(f"Client created: {c['id']}")


def cmd_add_provider(args: argparse.Namespace) -> None:
    p = create_provider(args.first_name, args.last_name, specialty=args.specialty, email=args.email)
    print(f"Provider created: {p['id']}")


def cmd_add_visit(args: argparse.Namespace) -> None:
    visit = create_visit(
        client_id=args.client_id,
        provider_id=args.provider_id,
        visit_date=args.date,
        paid=args.paid,
        notes=args.notes,
        details=[_parse_detail(d) for d in args.detail],
        images=[_read_image(i) for i in args.image],
    )
    print(f"Visit created: {visit.id} (client {visit.client_id}, provider {visit.provider_id})")
    if visit.client_id != args.client_id or visit.provider_id != args.provider_id:
        print("Note: missing client/provider replaced by a placeholder.")


def cmd_show_visit(args: argparse.Namespace) -> None:
    visit = get_visit(args.visit_id)
    if visit is None:
        print("Not found.")
        return

    print(f"Visit {visit.id} | {visit.visit_date or '-'} | client {visit.client_id} | provider {visit.provider_id}")
    print(f"Paid: {'yes' if visit.paid else 'no'}")
    if visit.notes:
        print(f"Notes: {visit.notes}")
    for d in visit.details:
        print(f"  - {d.billable_code} x{d.quantity}")
    for img in visit.images:
        print(f"  [img {img.id}] {img.name} ({img.type})")


def cmd_delete_visit(args: argparse.Namespace) -> None:
    removed = delete_visit(args.visit_id)
    print(f"Removed {removed} rows." if removed else "Not found.")


def cmd_import_billables(args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.exists():
        raise SystemExit(f"File not found: {path}")

    rows = json.loads(path.read_text(encoding="utf-8"))
    written = import_billables(rows)
    print(f"Imported {written} of {len(rows)} records from {path}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="smile-backend", description="Smile Design practice database CLI")
    p.add_argument("--db", default=None, help="Database URL (default: DATABASE_URL or local SQLite file)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the database tables")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["clients", "providers", "billables", "visits"])
    p_list.set_defaults(func=cmd_list)

    p_addc = sub.add_parser("add-client", help="Create a client")
    p_addc.add_argument("--first-name", required=True)
    p_addc.add_argument("--last-name", required=True)
    p_addc.add_argument("--dob", default=None)
    p_addc.add_argument("--phone", default=None)
    p_addc.add_argument("--email", default=None)
    p_addc.set_defaults(func=cmd_add_client)

    p_addp = sub.add_parser("add-provider", help="Create a provider")
    p_addp.add_argument("--first-name", required=True)
    p_addp.add_argument("--last-name", required=True)
    p_addp.add_argument("--specialty", default=None)
    p_addp.add_argument("--email", default=None)
    p_addp.set_defaults(func=cmd_add_provider)

    p_visit = sub.add_parser("add-visit", help="Record a visit with its procedures and images")
    p_visit.add_argument("--client-id", type=int, default=None)
    p_visit.add_argument("--provider-id", type=int, default=None)
    p_visit.add_argument("--date", default=None, help="Visit date, stored as given (e.g. 2026-01-14)")
    p_visit.add_argument("--paid", action="store_true")
    p_visit.add_argument("--notes", default=None)
    p_visit.add_argument("--detail", action="append", default=[], help="Procedure CODE or CODE:QTY (repeatable)")
    p_visit.add_argument("--image", action="append", default=[], help="Image file to attach (repeatable)")
    p_visit.set_defaults(func=cmd_add_visit)

    p_show = sub.add_parser("show-visit", help="Show a visit with details and images")
    p_show.add_argument("visit_id", type=int)
    p_show.set_defaults(func=cmd_show_visit)

    p_del = sub.add_parser("delete-visit", help="Delete a visit and its details and images")
    p_del.add_argument("visit_id", type=int)
    p_del.set_defaults(func=cmd_delete_visit)

    p_imp = sub.add_parser("import-billables", help="Load a fee schedule from a JSON file")
    p_imp.add_argument("file")
    p_imp.set_defaults(func=cmd_import_billables)

    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    configure_database(args.db)
    init_db()  # guarantees the tables
    args.func(args)


if __name__ == "__main__":
    main()
