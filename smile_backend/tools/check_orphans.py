from __future__ import annotations

from sqlalchemy import text

from smile_backend.db import get_engine

ORPHAN_QUERIES = {
    "visit_details": (
        "SELECT COUNT(*) FROM visit_details d "
        "LEFT JOIN visits v ON v.id = d.visit_id WHERE v.id IS NULL"
    ),
    "visit_images": (
        "SELECT COUNT(*) FROM visit_images i "
        "LEFT JOIN visits v ON v.id = i.visit_id WHERE v.id IS NULL"
    ),
    "visit_details.billable": (
        "SELECT COUNT(*) FROM visit_details d "
        "LEFT JOIN billables b ON b.code = d.billable_code WHERE b.code IS NULL"
    ),
    "visits.client": (
        "SELECT COUNT(*) FROM visits v "
        "LEFT JOIN clients c ON c.id = v.client_id WHERE c.id IS NULL"
    ),
    "visits.provider": (
        "SELECT COUNT(*) FROM visits v "
        "LEFT JOIN providers p ON p.id = v.provider_id WHERE p.id IS NULL"
    ),
}


def count_orphans() -> dict[str, int]:
    """Rows pointing to a parent that no longer exists, per relation."""
    with get_engine().connect() as c:
        return {name: c.execute(text(sql)).scalar() or 0 for name, sql in ORPHAN_QUERIES.items()}


def main() -> None:
    print("DB:", get_engine().url)
    counts = count_orphans()
    for name, n in counts.items():
        print(f"{name:<24} {n}")
    if any(counts.values()):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
