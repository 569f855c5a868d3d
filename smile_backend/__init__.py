"""
Smile Design practice backend.

Layout:
- config.py        : settings from environment / .env
- logging_setup.py : structlog configuration
- errors.py        : store exception hierarchy
- db.py            : SQLAlchemy engine and sessions
- models.py        : ORM models
- repositories.py  : client / provider / billable data access
- references.py    : resolution (and auto-repair) of the rows a visit points to
- services.py      : domain logic (CRUD, visit aggregate create / read / delete)
- api_main.py      : HTTP API
- cli.py           : command-line access to the same services
- tools/           : maintenance scripts (orphan check)
"""
