"""
In-memory stand-in for the slice of the supabase client the services use.

Supports ``table().select/insert/update/delete`` with ``eq/neq/in_/order/
limit``, ``rpc("get_or_create_conversation")`` and ``storage.from_()``.
Unique constraints are emulated per table and any (table, operation) pair
can be made to fail.
"""

import copy
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import httpx
from postgrest.exceptions import APIError

ALICE = "11111111-1111-4111-8111-111111111111"
BOB = "22222222-2222-4222-8222-222222222222"
CAROL = "33333333-3333-4333-8333-333333333333"

UNIQUE_KEYS = {
    "conversations": [("user1_id", "user2_id")],
    "chat_starred": [("user_id", "conversation_id")],
    "chat_archived": [("user_id", "conversation_id")],
}

DEFAULTS = {
    "messages": {"content": "", "offer_id": None, "read": False},
    "swap_offers": {
        "status": "pending",
        "swap_id": None,
        "session_days": [],
        "category": None,
        "format": None,
        "address": None,
        "schedule": None,
        "notes": None,
    },
    "swaps": {
        "status": "open",
        "partner_id": None,
        "conversation_id": None,
        "origin_offer_id": None,
    },
    "notifications": {"read": False, "data": {}},
}


def unique_violation(table):
    return APIError(
        {
            "message": f"duplicate key value violates unique constraint on {table}",
            "code": "23505",
            "hint": None,
            "details": None,
        }
    )


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeDatabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.failures = {}
        self.rpc_available = True
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> str:
        self._clock += timedelta(milliseconds=1)
        return self._clock.isoformat()

    def fail(self, table, op, error=None):
        self.failures[(table, op)] = error or httpx.ConnectError("connection refused")

    def heal(self, table, op):
        self.failures.pop((table, op), None)

    def check(self, table, op):
        error = self.failures.get((table, op))
        if error is not None:
            raise error

    def rows(self, table):
        return copy.deepcopy(self.tables[table])

    def seed(self, table, **row):
        """Insert a row directly, bypassing failures (and without events)."""
        return FakeQuery(self, table).insert(row)._insert()[0]

    def find(self, table, **filters):
        return [
            copy.deepcopy(row)
            for row in self.tables[table]
            if all(row.get(k) == v for k, v in filters.items())
        ]


class FakeQuery:
    def __init__(self, db: FakeDatabase, table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.count = None
        self.payload = None
        self.filters = []
        self.orders = []
        self.limit_n = None

    # Builders

    def select(self, columns="*", count=None):
        self.op = "select"
        self.columns = columns
        self.count = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    # Execution

    def _matches(self):
        return [row for row in self.db.tables[self.table] if all(f(row) for f in self.filters)]

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [name.strip() for name in self.columns.split(",")]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def _insert(self):
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        stored = []
        for values in rows:
            row = {**DEFAULTS.get(self.table, {}), **copy.deepcopy(values)}
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", self.db.now())
            if self.table == "swap_offers":
                row.setdefault("updated_at", row["created_at"])

            for key in UNIQUE_KEYS.get(self.table, []):
                for existing in self.db.tables[self.table]:
                    if all(existing.get(col) == row.get(col) for col in key):
                        raise unique_violation(self.table)

            self.db.tables[self.table].append(row)
            stored.append(copy.deepcopy(row))
        return stored

    def execute(self):
        self.db.check(self.table, self.op)

        if self.op == "insert":
            return FakeResponse(self._insert())

        matches = self._matches()

        if self.op == "update":
            for row in matches:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse([copy.deepcopy(row) for row in matches])

        if self.op == "delete":
            self.db.tables[self.table] = [
                row for row in self.db.tables[self.table] if row not in matches
            ]
            return FakeResponse([copy.deepcopy(row) for row in matches])

        for column, desc in reversed(self.orders):
            matches = sorted(
                matches,
                key=lambda row: (row.get(column) is None, row.get(column)),
                reverse=desc,
            )
        if self.limit_n is not None:
            matches = matches[: self.limit_n]

        data = [self._project(row) for row in matches]
        return FakeResponse(data, count=len(data) if self.count else None)


class FakeRpc:
    def __init__(self, db: FakeDatabase, name: str, params: dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        if not self.db.rpc_available:
            raise APIError(
                {
                    "message": f"Could not find the function public.{self.name}",
                    "code": "PGRST202",
                    "hint": None,
                    "details": None,
                }
            )
        self.db.check("rpc", self.name)

        if self.name != "get_or_create_conversation":
            raise NotImplementedError(self.name)

        low, high = sorted([self.params["uid1"], self.params["uid2"]])
        existing = self.db.find("conversations", user1_id=low, user2_id=high)
        if existing:
            return FakeResponse(existing[0]["id"])
        row = self.db.seed("conversations", user1_id=low, user2_id=high)
        return FakeResponse(row["id"])


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str):
        self.storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        if file in self.storage.failing_payloads:
            raise RuntimeError("storage upload rejected")
        if path in self.storage.objects:
            raise RuntimeError("The resource already exists")
        self.storage.objects[path] = (file, file_options or {})
        return {"path": path}

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"

    def remove(self, paths):
        if self.storage.fail_removals:
            raise RuntimeError("storage remove rejected")
        for path in paths:
            self.storage.objects.pop(path, None)
        return [{"name": path} for path in paths]


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.failing_payloads = set()
        self.fail_removals = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self, db: FakeDatabase | None = None):
        self.db = db or FakeDatabase()
        self.storage = FakeStorage()

    def table(self, name):
        return FakeQuery(self.db, name)

    from_ = table

    def rpc(self, name, params=None):
        return FakeRpc(self.db, name, params or {})
