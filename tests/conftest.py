import copy
import itertools
import re

from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

import db

# Embedded relation name -> foreign key column on the selecting table
_RELATIONS = {"members": "member_id", "csr_projects": "project_id"}
_EMBED_RE = re.compile(r"(\w+)\(([^)]*)\)")


def api_error(code: str, message: str = "boom") -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


class FakeAuthError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Just enough of the postgrest query builder for db.py."""

    def __init__(self, client, table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.count = None
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.orders = []
        self.range_ = None
        self.limit_ = None

    # builders
    def select(self, columns="*", count=None):
        self.op = "select"
        self.columns = columns
        self.count = count
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, col, value):
        self.filters.append(lambda r: r.get(col) == value)
        return self

    def in_(self, col, values):
        values = list(values)
        self.filters.append(lambda r: r.get(col) in values)
        return self

    def gte(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) >= value)
        return self

    def lte(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) <= value)
        return self

    def order(self, col, desc=False):
        self.orders.append((col, desc))
        return self

    def range(self, start, end):
        self.range_ = (start, end)
        return self

    def limit(self, n):
        self.limit_ = n
        return self

    # execution
    def _matches(self):
        return [r for r in self.client.tables.setdefault(self.table, []) if all(f(r) for f in self.filters)]

    def _embed(self, row):
        out = dict(row)
        for rel, fields in _EMBED_RE.findall(self.columns or ""):
            fk = _RELATIONS.get(rel)
            target = None
            for other in self.client.tables.get(rel, []):
                if fk and other.get("id") == row.get(fk):
                    target = {f.strip(): other.get(f.strip()) for f in fields.split(",") if f.strip()}
                    break
            out[rel] = target
        return out

    def _new_row(self, payload):
        row = dict(payload)
        if row.get("id") is None:
            row["id"] = next(self.client.ids)
        self.client.tables.setdefault(self.table, []).append(row)
        return dict(row)

    def execute(self):
        self.client.calls.append((self.table, self.op, copy.deepcopy(self.payload)))
        queued = self.client.failures.get((self.table, self.op))
        if queued:
            raise queued.pop(0)

        if self.op == "select":
            rows = self._matches()
            for col, desc in reversed(self.orders):
                rows = sorted(rows, key=lambda r: (r.get(col) is None, r.get(col)), reverse=desc)
            total = len(rows)
            if self.range_:
                rows = rows[self.range_[0] : self.range_[1] + 1]
            if self.limit_ is not None:
                rows = rows[: self.limit_]
            rows = [self._embed(r) for r in rows]
            return FakeResponse(rows, total if self.count else None)

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([self._new_row(p) for p in items])

        if self.op == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            out = []
            for p in items:
                existing = None
                for r in self.client.tables.setdefault(self.table, []):
                    if all(r.get(k) == p.get(k) for k in keys):
                        existing = r
                        break
                if existing is None:
                    out.append(self._new_row(p))
                else:
                    existing.update(p)
                    out.append(dict(existing))
            return FakeResponse(out)

        if self.op == "update":
            rows = self._matches()
            for r in rows:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in rows])

        if self.op == "delete":
            rows = self._matches()
            ids = {id(r) for r in rows}
            self.client.tables[self.table] = [r for r in self.client.tables[self.table] if id(r) not in ids]
            return FakeResponse([dict(r) for r in rows])

        raise AssertionError(f"unsupported op {self.op}")


class FakeAuth:
    def __init__(self):
        self.session = None
        self.errors = {}
        self.calls = []
        self._ids = itertools.count(1)

    def _call(self, name, *args):
        self.calls.append((name, args))
        err = self.errors.get(name)
        if err is not None:
            raise err

    def sign_up(self, credentials):
        self._call("sign_up", credentials)
        user = SimpleNamespace(
            id=f"user-{next(self._ids)}",
            email=credentials["email"],
            user_metadata=credentials.get("options", {}).get("data", {}),
        )
        return SimpleNamespace(user=user, session=None)

    def sign_in_with_password(self, credentials):
        self._call("sign_in_with_password", credentials)
        user = SimpleNamespace(id="user-1", email=credentials["email"], user_metadata={})
        self.session = SimpleNamespace(user=user)
        return SimpleNamespace(user=user, session=self.session)

    def sign_out(self):
        self._call("sign_out")
        self.session = None

    def get_session(self):
        self._call("get_session")
        return self.session

    def update_user(self, attributes):
        self._call("update_user", attributes)
        return SimpleNamespace(user=getattr(self.session, "user", None))

    def reset_password_for_email(self, email, options=None):
        self._call("reset_password_for_email", email, options)

    def verify_otp(self, params):
        self._call("verify_otp", params)
        user = SimpleNamespace(id="user-1", email="mary@x.co", user_metadata={})
        self.session = SimpleNamespace(user=user)
        return SimpleNamespace(user=user, session=self.session)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        # (table, op) -> list of exceptions raised by the next executes
        self.failures = {}
        self.ids = itertools.count(1000)
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, op, *errors):
        self.failures.setdefault((table, op), []).extend(errors)

    def ops(self, table, op):
        return [c for c in self.calls if c[0] == table and c[1] == op]


@pytest.fixture
def fake_sb(monkeypatch):
    client = FakeSupabase()
    monkeypatch.setattr(db, "_sb", lambda: client)
    monkeypatch.setattr(db, "reset_client", lambda: None)
    monkeypatch.setattr(db.time, "sleep", lambda s: None)
    return client
