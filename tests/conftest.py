"""
Shared fixtures: an in-memory stand-in for the Supabase async client.

FakeSupabase keeps one list of dict rows per table and understands the
subset of the PostgREST query builder the sync client uses
(select/insert/update/upsert/delete, eq/in_, order, limit, execute) plus
realtime channels whose change events tests can fire by hand.
"""

import copy
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from data_integrator import RemoteSyncClient
from services.cache_service import CachePersistence
from services.store import EntityStore


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.error = None


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op: Optional[str] = None
        self._payload: Any = None
        self._filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._on_conflict = "id"

    # -- operations --

    def select(self, columns: str = "*"):
        self._op = self._op or "select"
        return self

    def insert(self, rows):
        self._op, self._payload = "insert", rows
        return self

    def update(self, values: Dict[str, Any]):
        self._op, self._payload = "update", values
        return self

    def upsert(self, rows, on_conflict: str = "id"):
        self._op, self._payload, self._on_conflict = "upsert", rows, on_conflict
        return self

    def delete(self):
        self._op = "delete"
        return self

    # -- modifiers --

    def eq(self, column: str, value):
        self._filters.append(lambda r: str(r.get(column)) == str(value))
        return self

    def in_(self, column: str, values):
        wanted = {str(v) for v in values}
        self._filters.append(lambda r: str(r.get(column)) in wanted)
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, size: int):
        self._limit = size
        return self

    def _match(self, row: Dict[str, Any]) -> bool:
        return all(f(row) for f in self._filters)

    async def execute(self) -> FakeResponse:
        self._db.calls.append((self._table, self._op))
        self._db.check_failure(self._table, self._op)
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            result = [copy.deepcopy(r) for r in rows if self._match(r)]
            if self._order:
                column, desc = self._order
                result.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
            if self._limit is not None:
                result = result[: self._limit]
            return FakeResponse(result)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for p in payload:
                row = copy.deepcopy(p)
                row.setdefault("id", self._db.next_id(self._table))
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        if self._op == "update":
            updated = []
            for row in rows:
                if self._match(row):
                    row.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(row))
            return FakeResponse(updated)

        if self._op == "upsert":
            written = []
            for p in self._payload:
                key = str(p.get(self._on_conflict))
                existing = next((r for r in rows if str(r.get(self._on_conflict)) == key), None)
                if existing is not None:
                    existing.update(copy.deepcopy(p))
                    written.append(copy.deepcopy(existing))
                else:
                    rows.append(copy.deepcopy(p))
                    written.append(copy.deepcopy(p))
            return FakeResponse(written)

        if self._op == "delete":
            removed = [r for r in rows if self._match(r)]
            self._db.tables[self._table] = [r for r in rows if not self._match(r)]
            return FakeResponse(removed)

        raise AssertionError(f"unsupported operation {self._op}")


class FakeSchema:
    def __init__(self, db: "FakeSupabase"):
        self._db = db

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self._db, name)


class FakeChannel:
    def __init__(self, topic: str, fail_subscribe: bool = False, status: str = "SUBSCRIBED"):
        self.topic = topic
        self.handlers: Dict[str, List[Callable]] = {}
        self.schemas: Set[str] = set()
        self.fail_subscribe = fail_subscribe
        self.status = status
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.handlers.setdefault(table, []).append(callback)
        self.schemas.add(schema)
        return self

    async def subscribe(self, callback=None):
        if self.fail_subscribe:
            raise ConnectionError("websocket refused")
        self.subscribed = self.status == "SUBSCRIBED"
        if callback:
            callback(self.status, None)
        return self

    def emit(self, table: str, event: str = "UPDATE") -> None:
        for cb in self.handlers.get(table, []):
            cb({"table": table, "eventType": event})


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Set[Tuple[str, Optional[str]]] = set()
        self.channels: List[FakeChannel] = []
        self.removed_channels: List[FakeChannel] = []
        self.channel_error: Optional[Exception] = None
        self.fail_subscribe = False
        self.channel_status = "SUBSCRIBED"
        self._ids = 0

    def next_id(self, table: str) -> str:
        self._ids += 1
        return f"{table}-{self._ids}"

    def fail(self, table: str, op: Optional[str] = None) -> None:
        """Make `op` (or every operation when None) on `table` raise."""
        self.failures.add((table, op))

    def check_failure(self, table: str, op: str) -> None:
        if (table, op) in self.failures or (table, None) in self.failures:
            raise RuntimeError(f"{op} on {table} refused")

    def count(self, table: str, op: str) -> int:
        return sum(1 for c in self.calls if c == (table, op))

    def row(self, table: str, row_id: str) -> Dict[str, Any]:
        return next(r for r in self.tables.get(table, []) if str(r.get("id")) == str(row_id))

    def schema(self, name: str) -> FakeSchema:
        return FakeSchema(self)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def channel(self, topic: str) -> FakeChannel:
        if self.channel_error is not None:
            raise self.channel_error
        channel = FakeChannel(topic, fail_subscribe=self.fail_subscribe, status=self.channel_status)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        self.removed_channels.append(channel)


class FakeClock:
    def __init__(self, start: int = 1_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def seed_business(db: FakeSupabase) -> None:
    """A small but complete shop: one workflow with materials, one service, two orders."""
    db.tables["quy_trinh"] = [
        {
            "id": "wf-clean",
            "ten_quy_trinh": "Vệ sinh giày",
            "mo_ta": "Quy trình vệ sinh",
            "phong_ban": "spa",
            "mau_sac": "#00aa00",
            "loai_ap_dung": ["ve_sinh"],
            "vat_tu_can_thiet": [{"inventoryItemId": "inv-soap", "quantity": 1}],
            "cac_buoc_quy_trinh": [
                {"id": "st-finish", "ten_buoc": "Hoàn thành", "thu_tu": 3},
                {"id": "st-wash", "ten_buoc": "Giặt", "thu_tu": 1},
                {"id": "st-dry", "ten_buoc": "Sấy", "thu_tu": 2},
            ],
        }
    ]
    db.tables["dich_vu"] = [
        {"id": "svc-clean", "id_quy_trinh": "wf-clean"},
        {"id": "svc-none"},
    ]
    db.tables["kho_vat_tu"] = [
        {"id": "inv-soap", "ten_vat_tu": "Xà phòng", "danh_muc": "hoa_chat", "so_luong_ton": 10},
        {"id": "inv-brush", "ten_vat_tu": "Bàn chải", "danh_muc": "dung_cu", "so_luong_ton": 4},
    ]
    db.tables["nhan_su"] = [
        {"id": "mem-1", "ho_ten": "An", "vai_tro": "ky_thuat", "trang_thai": "hoat_dong", "phong_ban": "ky_thuat"},
    ]
    db.tables["san_pham"] = [
        {"id": "prd-1", "ten_san_pham": "Xi đánh giày", "gia_ban": 50000, "ton_kho": 12},
    ]
    db.tables["khach_hang"] = [
        {"id": "cus-1", "ten": "Bình", "sdt": "0900", "hang_thanh_vien": "vip", "tong_chi_tieu": 1000000},
        {"id": "cus-2", "ten": "Chi", "sdt": "0901", "hang_thanh_vien": "thuong"},
    ]
    db.tables["don_hang"] = [
        {
            "id": "ord-1",
            "id_khach_hang": "cus-1",
            "ten_khach_hang": "Bình",
            "tong_tien": 300000,
            "trang_thai": "cho_xu_ly",
            "ngay_tao": "2026-10-01T09:00:00",
        },
        {
            "id": "ord-2",
            "id_khach_hang": "cus-2",
            "ten_khach_hang": "Chi",
            "tong_tien": 150000,
            "trang_thai": "dang_xu_ly",
            "ngay_tao": "2026-10-05T09:00:00",
        },
    ]
    db.tables["hang_muc_dich_vu"] = [
        {
            "id": "item-1",
            "id_don_hang": "ord-1",
            "ten_hang_muc": "Vệ sinh sneaker",
            "loai": "ve_sinh",
            "don_gia": 150000,
            "so_luong": 2,
            "trang_thai": "st-wash",
            "id_dich_vu_goc": "svc-clean",
            "lich_su_thuc_hien": [
                {"stageId": "st-wash", "stageName": "Giặt", "enteredAt": 500, "performedBy": "an"}
            ],
        },
        {
            "id": "item-2",
            "id_don_hang": "ord-2",
            "ten_hang_muc": "Xi đánh giày",
            "loai": "san_pham",
            "don_gia": 50000,
            "so_luong": 1,
            "trang_thai": "cho_xu_ly",
            "la_san_pham": True,
        },
        {
            "id": "item-3",
            "id_don_hang": "ord-2",
            "ten_hang_muc": "Vệ sinh boot",
            "loai": "ve_sinh",
            "don_gia": 100000,
            "so_luong": 1,
            "trang_thai": "done",
            "id_quy_trinh": "wf-clean",
        },
        {
            "id": "item-4",
            "id_don_hang": "ord-2",
            "ten_hang_muc": "Sửa đế",
            "loai": "sua_chua",
            "don_gia": 0,
            "so_luong": 1,
            "trang_thai": "st-dry",
        },
    ]


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    seed_business(db)
    return db


@pytest.fixture
def remote(fake_db) -> RemoteSyncClient:
    return RemoteSyncClient(fake_db, schema="public")


@pytest.fixture
def cache(tmp_path) -> CachePersistence:
    return CachePersistence(db_path=str(tmp_path / "cache.db"), orders_limit=50, debounce_seconds=0.01)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(remote, cache, clock) -> EntityStore:
    ids = iter(range(1, 10_000))
    return EntityStore(remote, cache, clock=clock, id_factory=lambda: f"log-{next(ids)}")
