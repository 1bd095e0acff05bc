import json

import psycopg2
import pytest

from district_lookup.common.errors import ConfigError, StorageError
from district_lookup.common.models import CanonicalRecord
from district_lookup.storage.postgis import PostgisSpatialStore

SQUARE = {"type": "MultiPolygon", "coordinates": [[[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]]}


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise psycopg2.Error("boom")
        self.conn.executed.append((sql, params))

    def fetchall(self):
        return self.conn.rows

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None


class FakeConnection:
    def __init__(self):
        self.executed = []
        self.rows = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on = None

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.checked_out = 0
        self.closed = False

    def getconn(self):
        self.checked_out += 1
        return self.conn

    def putconn(self, conn):
        self.checked_out -= 1

    def closeall(self):
        self.closed = True


def _store(srid: int = 2272):
    pool = FakePool()
    return PostgisSpatialStore(pool, {"wards": ("ward",), "county_council": ("district", "name", "member")}, srid=srid), pool


def test_ensure_schema_creates_tables_and_gist_indexes():
    store, pool = _store()
    store.ensure_schema()

    sql = [statement for statement, _ in pool.conn.executed]
    assert sql[0] == "CREATE EXTENSION IF NOT EXISTS postgis"
    assert any('CREATE TABLE IF NOT EXISTS "wards"' in s and "geometry(MultiPolygon, 2272)" in s for s in sql)
    assert any('"county_council_geom_idx"' in s and "USING GIST" in s for s in sql)
    assert pool.checked_out == 0


def test_insert_batch_transforms_when_source_crs_differs():
    store, pool = _store()
    record = CanonicalRecord(layer="wards", fields={"ward": "3"}, geometry=SQUARE, source_crs=4326)

    store.begin()
    store.insert_batch("wards", [record], transform_from=4326)
    store.commit()

    statement, params = pool.conn.executed[-1]
    assert statement.startswith('INSERT INTO "wards" ("ward", geom)')
    assert "ST_Transform(ST_SetSRID(ST_GeomFromGeoJSON(%s), 4326), 2272)" in statement
    assert params == ["3", json.dumps(SQUARE)]
    assert pool.conn.commits == 1
    assert pool.checked_out == 0


def test_insert_batch_without_transform_keeps_srid():
    store, pool = _store()
    record = CanonicalRecord(layer="wards", fields={"ward": "3"}, geometry=SQUARE, source_crs=2272)

    store.begin()
    store.insert_batch("wards", [record])
    store.commit()

    statement, _ = pool.conn.executed[-1]
    assert "ST_Transform" not in statement
    assert "ST_Multi(ST_SetSRID(ST_GeomFromGeoJSON(%s), 2272))" in statement


def test_insert_error_surfaces_as_storage_error_and_rollback_releases_connection():
    store, pool = _store()
    pool.conn.fail_on = "INSERT"
    record = CanonicalRecord(layer="wards", fields={"ward": "3"}, geometry=SQUARE, source_crs=2272)

    store.begin()
    with pytest.raises(StorageError):
        store.insert_batch("wards", [record])
    store.rollback()

    assert pool.conn.rollbacks == 1
    assert pool.checked_out == 0


def test_transaction_guards():
    store, _pool = _store()
    with pytest.raises(StorageError):
        store.insert_batch("wards", [])
    with pytest.raises(StorageError):
        store.commit()
    store.begin()
    with pytest.raises(StorageError):
        store.begin()


def test_contains_point_maps_rows_to_columns():
    store, pool = _store()
    pool.conn.rows = [("4", "District 4", "A. Member")]

    rows = store.contains_point("county_council", -80.0, 40.44, 4326)

    statement, params = pool.conn.executed[-1]
    assert "ST_Transform(ST_SetSRID(ST_MakePoint(%s, %s), 4326), 2272)" in statement
    assert params == (-80.0, 40.44)
    assert rows == [{"district": "4", "name": "District 4", "member": "A. Member"}]


def test_contains_point_in_store_crs_skips_transform():
    store, pool = _store()
    store.contains_point("wards", 1_340_000.0, 410_000.0, 2272)
    statement, _ = pool.conn.executed[-1]
    assert "ST_Transform" not in statement


def test_clear_and_count():
    store, pool = _store()
    store.clear("wards")
    assert pool.conn.executed[-1][0] == 'DELETE FROM "wards"'

    pool.conn.rows = [(12,)]
    assert store.count("wards") == 12


def test_query_error_becomes_storage_error():
    store, pool = _store()
    pool.conn.fail_on = "SELECT"
    with pytest.raises(StorageError):
        store.contains_point("wards", 0.0, 0.0, 2272)
    assert pool.conn.rollbacks == 1
    assert pool.checked_out == 0


def test_unknown_layer_and_unsafe_identifier():
    store, _pool = _store()
    with pytest.raises(StorageError):
        store.count("nope")

    unsafe = PostgisSpatialStore(FakePool(), {'wards"; DROP TABLE x; --': ("ward",)})
    with pytest.raises(ConfigError):
        unsafe.ensure_schema()


def test_close_closes_pool():
    store, pool = _store()
    store.close()
    assert pool.closed
