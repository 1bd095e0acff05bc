"""PostGIS-backed spatial store."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Sequence

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from district_lookup.common.constants import DEFAULT_STORAGE_SRID
from district_lookup.common.errors import ConfigError, StorageError
from district_lookup.common.models import CanonicalRecord
from district_lookup.common.schema import IDENTIFIER_RE


def _quote(identifier: str) -> str:
    if not IDENTIFIER_RE.match(identifier):
        raise ConfigError(f"Unsafe SQL identifier: {identifier!r}")
    return f'"{identifier}"'


def _geometry_expression(srid: int, transform_from: int | None) -> str:
    if transform_from is None or transform_from == srid:
        return f"ST_Multi(ST_SetSRID(ST_GeomFromGeoJSON(%s), {int(srid)}))"
    return f"ST_Multi(ST_Transform(ST_SetSRID(ST_GeomFromGeoJSON(%s), {int(transform_from)}), {int(srid)}))"


def _point_expression(srid: int, crs: int) -> str:
    point = f"ST_SetSRID(ST_MakePoint(%s, %s), {int(crs)})"
    if crs == srid:
        return point
    return f"ST_Transform({point}, {int(srid)})"


class PostgisSpatialStore:
    def __init__(
        self,
        pool,
        columns_by_layer: Mapping[str, Sequence[str]],
        *,
        srid: int = DEFAULT_STORAGE_SRID,
    ) -> None:
        self.pool = pool
        self.srid = srid
        self.columns_by_layer = {layer: tuple(columns) for layer, columns in columns_by_layer.items()}
        self._tx_conn = None

    @classmethod
    def from_dsn(
        cls,
        dsn: str,
        columns_by_layer: Mapping[str, Sequence[str]],
        *,
        srid: int = DEFAULT_STORAGE_SRID,
        max_connections: int = 5,
    ) -> "PostgisSpatialStore":
        try:
            pool = ThreadedConnectionPool(1, max_connections, dsn)
        except psycopg2.Error as exc:
            raise StorageError(f"Could not connect to PostGIS: {exc}") from exc
        return cls(pool, columns_by_layer, srid=srid)

    def _columns(self, layer: str) -> tuple[str, ...]:
        try:
            return self.columns_by_layer[layer]
        except KeyError as exc:
            raise StorageError(f"Unknown layer: {layer}") from exc

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS postgis")
            for layer, columns in self.columns_by_layer.items():
                table = _quote(layer)
                column_defs = "".join(f"{_quote(column)} TEXT, " for column in columns)
                cur.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} ("
                    f"id SERIAL PRIMARY KEY, {column_defs}"
                    f"geom geometry(MultiPolygon, {int(self.srid)}))"
                )
                cur.execute(f"CREATE INDEX IF NOT EXISTS {_quote(f'{layer}_geom_idx')} ON {table} USING GIST (geom)")

    def clear(self, layer: str) -> None:
        self._columns(layer)
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(f"DELETE FROM {_quote(layer)}")

    def begin(self) -> None:
        if self._tx_conn is not None:
            raise StorageError("A transaction is already open")
        try:
            self._tx_conn = self.pool.getconn()
        except psycopg2.Error as exc:
            raise StorageError(f"Could not open a transaction: {exc}") from exc

    def insert_batch(
        self,
        layer: str,
        records: Iterable[CanonicalRecord],
        *,
        transform_from: int | None = None,
    ) -> None:
        if self._tx_conn is None:
            raise StorageError("insert_batch called outside a transaction")
        columns = self._columns(layer)
        column_sql = ", ".join([*(_quote(column) for column in columns), "geom"])
        placeholders = ", ".join(["%s"] * len(columns) + [_geometry_expression(self.srid, transform_from)])
        statement = f"INSERT INTO {_quote(layer)} ({column_sql}) VALUES ({placeholders})"

        try:
            with self._tx_conn.cursor() as cur:
                for record in records:
                    values = [record.fields.get(column) for column in columns]
                    values.append(json.dumps(record.geometry))
                    cur.execute(statement, values)
        except psycopg2.Error as exc:
            raise StorageError(f"Insert into {layer} failed: {exc}") from exc

    def _finish(self, action: str) -> None:
        conn = self._tx_conn
        if conn is None:
            if action == "commit":
                raise StorageError("No open transaction to commit")
            return
        self._tx_conn = None
        try:
            getattr(conn, action)()
        except psycopg2.Error as exc:
            raise StorageError(f"Transaction {action} failed: {exc}") from exc
        finally:
            self.pool.putconn(conn)

    def commit(self) -> None:
        self._finish("commit")

    def rollback(self) -> None:
        self._finish("rollback")

    def contains_point(self, layer: str, x: float, y: float, crs: int) -> list[dict[str, Any]]:
        columns = self._columns(layer)
        column_sql = ", ".join(_quote(column) for column in columns)
        statement = (
            f"SELECT {column_sql} FROM {_quote(layer)} "
            f"WHERE ST_Intersects(geom, {_point_expression(self.srid, crs)})"
        )
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(statement, (x, y))
            rows = cur.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    def count(self, layer: str) -> int:
        self._columns(layer)
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {_quote(layer)}")
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        self.pool.closeall()
