from __future__ import annotations

import itertools
from copy import deepcopy

import pytest
from sqlalchemy import create_engine, text

from b2bsync.models import Tenant, db
from b2bsync.sync.context import SyncContext, SyncSettings
from b2bsync.sync.schema_config import TenantSyncConfig
from b2bsync.sync.source import SourceConnection


class SourceDatabase:
    """A tenant source backed by a SQLite file; columns are untyped so values keep their Python type."""

    def __init__(self, path):
        self.path = path
        self.url = f"sqlite:///{path}"
        self.engine = create_engine(self.url)

    def create_table(self, name, columns, rows=()):
        column_sql = ", ".join(f'"{column}"' for column in columns)
        with self.engine.begin() as connection:
            connection.execute(text(f'CREATE TABLE "{name}" ({column_sql})'))
        self.insert(name, rows)

    def insert(self, name, rows):
        rows = [dict(row) for row in rows]
        if not rows:
            return
        columns = list(rows[0])
        column_sql = ", ".join(f'"{column}"' for column in columns)
        values_sql = ", ".join(f":{column}" for column in columns)
        with self.engine.begin() as connection:
            connection.execute(text(f'INSERT INTO "{name}" ({column_sql}) VALUES ({values_sql})'), rows)

    def update(self, name, key_column, key, **values):
        assignments = ", ".join(f'"{column}" = :{column}' for column in values)
        with self.engine.begin() as connection:
            connection.execute(
                text(f'UPDATE "{name}" SET {assignments} WHERE "{key_column}" = :_key'),
                {**values, "_key": key},
            )

    def delete(self, name, key_column, key):
        with self.engine.begin() as connection:
            connection.execute(text(f'DELETE FROM "{name}" WHERE "{key_column}" = :_key'), {"_key": key})


@pytest.fixture
def source_db(tmp_path):
    database = SourceDatabase(tmp_path / "tenant_source.db")
    yield database
    database.engine.dispose()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def no_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def make_tenant(source_db):
    sequence = itertools.count(1)

    def _make(schemas=None, *, slug=None, is_active=True, source=None):
        number = next(sequence)
        blob = {"source": source if source is not None else {"url": source_db.url}}
        blob.update(deepcopy(schemas or {}))
        tenant = Tenant(
            name=f"Tenant {number}",
            slug=slug or f"tenant-{number}",
            is_active=is_active,
            sync_config=blob,
        )
        db.session.add(tenant)
        db.session.commit()
        return tenant

    return _make


@pytest.fixture
def make_context(source_db, no_sleep):
    connections = []

    def _make(tenant, *, settings=None, force_full_resync=False):
        source = SourceConnection({"url": source_db.url}, sleep=no_sleep)
        connections.append(source)
        return SyncContext(
            tenant=tenant,
            session=db.session,
            source=source,
            config=TenantSyncConfig(tenant.sync_config),
            settings=settings or SyncSettings(),
            force_full_resync=force_full_resync,
            sleep=no_sleep,
        )

    yield _make
    for connection in connections:
        connection.close()


@pytest.fixture
def schemas():
    """Mapping schemas for every entity, matching the tables built by ``seed_source``."""

    return {
        "customers_group_schema": {
            "table": "grupos",
            "fields": {"external_id": "id", "name": "nome", "synced_at": "updated_at"},
        },
        "representative_schema": {
            "table": "vendedores",
            "fields": {
                "external_id": "id",
                "name": "nome",
                "document": "cpf",
                "internal_code": "codigo",
                "phone": "fone",
                "is_supervisor": "supervisor",
                "supervisor_id": "supervisor_id",
                "synced_at": "updated_at",
            },
        },
        "customers_schema": {
            "table": "clientes",
            "fields": {
                "external_id": "id",
                "tax_id": "cnpj",
                "legal_name": "razao",
                "trade_name": {
                    "field": "fantasia",
                    "tratamento": "usar_um_ou_outro",
                    "options": {"main": "fantasia", "fallback": "razao"},
                },
                "status": "ativo",
                "phones": "fone1,fone2",
                "representative_id": {"field": "vendedor", "options": {"lookupField": "internal_code"}},
                "group_id": "grupo",
                "synced_at": "updated_at",
            },
        },
        "products_schema": {
            "table": "produtos",
            "fields": {
                "external_id": "id",
                "sku": "sku",
                "name": "nome",
                "brand_id": "marca_id",
                "weight": "peso",
                "active": {
                    "field": "situacao",
                    "tratamento": "mapear_valores",
                    "options": {"A": True, "I": False},
                },
                "synced_at": "updated_at",
            },
        },
        "orders_schema": {
            "table": "pedidos",
            "orderFields": {
                "external_id": "pedido_id",
                "order_code": "codigo",
                "order_date": "data",
                "customer_id": "cliente_id",
                "representative_id": {"field": "vendedor", "options": {"lookupField": "internal_code"}},
                "total_amount": "total",
                "current_status": {
                    "field": "status",
                    "tratamento": "mapear_valores",
                    "options": {"A": "Aprovado", "C": "Cancelado", "else": "Outro"},
                },
                "synced_at": "updated_at",
            },
            "orderItemFields": {
                "external_id": "item_id",
                "sku": "item_sku",
                "quantity": "qtd",
                "unit_price": "preco",
            },
        },
    }


@pytest.fixture
def seed_source(source_db):
    """Create every source table with a small, consistent data set."""

    def _seed():
        source_db.create_table(
            "grupos",
            ["id", "nome", "updated_at"],
            [
                {"id": "G1", "nome": "Varejo", "updated_at": "2024-01-01T10:00:00.000Z"},
                {"id": "G2", "nome": "Atacado", "updated_at": "2024-01-01T11:00:00.000Z"},
            ],
        )
        source_db.create_table(
            "vendedores",
            ["id", "nome", "cpf", "codigo", "fone", "supervisor", "supervisor_id", "updated_at"],
            [
                {
                    "id": "R1",
                    "nome": "Beatriz",
                    "cpf": "11122233344",
                    "codigo": "007",
                    "fone": "(11) 98765-4321",
                    "supervisor": "S",
                    "supervisor_id": None,
                    "updated_at": "2024-01-02T09:00:00.000Z",
                },
                {
                    "id": "R2",
                    "nome": "Carlos",
                    "cpf": "55566677788",
                    "codigo": "008",
                    "fone": None,
                    "supervisor": "N",
                    "supervisor_id": "R1",
                    "updated_at": "2024-01-02T10:00:00.000Z",
                },
            ],
        )
        source_db.create_table(
            "clientes",
            ["id", "cnpj", "razao", "fantasia", "ativo", "fone1", "fone2", "vendedor", "grupo", "updated_at"],
            [
                {
                    "id": "C1",
                    "cnpj": "12345678000199",
                    "razao": "Mercado Azul Ltda",
                    "fantasia": "Mercado Azul",
                    "ativo": "S",
                    "fone1": "1133334444",
                    "fone2": "",
                    "vendedor": "7",
                    "grupo": "G1",
                    "updated_at": "2024-01-03T08:00:00.000Z",
                },
                {
                    "id": "C2",
                    "cnpj": "98765432000155",
                    "razao": "Padaria Sol ME",
                    "fantasia": None,
                    "ativo": "N",
                    "fone1": "11999990000",
                    "fone2": "1122223333",
                    "vendedor": "008",
                    "grupo": "G2",
                    "updated_at": "2024-01-03T09:00:00.000Z",
                },
            ],
        )
        source_db.create_table(
            "produtos",
            ["id", "sku", "nome", "marca_id", "peso", "situacao", "updated_at"],
            [
                {
                    "id": "P1",
                    "sku": "501",
                    "nome": "Cafe 500g",
                    "marca_id": "12",
                    "peso": "0,5",
                    "situacao": "A",
                    "updated_at": "2024-01-04T08:00:00.000Z",
                },
                {
                    "id": "P2",
                    "sku": "502",
                    "nome": "Acucar 1kg",
                    "marca_id": None,
                    "peso": "1",
                    "situacao": "I",
                    "updated_at": "2024-01-04T09:00:00.000Z",
                },
            ],
        )
        source_db.create_table(
            "pedidos",
            [
                "pedido_id",
                "codigo",
                "data",
                "cliente_id",
                "vendedor",
                "total",
                "status",
                "item_id",
                "item_sku",
                "qtd",
                "preco",
                "updated_at",
            ],
            [
                {
                    "pedido_id": "O1",
                    "codigo": "1001",
                    "data": "2024-01-05T12:00:00Z",
                    "cliente_id": "C1",
                    "vendedor": "007",
                    "total": "150,00",
                    "status": "A",
                    "item_id": "O1-1",
                    "item_sku": "501",
                    "qtd": "2",
                    "preco": "50,00",
                    "updated_at": "2024-01-05T12:00:00.000Z",
                },
                {
                    "pedido_id": "O1",
                    "codigo": "1001",
                    "data": "2024-01-05T12:00:00Z",
                    "cliente_id": "C1",
                    "vendedor": "007",
                    "total": "150,00",
                    "status": "A",
                    "item_id": "O1-2",
                    "item_sku": "502",
                    "qtd": "1",
                    "preco": "50,00",
                    "updated_at": "2024-01-05T12:00:00.000Z",
                },
                {
                    "pedido_id": "O2",
                    "codigo": "1002",
                    "data": "2024-01-06T12:00:00Z",
                    "cliente_id": "C2",
                    "vendedor": "008",
                    "total": "30,00",
                    "status": "X",
                    "item_id": "O2-1",
                    "item_sku": "501",
                    "qtd": "1",
                    "preco": "30,00",
                    "updated_at": "2024-01-06T12:00:00.000Z",
                },
            ],
        )
        return source_db

    return _seed
