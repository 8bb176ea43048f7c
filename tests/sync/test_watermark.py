from copy import deepcopy

from sqlalchemy.orm.attributes import flag_modified

from b2bsync.models import Tenant, db
from b2bsync.sync.watermark import WatermarkCommitter


def _stored(tenant_id, schema_key="products_schema"):
    tenant = db.session.get(Tenant, tenant_id)
    db.session.refresh(tenant)
    return (tenant.sync_config.get(schema_key) or {}).get("last_processed_at")


def _products_tenant(make_tenant, last_processed_at=None):
    schema = {"table": "produtos", "fields": {"external_id": "id"}}
    if last_processed_at:
        schema["last_processed_at"] = last_processed_at
    return make_tenant({"products_schema": schema})


def test_commit_stores_the_greatest_observed_timestamp(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products")

    committer.observe("2024-01-02T00:00:00.000Z")
    committer.observe("2024-01-01T00:00:00.000Z")
    committer.observe(None)

    assert committer.commit() is True
    assert _stored(tenant.id) == "2024-01-02T00:00:00.000Z"
    assert tenant.sync_config["products_schema"]["table"] == "produtos"


def test_nothing_observed_writes_nothing(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products")

    assert committer.commit() is False
    assert _stored(tenant.id) is None


def test_watermark_never_moves_backwards(make_tenant, make_context):
    tenant = _products_tenant(make_tenant, "2024-02-01T00:00:00.000Z")
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products")

    committer.observe("2024-01-15T00:00:00.000Z")

    assert committer.commit() is False
    assert _stored(tenant.id) == "2024-02-01T00:00:00.000Z"


def test_concurrent_advance_is_respected(make_tenant, make_context):
    tenant = _products_tenant(make_tenant, "2024-01-01T00:00:00.000Z")
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products")
    committer.observe("2024-01-10T00:00:00.000Z")

    # another run advanced the same entity meanwhile
    blob = deepcopy(tenant.sync_config)
    blob["products_schema"]["last_processed_at"] = "2024-01-20T00:00:00.000Z"
    tenant.sync_config = blob
    flag_modified(tenant, "sync_config")
    db.session.commit()

    assert committer.commit() is False
    assert _stored(tenant.id) == "2024-01-20T00:00:00.000Z"


def test_commit_touches_only_its_own_schema(make_tenant, make_context):
    tenant = make_tenant(
        {
            "products_schema": {"table": "produtos", "fields": {}},
            "customers_schema": {"table": "clientes", "fields": {}, "last_processed_at": "2023-12-31T00:00:00.000Z"},
        }
    )
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products")
    committer.observe("2024-01-01T00:00:00Z")

    committer.commit()

    assert _stored(tenant.id) == "2024-01-01T00:00:00.000Z"
    assert _stored(tenant.id, "customers_schema") == "2023-12-31T00:00:00.000Z"
    assert tenant.sync_config["source"]


def test_row_checkpoint_stops_below_the_newest_timestamp(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products", checkpoint_rows=2)

    committer.observe("2024-01-01T00:00:00Z")
    assert committer.maybe_checkpoint() is False
    committer.observe("2024-01-02T00:00:00Z")
    assert committer.maybe_checkpoint() is True

    assert _stored(tenant.id) == "2024-01-01T00:00:00.000Z"
    assert committer.commit() is True
    assert _stored(tenant.id) == "2024-01-02T00:00:00.000Z"


def test_time_checkpoint(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    now = [100.0]
    committer = WatermarkCommitter(
        make_context(tenant),
        "products_schema",
        entity="products",
        checkpoint_seconds=30,
        clock=lambda: now[0],
    )

    committer.observe("2024-01-01T00:00:00Z")
    committer.observe("2024-01-01T06:00:00Z")
    assert committer.maybe_checkpoint() is False
    now[0] = 131.0
    assert committer.maybe_checkpoint() is True
    assert _stored(tenant.id) == "2024-01-01T00:00:00.000Z"


def test_checkpoint_with_a_single_timestamp_writes_nothing(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products", checkpoint_rows=1)

    committer.observe("2024-03-01T12:00:00Z")

    assert committer.maybe_checkpoint() is False
    assert _stored(tenant.id) is None


def test_checkpoint_keeps_rows_sharing_the_newest_timestamp_unclaimed(make_tenant, make_context):
    tenant = _products_tenant(make_tenant)
    committer = WatermarkCommitter(make_context(tenant), "products_schema", entity="products", checkpoint_rows=2)

    # first page ends in the middle of a run of rows stamped 10:00
    committer.observe("2024-03-01T09:00:00Z")
    committer.observe("2024-03-01T10:00:00Z")
    assert committer.maybe_checkpoint() is True
    assert _stored(tenant.id) == "2024-03-01T09:00:00.000Z"

    committer.observe("2024-03-01T10:00:00Z")
    committer.observe("2024-03-01T10:00:00Z")
    assert committer.maybe_checkpoint() is False
    assert _stored(tenant.id) == "2024-03-01T09:00:00.000Z"

    assert committer.commit() is True
    assert _stored(tenant.id) == "2024-03-01T10:00:00.000Z"
