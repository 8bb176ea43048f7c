from decimal import Decimal

import pytest
from sqlalchemy import select

from b2bsync.models import Customer, CustomerGroup, Product, Representative, db
from b2bsync.sync.errors import ConfigurationError
from b2bsync.sync.pipeline import SYNCHRONIZERS
from b2bsync.sync.schema_config import ENTITY_ORDER


def _run(context, *names):
    return [SYNCHRONIZERS[name](context).execute() for name in names]


def _all(model, tenant):
    stmt = select(model).where(model.tenant_id == tenant.id).order_by(model.external_id)
    return db.session.scalars(stmt).all()


def test_synchronizers_follow_dependency_order():
    assert tuple(SYNCHRONIZERS) == ENTITY_ORDER


# Customer groups ------------------------------------------------------------


def test_customer_groups_are_created_and_watermarked(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"customers_group_schema": schemas["customers_group_schema"]})

    (summary,) = _run(make_context(tenant), "customer_groups")

    groups = _all(CustomerGroup, tenant)
    assert [(group.external_id, group.name, group.name_key) for group in groups] == [
        ("G1", "Varejo", "varejo"),
        ("G2", "Atacado", "atacado"),
    ]
    assert summary.status == "succeeded"
    assert summary.created == 2
    assert summary.incremental is False
    assert tenant.sync_config["customers_group_schema"]["last_processed_at"] == "2024-01-01T11:00:00.000Z"


def test_legacy_group_is_matched_by_case_insensitive_name(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"customers_group_schema": schemas["customers_group_schema"]})
    db.session.add(CustomerGroup(tenant_id=tenant.id, external_id=None, name=" VAREJO "))
    db.session.commit()

    (summary,) = _run(make_context(tenant), "customer_groups")

    groups = _all(CustomerGroup, tenant)
    assert len(groups) == 2
    assert summary.created == 1
    assert summary.updated == 1
    assert {group.external_id: group.name for group in groups}["G1"] == "Varejo"


def test_group_rows_without_scalar_name_are_skipped_with_errors(seed_source, schemas, make_tenant, make_context):
    seed_source()
    schema = schemas["customers_group_schema"]
    schema["fields"]["name"] = {
        "field": "nome",
        "tratamento": "mapear_valores",
        "options": {"Varejo": {"segment": "retail"}},
    }
    tenant = make_tenant({"customers_group_schema": schema})

    (summary,) = _run(make_context(tenant), "customer_groups")

    assert [group.external_id for group in _all(CustomerGroup, tenant)] == ["G2"]
    assert summary.reconcile.extra["skipped_row_errors"] == 1
    assert summary.skipped == 1
    assert summary.errors == ["customer group name is not a scalar"]
    assert summary.to_dict()["errors"] == ["customer group name is not a scalar"]


def test_second_run_is_incremental_and_idempotent(seed_source, schemas, make_tenant, make_context):
    source_db = seed_source()
    tenant = make_tenant({"customers_group_schema": schemas["customers_group_schema"]})
    _run(make_context(tenant), "customer_groups")

    source_db.update("grupos", "id", "G2", nome="Atacado Sul", updated_at="2024-02-01T00:00:00.000Z")
    (summary,) = _run(make_context(tenant), "customer_groups")

    assert summary.incremental is True
    assert summary.fetched == 1
    assert summary.created == 0
    assert {group.external_id: group.name for group in _all(CustomerGroup, tenant)}["G2"] == "Atacado Sul"
    assert tenant.sync_config["customers_group_schema"]["last_processed_at"] == "2024-02-01T00:00:00.000Z"


def test_force_full_resync_rereads_everything(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"customers_group_schema": schemas["customers_group_schema"]})
    _run(make_context(tenant), "customer_groups")

    (summary,) = _run(make_context(tenant, force_full_resync=True), "customer_groups")

    assert summary.incremental is False
    assert summary.fetched == 2
    assert summary.created == 0
    assert len(_all(CustomerGroup, tenant)) == 2


def test_missing_external_id_mapping_is_a_configuration_error(seed_source, schemas, make_tenant, make_context):
    seed_source()
    schema = schemas["customers_group_schema"]
    del schema["fields"]["external_id"]
    tenant = make_tenant({"customers_group_schema": schema})

    with pytest.raises(ConfigurationError) as excinfo:
        _run(make_context(tenant), "customer_groups")

    assert excinfo.value.config_key == "customers_group_schema.fields.external_id"


def test_missing_source_table_is_a_configuration_error(source_db, schemas, make_tenant, make_context):
    tenant = make_tenant({"customers_group_schema": schemas["customers_group_schema"]})

    with pytest.raises(ConfigurationError) as excinfo:
        _run(make_context(tenant), "customer_groups")

    assert excinfo.value.config_key == "customers_group_schema.table"


# Representatives --------------------------------------------------------------


def test_representatives_link_supervisors_after_write(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"representative_schema": schemas["representative_schema"]})

    (summary,) = _run(make_context(tenant), "representatives")

    beatriz, carlos = _all(Representative, tenant)
    assert beatriz.is_supervisor is True
    assert carlos.is_supervisor is False
    assert carlos.supervisor_id == beatriz.id
    assert beatriz.supervisor_id is None
    assert beatriz.phone == "5511987654321"
    assert carlos.phone is None
    assert beatriz.internal_code == "007"
    assert summary.details["supervisors_linked"] == 1


def test_legacy_representative_is_matched_by_document(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"representative_schema": schemas["representative_schema"]})
    legacy = Representative(tenant_id=tenant.id, external_id=None, document="11122233344", name="Bia")
    db.session.add(legacy)
    db.session.commit()

    _run(make_context(tenant), "representatives")

    representatives = _all(Representative, tenant)
    assert len(representatives) == 2
    assert legacy.external_id == "R1"
    assert legacy.name == "Beatriz"


# Customers --------------------------------------------------------------------


def test_customers_resolve_groups_and_representatives(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant(schemas)

    *_, summary = _run(make_context(tenant), "customer_groups", "representatives", "customers")

    groups = {group.external_id: group.id for group in _all(CustomerGroup, tenant)}
    reps = {rep.external_id: rep.id for rep in _all(Representative, tenant)}
    azul, sol = _all(Customer, tenant)
    assert summary.created == 2
    assert azul.tax_id == "12345678000199"
    assert azul.trade_name == "Mercado Azul"
    assert azul.status is True
    assert azul.representative_id == reps["R1"]
    assert azul.customer_group_id == groups["G1"]
    assert azul.phones == {"celular": "1133334444", "comercial": ""}
    assert sol.trade_name == "Padaria Sol ME"
    assert sol.status is False
    assert sol.representative_id == reps["R2"]
    assert sol.customer_group_id == groups["G2"]


def test_legacy_customer_adopts_external_id(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"customers_schema": schemas["customers_schema"]})
    legacy = Customer(tenant_id=tenant.id, external_id=None, tax_id="12345678000199")
    db.session.add(legacy)
    db.session.commit()

    _run(make_context(tenant), "customers")

    customers = _all(Customer, tenant)
    assert len(customers) == 2
    assert legacy.external_id == "C1"
    assert legacy.legal_name == "Mercado Azul Ltda"


def test_legacy_customer_bound_elsewhere_keeps_its_external_id_but_takes_the_values(
    seed_source, schemas, make_tenant, make_context
):
    seed_source()
    tenant = make_tenant({"customers_schema": schemas["customers_schema"]})
    bound = Customer(tenant_id=tenant.id, external_id="ERP-OLD", tax_id="12345678000199", legal_name="Antigo")
    db.session.add(bound)
    db.session.commit()

    (summary,) = _run(make_context(tenant), "customers")

    customers = _all(Customer, tenant)
    assert len(customers) == 2
    db.session.refresh(bound)
    assert bound.external_id == "ERP-OLD"
    assert bound.legal_name == "Mercado Azul Ltda"
    assert summary.reconcile.skipped_external_id_conflicts == 1
    assert summary.total_conflicts >= 1
    assert "C1" not in {customer.external_id for customer in customers}


def test_customer_without_tax_id_is_kept_and_counted(seed_source, schemas, make_tenant, make_context):
    source_db = seed_source()
    source_db.insert("clientes", [{"id": "C3", "cnpj": None, "razao": "Sem Documento", "updated_at": "2024-01-03T10:00:00.000Z"}])
    tenant = make_tenant({"customers_schema": schemas["customers_schema"]})

    (summary,) = _run(make_context(tenant), "customers")

    stored = {customer.external_id: customer for customer in _all(Customer, tenant)}
    assert stored["C3"].tax_id == "C3"
    assert summary.reconcile.extra["skipped_missing_tax_id"] == 1


def test_unresolved_relation_keeps_stored_value(seed_source, schemas, make_tenant, make_context):
    source_db = seed_source()
    tenant = make_tenant(schemas)
    _run(make_context(tenant), "customer_groups", "representatives", "customers")
    azul = _all(Customer, tenant)[0]
    original_rep = azul.representative_id

    source_db.update("clientes", "id", "C1", vendedor="999", updated_at="2024-02-01T00:00:00.000Z")
    _run(make_context(tenant), "customers")

    db.session.refresh(azul)
    assert original_rep is not None
    assert azul.representative_id == original_rep


# Products ---------------------------------------------------------------------


def test_products_are_coerced(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"products_schema": schemas["products_schema"]})

    (summary,) = _run(make_context(tenant), "products")

    cafe, acucar = _all(Product, tenant)
    assert summary.created == 2
    assert cafe.sku == "501"
    assert cafe.weight == Decimal("0.5")
    assert cafe.brand_ref == 12
    assert cafe.active is True
    assert acucar.active is False
    assert acucar.brand_ref is None


def test_duplicate_sku_in_batch_keeps_first_row(seed_source, schemas, make_tenant, make_context):
    source_db = seed_source()
    source_db.insert(
        "produtos",
        [{"id": "P3", "sku": "501", "nome": "Cafe duplicado", "situacao": "A", "updated_at": "2024-01-04T10:00:00.000Z"}],
    )
    tenant = make_tenant({"products_schema": schemas["products_schema"]})

    (summary,) = _run(make_context(tenant), "products")

    assert [product.external_id for product in _all(Product, tenant)] == ["P1", "P2"]
    assert summary.reconcile.extra["duplicated_sku_in_batch"] == 1


def test_legacy_product_is_matched_by_sku(seed_source, schemas, make_tenant, make_context):
    seed_source()
    tenant = make_tenant({"products_schema": schemas["products_schema"]})
    db.session.add(Product(tenant_id=tenant.id, external_id=None, sku="501", name="Cafe antigo"))
    db.session.commit()

    (summary,) = _run(make_context(tenant), "products")

    products = {product.external_id: product for product in _all(Product, tenant)}
    assert set(products) == {"P1", "P2"}
    assert products["P1"].name == "Cafe 500g"
    assert summary.created == 1
