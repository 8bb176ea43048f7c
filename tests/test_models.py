import pytest
from sqlalchemy.exc import IntegrityError

from b2bsync.models import CustomerGroup, Order, OrderItem, Product, Representative, Tenant, db


@pytest.fixture
def tenant():
    tenant = Tenant(name="Acme Distribuidora", slug="acme", sync_config={"source": {"url": "sqlite://"}})
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def other_tenant():
    tenant = Tenant(name="Beta Atacado", slug="beta")
    db.session.add(tenant)
    db.session.commit()
    return tenant


class TestTenantModel:
    """Tenant defaults and representation"""

    def test_defaults(self, tenant):
        assert tenant.is_active is True
        assert tenant.created_at is not None
        assert tenant.sync_config["source"] == {"url": "sqlite://"}

    def test_repr(self, tenant):
        assert repr(tenant) == "<Tenant acme>"

    def test_slug_is_unique(self, tenant):
        db.session.add(Tenant(name="Copy", slug="acme"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestCustomerGroupModel:
    """Name key tracking on customer groups"""

    def test_name_key_follows_name(self, tenant):
        group = CustomerGroup(tenant_id=tenant.id, name="  Rede Norte ")
        assert group.name_key == "rede norte"

        group.name = "Rede Sul"
        assert group.name_key == "rede sul"

    def test_name_key_is_unique_per_tenant(self, tenant, other_tenant):
        db.session.add_all(
            [
                CustomerGroup(tenant_id=tenant.id, name="Varejo"),
                CustomerGroup(tenant_id=other_tenant.id, name="VAREJO"),
            ]
        )
        db.session.commit()

        db.session.add(CustomerGroup(tenant_id=tenant.id, name="varejo "))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestProductModel:
    """Tenant scoped product keys"""

    def test_same_sku_in_different_tenants(self, tenant, other_tenant):
        db.session.add_all(
            [
                Product(tenant_id=tenant.id, external_id="P1", sku="501"),
                Product(tenant_id=other_tenant.id, external_id="P1", sku="501"),
            ]
        )
        db.session.commit()

        assert Product.query.filter_by(sku="501").count() == 2

    def test_sku_is_unique_per_tenant(self, tenant):
        db.session.add_all(
            [
                Product(tenant_id=tenant.id, external_id="P1", sku="501"),
                Product(tenant_id=tenant.id, external_id="P2", sku="501"),
            ]
        )
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestOrderModel:
    """Orders and their items"""

    def test_items_belong_to_order(self, tenant):
        order = Order(tenant_id=tenant.id, external_id="O1", order_code=1001)
        db.session.add(order)
        db.session.flush()
        db.session.add_all(
            [
                OrderItem(tenant_id=tenant.id, order_id=order.id, external_id="O1-1", sku=501),
                OrderItem(tenant_id=tenant.id, order_id=order.id, external_id="O1-2", sku=502),
            ]
        )
        db.session.commit()

        assert sorted(item.external_id for item in order.items) == ["O1-1", "O1-2"]

    def test_order_code_is_unique_per_tenant(self, tenant):
        db.session.add_all(
            [
                Order(tenant_id=tenant.id, external_id="O1", order_code=1001),
                Order(tenant_id=tenant.id, external_id="O2", order_code=1001),
            ]
        )
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestRepresentativeModel:
    """Supervisor hierarchy"""

    def test_supervisor_relationship(self, tenant):
        boss = Representative(tenant_id=tenant.id, external_id="R1", name="Beatriz", is_supervisor=True)
        db.session.add(boss)
        db.session.flush()
        member = Representative(tenant_id=tenant.id, external_id="R2", name="Carlos", supervisor_id=boss.id)
        db.session.add(member)
        db.session.commit()

        assert member.supervisor is boss
        assert repr(member) == "<Representative R2 'Carlos'>"
