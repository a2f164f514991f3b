# Overview: Pytest coverage for pushing inventory lots and batches to the registry.

"""
Push Sync Tests

Verifies:
- A lot or batch already reported is a no-op with zero registry calls
- Validation failures never reach the registry
- Registry rejections come back verbatim and leave the lot untouched
"""

from datetime import date
from decimal import Decimal

import pytest

from canopy.models import Batch, Cultivar, InventoryLot, RegistryMapping, RegistryPlantBatchCache
from canopy.registry import RegistryApiError
from canopy.services import push_sync_service


@pytest.fixture
def lot_a(db_session, org_a, site_a):
    lot = InventoryLot(
        org_id=org_a.id,
        site_id=site_a.id,
        lot_number="LOT-1",
        item_name="Blue Dream Buds",
        quantity=Decimal("453.6"),
        unit_of_measure="Grams",
        packaged_date=date(2024, 3, 15),
        package_tag="1A400000000000000000K001",
    )
    db_session.add(lot)
    db_session.commit()
    return lot


class TestPushInventoryLot:
    """push_inventory_lot_to_registry"""

    def test_push_creates_package_and_mapping(self, db_session, org_a, site_a, lot_a, fake_registry):
        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)

        assert result.success
        assert result.lots_created == 1
        assert result.package_tag == "1A400000000000000000K001"

        name, args, _ = fake_registry.calls[0]
        assert name == "create_package"
        assert args[0] == {
            "Tag": "1A400000000000000000K001",
            "Item": "Blue Dream Buds",
            "Quantity": 453.6,
            "UnitOfMeasure": "Grams",
            "PackagedDate": "2024-03-15",
        }

        db_session.refresh(lot_a)
        assert lot_a.registry_package_tag == "1A400000000000000000K001"
        assert lot_a.registry_package_id == "9000"
        assert lot_a.registry_synced_at is not None
        mapping = db_session.query(RegistryMapping).filter_by(entity_type="lot", internal_id=lot_a.id).one()
        assert mapping.registry_entity_type == "package"

    def test_already_synced_makes_no_calls(self, db_session, org_a, site_a, lot_a, fake_registry):
        push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)
        fake_registry.calls.clear()

        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)

        assert result.success
        assert result.already_synced is True
        assert result.lots_created == 0
        assert fake_registry.calls == []
        assert db_session.query(RegistryMapping).count() == 1

    def test_rejection_returned_verbatim(self, db_session, org_a, site_a, lot_a, fake_registry):
        fake_registry.errors["create_package"] = RegistryApiError(
            "Package tag 1A400000000000000000K001 is not available", status_code=400
        )

        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)

        assert result.success is False
        assert result.errors == ["Package tag 1A400000000000000000K001 is not available"]
        db_session.refresh(lot_a)
        assert lot_a.registry_package_tag is None
        assert db_session.query(RegistryMapping).count() == 0

    def test_validation_happens_before_any_call(self, db_session, org_a, site_a, lot_a, fake_registry):
        lot_a.package_tag = None
        lot_a.quantity = Decimal("0")
        db_session.commit()

        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)

        assert result.success is False
        assert len(result.errors) == 2
        assert fake_registry.calls == []

    def test_lot_from_another_site_not_found(self, db_session, org_b, site_b, lot_a, fake_registry):
        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_b.id, org_b.id)

        assert result.success is False
        assert result.errors == ["Inventory lot not found"]
        assert fake_registry.calls == []

    def test_id_lookup_failure_is_a_warning(self, db_session, org_a, site_a, lot_a, fake_registry):
        fake_registry.errors["get_package_by_label"] = RegistryApiError("Service unavailable", status_code=503)

        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)

        assert result.success
        assert result.warnings
        db_session.refresh(lot_a)
        assert lot_a.registry_package_tag == "1A400000000000000000K001"
        assert lot_a.registry_package_id is None

    def test_package_tag_held_by_another_lot(self, db_session, org_a, site_a, lot_a, fake_registry):
        push_sync_service.push_inventory_lot_to_registry(fake_registry, lot_a.id, site_a.id, org_a.id)
        fake_registry.calls.clear()
        second = InventoryLot(
            org_id=org_a.id,
            site_id=site_a.id,
            lot_number="LOT-2",
            item_name="Blue Dream Buds",
            quantity=Decimal("10"),
            package_tag=lot_a.package_tag,
        )
        db_session.add(second)
        db_session.commit()

        result = push_sync_service.push_inventory_lot_to_registry(fake_registry, second.id, site_a.id, org_a.id)

        assert result.success is False
        assert result.errors == [
            "Lot LOT-2: package tag 1A400000000000000000K001 is already used by another lot"
        ]
        assert fake_registry.calls == []
        db_session.refresh(second)
        assert second.registry_package_tag is None


# =============================================================================
# BATCHES
# =============================================================================


@pytest.fixture
def cultivar_a(db_session, org_a):
    cultivar = Cultivar(org_id=org_a.id, name="Blue Dream")
    db_session.add(cultivar)
    db_session.commit()
    return cultivar


@pytest.fixture
def batch_a(db_session, org_a, site_a, cultivar_a):
    batch = Batch(
        org_id=org_a.id,
        site_id=site_a.id,
        cultivar_id=cultivar_a.id,
        batch_number="INT-5",
        stage="clone",
        plant_count=12,
        start_date=date(2024, 3, 1),
    )
    db_session.add(batch)
    db_session.commit()
    return batch


class TestPushBatch:
    """push_batch_to_registry"""

    def test_push_creates_plant_batch_and_mapping(self, db_session, org_a, site_a, batch_a, user_a, fake_registry):
        result = push_sync_service.push_batch_to_registry(
            fake_registry, batch_a.id, site_a.id, org_a.id, user_a.id, location="Clone Room",
        )

        assert result.success, result.errors
        assert result.batches_created == 1
        assert fake_registry.call_names() == ["create_plant_batches", "list_plant_batches"]
        _, args, _ = fake_registry.calls[0]
        assert args[0] == [{
            "Name": "INT-5",
            "Type": "Clone",
            "Count": 12,
            "Strain": "Blue Dream",
            "Location": "Clone Room",
            "ActualDate": "2024-03-01",
            "PlantedDate": "2024-03-01",
        }]

        db_session.refresh(batch_a)
        assert batch_a.registry_batch_id == result.registry_batch_id
        assert batch_a.tracking_mode == "closed_loop"
        mapping = db_session.query(RegistryMapping).filter_by(entity_type="batch", internal_id=batch_a.id).one()
        assert mapping.registry_entity_type == "plant_batch"
        assert mapping.registry_id == result.registry_batch_id

    def test_germination_batch_is_seed_with_source_package(self, db_session, org_a, site_a, batch_a, fake_registry):
        batch_a.stage = "germination"
        db_session.commit()

        push_sync_service.push_batch_to_registry(
            fake_registry, batch_a.id, site_a.id, org_a.id,
            location="Clone Room",
            source_package_tag="1A400000000000000000S001",
            source_plant_tags=["1A400000000000000000P001"],
        )

        _, args, _ = fake_registry.calls[0]
        assert args[0][0]["Type"] == "Seed"
        assert args[0][0]["SourcePackage"] == "1A400000000000000000S001"
        assert "SourcePlants" not in args[0][0]

    def test_already_synced_makes_no_calls(self, db_session, org_a, site_a, batch_a, fake_registry):
        push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id, location="Clone Room")
        fake_registry.calls.clear()

        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id, location="Clone Room")

        assert result.success
        assert result.already_synced is True
        assert result.batches_created == 0
        assert fake_registry.calls == []
        assert db_session.query(RegistryMapping).count() == 1

    def test_validation_happens_before_any_call(self, db_session, org_a, site_a, batch_a, fake_registry):
        batch_a.cultivar_id = None
        batch_a.plant_count = 0
        batch_a.stage = "drying"
        db_session.commit()

        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id)

        assert result.success is False
        assert len(result.errors) == 4
        assert fake_registry.calls == []

    def test_name_already_in_registry(self, db_session, org_a, site_a, batch_a, fake_registry):
        db_session.add(RegistryPlantBatchCache(
            org_id=org_a.id, site_id=site_a.id, registry_batch_id="77", name="INT-5", is_active=True,
        ))
        db_session.commit()

        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id, location="Clone Room")

        assert result.success is False
        assert "plant_batches sync" in result.errors[0]
        assert fake_registry.calls == []

    def test_created_batch_not_found_stays_unlinked(self, db_session, org_a, site_a, batch_a, fake_registry):
        fake_registry.list_created_batches = False

        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id, location="Clone Room")

        assert result.success is False
        assert "run a plant_batches sync" in result.errors[0]
        db_session.refresh(batch_a)
        assert batch_a.registry_batch_id is None
        assert db_session.query(RegistryMapping).count() == 0

    def test_rejection_returned_verbatim(self, db_session, org_a, site_a, batch_a, fake_registry):
        fake_registry.errors["create_plant_batches"] = RegistryApiError("Location Clone Room not found", status_code=400)

        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_a.id, org_a.id, location="Clone Room")

        assert result.success is False
        assert result.errors == ["Location Clone Room not found"]
        assert fake_registry.call_names() == ["create_plant_batches"]

    def test_batch_from_another_org_not_found(self, db_session, org_b, site_b, batch_a, fake_registry):
        result = push_sync_service.push_batch_to_registry(fake_registry, batch_a.id, site_b.id, org_b.id, location="Clone Room")

        assert result.errors == ["Batch not found"]
        assert fake_registry.calls == []
