# Overview: Pytest coverage for facility links and plant-batch imports.

"""
Link / Import Tests

Verifies:
- A license is held by at most one site, and a site by at most one license
- Relinking releases the previous link in the same transaction
- Importing a registry plant batch is at-most-once
- Every successful link, unlink and import appends one sync log entry
"""

import pytest

from canopy.models import (
    Batch,
    Cultivar,
    RegistryFacilityCache,
    RegistryMapping,
    RegistryPlantBatchCache,
    RegistryStrainCache,
    RegistrySyncLog,
    Site,
)
from canopy.services import link_service
from canopy.services.link_service import LinkConflictError, LinkError
from canopy.services.tenant_service import TenantAccessError


@pytest.fixture
def facility_a2(db_session, org_a, credential_a):
    """Second facility LIC-200 under Organization A's credential."""
    facility = RegistryFacilityCache(
        org_id=org_a.id,
        credential_id=credential_a.id,
        license_number="LIC-200",
        registry_facility_id="200",
        facility_name="Acme North",
        state_code="CO",
        is_active=True,
    )
    db_session.add(facility)
    db_session.commit()
    return facility


@pytest.fixture
def site_a2(db_session, org_a):
    site = Site(org_id=org_a.id, name="Site A2", code="A2", state_code="CO")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture
def cached_batch(db_session, org_a, site_a):
    """Registry plant batch PB-7 mirrored for Site A, not yet linked."""
    row = RegistryPlantBatchCache(
        org_id=org_a.id,
        site_id=site_a.id,
        registry_batch_id="7",
        name="PB-7",
        batch_type="Seed",
        strain_name="Blue Dream",
        plant_count=12,
        tracked_count=2,
        untracked_count=10,
        is_active=True,
        is_linked=False,
    )
    db_session.add(row)
    db_session.commit()
    return row


def active_mappings(db_session, **filters):
    return db_session.query(RegistryMapping).filter_by(status="active", **filters).all()


# =============================================================================
# FACILITY LINKS
# =============================================================================


class TestLinkFacility:
    """link_facility_to_site"""

    def test_link_sets_site_and_cache(self, db_session, org_a, site_a, facility_a, user_a):
        site = link_service.link_facility_to_site(
            site_id=site_a.id,
            org_id=org_a.id,
            license_number="LIC-100",
            user_id=user_a.id,
        )

        assert site.registry_license_number == "LIC-100"
        assert site.registry_facility_id == "100"
        assert site.registry_credential_id == facility_a.credential_id
        assert site.compliance_status == "compliant"

        db_session.refresh(facility_a)
        assert facility_a.is_linked is True
        assert facility_a.linked_site_id == site_a.id

        mappings = active_mappings(db_session, entity_type="site", internal_id=site_a.id)
        assert len(mappings) == 1
        assert mappings[0].registry_id == "LIC-100"
        assert mappings[0].created_by_user_id == user_a.id

        logs = db_session.query(RegistrySyncLog).filter_by(sync_type="site_link").all()
        assert len(logs) == 1
        assert logs[0].status == "completed"
        assert logs[0].initiated_by == user_a.id

    def test_relink_releases_previous_license(self, db_session, org_a, site_a, facility_a, facility_a2):
        link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-100")

        site = link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-200")

        assert site.registry_license_number == "LIC-200"
        db_session.refresh(facility_a)
        db_session.refresh(facility_a2)
        assert facility_a.is_linked is False
        assert facility_a.linked_site_id is None
        assert facility_a2.is_linked is True
        assert facility_a2.linked_site_id == site_a.id

        mappings = active_mappings(db_session, entity_type="site", internal_id=site_a.id)
        assert [m.registry_id for m in mappings] == ["LIC-200"]
        released = db_session.query(RegistryMapping).filter_by(status="released").one()
        assert released.registry_id == "LIC-100"
        assert released.released_at is not None

        last_log = db_session.query(RegistrySyncLog).order_by(RegistrySyncLog.id.desc()).first()
        assert last_log.response_payload["previous_license_number"] == "LIC-100"

    def test_license_held_by_another_site_conflicts(self, db_session, org_a, site_a, site_a2, facility_a):
        link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-100")

        with pytest.raises(LinkConflictError):
            link_service.link_facility_to_site(site_id=site_a2.id, org_id=org_a.id, license_number="LIC-100")

        db_session.refresh(site_a2)
        assert site_a2.registry_license_number is None
        db_session.refresh(facility_a)
        assert facility_a.linked_site_id == site_a.id
        assert len(active_mappings(db_session, registry_id="LIC-100")) == 1

    def test_same_link_twice_conflicts(self, db_session, org_a, site_a, facility_a):
        link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-100")

        with pytest.raises(LinkConflictError):
            link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-100")

        assert db_session.query(RegistrySyncLog).filter_by(sync_type="site_link").count() == 1

    def test_unknown_license(self, db_session, org_a, site_a, facility_a):
        with pytest.raises(LinkError, match="not found"):
            link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-999")

    def test_blank_license(self, db_session, org_a, site_a):
        with pytest.raises(LinkError, match="license_number is required"):
            link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="  ")

    def test_inactive_facility(self, db_session, org_a, site_a, facility_a):
        facility_a.is_active = False
        db_session.commit()

        with pytest.raises(LinkError, match="no longer active"):
            link_service.link_facility_to_site(site_id=site_a.id, org_id=org_a.id, license_number="LIC-100")

    def test_foreign_site_rejected(self, db_session, org_a, site_b, facility_a):
        with pytest.raises(TenantAccessError):
            link_service.link_facility_to_site(site_id=site_b.id, org_id=org_a.id, license_number="LIC-100")

    def test_other_org_cannot_see_facility(self, db_session, org_b, site_b, facility_a):
        with pytest.raises(LinkError, match="not found"):
            link_service.link_facility_to_site(site_id=site_b.id, org_id=org_b.id, license_number="LIC-100")


class TestUnlinkFacility:
    """unlink_facility_from_site"""

    def test_unlink_releases_everything(self, db_session, org_a, linked_site_a, facility_a):
        site = link_service.unlink_facility_from_site(site_id=linked_site_a.id, org_id=org_a.id)

        assert site.registry_license_number is None
        assert site.registry_credential_id is None
        assert site.compliance_status == "uncompliant"
        db_session.refresh(facility_a)
        assert facility_a.is_linked is False
        assert active_mappings(db_session, entity_type="site") == []
        assert db_session.query(RegistrySyncLog).filter_by(sync_type="site_unlink").count() == 1

    def test_unlink_unlinked_site(self, db_session, org_a, site_a):
        with pytest.raises(LinkError):
            link_service.unlink_facility_from_site(site_id=site_a.id, org_id=org_a.id)

    def test_facility_can_be_claimed_after_unlink(self, db_session, org_a, linked_site_a, site_a2):
        link_service.unlink_facility_from_site(site_id=linked_site_a.id, org_id=org_a.id)

        site = link_service.link_facility_to_site(site_id=site_a2.id, org_id=org_a.id, license_number="LIC-100")

        assert site.registry_license_number == "LIC-100"


# =============================================================================
# PLANT BATCH IMPORT
# =============================================================================


class TestImportPlantBatch:
    """create_batch_from_plant_batch_cache"""

    def test_import_creates_linked_batch(self, db_session, org_a, site_a, cached_batch, user_a):
        cultivar = Cultivar(org_id=org_a.id, name="blue dream")
        db_session.add(cultivar)
        db_session.commit()

        result = link_service.create_batch_from_plant_batch_cache(
            cache_id=cached_batch.id,
            org_id=org_a.id,
            user_id=user_a.id,
        )

        batch = result.batch
        assert batch.batch_number == "PB-7"
        assert batch.site_id == site_a.id
        assert batch.stage == "germination"
        assert batch.cultivar_id == cultivar.id
        assert batch.plant_count == 12
        assert batch.tracking_mode == "closed_loop"
        assert batch.source_type == "registry_import"
        assert batch.registry_batch_id == "7"
        assert result.warnings == []

        db_session.refresh(cached_batch)
        assert cached_batch.is_linked is True
        assert cached_batch.linked_batch_id == batch.id

        mapping = db_session.get(RegistryMapping, result.mapping_id)
        assert mapping.entity_type == "batch"
        assert mapping.registry_entity_type == "plant_batch"
        assert mapping.registry_id == "7"

        log = db_session.query(RegistrySyncLog).filter_by(operation="link_batch").one()
        assert log.response_payload["batch_id"] == batch.id

    def test_second_import_is_rejected(self, db_session, org_a, cached_batch):
        link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        with pytest.raises(LinkConflictError, match="already linked"):
            link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        assert db_session.query(Batch).count() == 1
        assert db_session.query(RegistrySyncLog).filter_by(operation="link_batch").count() == 1

    def test_missing_cultivar_warns(self, db_session, org_a, cached_batch):
        result = link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        assert result.batch.cultivar_id is None
        assert result.warnings == ["No cultivar match for strain Blue Dream"]

    def test_cultivar_matched_to_strain_wins(self, db_session, org_a, site_a, cached_batch):
        # "BD Phenotype" was matched to the site's Blue Dream strain by a strains sync
        db_session.add(RegistryStrainCache(org_id=org_a.id, site_id=site_a.id, registry_strain_id="3", name="Blue Dream"))
        by_name = Cultivar(org_id=org_a.id, name="Blue Dream")
        by_strain = Cultivar(org_id=org_a.id, name="BD Phenotype", registry_strain_id="3")
        db_session.add_all([by_name, by_strain])
        db_session.commit()

        result = link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        assert result.batch.cultivar_id == by_strain.id
        assert result.warnings == []

    def test_clone_batch_type_maps_to_clone_stage(self, db_session, org_a, cached_batch):
        cached_batch.batch_type = "Clone"
        db_session.commit()

        result = link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        assert result.batch.stage == "clone"

    def test_other_org_cannot_import(self, db_session, org_b, cached_batch):
        with pytest.raises(LinkError, match="not found"):
            link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_b.id)

    def test_inactive_entry_rejected(self, db_session, org_a, cached_batch):
        cached_batch.is_active = False
        db_session.commit()

        with pytest.raises(LinkError, match="no longer active"):
            link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

    def test_existing_batch_number_conflicts(self, db_session, org_a, site_a, cached_batch):
        db_session.add(Batch(org_id=org_a.id, site_id=site_a.id, batch_number="PB-7"))
        db_session.commit()

        with pytest.raises(LinkConflictError):
            link_service.create_batch_from_plant_batch_cache(cache_id=cached_batch.id, org_id=org_a.id)

        db_session.refresh(cached_batch)
        assert cached_batch.is_linked is False
