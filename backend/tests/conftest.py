"""
Pytest fixtures for Canopy backend tests.

Provides test database setup, tenant fixtures (two organizations with one
site and one admin each), a fake registry client and the test client.
"""

import pytest
from canopy import create_app
from canopy.extensions import db
from canopy.models import (
    Organization, Site, User, Role, UserRole,
    RegistryCredential, RegistryFacilityCache,
)
from canopy.registry import TAG_TYPE_PLANT, TAG_TYPE_PACKAGE
from canopy.services.auth_service import hash_password, create_default_roles
from canopy.services import permission_service


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REGISTRY_VENDOR_KEY': 'test-vendor-key',
        'REGISTRY_TEST_MODE': False,
        'REGISTRY_TIMEOUT_SECONDS': 5.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# TENANTS
# =============================================================================


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Farms", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Gardens", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def setup_roles(db_session, org_a, org_b):
    """Setup default roles and permissions for both organizations."""
    permission_service.initialize_permissions()
    for org in (org_a, org_b):
        create_default_roles(org.id)
        permission_service.assign_default_role_permissions(org.id)
    db_session.commit()


@pytest.fixture(scope='function')
def site_a(db_session, org_a):
    """Create Site A in Organization A."""
    site = Site(org_id=org_a.id, name="Site A1", code="A1", state_code="CO")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def site_b(db_session, org_b):
    """Create Site B in Organization B."""
    site = Site(org_id=org_b.id, name="Site B1", code="B1", state_code="CO")
    db_session.add(site)
    db_session.commit()
    return site


def make_user(db_session, org, site, username: str, role_name: str) -> User:
    """Create a user in org with one of the org's default roles."""
    user = User(
        org_id=org.id,
        site_id=site.id if site else None,
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password(TEST_PASSWORD),
    )
    db_session.add(user)
    db_session.commit()

    role = db_session.query(Role).filter_by(org_id=org.id, name=role_name).first()
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_a(db_session, org_a, site_a, setup_roles):
    """Create User A in Organization A with admin role."""
    return make_user(db_session, org_a, site_a, "user_a", "admin")


@pytest.fixture(scope='function')
def user_b(db_session, org_b, site_b, setup_roles):
    """Create User B in Organization B with admin role."""
    return make_user(db_session, org_b, site_b, "user_b", "admin")


@pytest.fixture(scope='function')
def grower_a(db_session, org_a, site_a, setup_roles):
    """Grower in Organization A: can view compliance and move batches only."""
    return make_user(db_session, org_a, site_a, "grower_a", "grower")


# =============================================================================
# REGISTRY
# =============================================================================


@pytest.fixture(scope='function')
def credential_a(db_session, org_a):
    """Colorado registry credential for Organization A."""
    credential = RegistryCredential(
        org_id=org_a.id,
        state_code="CO",
        user_api_key="user-key-a",
        is_sandbox=False,
        is_active=True,
    )
    db_session.add(credential)
    db_session.commit()
    return credential


@pytest.fixture(scope='function')
def facility_a(db_session, org_a, credential_a):
    """Cached facility LIC-100 visible to Organization A's credential."""
    facility = RegistryFacilityCache(
        org_id=org_a.id,
        credential_id=credential_a.id,
        license_number="LIC-100",
        registry_facility_id="100",
        facility_name="Acme Cultivation",
        state_code="CO",
        is_active=True,
    )
    db_session.add(facility)
    db_session.commit()
    return facility


@pytest.fixture(scope='function')
def linked_site_a(db_session, site_a, org_a, facility_a):
    """Site A linked to facility LIC-100."""
    from canopy.services import link_service

    return link_service.link_facility_to_site(
        site_id=site_a.id,
        org_id=org_a.id,
        license_number="LIC-100",
    )


class FakeRegistryClient:
    """
    In-memory stand-in for RegistryClient.

    Records every call in `calls`; an exception placed in `errors` under a
    method name is raised by that method instead of returning data.
    """

    def __init__(self):
        self.facilities = []
        self.items = []
        self.categories = []
        self.strains = []
        self.inactive_strains = []
        self.tags = {TAG_TYPE_PLANT: [], TAG_TYPE_PACKAGE: []}
        self.plant_batches = []
        self.inactive_plant_batches = []
        self.packages = {}
        # create_plant_batches adds the new batch to the active list unless this is False
        self.list_created_batches = True
        self.errors = {}
        self.calls = []
        self.credentials = []
        self.closed = 0

    def _call(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def call_names(self):
        return [name for name, _, _ in self.calls]

    def close(self):
        self.closed += 1

    def list_facilities(self):
        self._call("list_facilities")
        return list(self.facilities)

    def validate_credentials(self):
        self._call("validate_credentials")
        return list(self.facilities)

    def list_items(self, *, last_modified_start=None, last_modified_end=None):
        self._call("list_items", last_modified_start=last_modified_start, last_modified_end=last_modified_end)
        return list(self.items)

    def list_item_categories(self):
        self._call("list_item_categories")
        return list(self.categories)

    def list_strains(self, *, active=True):
        self._call("list_strains", active=active)
        return list(self.strains if active else self.inactive_strains)

    def list_tags(self, tag_type):
        self._call("list_tags", tag_type)
        error = self.errors.get(f"list_tags:{tag_type}")
        if error is not None:
            raise error
        return list(self.tags.get(tag_type, []))

    def list_plant_batches(self, *, active=True, last_modified_start=None, last_modified_end=None):
        self._call("list_plant_batches", active=active, last_modified_start=last_modified_start)
        return list(self.plant_batches if active else self.inactive_plant_batches)

    def create_plant_batches(self, batches):
        self._call("create_plant_batches", batches)
        if self.list_created_batches:
            for batch in batches:
                self.plant_batches.append(plant_batch_record(
                    5000 + len(self.plant_batches), batch["Name"],
                    batch_type=batch["Type"], strain=batch["Strain"], untracked=batch["Count"],
                ))
        return None

    def change_plant_batch_phase(self, changes):
        self._call("change_plant_batch_phase", changes)
        return None

    def create_package(self, package):
        self._call("create_package", package)
        self.packages[package["Tag"]] = {"Id": 9000 + len(self.packages), "Label": package["Tag"]}
        return None

    def get_package_by_label(self, label):
        self._call("get_package_by_label", label)
        return self.packages.get(label)


@pytest.fixture(scope='function')
def fake_registry():
    return FakeRegistryClient()


@pytest.fixture(scope='function')
def client_factory(fake_registry):
    """Client factory handing out fake_registry and recording the credentials it was given."""
    def factory(credentials):
        fake_registry.credentials.append(credentials)
        return fake_registry
    return factory


@pytest.fixture(scope='function')
def registry_app(app, client_factory):
    """Route the API's registry calls to fake_registry for one test."""
    app.config['REGISTRY_CLIENT_FACTORY'] = client_factory
    yield app
    app.config.pop('REGISTRY_CLIENT_FACTORY', None)


def plant_batch_record(batch_id, name, *, batch_type="Clone", strain="Blue Dream", tracked=0, untracked=10, **extra):
    """Registry plant batch as returned by the list endpoints."""
    record = {
        "Id": batch_id,
        "Name": name,
        "PlantBatchTypeName": batch_type,
        "StrainName": strain,
        "LocationName": "Veg Room 1",
        "TrackedCount": tracked,
        "UntrackedCount": untracked,
        "PlantedDate": "2024-03-01",
    }
    record.update(extra)
    return record


def facility_record(license_number, name, *, facility_id=None, license_type="Grower"):
    return {
        "Id": facility_id or license_number.split("-")[-1],
        "Name": name,
        "DisplayName": name,
        "License": {"Number": license_number, "LicenseType": license_type},
    }


def item_record(item_id, name, category="Buds", **extra):
    record = {
        "Id": item_id,
        "Name": name,
        "ProductCategoryName": category,
        "ProductCategoryType": "Buds",
        "QuantityType": "WeightBased",
        "UnitOfMeasureName": "Grams",
    }
    record.update(extra)
    return record


def tag_record(tag_id, label, status="Commissioned"):
    return {"Id": tag_id, "Label": label, "StatusName": status}


def strain_record(strain_id, name, **extra):
    record = {
        "Id": strain_id,
        "Name": name,
        "TestingStatus": "None",
        "ThcLevel": 0.22,
        "CbdLevel": 0.01,
        "IndicaPercentage": 40.0,
        "SativaPercentage": 60.0,
        "IsUsed": False,
    }
    record.update(extra)
    return record


# =============================================================================
# AUTH HELPERS
# =============================================================================


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, user_a):
    return auth_headers(get_auth_token(client, "user_a"))


@pytest.fixture(scope='function')
def grower_headers(client, grower_a):
    return auth_headers(get_auth_token(client, "grower_a"))
