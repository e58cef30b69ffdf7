from coverage_engine.schemas.coverage_area import CoverageAreaCreate, CoverageAreaUpdate
from coverage_engine.schemas.location import LocationCreate, LocationType, LocationUpdate
from coverage_engine.services.datasource.adapter import (
    coverage_area_payload,
    extract_id,
    flatten_location_payload,
    location_create_payload,
    location_update_payload,
    normalize_assignment,
    normalize_coverage_area,
    normalize_coverage_area_list,
    normalize_location,
)


def test_extract_id_accepts_ids_and_objects():
    assert extract_id("abc") == "abc"
    assert extract_id({"_id": "abc", "name": "x"}) == "abc"
    assert extract_id({"id": 7}) == "7"
    assert extract_id(None) is None
    assert extract_id("") is None


def test_normalize_location_legacy_fields():
    node = normalize_location({
        "_id": "M1",
        "name": "Municipality One",
        "type": "MUNICIPALITY",
        "parent": {"_id": "D1", "name": "District One"},
        "administrativeCode": "0101",
        "isActive": False,
        "metadata": {"isCity": False, "operationalGroup": "north"},
        "createdAt": "2024-01-01T00:00:00Z",
    })

    assert node.id == "M1"
    assert node.type == LocationType.MUNICIPALITY
    assert node.parent_id == "D1"
    assert node.administrative_code == "0101"
    assert node.is_active is False
    assert node.metadata.operational_group == "north"
    assert node.created_at.year == 2024


def test_normalize_location_parent_id_variants():
    assert normalize_location({"id": "a", "name": "A", "type": "district", "parentId": "P"}).parent_id == "P"
    assert normalize_location({"id": "a", "name": "A", "type": "district", "parent": "P"}).parent_id == "P"
    assert normalize_location({"id": "a", "name": "A", "type": "province"}, parent_id="X").parent_id == "X"


def test_city_acting_as_district():
    city = normalize_location({"_id": "C1", "name": "City", "type": "city", "metadata": {"isCity": True}})
    assert city.acts_as_district


def test_flatten_nested_tree_assigns_parents():
    payload = [{
        "_id": "P",
        "name": "Province",
        "type": "province",
        "children": [{
            "_id": "D1",
            "name": "District One",
            "type": "district",
            "children": [{"_id": "M1", "name": "Municipality One", "type": "municipality"}],
        }],
    }]

    nodes = flatten_location_payload(payload)

    assert [node.id for node in nodes] == ["P", "D1", "M1"]
    assert nodes[1].parent_id == "P"
    assert nodes[2].parent_id == "D1"


def test_flatten_handles_single_object_and_none():
    assert flatten_location_payload(None) == []
    assert [n.id for n in flatten_location_payload({"_id": "P", "name": "P", "type": "province"})] == ["P"]


def test_normalize_coverage_area_populated_units():
    area = normalize_coverage_area({
        "_id": "CA1",
        "name": "North",
        "geographicUnits": [{"_id": "M1", "name": "Municipality One"}, "M2", "M1"],
        "organization": {"_id": "ORG1"},
        "metadata": {"tags": ["a", "a", " "]},
    })

    assert area.geographic_unit_ids == ["M1", "M2"]
    assert area.organization_id == "ORG1"
    assert area.metadata.tags == ["a"]


def test_normalize_coverage_area_list_envelopes():
    raw = {"_id": "CA1", "name": "North", "geographicUnitIds": ["M1"]}
    assert [a.id for a in normalize_coverage_area_list([raw])] == ["CA1"]
    assert [a.id for a in normalize_coverage_area_list({"coverageAreas": [raw]})] == ["CA1"]
    assert normalize_coverage_area_list(None) == []


def test_normalize_assignment_with_embedded_references():
    assignment = normalize_assignment({
        "_id": "A1",
        "userId": {"_id": "U1", "email": "x@example.com"},
        "coverageAreaId": {"_id": "CA1"},
        "isPrimary": True,
    })
    assert assignment.user_id == "U1"
    assert assignment.coverage_area_id == "CA1"
    assert assignment.is_primary


def test_location_payloads():
    body = location_create_payload(
        LocationCreate(name="Municipality One", type=LocationType.MUNICIPALITY, parent_id="D1")
    )
    assert body["parentId"] == "D1"
    assert body["type"] == "municipality"
    assert "code" not in body

    assert location_update_payload(LocationUpdate(parent_id=None)) == {"parentId": None}
    assert location_update_payload(LocationUpdate(name="New")) == {"name": "New"}


def test_coverage_area_payload_uses_backend_unit_key():
    body = coverage_area_payload(CoverageAreaCreate(name="North", geographic_unit_ids=["M1"]))
    assert body["geographicUnits"] == ["M1"]
    assert "geographicUnitIds" not in body
    assert "organizationId" not in body

    update = coverage_area_payload(CoverageAreaUpdate(is_active=False))
    assert update == {"isActive": False}
