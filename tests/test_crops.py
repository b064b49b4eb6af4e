from sqlalchemy.dialects import postgresql

import models
import services
from routers import crops as crops_router


def crop_count(db_session, field_id):
    return db_session.query(models.CropData).filter(models.CropData.field_id == field_id).count()


def test_scenario_through_the_api(client, world, make_field, add_crop, db_session):
    field_id = make_field(area=10)

    kharif = add_crop(field_id, "Kharif", 4)
    assert kharif.status_code == 201, kharif.text
    assert kharif.json()["land_info"]["remaining_area"] == 6
    assert kharif.json()["data"]["crop_name"] == "Paddy"

    rabi = add_crop(field_id, "Rabi", 5, crop="Wheat")
    assert rabi.status_code == 201
    assert rabi.json()["land_info"]["remaining_area"] == 1

    duplicate = add_crop(field_id, "Kharif", 1)
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"]["rule"] == "duplicate_season"

    whole_year = add_crop(field_id, "Whole Year", 1, crop="Sugarcane")
    assert whole_year.status_code == 400
    assert whole_year.json()["detail"]["rule"] == "season_conflict"

    assert crop_count(db_session, field_id) == 2


def test_area_rejection_writes_nothing(client, world, make_field, add_crop, db_session):
    field_id = make_field(area=5)
    assert add_crop(field_id, "Kharif", 3).status_code == 201

    response = add_crop(field_id, "Rabi", 2.5)
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["rule"] == "area_exceeded"
    assert detail["remaining_before"] == 2
    assert detail["requested_area"] == 2.5
    assert detail["shortfall"] == 0.5
    assert crop_count(db_session, field_id) == 1

    info = client.get(f"/api/fields/{field_id}/land-info", headers=world.farmer_headers).json()
    assert info["occupied_area"] == 3


def test_season_is_stored_canonically(client, world, make_field, add_crop):
    field_id = make_field()
    response = add_crop(field_id, "whole YEAR", 2)
    assert response.status_code == 201
    assert response.json()["data"]["season"] == "Whole Year"


def test_unknown_season_and_bad_area(client, world, make_field, add_crop):
    field_id = make_field()
    zaid = add_crop(field_id, "Zaid", 1)
    assert zaid.status_code == 400
    assert zaid.json()["detail"]["rule"] == "invalid_season"

    zero = add_crop(field_id, "Rabi", 0)
    assert zero.status_code == 400
    assert zero.json()["detail"]["rule"] == "invalid_area"


def test_crops_need_verified_field(client, world, make_field, add_crop):
    field_id = make_field(status="pending")
    response = add_crop(field_id, "Kharif", 1)
    assert response.status_code == 403


def test_unknown_catalog_crop(client, world, make_field):
    field_id = make_field()
    response = client.post(
        "/api/crops",
        json={"field_id": field_id, "crop_id": 9999, "crop_year": 2024, "season": "Kharif", "area": 1},
        headers=world.farmer_headers,
    )
    assert response.status_code == 400


def test_farmer_cannot_add_to_someone_elses_field(client, world, make_field, add_crop):
    field_id = make_field()
    response = add_crop(field_id, "Kharif", 1, headers=world.other_farmer_headers)
    assert response.status_code == 404


def test_update_rechecks_without_counting_itself(client, world, make_field, add_crop):
    field_id = make_field(area=10)
    kharif_id = add_crop(field_id, "Kharif", 4).json()["data"]["id"]
    add_crop(field_id, "Rabi", 5)

    grown = client.put(f"/api/crops/{kharif_id}", json={"area": 5}, headers=world.farmer_headers)
    assert grown.status_code == 200, grown.text
    assert grown.json()["land_info"]["remaining_area"] == 0

    too_big = client.put(f"/api/crops/{kharif_id}", json={"area": 6}, headers=world.farmer_headers)
    assert too_big.status_code == 400
    assert too_big.json()["detail"]["rule"] == "area_exceeded"

    clash = client.put(f"/api/crops/{kharif_id}", json={"season": "Rabi"}, headers=world.farmer_headers)
    assert clash.status_code == 400
    assert clash.json()["detail"]["rule"] == "duplicate_season"


def test_verified_crop_is_locked(client, world, make_field, add_crop):
    field_id = make_field()
    crop_id = add_crop(field_id, "Kharif", 2).json()["data"]["id"]
    client.post(f"/api/crops/{crop_id}/verify", json={"action": "verify"}, headers=world.employee_headers)

    assert client.put(f"/api/crops/{crop_id}", json={"area": 1}, headers=world.farmer_headers).status_code == 403
    assert client.delete(f"/api/crops/{crop_id}", headers=world.farmer_headers).status_code == 403


def test_unverified_crop_can_be_deleted(client, world, make_field, add_crop, db_session):
    field_id = make_field()
    crop_id = add_crop(field_id, "Kharif", 2).json()["data"]["id"]
    assert client.delete(f"/api/crops/{crop_id}", headers=world.farmer_headers).status_code == 200
    assert crop_count(db_session, field_id) == 0


def test_rejected_crop_releases_slot_and_area(client, world, make_field, add_crop):
    field_id = make_field(area=4)
    crop_id = add_crop(field_id, "Whole Year", 4, crop="Sugarcane").json()["data"]["id"]
    response = client.post(
        f"/api/crops/{crop_id}/verify",
        json={"action": "reject", "rejection_reason": "Area overstated"},
        headers=world.employee_headers,
    )
    assert response.json()["status"] == "rejected"

    assert add_crop(field_id, "Kharif", 4).status_code == 201


def test_harvest_releases_area_but_keeps_slot(client, world, make_field, add_crop, approve_crop):
    field_id = make_field(area=6)
    crop_id = add_crop(field_id, "Kharif", 6).json()["data"]["id"]

    early = client.post(f"/api/crops/{crop_id}/harvest", headers=world.farmer_headers)
    assert early.status_code == 409

    approve_crop(crop_id)
    harvested = client.post(f"/api/crops/{crop_id}/harvest", headers=world.farmer_headers)
    assert harvested.status_code == 200
    assert harvested.json()["status"] == "harvested"

    assert add_crop(field_id, "Rabi", 6).status_code == 201
    assert add_crop(field_id, "Kharif", 1).json()["detail"]["rule"] == "duplicate_season"


def test_read_crop_includes_field_area(client, world, make_field, add_crop):
    field_id = make_field(area=7.5)
    crop_id = add_crop(field_id, "Rabi", 2).json()["data"]["id"]
    response = client.get(f"/api/crops/{crop_id}", headers=world.farmer_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["field_total_area"] == 7.5
    assert body["field_name"] == "North Plot"
    assert client.get(f"/api/crops/{crop_id}", headers=world.other_farmer_headers).status_code == 404


def test_yield_round_trips_under_its_public_name(client, world, make_field):
    field_id = make_field()
    response = client.post(
        "/api/crops",
        json={"field_id": field_id, "crop_id": world.crops["Paddy"], "crop_year": 2024,
              "season": "Kharif", "area": 2, "production": 9.5, "yield": 4.75},
        headers=world.farmer_headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["yield"] == 4.75


def test_employee_uploads_are_tracked(client, world, make_field, add_crop):
    field_id = make_field()
    response = add_crop(field_id, "Kharif", 2, headers=world.employee_headers)
    assert response.status_code == 201
    assert response.json()["data"]["source"] == "employee_upload"
    add_crop(field_id, "Rabi", 2)

    uploaded = client.get("/api/crops/uploaded", headers=world.employee_headers).json()
    assert [c["season"] for c in uploaded["data"]] == ["Kharif"]
    assert uploaded["stats"]["total"] == 1
    assert uploaded["stats"]["pending"] == 1
    assert uploaded["stats"]["admin_approved"] == 0

    filtered = client.get("/api/crops/uploaded", params={"status": "admin_approved"}, headers=world.employee_headers)
    assert filtered.json()["data"] == []


def test_farmer_lists_own_crops(client, world, make_field, add_crop):
    field_id = make_field()
    add_crop(field_id, "Kharif", 2)
    add_crop(field_id, "Rabi", 2, crop_year=2025)
    crops = client.get("/api/crops", headers=world.farmer_headers).json()
    assert [c["crop_year"] for c in crops] == [2025, 2024]
    assert client.get("/api/crops", headers=world.other_farmer_headers).json() == []


def test_field_lock_compiles_to_select_for_update(world, db_session):
    locked = services.field_query(db_session, 1, lock=True).statement.compile(dialect=postgresql.dialect())
    assert "FOR UPDATE" in str(locked)
    plain = services.field_query(db_session, 1).statement.compile(dialect=postgresql.dialect())
    assert "FOR UPDATE" not in str(plain)


def test_crop_writes_lock_the_field_before_checking(client, world, make_field, add_crop, monkeypatch):
    field_id = make_field()
    events = []

    def recording_get_field_for(db, principal, field_id, lock=False):
        events.append(("field", lock))
        return services.get_field_for(db, principal, field_id, lock=lock)

    def recording_ensure_unverified(record, kind, verb):
        events.append(("ensure_unverified", verb))
        return services.ensure_unverified(record, kind, verb)

    monkeypatch.setattr(crops_router, "get_field_for", recording_get_field_for)
    monkeypatch.setattr(crops_router, "ensure_unverified", recording_ensure_unverified)

    crop_id = add_crop(field_id, "Kharif", 2).json()["data"]["id"]
    assert events == [("field", True)]

    events.clear()
    response = client.put(f"/api/crops/{crop_id}", json={"area": 3}, headers=world.farmer_headers)
    assert response.status_code == 200, response.text
    assert events == [("field", True), ("ensure_unverified", "update")]
