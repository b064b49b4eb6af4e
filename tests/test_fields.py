import models


def test_farmer_creates_and_lists_fields(client, world, make_field):
    field_id = make_field(status="pending", name="Canal Plot", area=3.5)
    fields = client.get("/api/fields", headers=world.farmer_headers).json()
    assert [f["id"] for f in fields] == [field_id]
    field = fields[0]
    assert field["status"] == "pending"
    assert field["verified"] is False
    assert field["area"] == 3.5
    assert field["mandal_name"] == "Allagadda"
    assert field["village_name"] is not None


def test_create_field_validates_area_and_location(client, world):
    bad_area = client.post("/api/fields", json={"field_name": "X", "area": 0}, headers=world.farmer_headers)
    assert bad_area.status_code == 422

    bad_village = client.post(
        "/api/fields",
        json={"field_name": "X", "area": 2, "mandal_id": world.mandal_id, "village_id": world.foreign_village_id},
        headers=world.farmer_headers,
    )
    assert bad_village.status_code == 400


def test_only_farmers_create_fields(client, world):
    response = client.post("/api/fields", json={"field_name": "X", "area": 2}, headers=world.employee_headers)
    assert response.status_code == 403


def test_other_farmer_cannot_see_field(client, world, make_field):
    field_id = make_field(status="pending")
    assert client.get(f"/api/fields/{field_id}", headers=world.other_farmer_headers).status_code == 404
    assert client.get(f"/api/fields/{field_id}", headers=world.employee_headers).status_code == 200
    assert client.get(f"/api/fields/{field_id}", headers=world.admin_headers).status_code == 200


def test_unverified_field_can_be_edited_and_deleted(client, world, make_field):
    field_id = make_field(status="pending")
    response = client.put(f"/api/fields/{field_id}", json={"area": 12.25}, headers=world.farmer_headers)
    assert response.status_code == 200
    assert response.json()["area"] == 12.25

    assert client.put(f"/api/fields/{field_id}", json={}, headers=world.farmer_headers).status_code == 400
    assert client.delete(f"/api/fields/{field_id}", headers=world.farmer_headers).status_code == 200
    assert client.get(f"/api/fields/{field_id}", headers=world.farmer_headers).status_code == 404


def test_verified_field_is_locked(client, world, make_field):
    field_id = make_field(status="employee_verified")
    update = client.put(f"/api/fields/{field_id}", json={"area": 1}, headers=world.farmer_headers)
    assert update.status_code == 403
    assert update.json()["detail"] == "Cannot update a verified field"
    delete = client.delete(f"/api/fields/{field_id}", headers=world.farmer_headers)
    assert delete.status_code == 403


def test_employee_review_flow(client, world, make_field, db_session):
    field_id = make_field(status="pending")

    pending = client.get("/api/fields/pending", headers=world.employee_headers).json()
    assert field_id in [f["id"] for f in pending]
    assert client.get("/api/fields/pending", headers=world.farmer_headers).status_code == 403

    response = client.post(
        f"/api/fields/{field_id}/verify",
        json={"action": "verify", "notes": "Boundaries checked"},
        headers=world.employee_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "employee_verified"
    assert response.json()["verified"] is True

    field = db_session.get(models.Field, field_id)
    assert field.employee_verified_by == world.employee_id
    assert field.verification_notes == "Boundaries checked"


def test_employee_reject_requires_reason(client, world, make_field):
    field_id = make_field(status="pending")
    missing = client.post(f"/api/fields/{field_id}/verify", json={"action": "reject"}, headers=world.employee_headers)
    assert missing.status_code == 400

    response = client.post(
        f"/api/fields/{field_id}/verify",
        json={"action": "reject", "rejection_reason": "Survey number mismatch"},
        headers=world.employee_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejection_reason"] == "Survey number mismatch"


def test_processed_field_cannot_be_reviewed_again(client, world, make_field):
    field_id = make_field(status="admin_approved")
    response = client.post(f"/api/fields/{field_id}/verify", json={"action": "verify"}, headers=world.employee_headers)
    assert response.status_code == 404


def test_approved_fields_listing(client, world, make_field):
    approved_id = make_field(status="admin_approved", name="Approved")
    make_field(status="employee_verified", name="Half way")
    approved = client.get("/api/fields/approved", headers=world.farmer_headers).json()
    assert [f["id"] for f in approved] == [approved_id]


def test_land_info_reports_utilization(client, world, make_field, add_crop):
    field_id = make_field(area=10)
    assert add_crop(field_id, "Kharif", 4).status_code == 201

    info = client.get(f"/api/fields/{field_id}/land-info", params={"crop_year": 2024}, headers=world.farmer_headers).json()
    assert info["field_id"] == field_id
    assert info["total_area"] == 10
    assert info["occupied_area"] == 4
    assert info["remaining_area"] == 6
    assert info["utilization_percentage"] == 40
    assert [c["season"] for c in info["active_crops"]] == ["Kharif"]

    other_year = client.get(f"/api/fields/{field_id}/land-info", params={"crop_year": 2023}, headers=world.farmer_headers)
    assert other_year.json()["remaining_area"] == 10


def test_field_with_active_crops_cannot_be_rejected(client, world, make_field, add_crop, approve_crop, db_session):
    field_id = make_field(area=10, status="employee_verified")
    approve_crop(add_crop(field_id, "Kharif", 8).json()["data"]["id"])

    by_admin = client.patch(
        f"/api/admin/fields/{field_id}/reject", json={"rejection_reason": "Boundary dispute"}, headers=world.admin_headers,
    )
    assert by_admin.status_code == 409
    by_employee = client.post(
        f"/api/fields/{field_id}/verify",
        json={"action": "reject", "rejection_reason": "Boundary dispute"},
        headers=world.employee_headers,
    )
    assert by_employee.status_code == 409

    assert db_session.get(models.Field, field_id).status == "employee_verified"
    shrink = client.put(f"/api/fields/{field_id}", json={"area": 2}, headers=world.farmer_headers)
    assert shrink.status_code == 403
    info = client.get(f"/api/fields/{field_id}/land-info", headers=world.farmer_headers).json()
    assert info["remaining_area"] == 2


def test_field_with_only_rejected_crops_can_be_rejected(client, world, make_field, add_crop):
    field_id = make_field(status="employee_verified")
    crop_id = add_crop(field_id, "Kharif", 3).json()["data"]["id"]
    client.post(
        f"/api/crops/{crop_id}/verify",
        json={"action": "reject", "rejection_reason": "Wrong crop"},
        headers=world.employee_headers,
    )

    response = client.patch(
        f"/api/admin/fields/{field_id}/reject", json={"rejection_reason": "Duplicate survey"}, headers=world.admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"


def test_unverified_field_keeps_planted_area_and_verified_crops(client, world, make_field, add_crop, approve_crop, db_session):
    field_id = make_field(area=10, status="employee_verified")
    crop_id = approve_crop(add_crop(field_id, "Kharif", 8).json()["data"]["id"])["id"]
    # A field that lost its verification while still carrying an approved crop
    field = db_session.get(models.Field, field_id)
    field.status = models.STATUS_REJECTED
    field.verified = False
    db_session.commit()

    shrink = client.put(f"/api/fields/{field_id}", json={"area": 2}, headers=world.farmer_headers)
    assert shrink.status_code == 400
    assert client.put(f"/api/fields/{field_id}", json={"area": 8}, headers=world.farmer_headers).status_code == 200

    delete = client.delete(f"/api/fields/{field_id}", headers=world.farmer_headers)
    assert delete.status_code == 403
    db_session.expire_all()
    assert db_session.get(models.CropData, crop_id) is not None
