"""Admin dashboard counts, health check and service info."""
from conftest import submit_report, create_found_item, create_lost_item


async def test_stats_counts_every_status(client, admin, student, make_account):
    make_account("unverified@lpu.edu.ph", verified=False)

    claimed = await create_found_item(client, admin, location="Library")
    await create_found_item(client, admin, location="Library")
    lost = await create_lost_item(client, student, admin, location="Gym")
    pending = await submit_report(client, student, location="Gym")
    rejected = await submit_report(client, student)

    await client.post(f"/admin/found-items/{claimed['id']}/mark-claimed", headers=admin.headers)
    await client.post(f"/admin/lost-items/{lost['id']}/mark-found", headers=admin.headers)
    await client.post(f"/admin/reports/{rejected['id']}/reject", headers=admin.headers)

    response = await client.get("/admin/stats", headers=admin.headers)
    assert response.status_code == 200
    stats = response.json()

    assert stats["reports"] == {"pending": 1, "approved": 1, "rejected": 1, "total": 3}
    assert stats["found_items"] == {"available": 1, "claimed": 1, "expired": 0, "total": 2}
    assert stats["lost_items"] == {"missing": 0, "found": 1, "expired": 0, "total": 1}
    assert stats["live_items"] == 1
    assert stats["archived_items"] == 2
    assert stats["users"] == {"total": 3, "verified": 2}
    assert stats["top_locations"][0] == {"location": "Library", "count": 2}
    assert pending["status"] == "pending"


async def test_stats_requires_admin(client, student):
    response = await client.get("/admin/stats", headers=student.headers)
    assert response.status_code == 403


async def test_health_reports_database_and_mail(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == {"status": "ok"}
    assert body["checks"]["mail"] == {"enabled": True}


async def test_root_is_public(client, realtime):
    response = await client.get("/")
    assert response.status_code == 200
    body = response.json()
    assert body["docs"] == "/docs"
    assert body["realtime_connections"] == 0


async def test_security_headers_present(client):
    response = await client.get("/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
