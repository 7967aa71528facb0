"""Tests for the report API endpoints.

Covers: dataset catalog, compile preview, direct and streamed export,
definition CRUD with versioning, clone and templates, execution lifecycle
with artifact download, cancellation conflicts and schedules.
"""

import csv
import io

import pytest
from httpx import AsyncClient
from sqlalchemy import text
from uuid_extensions import uuid7

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_config(**overrides) -> dict:
    config = {
        "dataset": "carbon_credits",
        "fields": [
            {"name": "status"},
            {"name": "quantity", "aggregate": "SUM", "alias": "total"},
        ],
        "groupings": [{"field": "status"}],
        "sorts": [{"field": "status"}],
    }
    config.update(overrides)
    return config


def _make_report_payload(**overrides) -> dict:
    payload = {"name": "Credits by status", "category": "operational", "config": _make_config()}
    payload.update(overrides)
    return payload


@pytest.fixture
async def credits(analytics_tables):
    for i, (status, qty) in enumerate([("issued", 100.0), ("issued", 40.0), ("retired", 60.0)]):
        await analytics_tables.execute(
            text(
                "INSERT INTO carbon_credits (id, project_id, quantity, vintage_year, status) "
                "VALUES (:id, 'p1', :qty, 2022, :status)"
            ),
            {"id": f"c{i}", "qty": qty, "status": status},
        )
    return analytics_tables


async def _create_report(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/v1/reports", json=_make_report_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


# ===================================================================
# Catalog and compile
# ===================================================================


class TestCatalog:

    @pytest.mark.anyio
    async def test_list_datasets(self, client: AsyncClient) -> None:
        response = await client.get("/v1/reports/datasets")
        assert response.status_code == 200
        names = [d["name"] for d in response.json()]
        assert names == ["projects", "carbon_credits", "transactions", "monitoring_data"]

    @pytest.mark.anyio
    async def test_get_dataset(self, client: AsyncClient) -> None:
        data = (await client.get("/v1/reports/datasets/transactions")).json()
        amount = next(f for f in data["fields"] if f["name"] == "amount")
        assert amount["is_aggregatable"] is True

    @pytest.mark.anyio
    async def test_unknown_dataset(self, client: AsyncClient) -> None:
        assert (await client.get("/v1/reports/datasets/invoices")).status_code == 404


class TestCompile:

    @pytest.mark.anyio
    async def test_compile_preview(self, client: AsyncClient) -> None:
        config = _make_config(
            filters=[{"field": "vintage_year", "operator": "in", "value": [2021, 2022]}],
            limit=10,
        )
        response = await client.post("/v1/reports/compile", json=config)
        assert response.status_code == 200
        data = response.json()
        assert data["sql"] == (
            "SELECT status, SUM(quantity) AS total FROM carbon_credits "
            "WHERE vintage_year = ANY(?) GROUP BY status ORDER BY status ASC LIMIT 10"
        )
        assert data["args"] == [[2021, 2022]]
        assert data["count_sql"] == "SELECT COUNT(*) FROM carbon_credits WHERE vintage_year = ANY(?)"

    @pytest.mark.anyio
    async def test_invalid_config_is_422(self, client: AsyncClient) -> None:
        response = await client.post("/v1/reports/compile", json=_make_config(dataset="invoices"))
        assert response.status_code == 422
        assert "unknown dataset" in response.json()["detail"]

    @pytest.mark.anyio
    async def test_compile_without_validation(self, client: AsyncClient) -> None:
        config = {"dataset": "credits", "fields": [{"name": "amount", "aggregate": "SUM", "alias": "total"}],
                  "filters": [{"field": "year", "value": 2024}]}
        response = await client.post("/v1/reports/compile?validate=false", json=config)
        assert response.status_code == 200
        assert response.json()["sql"] == "SELECT SUM(amount) AS total FROM credits WHERE year = ?"
        assert response.json()["args"] == [2024]


# ===================================================================
# Direct export
# ===================================================================


class TestExport:

    @pytest.mark.anyio
    async def test_csv(self, client: AsyncClient, credits) -> None:
        response = await client.post("/v1/reports/export", json={"config": _make_config()})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="report.csv"' in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows == [["status", "total"], ["issued", "140"], ["retired", "60"]]

    @pytest.mark.anyio
    async def test_streamed_csv_matches_buffered(self, client: AsyncClient, credits) -> None:
        buffered = await client.post("/v1/reports/export", json={"config": _make_config()})
        streamed = await client.post(
            "/v1/reports/export", json={"config": _make_config(), "stream": True},
        )
        assert streamed.status_code == 200
        assert streamed.content == buffered.content

    @pytest.mark.anyio
    async def test_json(self, client: AsyncClient, credits) -> None:
        response = await client.post(
            "/v1/reports/export", json={"config": _make_config(), "format": "json"},
        )
        data = response.json()
        assert data["columns"] == ["status", "total"]
        assert data["rows"][1] == {"status": "retired", "total": 60.0}

    @pytest.mark.anyio
    async def test_excel_filename(self, client: AsyncClient, credits) -> None:
        response = await client.post(
            "/v1/reports/export", json={"config": _make_config(), "format": "excel"},
        )
        assert response.status_code == 200
        assert 'filename="report.xlsx"' in response.headers["content-disposition"]
        assert response.content.startswith(b"PK")

    @pytest.mark.anyio
    async def test_unwritable_excel_value_is_reported(self, client: AsyncClient, credits) -> None:
        await credits.execute(
            text(
                "INSERT INTO carbon_credits (id, project_id, quantity, vintage_year, status) "
                "VALUES ('c9', 'p1', 5.0, 2022, :status)"
            ),
            {"status": "held\x01"},
        )
        response = await client.post(
            "/v1/reports/export", json={"config": _make_config(), "format": "excel"},
        )
        assert response.status_code == 500
        assert "cannot store" in response.json()["detail"]


# ===================================================================
# Definitions
# ===================================================================


class TestDefinitions:

    @pytest.mark.anyio
    async def test_create_and_get(self, client: AsyncClient) -> None:
        created = await _create_report(client)
        assert created["version"] == 1
        response = await client.get(f"/v1/reports/{created['id']}")
        assert response.status_code == 200
        assert response.json()["config"]["dataset"] == "carbon_credits"

    @pytest.mark.anyio
    async def test_create_rejects_unknown_field(self, client: AsyncClient) -> None:
        config = _make_config(fields=[{"name": "fee"}])
        response = await client.post("/v1/reports", json=_make_report_payload(config=config))
        assert response.status_code == 422

    @pytest.mark.anyio
    async def test_update_bumps_version(self, client: AsyncClient) -> None:
        created = await _create_report(client)
        response = await client.put(
            f"/v1/reports/{created['id']}",
            json={"config": _make_config(limit=5), "name": "Top statuses"},
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert response.json()["name"] == "Top statuses"

    @pytest.mark.anyio
    async def test_delete_then_404(self, client: AsyncClient) -> None:
        created = await _create_report(client)
        assert (await client.delete(f"/v1/reports/{created['id']}")).status_code == 204
        assert (await client.get(f"/v1/reports/{created['id']}")).status_code == 404
        assert (await client.delete(f"/v1/reports/{created['id']}")).status_code == 404

    @pytest.mark.anyio
    async def test_list_and_templates(self, client: AsyncClient) -> None:
        await _create_report(client, name="Private one")
        template = await _create_report(
            client, name="Quarterly template", visibility="public", is_template=True,
        )
        listing = (await client.get("/v1/reports", params={"page_size": 1})).json()
        assert listing["total"] == 2
        assert listing["total_pages"] == 2
        assert len(listing["items"]) == 1

        templates = (await client.get("/v1/reports/templates")).json()
        assert [t["id"] for t in templates] == [template["id"]]

    @pytest.mark.anyio
    async def test_clone(self, client: AsyncClient) -> None:
        template = await _create_report(client, visibility="public", is_template=True)
        user = str(uuid7())
        response = await client.post(
            f"/v1/reports/{template['id']}/clone", json={"created_by": user},
        )
        assert response.status_code == 201
        clone = response.json()
        assert clone["name"] == "Credits by status (copy)"
        assert clone["visibility"] == "private"
        assert clone["based_on_template_id"] == template["id"]
        assert clone["created_by"] == user

    @pytest.mark.anyio
    async def test_clone_missing(self, client: AsyncClient) -> None:
        response = await client.post(f"/v1/reports/{uuid7()}/clone", json={})
        assert response.status_code == 404


# ===================================================================
# Executions
# ===================================================================


class TestExecutions:

    @pytest.mark.anyio
    async def test_execute_and_download(self, client: AsyncClient, credits) -> None:
        report = await _create_report(client)
        response = await client.post(f"/v1/reports/{report['id']}/execute", json={"format": "csv"})
        assert response.status_code == 201
        execution = response.json()
        assert execution["status"] == "completed"
        # matching source rows, counted before grouping
        assert execution["record_count"] == 3

        status = await client.get(f"/v1/reports/executions/{execution['id']}")
        assert status.json()["file_key"] == f"reports/{execution['id']}.csv"

        download = await client.get(f"/v1/reports/executions/{execution['id']}/download")
        assert download.status_code == 200
        assert download.content.startswith(b"status,total\r\n")
        assert f'filename="report_{execution["id"]}.csv"' in download.headers["content-disposition"]

        history = (await client.get(f"/v1/reports/{report['id']}/executions")).json()
        assert history["total"] == 1
        assert history["items"][0]["id"] == execution["id"]

    @pytest.mark.anyio
    async def test_failed_execution_and_conflicts(self, client: AsyncClient, analytics_tables) -> None:
        # monitoring_data is catalogued but not present in the test database
        config = {"dataset": "monitoring_data", "fields": [{"name": "metric_type"}]}
        response = await client.post("/v1/reports/execute", json={"config": config})
        assert response.status_code == 201
        execution = response.json()
        assert execution["status"] == "failed"
        assert execution["error_message"]

        cancel = await client.post(f"/v1/reports/executions/{execution['id']}/cancel")
        assert cancel.status_code == 409
        download = await client.get(f"/v1/reports/executions/{execution['id']}/download")
        assert download.status_code == 409

    @pytest.mark.anyio
    async def test_invalid_ad_hoc_config_is_422(self, client: AsyncClient) -> None:
        config = {"dataset": "invoices", "fields": [{"name": "amount"}]}
        response = await client.post("/v1/reports/execute", json={"config": config})
        assert response.status_code == 422
        assert "unknown dataset" in response.json()["detail"]

    @pytest.mark.anyio
    async def test_execute_missing_definition(self, client: AsyncClient) -> None:
        response = await client.post(f"/v1/reports/{uuid7()}/execute", json={})
        assert response.status_code == 404

    @pytest.mark.anyio
    async def test_unknown_execution(self, client: AsyncClient) -> None:
        assert (await client.get(f"/v1/reports/executions/{uuid7()}")).status_code == 404


# ===================================================================
# Schedules
# ===================================================================


class TestSchedules:

    @pytest.mark.anyio
    async def test_schedule_lifecycle(self, client: AsyncClient) -> None:
        report = await _create_report(client)
        response = await client.post(
            f"/v1/reports/{report['id']}/schedules",
            json={
                "name": "Monday digest",
                "cron_expression": "0 8 * * 1",
                "format": "pdf",
                "delivery_method": "email",
                "recipient_emails": ["ops@example.org"],
            },
        )
        assert response.status_code == 201, response.text
        schedule = response.json()
        assert schedule["is_active"] is True

        toggled = (await client.post(f"/v1/reports/schedules/{schedule['id']}/toggle")).json()
        assert toggled["is_active"] is False

        patched = await client.patch(
            f"/v1/reports/schedules/{schedule['id']}", json={"cron_expression": "0 9 * * 1"},
        )
        assert patched.json()["cron_expression"] == "0 9 * * 1"

        listed = (await client.get(f"/v1/reports/{report['id']}/schedules")).json()
        assert [s["id"] for s in listed] == [schedule["id"]]

        assert (await client.delete(f"/v1/reports/schedules/{schedule['id']}")).status_code == 204
        assert (await client.get(f"/v1/reports/schedules/{schedule['id']}")).status_code == 404

    @pytest.mark.anyio
    async def test_blank_cron_rejected(self, client: AsyncClient) -> None:
        report = await _create_report(client)
        response = await client.post(
            f"/v1/reports/{report['id']}/schedules",
            json={"name": "x", "cron_expression": "   ", "format": "csv", "delivery_method": "s3"},
        )
        assert response.status_code == 422

    @pytest.mark.anyio
    async def test_schedule_for_missing_report(self, client: AsyncClient) -> None:
        response = await client.post(
            f"/v1/reports/{uuid7()}/schedules",
            json={"name": "x", "cron_expression": "@daily", "format": "csv", "delivery_method": "s3"},
        )
        assert response.status_code == 404
