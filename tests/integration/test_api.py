"""Integration tests for bannercraft.api.main: FastAPI REST API endpoints.

All tests use the FastAPI TestClient with temporary storage and a mocked
OpenAI client, so no network access occurs.  The packaged default prompts
are seeded on startup.  Tests cover every endpoint:

- ``POST /api/generate-initial-design``: design creation and generation.
- ``POST /api/generate-initial-design-new``: planned design generation.
- ``POST /api/generate-design-iteration``: panel regeneration.
- ``GET /api/design/{id}``: design lookup by design or iteration id.
- ``/api/prompts``: prompt template CRUD.
- ``POST /api/generate-json-plan``: JSON plans.
- ``GET /api/health``: liveness.
- ``/designs/*``: static serving of stored panels.
- ``main()``: the CLI entry point.
"""

from __future__ import annotations

import inspect
import json
import sqlite3
import uuid
from types import SimpleNamespace

from bannercraft.api import main
from bannercraft.core.generation import BannerGenerator


def _create_design(test_client, design_request: dict) -> dict:
    """Run an initial design through the API and return the processing result."""
    resp = test_client.post("/api/generate-initial-design", json=design_request)
    assert resp.status_code == 201
    return resp.json()["data"]


# ---------------------------------------------------------------------------
# Health endpoint tests.
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, test_client):
        resp = test_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "version" in resp.json()


# ---------------------------------------------------------------------------
# Initial design tests.
# ---------------------------------------------------------------------------


class TestGenerateInitialDesign:
    """Test POST /api/generate-initial-design."""

    def test_generates_design(self, test_client, design_request: dict, mock_openai):
        data = _create_design(test_client, design_request)

        assert data["success"] is True
        assert data["status"] == "COMPLETED"
        assert data["topPanelUrl"].startswith("/designs/top-panel-")
        assert data["bottomPanelUrl"].startswith("/designs/bottom-panel-")
        assert mock_openai.responses.create.call_count == 2

    def test_design_record_holds_rendered_prompts(self, test_client, design_request: dict):
        data = _create_design(test_client, design_request)
        design = test_client.get(f"/api/design/{data['recordId']}").json()["data"]

        assert design["status"] == "COMPLETED"
        assert design["businessName"] == "Acme Plumbing"
        assert design["generatedTopPanelImageUrl"] == data["topPanelUrl"]
        assert "Acme Plumbing" in design["topPanelPrompt"]
        assert "{businessName}" not in design["topPanelPrompt"]
        # Contacts are scoped to the panel each prompt was rendered for.
        assert "Phone: 555 0100" in design["topPanelPrompt"]
        assert "Email: hi@acme.test" not in design["topPanelPrompt"]
        assert "Email: hi@acme.test" in design["bottomPanelPrompt"]
        assert design["topPanelPromptTemplateId"]
        assert design["iterations"] == []

    def test_explicit_prompt_ids(self, test_client, design_request: dict):
        top = test_client.post(
            "/api/prompts",
            json={
                "name": "Custom top",
                "panelPosition": "TOP",
                "promptTemplate": "CUSTOM {businessName}",
            },
        ).json()["data"]
        design_request["topPanelPromptId"] = top["id"]

        data = _create_design(test_client, design_request)
        design = test_client.get(f"/api/design/{data['recordId']}").json()["data"]
        assert design["topPanelPrompt"] == "CUSTOM Acme Plumbing"
        assert design["topPanelPromptTemplateId"] == top["id"]

    def test_unknown_prompt_id(self, test_client, design_request: dict):
        design_request["bottomPanelPromptId"] = str(uuid.uuid4())
        resp = test_client.post("/api/generate-initial-design", json=design_request)
        assert resp.status_code == 400
        assert "Bottom panel prompt" in resp.json()["detail"]

    def test_prompt_for_wrong_panel(self, test_client, design_request: dict):
        bottom = test_client.get("/api/prompts", params={"panelPosition": "BOTTOM"}).json()
        design_request["topPanelPromptId"] = bottom["data"]["prompts"][0]["id"]
        resp = test_client.post("/api/generate-initial-design", json=design_request)
        assert resp.status_code == 400

    def test_no_default_prompt(self, test_client, design_request: dict):
        prompts = test_client.get("/api/prompts", params={"panelPosition": "TOP"}).json()
        for prompt in prompts["data"]["prompts"]:
            test_client.delete(f"/api/prompts/{prompt['id']}")

        resp = test_client.post("/api/generate-initial-design", json=design_request)
        assert resp.status_code == 400
        assert "TOP" in resp.json()["detail"]

    def test_missing_template_variable(self, test_client, design_request: dict):
        test_client.post(
            "/api/prompts",
            json={
                "name": "Needs headshot",
                "panelPosition": "TOP",
                "promptTemplate": "Headshot: {headshotImageUrl}",
                "isDefault": True,
            },
        )
        resp = test_client.post("/api/generate-initial-design", json=design_request)
        assert resp.status_code == 400
        assert "headshotImageUrl" in resp.json()["detail"]

    def test_validation_error(self, test_client, design_request: dict):
        design_request["bannerSize"] = "huge"
        resp = test_client.post("/api/generate-initial-design", json=design_request)
        assert resp.status_code == 422

    def test_generation_failure_is_recorded(
        self, test_client, design_request: dict, mock_openai, image_response
    ):
        mock_openai.responses.create.return_value = image_response(None)
        data = _create_design(test_client, design_request)

        assert data["success"] is False
        assert data["status"] == "FAILED"
        design = test_client.get(f"/api/design/{data['recordId']}").json()["data"]
        assert design["status"] == "FAILED"
        assert "No image was generated" in design["errorMessage"]


# ---------------------------------------------------------------------------
# Planned initial design tests.
# ---------------------------------------------------------------------------


class TestGeneratePlannedInitialDesign:
    """Test POST /api/generate-initial-design-new."""

    PLAN = {
        "top": {
            "includeLogo": True,
            "includeHeadshot": False,
            "contactValues": ["555 0100", "acme.test"],
            "useInspirationImage": False,
            "designText": "24/7 emergency repairs",
        },
        "bottom": {
            "includeLogo": True,
            "contactValues": ["hi@acme.test", "acme.test"],
            "useInspirationImage": True,
            "designText": "24/7 emergency repairs",
        },
    }

    def _use_plan_templates(self, test_client) -> None:
        templates = {
            "TOP": "Logo={includeLogo} Headshot={includeHeadshot} Contacts={contactValues}",
            "BOTTOM": "Logo={includeLogo} Headshot={includeHeadshot?} Inspo={useInspirationImage}",
        }
        for panel, template in templates.items():
            test_client.post(
                "/api/prompts",
                json={
                    "name": f"Planned {panel}",
                    "panelPosition": panel,
                    "promptTemplate": template,
                    "isDefault": True,
                },
            )

    def _respond(self, mock_openai, plan_text: str, image_response, png_base64) -> None:
        mock_openai.responses.create.side_effect = [
            SimpleNamespace(output=[], output_text=plan_text),
            image_response(png_base64),
            image_response(png_base64),
        ]

    def test_plan_feeds_panel_templates(
        self, test_client, design_request: dict, mock_openai, image_response, png_base64
    ):
        """Plan values reach each panel's rendered prompt and the response."""
        self._use_plan_templates(test_client)
        self._respond(mock_openai, json.dumps(self.PLAN), image_response, png_base64)

        resp = test_client.post("/api/generate-initial-design-new", json=design_request)

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["firstCall"] == self.PLAN
        assert body["data"]["status"] == "COMPLETED"
        assert mock_openai.responses.create.call_count == 3

        design = test_client.get(f"/api/design/{body['data']['recordId']}").json()["data"]
        assert design["topPanelPrompt"] == (
            "Logo=true Headshot=false Contacts=555 0100, acme.test"
        )
        assert design["bottomPanelPrompt"] == "Logo=true Headshot= Inspo=true"

    def test_plan_prompt_carries_request(
        self, test_client, design_request: dict, mock_openai, image_response, png_base64
    ):
        self._respond(mock_openai, json.dumps(self.PLAN), image_response, png_base64)
        test_client.post("/api/generate-initial-design-new", json=design_request)

        plan_call = mock_openai.responses.create.call_args_list[0].kwargs
        assert plan_call["model"] == "gpt-4.1-mini"
        assert '"businessName": "Acme Plumbing"' in plan_call["input"]
        assert plan_call["input"].endswith("Return only JSON, no extra text.")

    def test_invalid_plan_returns_502(self, test_client, design_request: dict, mock_openai):
        mock_openai.responses.create.return_value = SimpleNamespace(
            output=[], output_text="Sorry, no plan today."
        )
        resp = test_client.post("/api/generate-initial-design-new", json=design_request)
        assert resp.status_code == 502
        assert mock_openai.responses.create.call_count == 1

    def test_plan_without_both_panels_returns_502(
        self, test_client, design_request: dict, mock_openai
    ):
        """A plan missing the bottom object stops before any image is generated."""
        mock_openai.responses.create.return_value = SimpleNamespace(
            output=[], output_text='{"top": {"includeLogo": true}}'
        )
        resp = test_client.post("/api/generate-initial-design-new", json=design_request)
        assert resp.status_code == 502
        assert "'bottom'" in resp.json()["detail"]
        assert mock_openai.responses.create.call_count == 1

    def test_unknown_prompt_rejected_before_planning(
        self, test_client, design_request: dict, mock_openai
    ):
        design_request["topPanelPromptId"] = str(uuid.uuid4())
        resp = test_client.post("/api/generate-initial-design-new", json=design_request)
        assert resp.status_code == 400
        mock_openai.responses.create.assert_not_called()

    def test_validation_error(self, test_client, design_request: dict):
        del design_request["businessName"]
        resp = test_client.post("/api/generate-initial-design-new", json=design_request)
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Iteration tests.
# ---------------------------------------------------------------------------


class TestGenerateDesignIteration:
    """Test POST /api/generate-design-iteration."""

    def test_iterates_top_panel(self, test_client, design_request: dict):
        design = _create_design(test_client, design_request)
        resp = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": design["recordId"], "topPanelIterationNotes": "Bigger logo"},
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["data"]["iterationNumber"] == 1
        assert body["data"]["message"] == "Design iteration started successfully"
        assert body["result"]["success"] is True
        assert body["result"]["topPanelUrl"].startswith("/designs/top-panel-")
        assert body["result"]["bottomPanelUrl"] is None

    def test_iteration_numbers_increment(self, test_client, design_request: dict):
        design = _create_design(test_client, design_request)
        payload = {"initialDesignId": design["recordId"], "bottomPanelIterationNotes": "Darker"}
        first = test_client.post("/api/generate-design-iteration", json=payload).json()
        second = test_client.post("/api/generate-design-iteration", json=payload).json()
        assert first["data"]["iterationNumber"] == 1
        assert second["data"]["iterationNumber"] == 2

    def test_unknown_design(self, test_client):
        resp = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": str(uuid.uuid4()), "topPanelIterationNotes": "x"},
        )
        assert resp.status_code == 404

    def test_design_not_completed(
        self, test_client, design_request: dict, mock_openai, image_response
    ):
        mock_openai.responses.create.return_value = image_response(None)
        design = _create_design(test_client, design_request)
        resp = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": design["recordId"], "topPanelIterationNotes": "x"},
        )
        assert resp.status_code == 400
        assert "FAILED" in resp.json()["detail"]

    def test_design_without_prompts(self, test_client, design_request: dict):
        """A completed design with no stored prompts cannot be iterated."""
        db = main.app.state.db
        design = db.create_design(design_request, "", "")
        db.update_design_results(design.id, "/designs/a.png", "/designs/b.png", "local")

        resp = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": design.id, "topPanelIterationNotes": "x"},
        )
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Initial design is missing required prompts."

    def test_notes_required(self, test_client, design_request: dict):
        design = _create_design(test_client, design_request)
        resp = test_client.post(
            "/api/generate-design-iteration", json={"initialDesignId": design["recordId"]}
        )
        assert resp.status_code == 422

    def test_failed_iteration_is_recorded(
        self, test_client, design_request: dict, mock_openai, image_response
    ):
        design = _create_design(test_client, design_request)
        mock_openai.responses.create.return_value = image_response(None)
        body = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": design["recordId"], "topPanelIterationNotes": "x"},
        ).json()

        assert body["result"]["success"] is False
        fetched = test_client.get(f"/api/design/{body['data']['id']}").json()["data"]
        assert fetched["iterations"][0]["status"] == "FAILED"


# ---------------------------------------------------------------------------
# Design lookup tests.
# ---------------------------------------------------------------------------


class TestGetDesign:
    """Test GET /api/design/{id}."""

    def test_by_design_id(self, test_client, design_request: dict):
        design = _create_design(test_client, design_request)
        resp = test_client.get(f"/api/design/{design['recordId']}")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == design["recordId"]
        assert "requestedAsIteration" not in data

    def test_by_iteration_id(self, test_client, design_request: dict):
        design = _create_design(test_client, design_request)
        iteration_ids = [
            test_client.post(
                "/api/generate-design-iteration",
                json={"initialDesignId": design["recordId"], "topPanelIterationNotes": note},
            ).json()["data"]["id"]
            for note in ("first", "second")
        ]

        data = test_client.get(f"/api/design/{iteration_ids[1]}").json()["data"]
        assert data["id"] == design["recordId"]
        assert data["requestedAsIteration"] is True
        assert data["requestedIterationId"] == iteration_ids[1]
        assert [it["iterationNumber"] for it in data["iterations"]] == [1, 2]
        assert [it["isRequested"] for it in data["iterations"]] == [False, True]
        assert data["iterations"][1]["topPanelIterationNotes"] == "second"

    def test_not_found(self, test_client):
        resp = test_client.get(f"/api/design/{uuid.uuid4()}")
        assert resp.status_code == 404

    def test_iteration_with_missing_parent(self, test_client, design_request: dict, test_config):
        design = _create_design(test_client, design_request)
        iteration_id = test_client.post(
            "/api/generate-design-iteration",
            json={"initialDesignId": design["recordId"], "topPanelIterationNotes": "x"},
        ).json()["data"]["id"]

        # Foreign keys are off on a plain connection, so the iteration survives.
        conn = sqlite3.connect(test_config.database_path)
        conn.execute("DELETE FROM designs WHERE id = ?", (design["recordId"],))
        conn.commit()
        conn.close()

        resp = test_client.get(f"/api/design/{iteration_id}")
        assert resp.status_code == 500
        assert "parent design missing" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Prompt template tests.
# ---------------------------------------------------------------------------


class TestPrompts:
    """Test the /api/prompts endpoints."""

    def test_defaults_are_seeded(self, test_client):
        data = test_client.get("/api/prompts", params={"isDefault": "true"}).json()["data"]
        assert data["total"] == 2
        assert {p["panelPosition"] for p in data["prompts"]} == {"TOP", "BOTTOM"}

    def test_create_get_update_delete(self, test_client):
        created = test_client.post(
            "/api/prompts",
            json={
                "name": "Seasonal",
                "panelPosition": "BOTTOM",
                "promptTemplate": "Holiday banner for {businessName}",
                "description": "December campaign",
            },
        )
        assert created.status_code == 201
        prompt = created.json()["data"]
        assert prompt["isActive"] is True
        assert prompt["isDefault"] is False

        fetched = test_client.get(f"/api/prompts/{prompt['id']}").json()["data"]
        assert fetched["promptTemplate"] == "Holiday banner for {businessName}"

        updated = test_client.patch(
            f"/api/prompts/{prompt['id']}", json={"version": 2, "isActive": False}
        ).json()["data"]
        assert updated["version"] == 2
        assert updated["isActive"] is False
        assert updated["name"] == "Seasonal"

        assert test_client.delete(f"/api/prompts/{prompt['id']}").status_code == 200
        assert test_client.get(f"/api/prompts/{prompt['id']}").status_code == 404

    def test_new_default_replaces_old(self, test_client):
        test_client.post(
            "/api/prompts",
            json={
                "name": "New default",
                "panelPosition": "TOP",
                "promptTemplate": "x",
                "isDefault": True,
            },
        )
        defaults = test_client.get(
            "/api/prompts", params={"panelPosition": "TOP", "isDefault": "true"}
        ).json()["data"]
        assert defaults["total"] == 1
        assert defaults["prompts"][0]["name"] == "New default"

    def test_list_pagination(self, test_client):
        for i in range(3):
            test_client.post(
                "/api/prompts",
                json={"name": f"P{i}", "panelPosition": "TOP", "promptTemplate": "x"},
            )
        data = test_client.get("/api/prompts", params={"limit": 2, "offset": 0}).json()["data"]
        assert data["total"] == 5
        assert len(data["prompts"]) == 2
        assert data["limit"] == 2

    def test_invalid_limit(self, test_client):
        assert test_client.get("/api/prompts", params={"limit": 500}).status_code == 422

    def test_create_validation(self, test_client):
        resp = test_client.post(
            "/api/prompts", json={"name": "Bad", "panelPosition": "MIDDLE", "promptTemplate": "x"}
        )
        assert resp.status_code == 422

    def test_empty_update_rejected(self, test_client):
        prompt_id = test_client.get("/api/prompts").json()["data"]["prompts"][0]["id"]
        assert test_client.patch(f"/api/prompts/{prompt_id}", json={}).status_code == 422

    def test_missing_prompt(self, test_client):
        missing = str(uuid.uuid4())
        assert test_client.get(f"/api/prompts/{missing}").status_code == 404
        assert test_client.patch(f"/api/prompts/{missing}", json={"name": "x"}).status_code == 404
        assert test_client.delete(f"/api/prompts/{missing}").status_code == 404


# ---------------------------------------------------------------------------
# JSON plan tests.
# ---------------------------------------------------------------------------


class TestGenerateJsonPlan:
    """Test POST /api/generate-json-plan."""

    def _respond(self, mock_openai, text: str) -> None:
        mock_openai.responses.create.return_value = SimpleNamespace(output=[], output_text=text)

    def test_json_body(self, test_client, mock_openai):
        self._respond(mock_openai, '{"layout": "split"}')
        resp = test_client.post("/api/generate-json-plan", json={"prompt": "Plan it"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "generatedJson": {"layout": "split"}}
        assert mock_openai.responses.create.call_args.kwargs["input"] == "Plan it"

    def test_plain_text_body(self, test_client, mock_openai):
        self._respond(mock_openai, "[1, 2]")
        resp = test_client.post(
            "/api/generate-json-plan",
            content="Plan a banner",
            headers={"Content-Type": "text/plain"},
        )
        assert resp.status_code == 200
        assert resp.json()["generatedJson"] == [1, 2]

    def test_missing_prompt(self, test_client):
        assert test_client.post("/api/generate-json-plan", json={}).status_code == 400
        assert test_client.post("/api/generate-json-plan", json={"prompt": ""}).status_code == 400

    def test_model_returns_prose(self, test_client, mock_openai):
        self._respond(mock_openai, "I cannot do that.")
        resp = test_client.post("/api/generate-json-plan", json={"prompt": "Plan it"})
        assert resp.status_code == 502

    def test_plain_text_prompt_is_not_parsed_as_json(self, test_client, mock_openai):
        """A text/plain body that happens to be valid JSON is still the prompt."""
        self._respond(mock_openai, '{"year": 2024}')
        resp = test_client.post(
            "/api/generate-json-plan",
            content="2024",
            headers={"Content-Type": "text/plain"},
        )
        assert resp.status_code == 200
        assert mock_openai.responses.create.call_args.kwargs["input"] == "2024"

    def test_malformed_json_body(self, test_client, mock_openai):
        resp = test_client.post(
            "/api/generate-json-plan",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        mock_openai.responses.create.assert_not_called()

    def test_missing_api_key_returns_json_error(self, test_client, test_config):
        """Configuration errors surface as a JSON 500, not a plain-text one."""
        main.app.state.generator = BannerGenerator(
            test_config.model_copy(update={"openai_api_key": None}),
            main.app.state.image_store,
        )
        resp = test_client.post("/api/generate-json-plan", json={"prompt": "plan"})
        assert resp.status_code == 500
        assert resp.headers["content-type"] == "application/json"
        assert "API key" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Static design file tests.
# ---------------------------------------------------------------------------


class TestDesignFiles:
    """Test that stored panels are served under the designs URL prefix."""

    def test_serves_stored_panel(self, test_client, design_request: dict, test_config):
        data = _create_design(test_client, design_request)
        resp = test_client.get(data["topPanelUrl"])

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        stored = test_config.designs_dir / data["topPanelUrl"].rsplit("/", 1)[-1]
        assert resp.content == stored.read_bytes()

    def test_missing_panel(self, test_client):
        assert test_client.get("/designs/top-panel-missing.png").status_code == 404


# ---------------------------------------------------------------------------
# Route and entry point tests.
# ---------------------------------------------------------------------------


class TestRouteHandlers:
    """Routes doing blocking database work run in the threadpool."""

    def test_database_routes_are_sync(self):
        for handler in (
            main.get_design,
            main.create_prompt,
            main.list_prompts,
            main.get_prompt,
            main.update_prompt,
            main.delete_prompt,
            main.generate_initial_design,
            main.generate_planned_initial_design,
            main.generate_design_iteration,
        ):
            assert not inspect.iscoroutinefunction(handler), handler.__name__


class TestMain:
    """Test the ``bannercraft`` console entry point."""

    def test_configures_logging_then_runs_server(self, monkeypatch, test_config):
        calls = []
        monkeypatch.setattr(main, "config", test_config)
        monkeypatch.setattr(main, "configure_logging", lambda level: calls.append(("log", level)))
        monkeypatch.setattr(
            "uvicorn.run", lambda app, **kwargs: calls.append(("run", app, kwargs))
        )

        main.main()

        assert calls == [
            ("log", test_config.log_level),
            (
                "run",
                "bannercraft.api.main:app",
                {
                    "host": test_config.server_host,
                    "port": test_config.server_port,
                    "reload": False,
                },
            ),
        ]
