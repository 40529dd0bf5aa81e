"""
Tests for the workout composition endpoints.

The composer and the database session are swapped through
dependency_overrides; the app lifespan never runs.
"""
import pytest
from fastapi.testclient import TestClient

from core.database import get_db
from main import app
from routers.workout_composition import get_workout_composer
from services.workout_composition.catalog import InMemoryExerciseCatalog
from services.workout_composition.composer import ComposerConfig, WorkoutComposer
from services.workout_composition.composition_cache import CompositionCache, InMemoryCacheStore

from conftest import ScriptedClient, bench_press_reply

PROFILE = {
    "user_id": "user-1",
    "goal": "hypertrophy",
    "structure": "full_gym",
    "level": "intermediate",
}
CHECK_IN = {"focus": "upper", "soreness": "none", "day": "2026-03-02"}


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_composer(catalog, generative_client=None):
    composer = WorkoutComposer(
        catalog=catalog,
        cache=CompositionCache(InMemoryCacheStore()),
        client=generative_client,
        config=ComposerConfig(),
    )
    app.dependency_overrides[get_workout_composer] = lambda: composer
    return composer


class TestCompose:

    def test_generated_plan(self, client, catalog):
        _use_composer(catalog, ScriptedClient(bench_press_reply()))

        response = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": CHECK_IN})

        assert response.status_code == 200
        data = response.json()
        assert data["provenance"] == "generated"
        assert data["from_cache"] is False
        assert data["plan"]["title"] == "Upper Body Strength"
        assert data["plan"]["phases"][1]["exercises"][0]["exercise"]["name"] == "Bench Press"

    def test_second_request_is_cached(self, client, catalog):
        generative = ScriptedClient(bench_press_reply())
        _use_composer(catalog, generative)
        body = {"profile": PROFILE, "check_in": CHECK_IN}

        first = client.post("/v1/workouts/compose", json=body).json()
        second = client.post("/v1/workouts/compose", json=body).json()

        assert second["from_cache"] is True
        assert second["cache_key"] == first["cache_key"]
        assert generative.calls == 1

    def test_local_plan_when_generation_not_allowed(self, client, catalog):
        _use_composer(catalog, ScriptedClient(bench_press_reply()))

        response = client.post(
            "/v1/workouts/compose",
            json={"profile": PROFILE, "check_in": CHECK_IN, "allow_generation": False},
        )

        assert response.status_code == 200
        assert response.json()["provenance"] == "local"

    def test_unknown_sore_area(self, client, catalog):
        _use_composer(catalog)
        check_in = dict(CHECK_IN, soreness="sore", sore_areas=["elbows"])

        response = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": check_in})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_SORE_AREAS"

    def test_no_compatible_exercises(self, client):
        _use_composer(InMemoryExerciseCatalog([]))

        response = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": CHECK_IN})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "WORKOUT_UNAVAILABLE"

    def test_out_of_range_energy_is_rejected(self, client, catalog):
        _use_composer(catalog)
        check_in = dict(CHECK_IN, energy=11)

        response = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": check_in})

        assert response.status_code == 422


class TestBlueprint:

    def test_free_text_check_in(self, client, catalog):
        _use_composer(catalog)
        check_in = {"focus": "Legs", "soreness": "very sore", "day": "2026-03-02"}

        response = client.post("/v1/workouts/blueprint", json={"profile": PROFILE, "check_in": check_in, "seed": 7})

        assert response.status_code == 200
        data = response.json()
        assert data["focus"] == "lower"
        assert data["seed"] == 7
        assert data["recovery_mode"] is True
        assert data["title"].endswith("(Recovery)")

    def test_unknown_goal_gets_default_template(self, client, catalog):
        _use_composer(catalog)
        profile = dict(PROFILE, goal="Yoga")

        response = client.post("/v1/workouts/blueprint", json={"profile": profile, "check_in": CHECK_IN})

        assert response.status_code == 200
        assert response.json()["title"] == "Full Body Workout"
        assert response.json()["goal"] == "yoga"


class TestHistory:

    def test_record_completed_workout(self, client, catalog):
        _use_composer(catalog, ScriptedClient(bench_press_reply()))
        plan = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": CHECK_IN}).json()["plan"]

        response = client.post(
            "/v1/workouts/history",
            json={"user_id": "user-1", "plan": plan, "rating": "Too Easy"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["id"] > 0
        assert data["title"] == "Upper Body Strength"
        assert data["rating"] == "too_easy"

    def test_invalid_plan(self, client):
        response = client.post("/v1/workouts/history", json={"user_id": "user-1", "plan": {"title": "x"}})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_PLAN"

    def test_unknown_rating(self, client, catalog):
        _use_composer(catalog, ScriptedClient(bench_press_reply()))
        plan = client.post("/v1/workouts/compose", json={"profile": PROFILE, "check_in": CHECK_IN}).json()["plan"]

        response = client.post("/v1/workouts/history", json={"user_id": "user-1", "plan": plan, "rating": "meh"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_RATING"
