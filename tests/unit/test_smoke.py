"""Basic smoke tests for the service scaffolding."""


def test_imports():
    import api_server  # noqa: F401
    from config.settings import settings

    assert settings.DB_PATH.endswith(".db")


def test_app_exposes_interview_routes():
    from api_server import create_app

    paths = {route.path for route in create_app().routes}
    assert "/api/interview/start" in paths
    assert "/api/interview/active" in paths
