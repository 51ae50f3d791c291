from app.main import app, lifespan


async def test_pool_capacity_follows_settings(monkeypatch, mock_env):
    monkeypatch.setenv("WORKER_POOL_SIZE", "4")

    async with lifespan(app):
        assert app.state.worker_pool.capacity == 4
