"""健康检查测试

测试内容：
1. GET /health 返回 200 + ok
2. GET /ready 正常时返回 200 + checks 结构
3. 通知投递器停止时仍就绪，只报告 stopped
4. GET /ready SQLite 不可用时返回 503
"""

from httpx import ASGITransport, AsyncClient
from reviewflow.core.store import create_store_group


class TestHealthCheck:
    async def test_health_returns_200(self, client: AsyncClient):
        """GET /health 永远返回 200"""
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_ready_returns_200(self, client: AsyncClient):
        """GET /ready 正常时返回 200 + checks 结构"""
        resp = await client.get("/ready")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        checks = data["checks"]
        assert checks["sqlite"] == "ok"
        assert checks["wal_mode"] == "ok"
        assert checks["notification_dispatcher"] == "ok"
        assert checks["notification_queue"] == 0
        assert isinstance(checks["disk_space_mb"], int)

    async def test_ready_with_stopped_dispatcher(self, client: AsyncClient, dispatcher):
        await dispatcher.stop()
        resp = await client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"]["notification_dispatcher"] == "stopped"

    async def test_ready_sqlite_failure(self, test_app, tmp_path):
        """GET /ready SQLite 不可用时返回 503"""
        # 换成一个已关闭的连接模拟不可用
        broken = await create_store_group(str(tmp_path / "broken.db"))
        await broken.conn.close()
        test_app.state.store_group = broken

        async with AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://test",
        ) as ac:
            resp = await ac.get("/ready")
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "not_ready"
        assert data["checks"]["sqlite"].startswith("error")
        assert data["checks"]["wal_mode"] == "skipped"
