"""
API tests over the ASGI app with an in-memory database, a fake object store
and a mocked payment gateway.
"""
from typing import Any, Dict
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from weinvite.api import main
from weinvite.config import Settings
from weinvite.core.exceptions import VerificationFailed
from weinvite.database import crud
from weinvite.integrations.midtrans_client import TransactionNotification

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def order_form(**overrides: Any) -> Dict[str, str]:
    form = {"orderId": "ORDER-1", "userId": "u1", "productId": "p1"}
    form.update(overrides)
    return form


async def insert_order(session_factory: Any, order_id: str, status: str = "pending") -> None:
    async with session_factory() as session:
        await crud.insert_order(
            session, order_id=order_id, user_id="u1", product_id="p1", status=status
        )


class TestOrdersApi:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order(self, client: AsyncClient, fake_storage: Any) -> None:
        response = await client.post(
            "/orders",
            data=order_form(weddingInfo='{"bride": "Ayu", "groom": "Budi"}'),
            files=[
                ("images", ("front.png", PNG, "image/png")),
                ("images", ("back.png", PNG, "image/png")),
            ],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == "ORDER-1"
        assert body["status"] == "pending"
        assert body["weddingInfo"] == {"bride": "Ayu", "groom": "Budi"}
        assert len(body["imageUrls"]) == 2
        assert body["imageUrl"] == body["imageUrls"][0]
        assert body["product"]["name"] == "Rustic Gold"
        assert body["product"]["tags"][0]["name"] == "floral"
        assert body["user"] == {"id": "u1", "name": "Ayu"}
        assert len(fake_storage.objects) == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_with_single_image_field(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            data=order_form(),
            files={"image": ("photo.jpg", PNG, "image/jpeg")},
        )

        assert response.status_code == 201
        assert response.json()["imageUrl"].endswith(".jpg")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_unknown_product(
        self, client: AsyncClient, fake_storage: Any
    ) -> None:
        response = await client.post(
            "/orders",
            data=order_form(productId="missing"),
            files={"image": ("photo.png", PNG, "image/png")},
        )

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "message": "Product not found"}
        assert fake_storage.upload_calls == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_without_image(self, client: AsyncClient) -> None:
        response = await client.post("/orders", data=order_form())

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_rejects_non_image(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            data=order_form(),
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Only image files are allowed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order_rejects_bad_wedding_info(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders",
            data=order_form(weddingInfo="{oops"),
            files={"image": ("photo.png", PNG, "image/png")},
        )

        assert response.status_code == 400

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_upload_failure_returns_500_and_cleans_up(
        self, client: AsyncClient, fake_storage: Any
    ) -> None:
        fake_storage.fail_upload_at = 1

        response = await client.post(
            "/orders",
            data=order_form(),
            files=[
                ("images", ("a.png", PNG, "image/png")),
                ("images", ("b.png", PNG, "image/png")),
            ],
        )

        assert response.status_code == 500
        assert response.json()["error"] == "upload_failed"
        assert response.json()["message"] == "Failed to upload image 1"
        assert fake_storage.objects == {}

        missing = await client.get("/orders/ORDER-1")
        assert missing.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_orders_sorted_by_status(
        self, client: AsyncClient, session_factory: Any
    ) -> None:
        await insert_order(session_factory, "A", "pending")
        await insert_order(session_factory, "B", "dibatalkan")
        await insert_order(session_factory, "C", "diterima")

        response = await client.get("/orders")

        assert response.status_code == 200
        assert [o["status"] for o in response.json()] == ["dibatalkan", "diterima", "pending"]

        filtered = await client.get("/orders", params={"status": "pending"})
        assert [o["id"] for o in filtered.json()] == ["A"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_orders(self, client: AsyncClient, session_factory: Any) -> None:
        await insert_order(session_factory, "A")

        response = await client.get("/orders/user/u1")
        assert [o["id"] for o in response.json()] == ["A"]

        missing = await client.get("/orders/user/nobody")
        assert missing.status_code == 404
        assert missing.json()["message"] == "User not found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_order(self, client: AsyncClient, session_factory: Any) -> None:
        await insert_order(session_factory, "A")

        response = await client.put("/orders/A", json={"status": "diterima"})

        assert response.status_code == 200
        assert response.json()["status"] == "diterima"

        invalid = await client.put("/orders/A", json={"status": "shipped"})
        assert invalid.status_code == 400

        missing = await client.put("/orders/missing", json={"status": "pending"})
        assert missing.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete_order(self, client: AsyncClient, session_factory: Any) -> None:
        await insert_order(session_factory, "A")

        response = await client.delete("/orders/A")

        assert response.status_code == 200
        assert response.json() == {"message": "Order deleted successfully", "id": "A"}
        assert (await client.delete("/orders/A")).status_code == 404


class TestPaymentApi:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_transaction(self, client: AsyncClient, mock_gateway: AsyncMock) -> None:
        response = await client.post(
            "/payment/transactions",
            json={"orderId": "ORDER-9", "productId": "p1", "userId": "u1"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["session"]["token"] == "snap-token-123"
        assert body["order"]["snapToken"] == "snap-token-123"
        assert body["order"]["status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_transaction_missing_fields(self, client: AsyncClient) -> None:
        response = await client.post("/payment/transactions", json={"orderId": "ORDER-9"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/payment/transactions",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_notification_updates_order(
        self, client: AsyncClient, session_factory: Any, mock_gateway: AsyncMock
    ) -> None:
        await insert_order(session_factory, "ORDER-1")
        mock_gateway.verify_notification.return_value = TransactionNotification(
            order_id="ORDER-1", transaction_status="settlement"
        )

        response = await client.post("/payment/notification", json={"order_id": "ORDER-1"})

        assert response.status_code == 200
        assert response.json()["message"] == "Notification processed successfully"
        assert response.json()["order"]["status"] == "diterima"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_notification_bad_signature(
        self, client: AsyncClient, mock_gateway: AsyncMock
    ) -> None:
        mock_gateway.verify_notification.side_effect = VerificationFailed(
            "Invalid notification signature"
        )

        response = await client.post("/payment/notification", json={"order_id": "ORDER-1"})

        assert response.status_code == 400
        assert response.json()["error"] == "verification_failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_notification_unknown_order(
        self, client: AsyncClient, mock_gateway: AsyncMock
    ) -> None:
        mock_gateway.verify_notification.return_value = TransactionNotification(
            order_id="ORDER-404", transaction_status="expire"
        )

        response = await client.post("/payment/notification", json={"order_id": "ORDER-404"})

        assert response.status_code == 404
        assert response.json()["message"] == "Order not found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transaction_status(
        self, client: AsyncClient, session_factory: Any, mock_gateway: AsyncMock
    ) -> None:
        await insert_order(session_factory, "ORDER-1")

        response = await client.get("/payment/transactions/ORDER-1/status")

        assert response.status_code == 200
        assert response.json()["gatewayStatus"]["transaction_status"] == "pending"
        assert response.json()["order"]["id"] == "ORDER-1"


class TestCatalogApi:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sync_user(self, client: AsyncClient) -> None:
        created = await client.post("/auth/sync-user", json={"sub": "auth0|42"})
        existing = await client.post("/auth/sync-user", json={"sub": "auth0|42"})

        assert created.json()["isNewUser"] is True
        assert created.json()["user"]["role"] == "customer"
        assert existing.json()["isNewUser"] is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tags(self, client: AsyncClient) -> None:
        created = await client.post("/tags", json={"tags": "Rustic, Gold"})
        assert created.status_code == 201
        assert created.json()["message"] == "Successfully processed 2 tag(s)"

        listed = await client.get("/tags")
        assert [(t["name"], t["productCount"]) for t in listed.json()] == [
            ("floral", 1),
            ("gold", 0),
            ("rustic", 0),
        ]

        floral_id = listed.json()[0]["id"]
        detail = await client.get(f"/tags/{floral_id}")
        assert [p["id"] for p in detail.json()["products"]] == ["p1"]

        deleted = await client.delete(f"/tags/{floral_id}")
        assert deleted.json()["productsAffected"] == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_list_products(self, client: AsyncClient) -> None:
        created = await client.post(
            "/products",
            data={"name": "Elegant Navy", "price": "250000", "tags": "elegant"},
            files=[
                ("thumbnail", ("thumb.png", PNG, "image/png")),
                ("gallery", ("g1.png", PNG, "image/png")),
            ],
        )

        assert created.status_code == 201
        assert created.json()["thumbnail"].startswith(
            "https://project.supabase.co/storage/v1/object/public/products/thumbnails/"
        )
        assert len(created.json()["galleryUrls"]) == 1

        listed = await client.get("/products", params={"tag": "elegant"})
        assert [p["name"] for p in listed.json()] == ["Elegant Navy"]
        assert listed.json()[0]["orderCount"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_unknown_product(self, client: AsyncClient) -> None:
        response = await client.get("/products/missing")

        assert response.status_code == 404
        assert response.json()["message"] == "Product not found"


class TestMonitoringApi:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient) -> None:
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Welcome to we-invite API!"
        assert "X-Request-ID" in response.headers

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["database"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "orders_created_total" in response.text


class TestRun:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "app_env,debug,expected_reload",
        [
            ("development", True, True),
            ("development", False, False),
            ("production", True, False),
            ("Production", True, False),
        ],
    )
    def test_reload_only_outside_production(
        self,
        monkeypatch: pytest.MonkeyPatch,
        test_settings: Settings,
        app_env: str,
        debug: bool,
        expected_reload: bool,
    ) -> None:
        import uvicorn

        settings = test_settings.model_copy(update={"app_env": app_env, "debug": debug})
        calls: Dict[str, Any] = {}
        monkeypatch.setattr(main, "get_settings", lambda: settings)
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))

        main.run()

        assert calls["app"] == "weinvite.api.main:create_app"
        assert calls["factory"] is True
        assert calls["reload"] is expected_reload
