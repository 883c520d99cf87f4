"""API route tests for training, generation, credits and uploads.

Uses httpx AsyncClient against the FastAPI app with the in-memory executor
and a stub S3 client injected into app.state.
"""

from uuid import uuid4

import pytest

from photoai.services.exceptions import (
    ExecutorTimeoutError,
    PermanentExecutorError,
    TransientExecutorError,
)

OWNER = {"X-User-Id": "owner-1"}

TRAINING_BODY = {
    "name": "alex",
    "type": "Man",
    "age": 30,
    "ethnicity": "South_Asian",
    "eyeColor": "Brown",
    "bald": False,
    "zipUrl": "https://bucket.test/uploads/owner-1/images.zip",
}


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_missing_identity_is_unauthorized(client):
    response = await client.get("/api/credits")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_credits_balance(client, grant):
    await grant("owner-1", 7)

    response = await client.get("/api/credits", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == {"owner_id": "owner-1", "balance": 7}


class TestTrainingRoutes:
    @pytest.mark.asyncio
    async def test_submit_training(self, client, executor):
        response = await client.post("/api/ai/training", json=TRAINING_BODY, headers=OWNER)

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["tracking_id"] == executor.training_dispatches[0]["tracking_id"]

        model = await client.get(f"/api/ai/models/{data['model_id']}", headers=OWNER)
        assert model.status_code == 200
        assert model.json()["status"] == "pending"
        assert model.json()["credits_charged"] == 0

    @pytest.mark.asyncio
    async def test_invalid_attribute_rejected(self, client, executor):
        body = {**TRAINING_BODY, "ethnicity": "Martian"}

        response = await client.post("/api/ai/training", json=body, headers=OWNER)

        assert response.status_code == 422
        assert executor.training_dispatches == []

    @pytest.mark.asyncio
    async def test_executor_unavailable_is_retryable(self, client, executor):
        executor.training_failure = TransientExecutorError("timed out")

        response = await client.post("/api/ai/training", json=TRAINING_BODY, headers=OWNER)

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["code"] == "executor_unavailable"
        assert detail["retryable"] is True

    @pytest.mark.asyncio
    async def test_executor_rejection_is_bad_gateway(self, client, executor):
        executor.training_failure = PermanentExecutorError("invalid destination")

        response = await client.post("/api/ai/training", json=TRAINING_BODY, headers=OWNER)

        assert response.status_code == 502
        assert response.json()["detail"]["retryable"] is False

    @pytest.mark.asyncio
    async def test_other_owners_model_is_hidden(self, client, trained_model):
        model = await trained_model(owner_id="owner-2")

        response = await client.get(f"/api/ai/models/{model.id}", headers=OWNER)

        assert response.status_code == 404


class TestGenerationRoutes:
    @pytest.mark.asyncio
    async def test_generate_image(self, client, trained_model, grant, balance_of):
        model = await trained_model()
        await grant("owner-1", 2)

        response = await client.post(
            "/api/ai/generate",
            json={"prompt": "a portrait on a beach", "modelId": str(model.id)},
            headers=OWNER,
        )

        assert response.status_code == 202
        image_id = response.json()["image_id"]
        assert await balance_of("owner-1") == 1

        image = await client.get(f"/api/ai/images/{image_id}", headers=OWNER)
        assert image.status_code == 200
        assert image.json()["status"] == "pending"
        assert image.json()["image_url"] is None

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, client, trained_model):
        model = await trained_model()

        response = await client.post(
            "/api/ai/generate",
            json={"prompt": "a portrait", "model_id": str(model.id)},
            headers=OWNER,
        )

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["code"] == "insufficient_credits"
        assert detail["detail"] == {"required": 1, "available": 0}

    @pytest.mark.asyncio
    async def test_empty_prompt(self, client, trained_model, grant):
        model = await trained_model()
        await grant("owner-1", 2)

        response = await client.post(
            "/api/ai/generate", json={"prompt": "  ", "model_id": str(model.id)}, headers=OWNER
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_model(self, client, grant):
        await grant("owner-1", 2)

        response = await client.post(
            "/api/ai/generate", json={"prompt": "a portrait", "model_id": str(uuid4())}, headers=OWNER
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_dispatch_failure_refunds(self, client, executor, trained_model, grant, balance_of):
        model = await trained_model()
        await grant("owner-1", 2)
        executor.generation_failure = TransientExecutorError("timed out")

        response = await client.post(
            "/api/ai/generate", json={"prompt": "a portrait", "model_id": str(model.id)}, headers=OWNER
        )

        assert response.status_code == 503
        assert await balance_of("owner-1") == 2

    @pytest.mark.asyncio
    async def test_dispatch_timeout_is_accepted_without_tracking_id(
        self, client, executor, trained_model, grant, balance_of
    ):
        model = await trained_model()
        await grant("owner-1", 2)
        executor.generation_failure = ExecutorTimeoutError("Network timeout")

        response = await client.post(
            "/api/ai/generate", json={"prompt": "a portrait", "model_id": str(model.id)}, headers=OWNER
        )

        assert response.status_code == 202
        assert response.json()["tracking_id"] is None
        assert response.json()["status"] == "pending"
        assert await balance_of("owner-1") == 1

    @pytest.mark.asyncio
    async def test_generate_pack(self, client, executor, trained_model, make_pack, grant, balance_of):
        model = await trained_model()
        pack = await make_pack(["first", "second", "third"])
        await grant("owner-1", 3)
        executor.generation_failures["third"] = TransientExecutorError("rate limited")

        response = await client.post(
            "/api/pack/generate",
            json={"modelId": str(model.id), "packId": str(pack.id)},
            headers=OWNER,
        )

        assert response.status_code == 202
        data = response.json()
        assert len(data["images"]) == 2
        assert data["failed_count"] == 1
        assert await balance_of("owner-1") == 1

    @pytest.mark.asyncio
    async def test_other_owners_image_is_hidden(self, client, trained_model, grant, submitter):
        model = await trained_model(owner_id="owner-2")
        await grant("owner-2", 1)
        job = await submitter.submit_generation("owner-2", model.id, "a portrait")

        response = await client.get(f"/api/ai/images/{job.id}", headers=OWNER)

        assert response.status_code == 404


class TestUploadRoutes:
    @pytest.mark.asyncio
    async def test_presigned_url(self, client, s3_client):
        response = await client.get(
            "/api/uploads/presigned-url",
            params={"filename": "photos.zip", "contentType": "application/zip"},
            headers=OWNER,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["key"].startswith("uploads/owner-1/")
        assert data["key"].endswith("_photos.zip")
        assert data["expires_in"] == 3600
        assert s3_client.calls[0]["params"]["ContentType"] == "application/zip"

    @pytest.mark.asyncio
    async def test_presign_failure_is_retryable(self, client, s3_client):
        from botocore.exceptions import EndpointConnectionError

        s3_client.error = EndpointConnectionError(endpoint_url="https://s3.test")

        response = await client.get("/api/uploads/presigned-url", headers=OWNER)

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "storage_unavailable"
