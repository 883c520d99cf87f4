"""Replicate-backed executor with error classification.

Trainings and predictions are created asynchronously with a webhook pointing
back at this service; fetch_result polls the same objects for the pending
sweep. The Replicate SDK is synchronous, so every call runs in a worker
thread with a bounded timeout.

A timed-out call keeps running in its thread, so Replicate may still accept a
dispatch after ExecutorTimeoutError was raised. Callback URLs carry the local
job id (?job_id=...) so such a job is still matched when its callback arrives.
"""

import asyncio
from typing import Any, Callable, TypeVar
from uuid import UUID

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from photoai.models.job import JobKind
from photoai.services.exceptions import (
    ExecutorError,
    ExecutorTimeoutError,
    PermanentExecutorError,
    TransientExecutorError,
)
from photoai.services.executor.base import DispatchResult, ExecutorResult

logger = structlog.get_logger()

T = TypeVar("T")


def classify_error(exception: Exception) -> ExecutorError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ExecutorError subclass instance

    Classification rules:
        - Connect / pool timeouts → TransientExecutorError (request never sent)
        - Other client-side timeouts → ExecutorTimeoutError (request may have been accepted)
        - Timeouts reported by the provider → TransientExecutorError
        - 429 (rate limit) → TransientExecutorError
        - 503 (service unavailable) → TransientExecutorError
        - 401/403 (authentication) → PermanentExecutorError
        - Content policy violations → PermanentExecutorError
        - Connection errors (socket or httpx transport) → TransientExecutorError
        - Other errors → PermanentExecutorError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if isinstance(exception, (httpx.ConnectTimeout, httpx.PoolTimeout)):
        # The request never left this process
        return TransientExecutorError(f"Connection timeout: {error_message}")

    if isinstance(exception, (TimeoutError, httpx.TimeoutException)):
        return ExecutorTimeoutError(f"Network timeout: {error_message}")

    if "timeout" in error_message_lower or "timed out" in error_message_lower:
        return TransientExecutorError(f"Provider timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return TransientExecutorError(f"Rate limit exceeded: {error_message}")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return TransientExecutorError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentExecutorError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return PermanentExecutorError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return TransientExecutorError(f"Connection error: {error_message}")

    return PermanentExecutorError(f"Permanent error: {error_message}")


def webhook_url_for(base_url: str, job_id: UUID) -> str:
    """Append the local job id to a callback URL."""
    return str(httpx.URL(base_url).copy_add_param("job_id", str(job_id)))


def _output_to_payload(output: Any) -> dict[str, Any] | None:
    if output is None:
        return None
    if isinstance(output, list):
        return {"output": [str(item) for item in output]}
    if isinstance(output, dict):
        return {"output": output}
    return {"output": str(output)}


class ReplicateExecutor:
    """Executor implementation on top of the Replicate API."""

    def __init__(
        self,
        api_token: str,
        training_model: str,
        training_version: str,
        training_destination: str,
        generation_model: str,
        preview_prompt: str,
        training_webhook_url: str,
        generation_webhook_url: str,
        timeout_seconds: float = 30.0,
    ):
        """Initialize executor.

        Args:
            api_token: Replicate API authentication token
            training_model: Trainer model identifier (owner/name)
            training_version: Trainer version id
            training_destination: Model (owner/name) that receives trained versions
            generation_model: LoRA-capable generation model identifier
            preview_prompt: Prompt used for the synchronous preview render
            training_webhook_url: Callback URL for completed trainings
            generation_webhook_url: Callback URL for completed predictions
            timeout_seconds: Upper bound for every provider call
        """
        self.api_token = api_token
        self.client = replicate.Client(api_token=api_token)
        self.training_model = training_model
        self.training_version = training_version
        self.training_destination = training_destination
        self.generation_model = generation_model
        self.preview_prompt = preview_prompt
        self.training_webhook_url = training_webhook_url
        self.generation_webhook_url = generation_webhook_url
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "ReplicateExecutor":
        return cls(
            api_token=settings.replicate_api_token,
            training_model=settings.replicate_training_model,
            training_version=settings.replicate_training_version,
            training_destination=settings.replicate_training_destination,
            generation_model=settings.replicate_generation_model,
            preview_prompt=settings.preview_prompt,
            training_webhook_url=settings.training_webhook_url,
            generation_webhook_url=settings.generation_webhook_url,
            timeout_seconds=settings.executor_timeout_seconds,
        )

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        """Run a blocking SDK call in a thread with timeout and error classification."""
        if not self.api_token:
            raise PermanentExecutorError("REPLICATE_API_TOKEN not configured")

        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout_seconds)
        except (ReplicateAPIError, httpx.TransportError, OSError, TimeoutError) as e:
            classified = classify_error(e)
            logger.warning(
                "executor.call_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                classified_as=type(classified).__name__,
            )
            raise classified from e
        except ExecutorError:
            raise
        except Exception as e:
            # Unexpected errors - treat as permanent to avoid infinite retries
            raise PermanentExecutorError(f"Unexpected error during {operation}: {e}") from e

    async def dispatch_training(self, zip_url: str, name: str, job_id: UUID) -> DispatchResult:
        """Create a LoRA training on Replicate.

        The model name doubles as the trigger word, matching how prompts
        reference the trained subject. The callback URL carries job_id.
        """

        def _create() -> Any:
            return self.client.trainings.create(
                model=self.training_model,
                version=self.training_version,
                input={"input_images": zip_url, "trigger_word": name},
                destination=self.training_destination,
                webhook=webhook_url_for(self.training_webhook_url, job_id),
                webhook_events_filter=["completed"],
            )

        training = await self._call("dispatch_training", _create)
        logger.info("executor.training_dispatched", tracking_id=training.id, job_id=str(job_id))
        return DispatchResult(tracking_id=training.id)

    async def dispatch_generation(
        self, prompt: str, tensor_path: str, job_id: UUID
    ) -> DispatchResult:
        """Create an asynchronous prediction with the trained LoRA weights."""

        def _create() -> Any:
            return self.client.predictions.create(
                model=self.generation_model,
                input={"prompt": prompt, "lora_weights": tensor_path},
                webhook=webhook_url_for(self.generation_webhook_url, job_id),
                webhook_events_filter=["completed"],
            )

        prediction = await self._call("dispatch_generation", _create)
        logger.info(
            "executor.generation_dispatched", tracking_id=prediction.id, job_id=str(job_id)
        )
        return DispatchResult(tracking_id=prediction.id)

    async def fetch_result(self, tracking_id: str, kind: JobKind) -> ExecutorResult:
        """Poll a training or prediction by id."""

        def _get() -> Any:
            if kind == JobKind.TRAINING:
                return self.client.trainings.get(tracking_id)
            return self.client.predictions.get(tracking_id)

        job = await self._call("fetch_result", _get)
        error = str(job.error) if getattr(job, "error", None) else None
        return ExecutorResult(
            status=job.status,
            payload=_output_to_payload(getattr(job, "output", None)),
            error=error,
        )

    async def generate_preview(self, tensor_path: str) -> str:
        """Render one preview image synchronously and return its URL.

        Raises:
            PermanentExecutorError: If the model returned no usable output
        """

        def _run() -> Any:
            return self.client.run(
                self.generation_model,
                input={"prompt": self.preview_prompt, "lora_weights": tensor_path},
            )

        output = await self._call("generate_preview", _run)

        # Extract URL from output (format varies by model)
        if isinstance(output, list) and len(output) > 0:
            return str(output[0])
        if isinstance(output, str) and output:
            return output
        raise PermanentExecutorError(f"Unexpected output format from Replicate: {type(output)}")
