"""Async HTTP client for a remote configuration-management system."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ..errors import (
    AuthorizationError,
    GatewayError,
    GatewayTimeoutError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from ..models import (
    ComponentDescriptor,
    DeploymentDetails,
    DeploymentPackage,
    DeployOptions,
    PollResult,
)

logger = logging.getLogger(__name__)

# Deployment states reported by the remote system
SUCCEEDED = "Succeeded"
SUCCEEDED_PARTIAL = "SucceededPartial"
FAILED = "Failed"
CANCELED = "Canceled"
TERMINAL_STATUSES = frozenset({SUCCEEDED, SUCCEEDED_PARTIAL, FAILED, CANCELED})

DEFAULT_API_VERSION = "59.0"

SleepFunc = Callable[[float], Awaitable[Any]]


class HttpDeploymentGateway:
    """Deployment gateway speaking JSON over HTTP.

    Endpoints (relative to ``base_url``):

    - ``POST /deployments`` submits a package and returns ``{"id": ...}``.
    - ``GET /deployments/{id}`` returns status, ``done`` and components.
    - ``GET /components/{type}/{full_name}`` describes one component.

    Transport failures and error responses are translated into the error
    taxonomy so that the retry handler and circuit breakers can classify
    them.

    Usage::

        async with HttpDeploymentGateway("https://staging.example.com/api") as gateway:
            deployment_id = await gateway.deploy(package)
            result = await gateway.poll_status(deployment_id, max_polls=30, poll_interval=2.0)

    Args:
        base_url: Base URL of the target system's API.
        timeout: Request timeout in seconds.
        headers: Extra headers sent with every request.
        transport: Optional httpx transport (used by tests).
        sleep: Async sleep used between polls. Defaults to asyncio.sleep.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        *,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._sleep = sleep or asyncio.sleep

    async def __aenter__(self) -> HttpDeploymentGateway:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send an HTTP request and return the parsed JSON response.

        Raises:
            GatewayTimeoutError: If the request timed out.
            NetworkError: If the connection failed.
            RateLimitError: On 429.
            AuthorizationError: On 401/403.
            NotFoundError: On 404.
            ServerError: On 5xx.
            GatewayError: For any other non-2xx status code.
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"{method} {path} timed out") from e
        except httpx.ConnectError as e:
            raise NetworkError(f"Cannot connect to {self._base_url}: {e}", code="ECONNREFUSED") from e
        except httpx.NetworkError as e:
            raise NetworkError(f"Connection to {self._base_url} failed: {e}", code="ECONNRESET") from e

        status = response.status_code
        if status < 400:
            result: dict[str, Any] = response.json() if response.content else {}
            return result

        detail = self._extract_detail(response)
        if status == 429:
            raise RateLimitError(detail, retry_after=_retry_after(response))
        if status in (401, 403):
            raise AuthorizationError(status_code=status, message=detail)
        if status == 404:
            raise NotFoundError(message=detail)
        if status >= 500:
            raise ServerError(status_code=status, message=detail)
        raise GatewayError(status_code=status, message=detail)

    @staticmethod
    def _extract_detail(response: httpx.Response) -> str:
        """Pull ``detail``/``message`` from a JSON error body, else the raw text."""
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            for key in ("detail", "message", "error"):
                if key in body:
                    return str(body[key])
        return response.text

    # ------------------------------------------------------------------
    # DeploymentGateway
    # ------------------------------------------------------------------

    async def deploy(self, package: DeploymentPackage, options: DeployOptions | None = None) -> str:
        """Submit a package and return the remote deployment id."""
        options = options or DeployOptions()
        payload = {
            "package": package.to_dict(),
            "options": {
                "targetId": options.target_id,
                "rollback": options.rollback,
                "rollbackOnError": True,
                "singlePackage": True,
            },
        }
        body = await self._request("POST", "/deployments", json=payload)
        deployment_id = body.get("id")
        if not deployment_id:
            msg = "Deployment response did not include an id"
            raise GatewayError(status_code=502, message=msg)
        logger.info("Submitted deployment %s (%d components)", deployment_id, len(package.components()))
        return str(deployment_id)

    async def check_status(self, deployment_id: str) -> dict[str, Any]:
        """Fetch the raw status document of a deployment."""
        return await self._request("GET", f"/deployments/{deployment_id}")

    async def poll_status(
        self, deployment_id: str, max_polls: int, poll_interval: float
    ) -> PollResult:
        """Poll until the deployment is done or ``max_polls`` is reached.

        Only ``Succeeded`` counts as success. Running out of polls yields a
        failed, not-done result rather than an exception.
        """
        last_status = "Pending"
        for poll in range(1, max_polls + 1):
            info = await self.check_status(deployment_id)
            last_status = str(info.get("status", last_status))
            done = bool(info.get("done")) or last_status in TERMINAL_STATUSES
            logger.debug(
                "Deployment %s poll %d/%d: %s", deployment_id, poll, max_polls, last_status
            )
            if done:
                success = last_status == SUCCEEDED
                error_message = None
                if not success:
                    error_message = str(
                        info.get("errorMessage") or f"Deployment finished with status {last_status}"
                    )
                return PollResult(
                    success=success, status=last_status, done=True, error_message=error_message
                )
            if poll < max_polls:
                await self._sleep(poll_interval)

        logger.warning("Deployment %s still %s after %d polls", deployment_id, last_status, max_polls)
        return PollResult(
            success=False,
            status=last_status,
            done=False,
            error_message=f"Deployment {deployment_id} did not complete after {max_polls} polls",
        )

    async def describe_component(self, kind: str, name: str) -> dict[str, Any] | None:
        """Describe one component; None when the system does not know it."""
        try:
            return await self._request("GET", f"/components/{kind}/{name}")
        except NotFoundError:
            return None

    async def get_deployment_details(self, deployment_id: str) -> DeploymentDetails:
        """Status and component list of a deployment."""
        info = await self.check_status(deployment_id)
        components = tuple(
            ComponentDescriptor(
                component_type=str(item.get("componentType") or item.get("component_type")),
                full_name=str(item.get("fullName") or item.get("full_name")),
            )
            for item in info.get("components") or []
        )
        return DeploymentDetails(
            deployment_id=deployment_id,
            status=str(info.get("status", "Unknown")),
            components=components,
        )


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
