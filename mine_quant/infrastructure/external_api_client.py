"""
Infrastructure layer: compute and history service client with retry logic.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from mine_quant.config import settings
from mine_quant.domain.models import AnalysisBaseline
from mine_quant.infrastructure.api_constants import (
    APIConstants,
    BaselineSource,
    ComputeAPIEndpoints,
    HistoryAPIEndpoints,
)

logger = logging.getLogger(__name__)


class ExternalAPIError(Exception):
    """Raised when a compute or history service call fails."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BaselineUnavailableError(ExternalAPIError):
    """Raised when every baseline source failed for an analysis."""

    def __init__(self, analysis_id: str, failures: List[str]):
        self.analysis_id = analysis_id
        self.failures = failures
        message = f"Unable to load analysis {analysis_id}"
        if failures:
            message = f"{message} ({'; '.join(failures)})"
        super().__init__(message, status_code=502)


def _error_detail(response: httpx.Response) -> str:
    """Prefer the JSON ``detail``/``error`` field of an error response over its raw text."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error") or body.get("message")
        if isinstance(detail, str) and detail:
            return detail
    return response.text or response.reason_phrase


class AnalysisAPIClient:
    """
    Client for the detection compute service and the history service.
    Implements retry logic with exponential backoff on 5xx and transport errors.
    """

    def __init__(self):
        """Initialize the HTTP clients with configuration."""
        self.compute_base_url = settings.compute_api_base_url.rstrip("/")
        self.history_base_url = settings.history_api_base_url.rstrip("/")
        headers = {"accept": APIConstants.CONTENT_TYPE_JSON}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"

        self.compute_client = httpx.AsyncClient(
            base_url=self.compute_base_url,
            headers=headers,
            timeout=settings.request_timeout,
        )
        self.history_client = httpx.AsyncClient(
            base_url=self.history_base_url,
            headers=headers,
            timeout=settings.request_timeout,
        )

    async def __aenter__(self) -> "AnalysisAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self):
        """Close the HTTP clients."""
        await self.compute_client.aclose()
        await self.history_client.aclose()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
        reraise=True,
    )
    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        **kwargs
    ) -> httpx.Response:
        response = await client.request(method, endpoint, **kwargs)
        # Retry on server errors (5xx); client errors are returned as-is
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _make_request(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """
        Make an HTTP request with retry logic.

        Args:
            client: Service client to send through
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request

        Returns:
            Decoded JSON body (None for an empty body)

        Raises:
            ExternalAPIError: If the request fails after retries
        """
        try:
            response = await self._send(client, method, endpoint, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalAPIError(
                f"API request failed: {e.response.status_code} - {_error_detail(e.response)}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise ExternalAPIError(f"API request error: {str(e)}", status_code=503)

        if response.status_code >= 400:
            raise ExternalAPIError(
                f"API request failed: {response.status_code} - {_error_detail(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ExternalAPIError(f"Invalid JSON response from {method} {endpoint}")

    # ------------------------------------------------------------------
    # Baseline sources
    # ------------------------------------------------------------------

    async def get_analysis(self, analysis_id: str) -> Any:
        """Detection result from the compute service."""
        return await self._make_request(
            self.compute_client, "GET", ComputeAPIEndpoints.get_analysis(analysis_id)
        )

    async def get_proxy_analysis(self, analysis_id: str) -> Any:
        """Detection result through the history service proxy."""
        return await self._make_request(
            self.history_client, "GET", HistoryAPIEndpoints.get_proxy_analysis(analysis_id)
        )

    async def get_history_record(self, analysis_id: str, include_tile_images: bool = True) -> Any:
        """
        Stored analysis record.

        Args:
            analysis_id: Analysis ID
            include_tile_images: Ask the history service to embed tile imagery

        Returns:
            Record mapping with ``results`` and ``quantitativeAnalysis``
        """
        return await self._make_request(
            self.history_client,
            "GET",
            HistoryAPIEndpoints.get_record(analysis_id),
            params={APIConstants.INCLUDE_TILE_IMAGES: "true" if include_tile_images else "false"},
        )

    async def _stored_snapshot(self, analysis_id: str) -> Optional[Dict[str, Any]]:
        try:
            record = await self.get_history_record(analysis_id, include_tile_images=False)
        except ExternalAPIError as e:
            logger.debug(f"No stored record for {analysis_id}: {e.message}")
            return None
        if not isinstance(record, dict):
            return None
        stored = record.get("quantitativeAnalysis")
        return stored if isinstance(stored, dict) else None

    @staticmethod
    def _unwrap_results(data: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(data, dict):
            return None
        nested = data.get("results")
        if isinstance(nested, dict) and "tiles" not in data:
            return nested
        return data

    async def fetch_baseline(self, analysis_id: str) -> AnalysisBaseline:
        """
        Load the detection baseline through the fallback chain.

        Order: compute service, history proxy, stored history record. The
        first source that answers wins. When a live source wins, the stored
        record is still consulted for a persisted quantitative snapshot.

        Args:
            analysis_id: Analysis ID

        Returns:
            AnalysisBaseline

        Raises:
            BaselineUnavailableError: If all sources fail
        """
        failures: List[str] = []
        live_sources = (
            (BaselineSource.COMPUTE, self.get_analysis),
            (BaselineSource.PROXY, self.get_proxy_analysis),
        )
        for source, loader in live_sources:
            try:
                data = await loader(analysis_id)
            except ExternalAPIError as e:
                logger.warning(f"Baseline source '{source}' failed for {analysis_id}: {e.message}")
                failures.append(f"{source}: {e.message}")
                continue
            results = self._unwrap_results(data)
            if results is None:
                failures.append(f"{source}: unexpected response body")
                continue
            return AnalysisBaseline(
                analysis_id=analysis_id,
                results=results,
                quantitative=await self._stored_snapshot(analysis_id),
                source=source,
            )

        try:
            record = await self.get_history_record(analysis_id)
        except ExternalAPIError as e:
            logger.warning(f"Baseline source '{BaselineSource.HISTORY}' failed for {analysis_id}: {e.message}")
            failures.append(f"{BaselineSource.HISTORY}: {e.message}")
        else:
            if isinstance(record, dict):
                results = record.get("results")
                stored = record.get("quantitativeAnalysis")
                if isinstance(results, dict) or isinstance(stored, dict):
                    return AnalysisBaseline(
                        analysis_id=analysis_id,
                        results=results if isinstance(results, dict) else None,
                        quantitative=stored if isinstance(stored, dict) else None,
                        source=BaselineSource.HISTORY,
                    )
            failures.append(f"{BaselineSource.HISTORY}: record has no results")

        raise BaselineUnavailableError(analysis_id, failures)

    # ------------------------------------------------------------------
    # Quantitative compute and persistence
    # ------------------------------------------------------------------

    async def run_quantitative(
        self,
        analysis_id: str,
        results: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Run the volumetric/DEM computation for an analysis.

        Args:
            analysis_id: Analysis ID
            results: Detection result the blocks are taken from

        Returns:
            Raw compute response

        Raises:
            ExternalAPIError: If the compute call fails or returns no body
        """
        data = await self._make_request(
            self.compute_client,
            "POST",
            ComputeAPIEndpoints.get_quantitative(analysis_id),
            json={"results": results},
            timeout=settings.compute_timeout,
        )
        if not isinstance(data, dict):
            raise ExternalAPIError(f"Quantitative compute for {analysis_id} returned no result")
        return data

    async def save_quantitative(self, analysis_id: str, payload: Dict[str, Any]) -> Any:
        """
        Store a quantitative snapshot on the analysis record.

        Args:
            analysis_id: Analysis ID
            payload: camelCase snapshot payload

        Returns:
            History service response body
        """
        return await self._make_request(
            self.history_client,
            "PUT",
            HistoryAPIEndpoints.get_quantitative(analysis_id),
            json=payload,
        )


# Singleton instance
_api_client: Optional[AnalysisAPIClient] = None


def get_api_client() -> AnalysisAPIClient:
    """
    Get or create the singleton API client instance.

    Returns:
        AnalysisAPIClient instance
    """
    global _api_client
    if _api_client is None:
        _api_client = AnalysisAPIClient()
    return _api_client
