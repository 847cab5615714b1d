"""HTTP client for the downstream code-risk analysis service."""

import json
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx
from aws_lambda_powertools import Logger

from scan.models import AnalysisResult, Decision
from shared.exceptions import (
    AnalysisTimeoutError,
    PaymentRequiredError,
    RemoteError,
    TransportError,
)
from shared.scan_limits import ScanLimits

logger = Logger(child=True)

SHARED_SECRET_HEADER = "x-shared-secret"
ANALYSIS_MODE = "basic"


def normalize_result(payload: Any) -> AnalysisResult:
    """Extract the verdict from an analysis response body.

    Expects {"result": {"decision", "overallRisk", "reason", "summary",
    "findings"}}; anything absent or malformed falls back to defaults.

    Args:
        payload: Decoded JSON body (any shape)

    Returns:
        AnalysisResult with UNKNOWN/"Unknown" defaults
    """
    result = payload.get("result") if isinstance(payload, dict) else None
    if not isinstance(result, dict):
        return AnalysisResult()

    raw_decision = result.get("decision")
    try:
        decision = Decision(str(raw_decision).strip().upper())
    except ValueError:
        decision = Decision.UNKNOWN

    risk = result.get("overallRisk")
    findings = result.get("findings")

    return AnalysisResult(
        decision=decision,
        risk=str(risk) if risk else "Unknown",
        reason=result.get("reason") or None,
        summary=result.get("summary") or None,
        findings=findings if isinstance(findings, list) else [],
    )


class AnalysisClient:
    """Wrapper for the analysis service with a hard overall deadline per call."""

    def __init__(
        self,
        base_url: str,
        shared_secret: str,
        analyze_path: str = "/analyze",
        health_path: str = "/health",
        timeout_ms: int = ScanLimits.REQUEST_TIMEOUT_MS,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize analysis client.

        Args:
            base_url: Service root, e.g. https://analyzer.example.com
            shared_secret: Trusted secret sent on every analyze call
            analyze_path: Path of the analyze endpoint
            health_path: Path of the liveness endpoint
            timeout_ms: Overall deadline for each call. Also bounds each
                connect, read, write and pool wait.
            transport: Optional httpx transport (for testing)
        """
        self.base_url = base_url.rstrip("/")
        self.analyze_path = analyze_path
        self.health_path = health_path
        self.timeout_ms = timeout_ms
        self._shared_secret = shared_secret
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_ms / 1000),
            transport=transport,
        )
        self._executor = ThreadPoolExecutor(thread_name_prefix="analysis")

    def analyze(self, text: str) -> AnalysisResult:
        """Submit text for analysis.

        The whole exchange, including reading the response body, runs on a
        worker thread against one deadline of timeout_ms. The caller stops
        waiting when the deadline passes; the worker streams the body and
        gives up at the first chunk read after it.

        Args:
            text: Submitted code or prose

        Returns:
            Normalized AnalysisResult

        Raises:
            AnalysisTimeoutError: Call exceeded the timeout and was aborted
            TransportError: Service unreachable or request not encodable
            PaymentRequiredError: Service answered 402
            RemoteError: Service answered any other non-2xx status
        """
        url = f"{self.base_url}{self.analyze_path}"

        try:
            request = self.client.build_request(
                "POST",
                url,
                json={"code": text, "mode": ANALYSIS_MODE},
                headers={
                    "Content-Type": "application/json",
                    SHARED_SECRET_HEADER: self._shared_secret,
                },
            )
        except (httpx.InvalidURL, ValueError) as e:
            # Includes UnicodeEncodeError for text holding lone surrogates
            logger.warning(
                "Analysis request could not be built", extra={"url": url, "error": str(e)}
            )
            raise TransportError(f"Analysis request could not be built: {e}") from e

        deadline = time.monotonic() + self.timeout_ms / 1000
        future = self._executor.submit(self._exchange, request, deadline)
        try:
            status_code, body = future.result(timeout=max(0.0, deadline - time.monotonic()))
        except (TimeoutError, httpx.TimeoutException) as e:
            future.cancel()
            logger.warning(
                "Analysis request timed out",
                extra={"url": url, "timeout_ms": self.timeout_ms},
            )
            raise AnalysisTimeoutError(
                f"Analysis service did not respond within {self.timeout_ms} ms"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Analysis request failed", extra={"url": url, "error": str(e)})
            raise TransportError(f"Analysis service unreachable: {e}") from e

        if status_code == 402:
            logger.error(
                "Analysis service rejected shared secret",
                extra={"url": url, "status_code": 402},
            )
            raise PaymentRequiredError()

        if not 200 <= status_code < 300:
            snippet = body.decode("utf-8", errors="replace")[: ScanLimits.ERROR_BODY_LIMIT]
            logger.error(
                "Analysis service error",
                extra={"url": url, "status_code": status_code, "body": snippet},
            )
            raise RemoteError(status_code, snippet)

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Analysis response was not JSON", extra={"url": url})
            payload = None

        result = normalize_result(payload)
        logger.info(
            "Analysis complete",
            extra={"decision": result.decision.value, "risk": result.risk},
        )
        return result

    def _exchange(self, request: httpx.Request, deadline: float) -> tuple[int, bytes]:
        """Send request and stream the body until done or past deadline."""
        response = self.client.send(request, stream=True)
        try:
            chunks = []
            for chunk in response.iter_bytes():
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout("Overall deadline exceeded", request=request)
                chunks.append(chunk)
            return response.status_code, b"".join(chunks)
        finally:
            response.close()

    def health(self) -> bool:
        """Check the liveness endpoint.

        Returns:
            True if the service answered 2xx
        """
        url = f"{self.base_url}{self.health_path}"
        try:
            response = self.client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Health check failed", extra={"url": url, "error": str(e)})
            return False
        if not response.is_success:
            logger.warning(
                "Health check unhealthy",
                extra={"url": url, "status_code": response.status_code},
            )
        return response.is_success

    def close(self) -> None:
        """Release pooled connections and the worker threads."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.client.close()
