"""
Storyboard Forge - Remote Job Client
Drives one image generation request against the remote API.

Some requests finish synchronously, others return a job handle:
submit -> (poll until done) -> fetch output -> data URI.
"""
import base64
import logging
from dataclasses import dataclass

import requests

from errors import AuthError, CancelledError, ProtocolError, RemoteError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 3000

# Statuses a polled job can end in besides "done"
FAILED_STATUSES = ("failed", "error")


@dataclass
class PollState:
    job_id: str
    poll_url: str
    poll_interval_ms: int


# =============================================================================
# OUTPUT URL EXTRACTION
# =============================================================================

def _first_output_url(outputs):
    if isinstance(outputs, list) and outputs and isinstance(outputs[0], dict):
        return outputs[0].get("url") or None
    return None


def _url_from_outputs(data):
    return _first_output_url(data.get("outputs"))


def _url_from_result_outputs(data):
    result = data.get("result")
    if isinstance(result, dict):
        return _first_output_url(result.get("outputs"))
    return None


# Tried in order, first hit wins
OUTPUT_URL_STRATEGIES = (_url_from_outputs, _url_from_result_outputs)


def extract_output_url(data):
    """Return the output URL from a done response, or None if no known shape matches."""
    for strategy in OUTPUT_URL_STRATEGIES:
        url = strategy(data)
        if url:
            return url
    return None


def to_data_uri(content, content_type=None):
    """Encode raw bytes as a data URI."""
    mime = (content_type or "image/png").split(";")[0].strip() or "image/png"
    b64 = base64.b64encode(content).decode("utf-8")
    return f"data:{mime};base64,{b64}"


# =============================================================================
# CLIENT
# =============================================================================

class RemoteJobClient:
    """
    Runs generation requests to completion under a CancellationToken.

    Args:
        api_url: Submit endpoint; the default poll URL is derived from it
        api_key: Sent as the x-api-key header
        request_timeout: Upper bound in seconds for any single HTTP call
        default_poll_interval_ms: Used when the pending response does not say
        session: Optional requests.Session (or compatible object)
    """

    def __init__(self, api_url, api_key="", request_timeout=60,
                 default_poll_interval_ms=DEFAULT_POLL_INTERVAL_MS, session=None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.request_timeout = request_timeout
        self.default_poll_interval_ms = default_poll_interval_ms
        self.session = session or requests.Session()

    def _headers(self, json_body=False):
        headers = {"x-api-key": self.api_key}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _timeout(self, token):
        remaining = token.remaining()
        if remaining is None:
            return self.request_timeout
        # requests treats 0 as "no wait at all", keep a tiny floor
        return max(0.1, min(self.request_timeout, remaining))

    def _request(self, method, url, token, **kwargs):
        token.raise_if_cancelled()
        try:
            return self.session.request(method, url, timeout=self._timeout(token), **kwargs)
        except requests.RequestException as e:
            if token.is_cancelled():
                raise CancelledError(token.reason) from e
            raise RemoteError(f"Network error: {e}") from e

    def _check_status(self, response, what="API Error"):
        if response.status_code in (401, 403):
            raise AuthError(f"Authentication failed: API key verification error (HTTP {response.status_code})")
        if not 200 <= response.status_code < 300:
            raise RemoteError(f"{what} {response.status_code}", status_code=response.status_code)

    @staticmethod
    def _json(response):
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"Response is not JSON: {response.text[:200]}") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected API response format: {data!r:.200}")
        return data

    def submit(self, payload, token):
        """POST the generation request. Returns the decoded JSON body."""
        response = self._request("POST", self.api_url, token, headers=self._headers(json_body=True), json=payload)
        self._check_status(response)
        return self._json(response)

    def poll_state_from(self, data):
        """Build PollState from a pending submit response, or None if it is not a job handle."""
        job_id = data.get("jobId")
        if data.get("status") != "pending" and not job_id:
            return None
        if not job_id:
            raise ProtocolError("Pending response without jobId")
        interval = data.get("pollIntervalMs") or self.default_poll_interval_ms
        try:
            interval = int(interval)
        except (TypeError, ValueError):
            raise ProtocolError(f"Invalid pollIntervalMs: {interval!r}") from None
        if interval < 0:
            raise ProtocolError(f"Invalid pollIntervalMs: {interval!r}")
        return PollState(
            job_id=job_id,
            poll_url=data.get("statusUrl") or f"{self.api_url}/jobs/{job_id}",
            poll_interval_ms=interval,
        )

    def wait_for_output(self, poll_state, token):
        """
        Poll until the job is done and return its output URL.

        Bounded only by the token: there is no attempt cap.
        """
        interval = poll_state.poll_interval_ms / 1000.0
        polls = 0
        while True:
            token.raise_if_cancelled()
            token.wait(interval)
            token.raise_if_cancelled()

            response = self._request("GET", poll_state.poll_url, token, headers=self._headers())
            polls += 1
            self._check_status(response, what="Polling Error")
            data = self._json(response)
            status = data.get("status")

            if status == "done":
                url = extract_output_url(data)
                if not url:
                    raise ProtocolError("Job marked done but no output URL found.")
                logger.info("Job %s done after %d poll(s)", poll_state.job_id, polls)
                return url
            if status in FAILED_STATUSES:
                raise RemoteError(f"Job Failed: {data.get('message')}")
            logger.debug("Job %s still %s (poll %d)", poll_state.job_id, status, polls)

    def fetch_artifact(self, url, token):
        """Download the generated image and return it as a data URI."""
        response = self._request("GET", url, token)
        self._check_status(response, what="Output fetch failed")
        return to_data_uri(response.content, response.headers.get("Content-Type"))

    def run(self, payload, token):
        """
        Full pipeline: submit -> poll (if pending) -> fetch.

        Returns:
            The generated image as a data URI
        Raises:
            AuthError, RemoteError, ProtocolError, CancelledError
        """
        data = self.submit(payload, token)

        url = extract_output_url(data) if data.get("status", "done") == "done" else None
        if not url:
            poll_state = self.poll_state_from(data)
            if poll_state is None:
                raise ProtocolError("Unexpected API response format.")
            logger.info("Job %s pending, polling %s every %sms",
                        poll_state.job_id, poll_state.poll_url, poll_state.poll_interval_ms)
            url = self.wait_for_output(poll_state, token)

        token.raise_if_cancelled()
        return self.fetch_artifact(url, token)
