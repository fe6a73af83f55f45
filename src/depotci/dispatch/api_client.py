# dispatch/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urljoin


class APIError(Exception):
    """Raised when API requests fail."""
    pass


class APIClient:
    """HTTP client for the CI scheduler and review system APIs."""

    def __init__(self, base_url: str, token: Optional[str] = None):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., "https://ci.example.com")
            token: Optional value for the Authorization header
        """
        self.base_url = base_url.rstrip("/")
        self.token = token

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the API.

        Returns:
            Parsed JSON response as dictionary

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))

        req_headers = {
            "Content-Type": "application/json",
        }
        if self.token:
            req_headers["Authorization"] = self.token
        if headers:
            req_headers.update(headers)

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def trigger_build(self, project: str, payload: dict) -> dict:
        """Ask the scheduler to start a build of `project`."""
        return self._request("POST", f"/projects/{project}/builds", data=payload)

    def post_comment(self, commit: str, message: str, labels: Optional[dict] = None) -> dict:
        """Attach a review comment to `commit`."""
        data = {"commit": commit, "message": message}
        if labels:
            data["labels"] = labels
        return self._request("POST", "/comments", data=data)
