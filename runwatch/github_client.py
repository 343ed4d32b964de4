from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from .schemas import Job, Run
from .settings import settings

log = logging.getLogger(__name__)


class GitHubError(Exception):
    pass


class RequestFailed(GitHubError):
    """Any provider failure the caller should not retry."""


class RateLimited(GitHubError):
    def __init__(self, reset_at: float, status_code: int) -> None:
        super().__init__(f"rate limited (HTTP {status_code}), resets at {reset_at:.0f}")
        self.reset_at = reset_at
        self.status_code = status_code


class ProviderClient(Protocol):
    def list_runs(self, page: int, per_page: int) -> List[Run]: ...
    def get_run(self, run_id: int) -> Run: ...
    def get_jobs(self, run_id: int) -> List[Job]: ...


class GitHubClient:
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not token:
            raise RuntimeError("Missing GitHub access token")
        self.owner = owner
        self.repo = repo
        self._token = token
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._base = str(settings.github.get("api_url", "https://api.github.com")).rstrip("/")
        self._timeout = int(settings.github.get("request_timeout_s", 30))
        self._max_attempts = int(settings.retries.get("max_attempts", 5))
        self._reset_margin_s = float(settings.retries.get("reset_margin_s", 1.0))
        self._fallback_wait_s = float(settings.retries.get("fallback_wait_s", 60.0))

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": str(settings.github.get("api_version", "2022-11-28")),
            "Authorization": f"Bearer {self._token}",
        }

    def _repo_url(self, suffix: str) -> str:
        return f"{self._base}/repos/{self.owner}/{self.repo}/{suffix}"

    # Public calls

    def list_runs(self, page: int, per_page: int) -> List[Run]:
        data = self._get_json(self._repo_url("actions/runs"), params={"page": page, "per_page": per_page})
        return self._parse_list(data, "workflow_runs", Run)

    def get_run(self, run_id: int) -> Run:
        data = self._get_json(self._repo_url(f"actions/runs/{run_id}"))
        try:
            return Run.model_validate(data)
        except ValidationError as e:
            raise RequestFailed(f"Malformed run payload for {run_id}: {e}") from e

    def get_jobs(self, run_id: int) -> List[Job]:
        data = self._get_json(self._repo_url(f"actions/runs/{run_id}/jobs"))
        return self._parse_list(data, "jobs", Job)

    # Transport

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait_for_reset,
            retry=retry_if_exception_type(RateLimited),
            sleep=self._sleep,
        )
        try:
            return retrying(self._get_once, url, params)
        except RateLimited as e:
            raise RequestFailed(f"Gave up after {self._max_attempts} attempts: {e}") from e

    def _get_once(self, url: str, params: Optional[Dict[str, Any]]) -> Any:
        try:
            resp = self._session.get(url, headers=self._headers(), params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise RequestFailed(f"{type(e).__name__}: {e}") from e

        if self._is_rate_limited(resp):
            reset_at = self._reset_hint(resp)
            log.warning("GitHub rate limit hit (HTTP %s), waiting until %.0f", resp.status_code, reset_at)
            raise RateLimited(reset_at, resp.status_code)
        if resp.status_code != 200:
            raise RequestFailed(f"API Error: {resp.status_code} {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise RequestFailed(f"Invalid JSON from {url}: {e}") from e

    @staticmethod
    def _is_rate_limited(resp) -> bool:
        if resp.status_code == 429:
            return True
        if resp.status_code != 403:
            return False
        return resp.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in resp.headers

    def _reset_hint(self, resp) -> float:
        now = self._clock()
        retry_after = resp.headers.get("retry-after")
        if retry_after is not None:
            try:
                return now + float(retry_after)
            except ValueError:
                pass
        reset = resp.headers.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return float(reset)
            except ValueError:
                pass
        return now + self._fallback_wait_s

    def _wait_for_reset(self, retry_state) -> float:
        exc = retry_state.outcome.exception()
        if not isinstance(exc, RateLimited):
            return 0.0
        return max(0.0, exc.reset_at - self._clock()) + self._reset_margin_s

    @staticmethod
    def _parse_list(data: Any, key: str, model):
        if not isinstance(data, dict):
            raise RequestFailed(f"Expected an object with '{key}', got {type(data).__name__}")
        items = data.get(key) or []
        try:
            return [model.model_validate(item) for item in items]
        except ValidationError as e:
            raise RequestFailed(f"Malformed '{key}' payload: {e}") from e
