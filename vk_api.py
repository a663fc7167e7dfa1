#!/usr/bin/env python3
"""
VK API client: group resolution and paginated comment batches.
"""

import logging
import threading
from typing import Any, Iterable, List, Optional, Tuple

import requests

from config_loader import ConfigLoader
from errors import RemoteFatalError, RemoteRateLimitError, TransientTransportError
from rate_governor import RateGovernor
from vk_records import parse_page

logger = logging.getLogger(__name__)

TRANSIENT_STATUS = {429, 500, 502, 503, 504}


class VkApiClient:
    def __init__(
        self,
        config_loader: ConfigLoader,
        access_token: str,
        governor: RateGovernor,
        stop_event: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config_loader = config_loader
        self.access_token = access_token
        self.governor = governor
        self.stop_event = stop_event

        api = config_loader.get("vk.api", {})
        self.base_url = str(api.get("base_url", "https://api.vk.com/method")).rstrip("/")
        self.version = str(api.get("version", "5.122"))
        self.comments_method = api.get("comments_method", "execute.getComments")
        self.resolve_method = api.get("resolve_method", "groups.getById")

        settings = config_loader.get("vk.settings", {})
        self.timeout = settings.get("timeout", 15)
        self.rate_limit_codes = set(settings.get("rate_limit_codes", [6, 29]))

        self.session = session or requests.Session()
        self.setup_session()

    def setup_session(self) -> None:
        self.session.headers.update({
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
        })
        proxy_settings = self.config_loader.get_proxy_settings()
        if proxy_settings:
            self.session.proxies = proxy_settings

    def classify_error(self, error: dict) -> None:
        code = error.get("error_code")
        message = error.get("error_msg") or ""
        if code in self.rate_limit_codes:
            raise RemoteRateLimitError(code, message)
        raise RemoteFatalError(code, message)

    def call(self, method: str, params: dict) -> dict:
        query = dict(params)
        query["access_token"] = self.access_token
        query["v"] = self.version
        url = f"{self.base_url}/{method}"

        if not self.governor.acquire(self.stop_event):
            raise TransientTransportError(f"{method}: interrupted while waiting for a request slot")
        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransientTransportError(f"{method}: {exc}") from exc

        if response.status_code in TRANSIENT_STATUS:
            raise TransientTransportError(f"{method}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise RemoteFatalError(response.status_code, f"{method}: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientTransportError(f"{method}: undecodable response body") from exc
        if not isinstance(payload, dict):
            raise RemoteFatalError(None, f"{method}: unexpected payload type {type(payload).__name__}")

        error = payload.get("error")
        if isinstance(error, dict):
            self.classify_error(error)
        return payload

    def resolve_groups(self, names: Iterable[str]) -> List[Tuple[str, str]]:
        """Resolve screen names to ``(source_id, screen_name)`` pairs with one API call."""
        names = [name for name in names if name]
        payload = self.call(self.resolve_method, {"group_ids": ",".join(names)})
        response = payload.get("response")
        if isinstance(response, dict):
            # newer API versions wrap the list
            response = response.get("groups")
        if not isinstance(response, list):
            raise RemoteFatalError(None, f"{self.resolve_method}: missing response")

        sources = []
        for index, group in enumerate(response):
            if not isinstance(group, dict) or group.get("id") is None:
                logger.warning("Skipping unresolvable group entry: %r", group)
                continue
            screen_name = group.get("screen_name")
            if not screen_name and index < len(names):
                screen_name = names[index]
            sources.append((f"-{int(group['id'])}", screen_name or ""))
        return sources

    def fetch_page(self, source_id: str, offset: int, page_size: int) -> dict:
        payload = self.call(self.comments_method, {
            "group": source_id,
            "offset": str(offset),
            "req": str(page_size),
        })

        for execute_error in payload.get("execute_errors") or []:
            if not isinstance(execute_error, dict):
                continue
            if execute_error.get("error_code") in self.rate_limit_codes:
                self.classify_error(execute_error)
            logger.warning(
                "Group %s offset %d: execute error %s: %s",
                source_id, offset, execute_error.get("error_code"), execute_error.get("error_msg"),
            )

        response: Any = payload.get("response")
        if not isinstance(response, dict):
            raise RemoteFatalError(None, f"{self.comments_method}: missing response")
        return parse_page(response, source_id)
