#!/usr/bin/env python3
"""
Config loader for the VK comment crawler.
Priority: .env > config.json > defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

TOKEN_HINT = (
    "No access token found. Visit "
    "https://oauth.vk.com/authorize?client_id=6359340&redirect_uri=https://oauth.vk.com/blank.html"
    "&response_type=token&scope=wall,offline to get a token and put it into the file "
    "'{path}' or into the VK_API_ACCESS_TOKEN_USER environment variable."
)


class ConfigLoader:
    def __init__(self, config_file: str = "config.json"):
        self.config_file = Path(config_file)
        self.config = self._load_config()

    def _load_config(self):
        config = {
            "vk": {
                "authentication": {
                    "access_token": "",
                    "access_token_file": "~/access_token.txt",
                },
                "api": {
                    "base_url": "https://api.vk.com/method",
                    "version": "5.122",
                    "comments_method": "execute.getComments",
                    "resolve_method": "groups.getById",
                },
                "settings": {
                    "request_interval": 0.666,
                    "page_size": 20,
                    "rate_limit_cooldown": 360,
                    "rate_limit_codes": [6, 29],
                    "timeout": 15,
                    "transient_policy": "retry",
                    "transient_offset_step": 10,
                    "transient_retry_delay": 5,
                    "max_transient_retries": 0,
                    "flush_interval": 60,
                    "close_timeout": 5,
                    "groups_file": "~/groups.txt",
                    "data_dir": "crawler_data",
                },
                "proxy": {
                    "http": None,
                    "https": None,
                },
            }
        }

        if self.config_file.exists():
            with open(self.config_file, "r", encoding="utf-8") as file:
                json_config = json.load(file)
                self._deep_update(config, json_config)

        vk = config["vk"]

        # Credential overrides
        if os.getenv("VK_API_ACCESS_TOKEN_USER"):
            vk["authentication"]["access_token"] = os.getenv("VK_API_ACCESS_TOKEN_USER")
        if os.getenv("VK_ACCESS_TOKEN_FILE"):
            vk["authentication"]["access_token_file"] = os.getenv("VK_ACCESS_TOKEN_FILE")

        # API overrides
        if os.getenv("VK_API_VERSION"):
            vk["api"]["version"] = os.getenv("VK_API_VERSION")

        # Proxy overrides
        if os.getenv("HTTP_PROXY"):
            vk["proxy"]["http"] = os.getenv("HTTP_PROXY")
        if os.getenv("HTTPS_PROXY"):
            vk["proxy"]["https"] = os.getenv("HTTPS_PROXY")

        # Settings overrides
        settings = vk["settings"]
        if os.getenv("VK_REQUEST_INTERVAL"):
            settings["request_interval"] = float(os.getenv("VK_REQUEST_INTERVAL"))
        if os.getenv("VK_PAGE_SIZE"):
            settings["page_size"] = int(os.getenv("VK_PAGE_SIZE"))
        if os.getenv("VK_RATE_LIMIT_COOLDOWN"):
            settings["rate_limit_cooldown"] = float(os.getenv("VK_RATE_LIMIT_COOLDOWN"))
        if os.getenv("VK_TIMEOUT"):
            settings["timeout"] = float(os.getenv("VK_TIMEOUT"))
        if os.getenv("VK_TRANSIENT_POLICY"):
            settings["transient_policy"] = os.getenv("VK_TRANSIENT_POLICY").strip().lower()
        if os.getenv("VK_TRANSIENT_OFFSET_STEP"):
            settings["transient_offset_step"] = int(os.getenv("VK_TRANSIENT_OFFSET_STEP"))
        if os.getenv("VK_TRANSIENT_RETRY_DELAY"):
            settings["transient_retry_delay"] = float(os.getenv("VK_TRANSIENT_RETRY_DELAY"))
        if os.getenv("VK_MAX_TRANSIENT_RETRIES"):
            settings["max_transient_retries"] = int(os.getenv("VK_MAX_TRANSIENT_RETRIES"))
        if os.getenv("VK_FLUSH_INTERVAL"):
            settings["flush_interval"] = float(os.getenv("VK_FLUSH_INTERVAL"))
        if os.getenv("VK_GROUPS_FILE"):
            settings["groups_file"] = os.getenv("VK_GROUPS_FILE")
        if os.getenv("DATA_DIR"):
            settings["data_dir"] = os.getenv("DATA_DIR")

        return config

    def _deep_update(self, base, update):
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_update(base[key], value)
            else:
                base[key] = value

    def get(self, key_path, default=None):
        keys = key_path.split(".")
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_proxy_settings(self):
        proxy = self.config.get("vk", {}).get("proxy", {})
        if proxy.get("http") or proxy.get("https"):
            return {
                "http": proxy.get("http"),
                "https": proxy.get("https"),
            }
        return None

    def access_token(self) -> str:
        auth = self.config.get("vk", {}).get("authentication", {})
        token = str(auth.get("access_token") or "").strip()
        if token and not token.startswith("YOUR_"):
            return token

        token_path = Path(str(auth.get("access_token_file") or "~/access_token.txt")).expanduser()
        if token_path.is_file():
            token = token_path.read_text(encoding="utf-8").strip()
            if token:
                return token
        raise ConfigurationError(TOKEN_HINT.format(path=token_path))

    def group_names(self) -> List[str]:
        groups_path = Path(str(self.get("vk.settings.groups_file") or "~/groups.txt")).expanduser()
        if not groups_path.is_file():
            raise ConfigurationError(f"Groups file not found: {groups_path}")
        names = []
        for line in groups_path.read_text(encoding="utf-8").splitlines():
            name = line.strip()
            if name and name not in names:
                names.append(name)
        if not names:
            raise ConfigurationError(f"Groups file is empty: {groups_path}")
        return names


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    loader = ConfigLoader()
    vk = loader.config.get("vk", {})
    logger.info("Loaded VK config")
    token = vk.get("authentication", {}).get("access_token")
    logger.info("Access token: %s", str(token)[:8] + "..." if token else "<empty>")
    logger.info("Settings:")
    for key, value in vk.get("settings", {}).items():
        logger.info("  %s: %s", key, value)


if __name__ == "__main__":
    main()
