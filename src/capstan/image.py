import base64
import json
import logging
import os
import urllib.parse
from typing import TYPE_CHECKING, Any, List

from .progress import PullProgress
from .resource import EngineResource

if TYPE_CHECKING:
    from .client import EngineClient

logger = logging.getLogger(__name__)


class Image(EngineResource):
    """An image known to the engine."""

    @classmethod
    def pull(
        cls,
        client: "EngineClient",
        image_name: str,
        show_progress: bool = False,
        timeout: float | None = None,
    ) -> "Image":
        """
        Pull an image.
        Equivalent to: docker pull

        Args:
            client: The EngineClient instance.
            image_name: Full reference, e.g. ``ghcr.io/aedot/busybox:rolling``.
            show_progress: Display a per-layer progress bar while pulling.
            timeout: Socket timeout for the pull stream.
        """
        logger.info("Pulling %s...", image_name)

        repository, tag = _split_reference(image_name)
        params = {"fromImage": repository}
        if tag:
            params["tag"] = tag
        query = urllib.parse.urlencode(params)

        headers = {}
        auth_config = cls._get_auth_for_image(image_name)
        if auth_config:
            logger.info("Using authenticated credentials for pull.")
            encoded_auth = base64.urlsafe_b64encode(
                json.dumps(auth_config).encode()
            ).decode()
            headers["X-Registry-Auth"] = encoded_auth

        response = client._request(
            "POST",
            f"/images/create?{query}",
            headers=headers,
            stream=True,
            timeout=timeout,
        )
        events = PullProgress(
            client._stream_json_response(response), image_name, show=show_progress
        ).consume()

        for event in reversed(events):
            status = event.get("status", "")
            if status.startswith("Status:"):
                logger.info(status)
                break

        return cls(client, {"Id": image_name, "RepoTags": [image_name]})

    @property
    def tags(self) -> List[str]:
        return self.attrs.get("RepoTags") or []

    @staticmethod
    def load_docker_config() -> dict[str, Any]:
        """
        Load Docker configuration from default locations or DOCKER_CONFIG.
        Returns the 'auths' section of the config.
        """
        config_dir = os.environ.get("DOCKER_CONFIG")
        if config_dir:
            config_path = os.path.join(config_dir, "config.json")
        else:
            config_path = os.path.join(os.path.expanduser("~"), ".docker", "config.json")

        if not os.path.exists(config_path):
            return {}

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
                return data.get("auths", {})  # type: ignore
        except (OSError, json.JSONDecodeError):
            logger.warning("Failed to load Docker config from %s", config_path)
            return {}

    @classmethod
    def _get_auth_for_image(cls, image: str) -> dict[str, str] | None:
        """
        Resolve authentication for a given image from the local Docker config.
        Entries holding a base64 "auth" field are expanded into username/password.
        """
        parts = image.split("/", 1)
        if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
            registry = parts[0]
        else:
            registry = "index.docker.io/v1/"

        auths = cls.load_docker_config()

        entry = None
        for key in (registry, f"https://{registry}"):
            if key in auths:
                entry = auths[key]
                break
        if entry is None and registry == "docker.io":
            entry = auths.get("index.docker.io/v1/")
        if not entry:
            return None

        auth_config = {k: v for k, v in entry.items() if k != "auth"}
        if "auth" in entry and "username" not in auth_config:
            try:
                username, password = (
                    base64.b64decode(entry["auth"]).decode("utf-8").split(":", 1)
                )
            except ValueError:
                logger.warning("Ignoring malformed credentials for %s", registry)
                return None
            auth_config.update(username=username, password=password)
        auth_config.setdefault("serveraddress", registry)
        return auth_config

    def __repr__(self) -> str:
        return f"<Image: {self.tags[0] if self.tags else self.resource_id[:12]}>"


def _split_reference(image_name: str) -> tuple[str, str | None]:
    slash = image_name.rfind("/")
    colon = image_name.rfind(":")
    if colon > slash:
        return image_name[:colon], image_name[colon + 1 :]
    return image_name, None
