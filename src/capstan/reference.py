"""
Image reference resolution.

Maps the short logical names used by tests (``auto-m4b``) onto pinned
registry references (``ghcr.io/aedot/auto-m4b:rolling``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config import HarnessConfig, get_config
from .exceptions import InvalidReference

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_REGISTRY = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


@dataclass(frozen=True)
class ImageReference:
    """A resolved, pinned image reference."""

    registry: str
    repository: str
    tag: str

    def __str__(self) -> str:
        if self.registry:
            return f"{self.registry}/{self.repository}:{self.tag}"
        return f"{self.repository}:{self.tag}"

    @property
    def name(self) -> str:
        """Last path component of the repository, e.g. ``auto-m4b``."""
        return self.repository.rsplit("/", 1)[-1]


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def _split_tag(name: str) -> tuple[str, str | None]:
    # A colon after the last slash is a tag; before it, a registry port.
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        return name[:colon], name[colon + 1 :]
    return name, None


def resolve(
    logical_name: str,
    override_tag: str | None = None,
    config: HarnessConfig | None = None,
) -> ImageReference:
    """
    Resolve a logical image name into an ImageReference.

    Args:
        logical_name: Bare name (``busybox``), name with tag
            (``auto-m4b:alpine``) or full reference
            (``ghcr.io/aedot/auto-m4b:alpine``).
        override_tag: Tag that wins over everything else.
        config: Resolution settings; defaults to the environment config.

    Raises:
        InvalidReference: If the name cannot be parsed.
    """
    config = config or get_config()
    name = (logical_name or "").strip()
    if not name:
        raise InvalidReference("Image name must not be empty")
    if "@" in name:
        raise InvalidReference(f"Digest references are not supported: {name!r}")

    path, embedded_tag = _split_tag(name)
    if embedded_tag == "":
        raise InvalidReference(f"Empty tag in image name {name!r}")

    parts = path.split("/")
    if len(parts) > 1 and _looks_like_registry(parts[0]):
        registry, repo_parts = parts[0], parts[1:]
    else:
        registry, repo_parts = config.registry, parts

    if registry and not _REGISTRY.match(registry.split("/", 1)[0]):
        raise InvalidReference(f"Invalid registry {registry!r} in {name!r}")

    for component in repo_parts:
        if not _COMPONENT.match(component):
            raise InvalidReference(
                f"Invalid repository component {component!r} in {name!r}"
            )
    repository = "/".join(repo_parts)

    short_name = repo_parts[-1]
    tag = (
        override_tag
        or config.tag_overrides.get(short_name)
        or embedded_tag
        or config.default_tag
    )
    if not _TAG.match(tag):
        raise InvalidReference(f"Invalid tag {tag!r} for {name!r}")

    # Registry prefixes like "ghcr.io/aedot" carry a namespace after the host.
    if "/" in registry:
        host, namespace = registry.split("/", 1)
        return ImageReference(host, f"{namespace}/{repository}", tag)
    return ImageReference(registry, repository, tag)
