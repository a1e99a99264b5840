"""Resource id parsing and status extraction."""

import re
from dataclasses import dataclass
from typing import Any

from .constants import FINISHED, RESOURCE_TYPES, UNKNOWN
from .errors import ResourceIdError

ID_PATTERN = re.compile(r"^[a-f0-9]{24}$")
SHARED_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]{24,30}$")


@dataclass(frozen=True)
class ResourceId:
    """Parsed resource reference: ``model/5143a51a37203f2cf7000972``."""

    type: str
    id: str
    resource: str


def get_resource_id(resource: Any) -> ResourceId:
    """
    Parse a resource id from a string or a resource dict.

    Accepts ``type/id``, ``public/type/id`` and ``shared/type/id`` strings,
    and dicts carrying the id in ``resource`` (top level or under ``object``).

    Raises:
        ResourceIdError: If no valid resource id can be found
    """
    if isinstance(resource, dict):
        resource = resource.get("resource") or resource.get("object", {}).get("resource")
    if not isinstance(resource, str):
        raise ResourceIdError()

    parts = resource.split("/")
    shared = False
    if len(parts) == 3 and parts[0] in ("public", "shared"):
        shared = parts[0] == "shared"
        parts = parts[1:]
    if len(parts) != 2:
        raise ResourceIdError()

    resource_type, resource_id = parts
    if resource_type not in RESOURCE_TYPES:
        raise ResourceIdError()
    pattern = SHARED_ID_PATTERN if shared else ID_PATTERN
    if not pattern.match(resource_id):
        raise ResourceIdError()
    return ResourceId(type=resource_type, id=resource_id, resource=resource)


def try_resource_id(resource: Any) -> ResourceId | None:
    """Same as get_resource_id, returning None instead of raising."""
    try:
        return get_resource_id(resource)
    except ResourceIdError:
        return None


def get_status(resource: Any) -> dict[str, Any]:
    """Extract the ``{code, message}`` status of a resource dict."""
    if not isinstance(resource, dict):
        return {"code": UNKNOWN, "message": "Unknown status"}
    status = resource.get("object", resource).get("status")
    if not isinstance(status, dict) or "code" not in status:
        return {"code": UNKNOWN, "message": "Unknown status"}
    return status


def is_finished(resource: Any) -> bool:
    """Whether the resource dict reports the FINISHED status."""
    return get_status(resource)["code"] == FINISHED
