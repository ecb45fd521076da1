import logging
from typing import Callable

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"LoadBalancerNotFound", "LoadBalancerNotFoundException"}


class AWSUtils:
    """Helper class for creating AWS clients with consistent configuration."""

    @staticmethod
    def create_elbv2_client(region: str):
        """Create an ELBv2 client; botocore's own retries absorb API throttling."""
        return boto3.client(
            "elbv2",
            region_name=region,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )


def describe_load_balancer(client, ref: str) -> dict | None:
    """Look a load balancer up by ARN or by name; None when it does not exist yet."""
    if ref.startswith("arn:"):
        kwargs = {"LoadBalancerArns": [ref]}
    else:
        kwargs = {"Names": [ref]}
    try:
        response = client.describe_load_balancers(**kwargs)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _NOT_FOUND_CODES:
            return None
        raise
    balancers = response.get("LoadBalancers") or []
    return balancers[0] if balancers else None


def load_balancer_is_active(client, ref: str) -> bool:
    balancer = describe_load_balancer(client, ref)
    if balancer is None:
        return False
    state = (balancer.get("State") or {}).get("Code", "")
    logger.debug("Load balancer %s state: %s", ref, state)
    return state == "active"


def load_balancer_exists(client, ref: str) -> bool:
    return describe_load_balancer(client, ref) is not None


_PROBES: dict[str, Callable] = {
    "elbv2_active": load_balancer_is_active,
    "elbv2_exists": load_balancer_exists,
}


def probe_names() -> list[str]:
    return sorted(_PROBES)


def build_probe(
    name: str,
    region: str,
    *,
    client_factory: Callable[[str], object] = AWSUtils.create_elbv2_client,
) -> Callable[[str], bool]:
    """Bind a named probe to a region. The client is created on first use."""
    try:
        check = _PROBES[name]
    except KeyError:
        raise ValueError(
            f"Unknown readiness probe {name!r}; known: {', '.join(probe_names())}"
        ) from None

    client = None

    def _probe(ref: str) -> bool:
        nonlocal client
        if client is None:
            client = client_factory(region)
        return check(client, ref)

    _probe.__name__ = name
    return _probe
