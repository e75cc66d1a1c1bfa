from __future__ import annotations

from typing import Optional

from tracepipe.errors import CredentialUnavailable, NoRoutingConfig, RoutingRejected
from tracepipe.models import CancelToken, PipelineRun
from tracepipe.services.base import CredentialStore, Forwarder
from tracepipe.storage.registry import RoutingRegistry
from tracepipe.utils import get_logger, normalize_http_url

logger = get_logger(__name__)


def route(
    run: PipelineRun,
    routes: RoutingRegistry,
    credentials: CredentialStore,
    forwarder: Forwarder,
    *,
    token: Optional[CancelToken] = None,
    timeout: float = 60.0,
) -> dict:
    """Forward the original raw document to its destination's endpoint."""
    token = token or CancelToken()
    destination = run.metadata.destination_id

    cfg = routes.active_config(destination)
    if cfg is None:
        raise NoRoutingConfig(f"no active routing config for destination {destination}")
    url = normalize_http_url(cfg.endpoint_url)
    if url is None:
        raise NoRoutingConfig(f"routing endpoint for {destination} is not a valid URL: {cfg.endpoint_url}")

    secret = credentials.resolve(cfg.credential_ref)
    if not secret:
        raise CredentialUnavailable(f"credential {cfg.credential_ref} not found")

    result = forwarder.forward(url, run.document.content, secret, timeout=token.timeout_for(timeout))
    if not result.ok:
        raise RoutingRejected(result.detail or "destination rejected document", status=result.status)

    logger.info("route: document=%s destination=%s status=%s", run.document.ref, destination, result.status)
    return {"destination": destination, "endpoint": url, "status": result.status}
