from __future__ import annotations

import logging
from typing import Callable, Optional

from consultpay.core.config import Settings
from consultpay.integrations.consult_api.base import ConsultApi
from consultpay.integrations.consult_api.http import HttpConsultApi
from consultpay.integrations.consult_api.sandbox import SandboxConsultApi

logger = logging.getLogger(__name__)


def should_use_sandbox(settings: Settings) -> bool:
    if settings.use_sandbox:
        return True
    return not settings.api_url


def resolve_api(
    settings: Settings,
    on_unauthorized: Optional[Callable[[], None]] = None,
) -> ConsultApi:
    """Pick the backend client for the configured environment."""
    if should_use_sandbox(settings):
        logger.info("🧪 Using sandbox consultation backend")
        return SandboxConsultApi()
    return HttpConsultApi(
        base_url=settings.api_url,
        token=settings.api_token,
        timeout=settings.api_timeout,
        on_unauthorized=on_unauthorized,
    )
