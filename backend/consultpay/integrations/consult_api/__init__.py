from consultpay.integrations.consult_api.base import ApiError, ConsultApi
from consultpay.integrations.consult_api.http import HttpConsultApi
from consultpay.integrations.consult_api.registry import resolve_api, should_use_sandbox
from consultpay.integrations.consult_api.sandbox import SandboxConsultApi

__all__ = [
    "ApiError",
    "ConsultApi",
    "HttpConsultApi",
    "SandboxConsultApi",
    "resolve_api",
    "should_use_sandbox",
]
