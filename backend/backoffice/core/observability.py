import logging

from fastapi import Request

from backoffice.core.api_response import get_request_id


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    if request.client and request.client.host:
        return request.client.host[:64]
    return None


def log_business_event(logger: logging.Logger, request: Request, *, event: str, **fields) -> None:
    chunks = [f"event={event}", f"request_id={get_request_id(request)}"]
    chunks.extend(f"{key}={value}" for key, value in fields.items() if value is not None)
    logger.info("business_event %s", " ".join(chunks))
