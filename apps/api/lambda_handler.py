"""
Serverless entrypoint.

One handler serves both event shapes the deployment wires to it:
- SQS batches from the FIFO ingestion queues: every record goes through the
  shared QueueDispatcher and only failed records are reported back
  (partial batch response), so the rest are not redelivered.
- API Gateway HTTP API (payload v2) requests: replayed against the FastAPI
  app in-process.
"""
import asyncio
import base64
import logging
from typing import Any, Dict

import httpx

from core.logging import log_fields, setup_logging
from services.container import get_container

setup_logging()
logger = logging.getLogger(__name__)


def _is_sqs_event(event: Dict[str, Any]) -> bool:
    records = event.get("Records")
    return bool(records) and all(r.get("eventSource") == "aws:sqs" for r in records)


def _is_http_event(event: Dict[str, Any]) -> bool:
    return "rawPath" in event or "http" in (event.get("requestContext") or {})


def handle_sqs(event: Dict[str, Any]) -> Dict[str, Any]:
    records = [(r["messageId"], r["body"]) for r in event["Records"]]
    failed = get_container().dispatcher.dispatch_batch(records)
    if failed:
        logger.warning(
            f"{len(failed)} of {len(records)} queue messages failed",
            extra=log_fields(failed_message_ids=failed),
        )
    return {"batchItemFailures": [{"itemIdentifier": message_id} for message_id in failed]}


async def _forward(event: Dict[str, Any]) -> httpx.Response:
    from main import app

    http = event.get("requestContext", {}).get("http", {})
    method = http.get("method", "GET")
    path = event.get("rawPath") or http.get("path") or "/"
    query = event.get("rawQueryString") or ""

    body = event.get("body") or b""
    if isinstance(body, str):
        body = base64.b64decode(body) if event.get("isBase64Encoded") else body.encode("utf-8")

    headers = dict(event.get("headers") or {})
    if event.get("cookies"):
        headers["cookie"] = "; ".join(event["cookies"])

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://lambda") as client:
        return await client.request(
            method,
            f"{path}?{query}" if query else path,
            headers=headers,
            content=body,
        )


def handle_http(event: Dict[str, Any]) -> Dict[str, Any]:
    response = asyncio.run(_forward(event))
    return {
        "statusCode": response.status_code,
        "headers": {k: v for k, v in response.headers.items() if k.lower() != "content-length"},
        "body": response.text,
        "isBase64Encoded": False,
    }


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    if _is_sqs_event(event):
        return handle_sqs(event)
    if _is_http_event(event):
        return handle_http(event)
    raise ValueError("unsupported event shape")
