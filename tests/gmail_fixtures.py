"""Gmail API payload builders shared by the Gmail tests."""

import base64
from typing import Dict, List, Optional

import httpx

GMAIL_MESSAGES_PATH = "/gmail/v1/users/me/messages"


def encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def gmail_message(
    message_id: str,
    to: str = "info@containerdirect.nl",
    sender: str = "Piet Janssen <piet@havenlogistiek.nl>",
    subject: str = "Prijs 20ft container",
    body: str = "Wat kost een 20ft container naar Antwerpen?",
    date: str = "Mon, 15 Jan 2024 10:00:00 +0100",
    thread_id: Optional[str] = None,
) -> Dict:
    return {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "snippet": body[:40],
        "internalDate": "1705309200000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "To", "value": to},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": date},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encode(body)}},
                {"mimeType": "text/html", "body": {"data": encode(f"<p>{body}</p>")}},
            ],
        },
    }


def serve_messages(router, messages: List[Dict]):
    """Register messages.get for each message."""
    for message in messages:
        router.add("GET", f"{GMAIL_MESSAGES_PATH}/{message['id']}", httpx.Response(200, json=message))


def listing(ids: List[str], next_token: Optional[str] = None) -> Dict:
    payload = {"messages": [{"id": i, "threadId": f"thread-{i}"} for i in ids], "resultSizeEstimate": len(ids)}
    if next_token:
        payload["nextPageToken"] = next_token
    return payload


def list_by_window(pages: Dict[tuple, Dict]):
    """
    messages.list handler keyed by (after-date, pageToken).

    after-date is the Y/m/d string of the query's after: term.
    """

    def handle(request: httpx.Request) -> httpx.Response:
        query = request.url.params["q"]
        after = query.split("after:")[1].split(" ")[0]
        key = (after, request.url.params.get("pageToken"))
        if key not in pages:
            return httpx.Response(200, json={"resultSizeEstimate": 0})
        response = pages[key]
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    return handle
