from __future__ import annotations

from pathlib import Path

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class MailError(Exception):
    pass


class Mailer:
    """Renders an HTML template and hands it to the mail API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        sender: str,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.sender = sender
        self.timeout = timeout
        self.transport = transport
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template: str, context: dict) -> str:
        return self.env.get_template(template).render(**context)

    async def send(self, *, to: str, subject: str, template: str, context: dict) -> None:
        html = self.render(template, context)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    f"{self.base_url}/send",
                    headers={"Authorization": f"Bearer {self.token}"},
                    json={"from": self.sender, "to": to, "subject": subject, "html": html},
                )
        except httpx.HTTPError as e:
            raise MailError(f"Mail API unreachable: {e}") from e

        if r.status_code >= 300:
            raise MailError(f"Mail API error: {r.text}")
