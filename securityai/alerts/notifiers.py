from __future__ import annotations

import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence

import requests

from securityai.deadline import Deadline
from securityai.errors import CollaboratorError
from securityai.jsonl import append_jsonl

if TYPE_CHECKING:
    from securityai.alerts.manager import Alert


DEFAULT_TIMEOUT = 5.0


class Notifier(Protocol):
    name: str

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        ...


def _timeout(deadline: Optional[Deadline], cap: float) -> float:
    if deadline is None:
        return cap
    deadline.check("notification")
    return deadline.remaining(cap=cap)


def _post_json(url: str, payload: Dict[str, Any], *, name: str, session: Optional[requests.Session],
               headers: Dict[str, str], timeout: float) -> None:
    poster = session or requests
    try:
        resp = poster.post(url, json=payload, headers=headers or None, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise CollaboratorError(name, f"POST {url} failed: {e}") from e


@dataclass
class WebhookNotifier:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT
    session: Optional[requests.Session] = None
    name: str = "webhook"

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        _post_json(self.url, alert.to_dict(), name=self.name, session=self.session,
                   headers=self.headers, timeout=_timeout(deadline, self.timeout))


def markdown_text(alert: "Alert") -> str:
    lines = [
        f"### {alert.title}",
        f"- **Severity:** {alert.severity}",
        f"- **Rule:** {alert.rule_id}",
        f"- **Event:** {alert.event_id}",
        f"- **Time:** {alert.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
    ]
    if alert.description:
        lines.append("")
        lines.append(alert.description)
    return "\n".join(lines)


@dataclass
class ChatBotNotifier:
    """Pushes a markdown message to a chat-bot webhook (DingTalk-style payload)."""

    webhook_url: str
    timeout: float = DEFAULT_TIMEOUT
    session: Optional[requests.Session] = None
    name: str = "chatbot"

    def build_payload(self, alert: "Alert") -> Dict[str, Any]:
        return {
            "msgtype": "markdown",
            "markdown": {"title": alert.title, "text": markdown_text(alert)},
        }

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        _post_json(self.webhook_url, self.build_payload(alert), name=self.name, session=self.session,
                   headers={}, timeout=_timeout(deadline, self.timeout))


@dataclass
class EmailNotifier:
    host: str
    sender: str
    recipients: Sequence[str]
    port: int = 25
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    timeout: float = DEFAULT_TIMEOUT
    name: str = "email"

    def build_message(self, alert: "Alert") -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{alert.severity.upper()}] {alert.title}"
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(markdown_text(alert))
        return msg

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        msg = self.build_message(alert)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=_timeout(deadline, self.timeout)) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise CollaboratorError(self.name, f"send to {self.host}:{self.port} failed: {e}") from e


@dataclass
class JsonlNotifier:
    path: str
    name: str = "jsonl"

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        try:
            append_jsonl(self.path, alert.to_dict())
        except OSError as e:
            raise CollaboratorError(self.name, f"write {self.path} failed: {e}") from e


@dataclass
class InMemoryNotifier:
    alerts: List[Dict[str, Any]] = field(default_factory=list)
    name: str = "memory"

    def send(self, alert: "Alert", *, deadline: Optional[Deadline] = None) -> None:
        self.alerts.append(alert.to_dict())
