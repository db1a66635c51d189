"""Admin email notifications over Amazon SES.

Sending is best effort: an SES failure is logged and reported as ``False``
so it can never undo the order or request that triggered it.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from infra.aws_config import sdk_config
from infra.config import Settings, get_settings

_LOGGER = logging.getLogger(__name__)


def format_money(amount: Any, symbol: str = "₮") -> str:
    """``₮1,234,500`` (cents only when present)."""
    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"))
    text = f"{value:,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    return f"{symbol}{text}"


@dataclass
class EmailMessage:
    subject: str
    text: str
    html: str


def _param_text(item: Mapping[str, Any]) -> str:
    params = item.get("parameters") or []
    return ", ".join(f"{p.get('group')}: {p.get('name')}" for p in params if isinstance(p, Mapping))


def render_order_email(
    order: Mapping[str, Any],
    *,
    shop_name: str,
    currency_symbol: str,
    admin_url: Optional[str] = None,
) -> EmailMessage:
    """Subject, plain-text and HTML bodies announcing a new order."""
    snapshot = order.get("snapshot_data") or {}
    items = list(snapshot.get("items") or [])
    totals = snapshot.get("totals") or {}
    order_id = order.get("id")

    lines = [
        f"New order #{order_id}",
        "",
        f"Customer: {order.get('name') or '-'}",
        f"Phone: {order.get('phone') or '-'}",
    ]
    if order.get("secondary_phone"):
        lines.append(f"Secondary phone: {order['secondary_phone']}")
    lines.append(f"Address: {order.get('address') or '-'}")
    lines.append("")
    for item in items:
        params = _param_text(item)
        suffix = f" ({params})" if params else ""
        lines.append(
            f"- {item.get('product_name')}{suffix} x{item.get('quantity')}: "
            f"{format_money(item.get('line_total'), currency_symbol)}"
        )
    lines.append("")
    if totals.get("discount"):
        lines.append(f"Discount: -{format_money(totals.get('discount'), currency_symbol)}")
    lines.append(f"Total: {format_money(order.get('total_price'), currency_symbol)}")
    if admin_url:
        lines.append("")
        lines.append(f"View in admin: {admin_url}")

    rows = "".join(
        "<tr>"
        f"<td>{html.escape(str(item.get('product_name') or ''))}"
        + (f"<br><small>{html.escape(_param_text(item))}</small>" if _param_text(item) else "")
        + "</td>"
        f"<td style=\"text-align:center\">{int(item.get('quantity') or 0)}</td>"
        f"<td style=\"text-align:right\">{html.escape(format_money(item.get('unit_price'), currency_symbol))}</td>"
        f"<td style=\"text-align:right\">{html.escape(format_money(item.get('line_total'), currency_symbol))}</td>"
        "</tr>"
        for item in items
    )
    link = f'<p><a href="{html.escape(admin_url)}">View order in admin</a></p>' if admin_url else ""
    body_html = (
        "<!DOCTYPE html><html><body>"
        f"<h1>New order #{html.escape(str(order_id))}</h1>"
        f"{link}"
        f"<p><strong>Customer:</strong> {html.escape(str(order.get('name') or '-'))}<br>"
        f"<strong>Phone:</strong> {html.escape(str(order.get('phone') or '-'))}<br>"
        f"<strong>Address:</strong> {html.escape(str(order.get('address') or '-'))}</p>"
        "<table><tr><th>Product</th><th>Qty</th><th>Unit</th><th>Total</th></tr>"
        f"{rows}</table>"
        f"<p><strong>Total:</strong> {html.escape(format_money(order.get('total_price'), currency_symbol))}</p>"
        "</body></html>"
    )
    return EmailMessage(
        subject=f"[{shop_name}] New order #{order_id}",
        text="\n".join(lines),
        html=body_html,
    )


def render_custom_design_email(phone: str, description: Optional[str], *, shop_name: str) -> EmailMessage:
    desc = (description or "").strip() or "(no description)"
    return EmailMessage(
        subject=f"[{shop_name}] Custom design request from {phone}",
        text=f"Custom design request\n\nPhone: {phone}\n\n{desc}",
        html=(
            "<!DOCTYPE html><html><body><h1>Custom design request</h1>"
            f"<p><strong>Phone:</strong> {html.escape(phone)}</p>"
            f"<p>{html.escape(desc).replace(chr(10), '<br>')}</p>"
            "</body></html>"
        ),
    )


class Notifier:
    """Sends admin emails through an SES client."""

    def __init__(self, *, client: Any, sender: str, enabled: bool = True) -> None:
        self._client = client
        self._sender = sender
        self._enabled = enabled and bool(sender)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Notifier":
        cfg = settings or get_settings()
        email = cfg.email
        client = None
        if email.enabled:
            client = boto3.client(
                "ses",
                region_name=email.region or cfg.aws.default_region,
                config=sdk_config(cfg.aws),
            )
        return cls(client=client, sender=email.sender, enabled=email.enabled)

    @property
    def enabled(self) -> bool:
        return self._enabled and self._client is not None

    def send(self, recipients: Sequence[str], message: EmailMessage) -> bool:
        to = [r for r in recipients if r]
        if not self.enabled:
            _LOGGER.info("email disabled; skipped subject=%r", message.subject)
            return False
        if not to:
            _LOGGER.warning("no admin recipients configured; skipped subject=%r", message.subject)
            return False
        try:
            self._client.send_email(
                Source=self._sender,
                Destination={"ToAddresses": to},
                Message={
                    "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": message.text, "Charset": "UTF-8"},
                        "Html": {"Data": message.html, "Charset": "UTF-8"},
                    },
                },
            )
        except (ClientError, BotoCoreError) as exc:
            _LOGGER.error("email send failed subject=%r error=%s", message.subject, exc)
            return False
        return True

    def notify_new_order(self, order: Mapping[str, Any], recipients: Sequence[str]) -> bool:
        shop = get_settings().shop
        admin_url = None
        if shop.public_base_url:
            admin_url = f"{shop.public_base_url.rstrip('/')}/admin/orders/{order.get('id')}"
        message = render_order_email(
            order,
            shop_name=shop.name,
            currency_symbol=shop.currency_symbol,
            admin_url=admin_url,
        )
        return self.send(recipients, message)

    def notify_custom_design_request(
        self, phone: str, description: Optional[str], recipients: Sequence[str]
    ) -> bool:
        message = render_custom_design_email(phone, description, shop_name=get_settings().shop.name)
        return self.send(recipients, message)


_NOTIFIER: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _NOTIFIER
    if _NOTIFIER is None:
        _NOTIFIER = Notifier.from_settings()
    return _NOTIFIER


def reset_notifier() -> None:
    global _NOTIFIER
    _NOTIFIER = None
