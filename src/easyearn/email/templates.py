"""
Email templates for Easy Earn.

All templates use inline CSS for email client compatibility. Each template
function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

from easyearn.ledger.service import format_usd

BG_PAGE = "#F5F7FB"
BG_CARD = "#FFFFFF"
ACCENT = "#16A34A"
TEXT_PRIMARY = "#0F172A"
TEXT_SECONDARY = "#64748B"
BORDER = "#E2E8F0"

APP_NAME = "Easy Earn"


def _base_layout(content: str, app_name: str = APP_NAME) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px;">
                            <span style="font-size: 22px; font-weight: 700; color: {ACCENT};">{app_name}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 32px; color: {TEXT_PRIMARY}; font-size: 15px; line-height: 1.6;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                This email was sent by {app_name}.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def method_label(method: str) -> str:
    return method.replace("_", " ")


def withdrawal_processed(
    display_name: str,
    amount_cents: int,
    method: str,
    code: str | None,
    redemption_id: str,
) -> tuple[str, str, str]:
    """Sent once an admin marks a withdrawal as sent. Carries the gift card code when there is one."""
    amount = format_usd(amount_cents)
    label = method_label(method)
    subject = f"{APP_NAME} Withdrawal Processed - {amount}"

    text_body = "\n".join(
        [
            f"Hi {display_name},",
            "",
            f"Your {APP_NAME} withdrawal has been processed.",
            f"Amount: {amount}",
            f"Method: {label}",
            f"CODE: {code}" if code else "No code is required for this payout method.",
            f"Reference ID: {redemption_id}",
            "",
            "You can also view this in your Store > Recent Redemptions section.",
            "",
            APP_NAME,
        ]
    )

    status_label = "CODE" if code else "Status"
    status_value = code or "No code required"
    content = (
        f"<p>Hi {escape(display_name)},</p>"
        f"<p>Your {APP_NAME} withdrawal has been processed.</p>"
        f"<p><strong>Amount:</strong> {escape(amount)}<br/>"
        f"<strong>Method:</strong> {escape(label)}<br/>"
        f"<strong>{status_label}:</strong> {escape(status_value)}<br/>"
        f"<strong>Reference ID:</strong> {escape(redemption_id)}</p>"
        "<p>You can also view this in your Store &gt; Recent Redemptions section.</p>"
        f"<p>{APP_NAME}</p>"
    )
    return subject, _base_layout(content), text_body
