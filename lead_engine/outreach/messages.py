"""
Outreach message rendering.

Operator-supplied subject/body templates are rendered in a jinja2 sandbox.
The older bracket placeholders ([COMPANY_NAME], [OFFER_CODE], ...) are still
accepted and mapped onto the same context keys; unknown bracket placeholders
render as empty.

Every http(s) link in the outgoing message (body URLs and the call to action)
goes through the click tracker, and the HTML carries the open pixel plus an
unsubscribe link, so each engagement signal can be tied back to exactly one
email log row and one contractor.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlencode

from jinja2 import Environment, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from lead_engine.config import settings
from lead_engine.models.domain.campaign_domain import CampaignType
from lead_engine.models.domain.contractor_domain import Contractor
from lead_engine.models.domain.opportunity_domain import Opportunity

URL_PATTERN = re.compile(r"https?://[^\s<>\"')\]]+")
BRACKET_PLACEHOLDER = re.compile(r"\[([A-Z_]+)\]")

CTA_LABELS = {
    CampaignType.ONBOARDING: "Access Your Dashboard",
    CampaignType.FOLLOWUP: "Continue Your Free Trial",
    CampaignType.OPPORTUNITY: "View This Opportunity",
    CampaignType.COLD: "Start Your Free 14-Day Trial",
}

_sandbox = SandboxedEnvironment(autoescape=False, keep_trailing_newline=False)
_html_env = Environment(autoescape=True)

HTML_LAYOUT = _html_env.from_string(
    """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"/><title>{{ subject }}</title></head>
<body style="margin:0;padding:0;background-color:#f0f4f8;font-family:Helvetica,Arial,sans-serif;">
<table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="padding:40px 16px;">
<tr><td align="center">
<table role="presentation" width="620" cellpadding="0" cellspacing="0" style="max-width:620px;background:#ffffff;">
<tr><td style="padding:40px 48px;color:#374151;font-size:15px;line-height:1.7;">
<p>Hi {{ first_name }},</p>
{% for paragraph in paragraphs %}<p>{% for line in paragraph %}{% for text, href in line %}{% if href %}<a href="{{ href }}">{{ text }}</a>{% else %}{{ text }}{% endif %}{% endfor %}{% if not loop.last %}<br/>{% endif %}{% endfor %}</p>
{% endfor %}
<p style="text-align:center;margin:32px 0;"><a href="{{ cta_url }}" style="background:#f97316;color:#ffffff;padding:14px 28px;border-radius:8px;text-decoration:none;font-weight:700;">{{ cta_label }}</a></p>
</td></tr>
<tr><td style="padding:16px 48px;font-size:12px;color:#9ca3af;">
You received this email because your business is registered with the federal contractor registry.
<a href="{{ unsubscribe_url }}" style="color:#9ca3af;">Unsubscribe</a>
</td></tr>
</table>
</td></tr>
</table>
<img src="{{ pixel_url }}" width="1" height="1" alt="" style="display:block;border:0;"/>
</body>
</html>"""
)


class TemplateRenderError(ValueError):
    """An operator template failed to compile or render."""


@dataclass(slots=True)
class MessageTemplate:
    subject: str
    body: str
    name: str | None = None
    category: CampaignType = CampaignType.COLD
    offer_code: str | None = None


@dataclass(slots=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


class TrackingLinks:
    """Builds the tracking URLs served by the tracking routes."""

    def __init__(self, base_url: str | None = None, site_url: str | None = None):
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.site_url = (site_url or settings.SITE_URL).rstrip("/")

    def open_url(self, message_id: str, contractor_id: str) -> str:
        return f"{self.base_url}/track/open?" + urlencode(
            {"message_id": message_id, "contractor_id": contractor_id}
        )

    def click_url(self, message_id: str, contractor_id: str, url: str) -> str:
        return f"{self.base_url}/track/click?" + urlencode(
            {"message_id": message_id, "contractor_id": contractor_id, "url": url}
        )

    def unsubscribe_url(self, message_id: str, contractor_id: str) -> str:
        return f"{self.base_url}/track/unsubscribe?" + urlencode(
            {"contractor_id": contractor_id, "message_id": message_id}
        )

    def signup_url(self, contractor: Contractor, message_id: str, offer_code: str | None) -> str:
        params = {"email": contractor.email or "", "cid": contractor.id, "eid": message_id}
        if offer_code:
            params["offer"] = offer_code
        return f"{self.site_url}/signup?" + urlencode(params)

    def is_tracking_url(self, url: str) -> bool:
        return url.startswith(f"{self.base_url}/track/")


def _translate_brackets(source: str) -> str:
    return BRACKET_PLACEHOLDER.sub(lambda m: "{{ " + m.group(1).lower() + " }}", source)


def compile_template(source: str):
    """Compile an operator template once per campaign."""
    try:
        return _sandbox.from_string(_translate_brackets(source))
    except TemplateSyntaxError as e:
        raise TemplateRenderError(f"Invalid template syntax at line {e.lineno}: {e.message}") from e


def build_context(
    contractor: Contractor, opportunity: Opportunity | None, offer_code: str | None
) -> dict[str, str]:
    naics = contractor.naics_code or ""
    context = {
        "company_name": contractor.name,
        "contact_name": contractor.name,
        "naics_code": naics,
        "naics_description": f"NAICS {naics or 'code'}",
        "business_type": contractor.business_type or "",
        "set_aside": contractor.business_type or "Small Business",
        "state": contractor.state or "",
        "offer_code": offer_code or contractor.offer_code or "",
        "opportunity_title": "a federal contract matching your NAICS code",
        "agency_name": "a federal agency",
        "deadline": "soon, check SAM.gov for the latest deadline",
        "contract_value": "competitive",
        "opportunity_url": "",
    }
    if opportunity is not None:
        context.update(
            {
                "opportunity_title": opportunity.title,
                "agency_name": opportunity.agency or context["agency_name"],
                "deadline": opportunity.response_deadline.strftime("%B %d, %Y")
                if opportunity.response_deadline
                else context["deadline"],
                "contract_value": opportunity.contract_value or context["contract_value"],
                "set_aside": opportunity.set_aside or context["set_aside"],
                "opportunity_url": opportunity.url or "",
            }
        )
    return context


def _render(compiled, context: dict) -> str:
    try:
        return compiled.render(**context)
    except Exception as e:
        raise TemplateRenderError(f"Template render failed: {e}") from e


def _segments(line: str, track) -> list[tuple[str, str | None]]:
    """Split a text line into (text, href) pieces, tracking every URL."""
    pieces: list[tuple[str, str | None]] = []
    cursor = 0
    for match in URL_PATTERN.finditer(line):
        if match.start() > cursor:
            pieces.append((line[cursor : match.start()], None))
        pieces.append((match.group(0), track(match.group(0))))
        cursor = match.end()
    if cursor < len(line):
        pieces.append((line[cursor:], None))
    return pieces


def render_message(
    subject_template,
    body_template,
    *,
    contractor: Contractor,
    opportunity: Opportunity | None,
    message_id: str,
    category: CampaignType = CampaignType.COLD,
    offer_code: str | None = None,
    links: TrackingLinks,
) -> RenderedMessage:
    context = build_context(contractor, opportunity, offer_code)
    subject = " ".join(_render(subject_template, context).split())
    body = _render(body_template, context).strip()

    def track(url: str) -> str:
        if links.is_tracking_url(url):
            return url
        return links.click_url(message_id, contractor.id, url)

    if category is CampaignType.OPPORTUNITY and opportunity is not None and opportunity.url:
        cta_target = opportunity.url
    else:
        cta_target = links.signup_url(contractor, message_id, offer_code)
    cta_url = track(cta_target)
    unsubscribe_url = links.unsubscribe_url(message_id, contractor.id)

    paragraphs = [
        [_segments(line, track) for line in block.split("\n")]
        for block in re.split(r"\n\s*\n", body)
        if block.strip()
    ]
    html = HTML_LAYOUT.render(
        subject=subject,
        first_name=contractor.name.split(" ")[0] if contractor.name else "there",
        paragraphs=paragraphs,
        cta_url=cta_url,
        cta_label=CTA_LABELS.get(category, CTA_LABELS[CampaignType.COLD]),
        unsubscribe_url=unsubscribe_url,
        pixel_url=links.open_url(message_id, contractor.id),
    )

    text = URL_PATTERN.sub(lambda m: track(m.group(0)), body)
    text += f"\n\n{CTA_LABELS.get(category, CTA_LABELS[CampaignType.COLD])}: {cta_url}"
    text += f"\n\nUnsubscribe: {unsubscribe_url}"

    return RenderedMessage(subject=subject, html=html, text=text)


TRIAL_NOTICE = _html_env.from_string(
    """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"/><title>{{ subject }}</title></head>
<body style="font-family:Helvetica,Arial,sans-serif;color:#374151;line-height:1.7;">
<p>Hi {{ first_name }},</p>
{% if days_left > 0 %}<p>Your free trial ends in {{ days_left }} day{{ "s" if days_left != 1 }}. Keep your opportunity alerts running by choosing a plan before it expires.</p>
{% else %}<p>Your free trial has ended. Your saved searches are still here whenever you are ready to pick a plan.</p>
{% endif %}<p><a href="{{ dashboard_url }}">Open your dashboard</a></p>
</body>
</html>"""
)


def render_trial_notice(contractor: Contractor, days_left: int, site_url: str | None = None) -> RenderedMessage:
    """Trial warning (days_left > 0) or trial ended notice (days_left == 0)."""
    site_url = (site_url or settings.SITE_URL).rstrip("/")
    dashboard_url = f"{site_url}/dashboard"
    if days_left > 0:
        subject = f"{days_left} days left on your free trial"
        text = f"Your free trial ends in {days_left} days. Log in at {dashboard_url}"
    else:
        subject = "Your free trial has ended"
        text = f"Your free trial has ended. Log in at {dashboard_url}"
    html = TRIAL_NOTICE.render(
        subject=subject,
        first_name=contractor.name.split(" ")[0] if contractor.name else "there",
        days_left=days_left,
        dashboard_url=dashboard_url,
    )
    return RenderedMessage(subject=subject, html=html, text=text)
