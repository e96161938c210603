"""Certificate document renderers.

``CertificateService.render`` builds a structured document dict and hands it
to a renderer.  The HTML renderer is the default; a PDF backend can subclass
``CertificateRenderer`` without touching the service.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from jinja2 import BaseLoader, Environment

_HTML_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>Certificate {{ doc.certificate_number }}</title>
  <style>
    body { font-family: Georgia, 'Times New Roman', serif; color: #1a1a1a; padding: 48px; }
    .frame { border: 6px double #1E3A5F; padding: 40px; }
    .title { font-size: 26px; text-align: center; color: #1E3A5F; letter-spacing: 1px; }
    .number { text-align: center; font-size: 14px; color: #555; margin-bottom: 32px; }
    .section-title { font-size: 12px; text-transform: uppercase; color: #888; margin-top: 24px; }
    .declaration { line-height: 1.7; font-size: 15px; }
    .verification { margin-top: 40px; font-family: monospace; font-size: 11px; word-break: break-all; }
    .status { color: #b00020; font-weight: bold; text-align: center; }
    .footer { margin-top: 32px; font-size: 11px; color: #666; }
  </style>
</head>
<body>
<div class="frame">
  <h1 class="title">{{ doc.title }}</h1>
  <p class="number">No. {{ doc.certificate_number }} &bull; Issued {{ doc.issued_on }}</p>
  {% if doc.status != 'active' %}<p class="status">{{ doc.status | upper }}</p>{% endif %}

  <p class="section-title">Beneficiary</p>
  <p>{{ doc.beneficiary.name or 'Registered client' }}
    {% if doc.beneficiary.document_number %}({{ doc.beneficiary.document_type }} {{ doc.beneficiary.document_number }}){% endif %}</p>

  <p class="section-title">Tokenized asset</p>
  <p>{{ doc.asset.token_name }} ({{ doc.asset.token_symbol }}) &bull; {{ doc.asset.asset_type_label }}</p>

  <p class="section-title">Holding</p>
  <p class="declaration">
    {{ doc.endorser_name }} certifies that the beneficiary holds {{ doc.tokens.amount }} fractional
    units represented by {{ doc.asset.token_symbol }} tokens, valued at
    {{ doc.tokens.value_per_token | money(doc.tokens.currency) }} per unit for a total of
    {{ doc.tokens.total_value | money(doc.tokens.currency) }} at the date of issue.
  </p>

  <div class="verification">
    <p>Verification code: {{ doc.verification_code }}</p>
    <p>Content hash: {{ doc.content_hash }}</p>
    {% if doc.blockchain %}<p>Anchored on {{ doc.blockchain.network }}: {{ doc.blockchain.tx_hash }}</p>{% endif %}
    {% if doc.signatures and doc.signatures.tenant_address %}<p>Signed by tenant wallet {{ doc.signatures.tenant_address }}</p>{% endif %}
    {% if doc.signatures and doc.signatures.platform_address %}<p>Signed by platform wallet {{ doc.signatures.platform_address }}</p>{% endif %}
  </div>

  <p class="footer">
    This certificate is a private instrument evidencing the holding above. Transfers require
    endorsement by {{ doc.endorser_name }}. Authenticity can be checked with the verification code.
  </p>
</div>
</body>
</html>
"""

ASSET_TYPE_LABELS = {
    "asset": "Asset",
    "asset_unit": "Functional unit",
    "trust": "Trust",
}


def format_money(value, currency: str = "USD") -> str:
    try:
        num = Decimal(str(value))
    except (TypeError, ValueError, ArithmeticError):
        return str(value)
    if currency == "USD":
        return f"${num:,.2f}"
    return f"{currency} {num:,.2f}"


class CertificateRenderer(ABC):
    content_type: str = "application/octet-stream"
    file_extension: str = "bin"

    @abstractmethod
    def render(self, document: dict) -> bytes:
        """Render a structured certificate document to bytes."""


class HtmlCertificateRenderer(CertificateRenderer):
    content_type = "text/html; charset=utf-8"
    file_extension = "html"

    def __init__(self) -> None:
        env = Environment(loader=BaseLoader(), autoescape=True)
        env.filters["money"] = format_money
        self._template = env.from_string(_HTML_TEMPLATE)

    def render(self, document: dict) -> bytes:
        return self._template.render(doc=document).encode("utf-8")
