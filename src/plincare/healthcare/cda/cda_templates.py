"""CDA R2 Template Engine.

Renders the CI-SIS clinical document header and its two body variants
(level 1 embedded PDF, level 3 structured entries) from small records. The
XML lives in Jinja2 templates next to this module; autoescaping handles every
text value.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from plincare.healthcare.identifier_systems import FINESS_OID, RPPS_OID, CdaOid

TEMPLATE_DIR = Path(__file__).parent / "templates"

# Base64 stand-in embedded when a report has no PDF
PLACEHOLDER_PDF_BASE64 = "UFBMQUNFSE9MREVS"


@dataclass(frozen=True)
class DocumentCode:
    """LOINC document type of a clinical document."""

    code: str
    display_name: str
    title_prefix: str
    code_system: str = CdaOid.LOINC.value


CDA_DOCUMENT_CODES: Dict[str, DocumentCode] = {
    "CR_BIO": DocumentCode(
        "11502-2", "Compte-rendu de biologie médicale", "Compte-rendu de biologie"
    ),
    "CR_IMAG": DocumentCode(
        "18748-4", "Compte-rendu d'imagerie médicale", "Compte-rendu d'imagerie"
    ),
    "CR_CONSULT": DocumentCode(
        "11488-4", "Note de consultation", "Note de consultation"
    ),
}


@dataclass
class CdaPatient:
    """Patient block: INS, legal name, gender and birth date."""

    ins_value: str
    family_name: str
    given_name: str = ""
    birth_date: str = ""  # YYYYMMDD
    gender: str = "UN"  # M, F or UN


@dataclass
class CdaAuthor:
    """Author block: RPPS practitioner id and optional person name."""

    rpps_id: str
    family_name: Optional[str] = None
    given_name: Optional[str] = None
    time: str = ""


@dataclass
class CdaCustodian:
    """Custodian block: FINESS facility id and name."""

    finess_id: str
    name: str


@dataclass
class CdaObservationEntry:
    """One structured entry of a level 3 body."""

    code: str
    display_name: str
    value: str
    unit: str = ""
    effective_time: str = ""
    value_type: str = "PQ"  # PQ for quantities, ST for text
    code_system: str = CdaOid.LOINC.value
    reference_low: Optional[str] = None
    reference_high: Optional[str] = None


@dataclass
class CdaHeader:
    """Everything the header template needs."""

    document_id: str
    document_code: DocumentCode
    title: str
    effective_time: str
    patient: CdaPatient
    author: CdaAuthor
    custodian: CdaCustodian


class CDATemplateEngine:
    """Renders CDA fragments from Jinja2 templates."""

    def __init__(self, template_dir: Optional[Path] = None):
        """Initialize the template engine.

        Args:
            template_dir: Directory containing the CDA templates
        """
        self.template_dir = template_dir or TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render_header(self, header: CdaHeader) -> str:
        """Render the document header, up to and including the custodian."""
        return self.env.get_template("header.xml").render(
            oids=CdaOid,
            rpps_oid=RPPS_OID,
            finess_oid=FINESS_OID,
            document_id=header.document_id,
            document_code=header.document_code,
            title=header.title,
            effective_time=header.effective_time,
            patient=header.patient,
            author=header.author,
            custodian=header.custodian,
        )

    def render_body_n1(self, pdf_base64: str) -> str:
        """Render a level 1 body embedding a base64 PDF, closing the document."""
        return self.env.get_template("body_n1.xml").render(pdf_base64=pdf_base64)

    def render_body_n3(self, observations: List[CdaObservationEntry]) -> str:
        """Render a level 3 structured body, closing the document."""
        return self.env.get_template("body_n3.xml").render(
            loinc_oid=CdaOid.LOINC.value,
            observations=observations,
        )


def format_date_to_cda(value: Union[str, datetime, None]) -> str:
    """Format an instant as CDA ``YYYYMMDDHHMMSS`` in UTC.

    Strings are parsed as ISO 8601; the current time is used when no value
    is given or it cannot be parsed.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            value = None
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")


def format_date_only_to_cda(iso_date: str) -> str:
    """Format an ISO date as CDA ``YYYYMMDD``."""
    return iso_date.replace("-", "")[:8]
