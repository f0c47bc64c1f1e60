"""CDA R2 Generator.

Builds CI-SIS clinical documents (CR-BIO laboratory report by default) from
FHIR resources, for publication to the shared health record (DMP), and wraps
generated documents in a FHIR DocumentReference.
"""

import base64
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from plincare.healthcare.fhir_types import first_coding
from plincare.healthcare.identifier_systems import (
    LOINC_SYSTEM,
    find_ins_identifier,
    is_qualified_ins,
)
from plincare.utils.exceptions import CDAGenerationError
from plincare.utils.logging import get_logger

from .cda_templates import (
    CDA_DOCUMENT_CODES,
    PLACEHOLDER_PDF_BASE64,
    CDATemplateEngine,
    CdaAuthor,
    CdaCustodian,
    CdaHeader,
    CdaObservationEntry,
    CdaPatient,
    DocumentCode,
    format_date_only_to_cda,
    format_date_to_cda,
)

logger = get_logger(__name__)

# FHIR resource type for this module
__fhir_resource__ = "DocumentReference"

CDA_FORMAT_SYSTEM = "urn:oid:1.2.250.1.213.1.1.1"
CDA_FORMAT_CODE = "urn:oid:1.2.250.1.213.1.1.1.1"

GENDER_TO_CDA = {"male": "M", "female": "F"}


@dataclass
class AuthorOptions:
    """Practitioner signing the document."""

    rpps_id: str
    family_name: Optional[str] = None
    given_name: Optional[str] = None


@dataclass
class CustodianOptions:
    """Facility keeping the document."""

    finess_id: str
    name: str


@dataclass
class CDAGeneratorOptions:
    """Options for one document generation.

    Attributes:
        author: Practitioner signing the document
        custodian: Facility keeping the document
        use_structured_body: Emit a level 3 body when observations are given
        document_code: Key of ``CDA_DOCUMENT_CODES`` (CR_BIO, CR_IMAG, ...)
    """

    author: AuthorOptions
    custodian: CustodianOptions
    use_structured_body: bool = False
    document_code: str = "CR_BIO"


def _official_name(patient: Dict[str, Any]) -> Dict[str, Any]:
    names = patient.get("name") or []
    for name in names:
        if name.get("use") == "official":
            return name
    return names[0] if names else {}


def _document_code(key: str) -> DocumentCode:
    try:
        return CDA_DOCUMENT_CODES[key]
    except KeyError as e:
        raise CDAGenerationError(f"Unknown document code: {key}", "CDA_UNKNOWN_DOCUMENT_CODE") from e


def _number_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _observation_entry(observation: Dict[str, Any]) -> CdaObservationEntry:
    """Convert one FHIR Observation into a structured entry."""
    coding = first_coding(observation.get("code"))
    quantity = observation.get("valueQuantity")
    effective_time = format_date_to_cda(observation.get("effectiveDateTime"))

    if quantity is not None:
        value = _number_text(quantity.get("value")) or "0"
        unit = quantity.get("unit") or quantity.get("code") or ""
        value_type = "PQ"
    else:
        value = observation.get("valueString") or ""
        unit = ""
        value_type = "ST"

    low = high = None
    ranges = observation.get("referenceRange") or []
    if ranges:
        low = _number_text((ranges[0].get("low") or {}).get("value"))
        high = _number_text((ranges[0].get("high") or {}).get("value"))

    return CdaObservationEntry(
        code=coding.get("code") or "UNKNOWN",
        display_name=coding.get("display") or "Observation",
        value=value,
        unit=unit,
        effective_time=effective_time,
        value_type=value_type,
        reference_low=low,
        reference_high=high,
    )


def _find_pdf(report: Dict[str, Any]) -> Optional[str]:
    for form in report.get("presentedForm") or []:
        if form.get("contentType") == "application/pdf" and form.get("data"):
            data: str = form["data"]
            return data
    return None


class CDAGenerator:
    """Generates CI-SIS CDA R2 documents from FHIR resources."""

    def __init__(self, engine: Optional[CDATemplateEngine] = None):
        """Initialize the generator.

        Args:
            engine: Template engine; a default one is created when omitted
        """
        self.engine = engine or CDATemplateEngine()

    def generate_cr_bio(
        self,
        patient: Dict[str, Any],
        report: Dict[str, Any],
        observations: List[Dict[str, Any]],
        options: CDAGeneratorOptions,
    ) -> str:
        """Generate a clinical document.

        The patient must carry a qualified INS and an official family name,
        and the options must name an RPPS author and a FINESS custodian;
        otherwise nothing is rendered.

        A level 3 body is emitted when ``options.use_structured_body`` is set
        and observations are given. Otherwise a level 1 body embeds the first
        PDF of ``report.presentedForm``, or a placeholder when there is none.

        Args:
            patient: FHIR Patient
            report: FHIR DiagnosticReport
            observations: FHIR Observations of the report
            options: Author, custodian and body options

        Returns:
            The document text, ending with ``</ClinicalDocument>``

        Raises:
            CDAGenerationError: If a compliance prerequisite is unmet
        """
        ins_identifier = find_ins_identifier(patient.get("identifier"))
        if not ins_identifier or not is_qualified_ins(ins_identifier.get("value")):
            raise CDAGenerationError(
                "Qualified INS missing: document cannot be generated for the DMP",
                "CDA_MISSING_INS",
            )

        official_name = _official_name(patient)
        if not official_name.get("family"):
            raise CDAGenerationError(
                "Official name missing: document is not compliant",
                "CDA_MISSING_OFFICIAL_NAME",
            )

        if not options.author.rpps_id:
            raise CDAGenerationError("Author RPPS identifier missing", "CDA_MISSING_AUTHOR")
        if not options.custodian.finess_id:
            raise CDAGenerationError(
                "Custodian FINESS identifier missing", "CDA_MISSING_CUSTODIAN"
            )

        document_code = _document_code(options.document_code)
        document_id = str(uuid.uuid4())
        now = format_date_to_cda(datetime.now(timezone.utc))
        report_display = first_coding(report.get("code")).get("display") or "Résultats"

        logger.info(
            "cda_generation_started",
            patient_id=patient.get("id"),
            report_id=report.get("id"),
            observation_count=len(observations),
        )

        header = CdaHeader(
            document_id=document_id,
            document_code=document_code,
            title=f"{document_code.title_prefix} - {report_display}",
            effective_time=now,
            patient=CdaPatient(
                ins_value=ins_identifier["value"],
                family_name=official_name["family"],
                given_name=" ".join(official_name.get("given") or []),
                birth_date=format_date_only_to_cda(patient.get("birthDate") or "19000101"),
                gender=GENDER_TO_CDA.get(patient.get("gender", ""), "UN"),
            ),
            author=CdaAuthor(
                rpps_id=options.author.rpps_id,
                family_name=options.author.family_name,
                given_name=options.author.given_name or "",
                time=now,
            ),
            custodian=CdaCustodian(
                finess_id=options.custodian.finess_id,
                name=options.custodian.name,
            ),
        )

        if options.use_structured_body and observations:
            body_level = "N3"
            body = self.engine.render_body_n3(
                [_observation_entry(observation) for observation in observations]
            )
        else:
            body_level = "N1"
            pdf_data = _find_pdf(report)
            if pdf_data is None:
                logger.warning("cda_pdf_missing_using_placeholder", report_id=report.get("id"))
                pdf_data = PLACEHOLDER_PDF_BASE64
            body = self.engine.render_body_n1(pdf_data)

        document = (self.engine.render_header(header) + body).rstrip()

        logger.info(
            "cda_generated",
            document_id=document_id,
            author_rpps=options.author.rpps_id,
            body_level=body_level,
        )
        return document

    def create_document_reference(
        self,
        document: str,
        patient: Dict[str, Any],
        report: Dict[str, Any],
        document_code: str = "CR_BIO",
    ) -> Dict[str, Any]:
        """Wrap a generated document in a FHIR DocumentReference.

        Args:
            document: CDA document text
            patient: FHIR Patient the document is about
            report: FHIR DiagnosticReport the document was generated from
            document_code: Key of ``CDA_DOCUMENT_CODES``

        Returns:
            DocumentReference with the document as a base64 attachment
        """
        code = _document_code(document_code)
        data = base64.b64encode(document.encode("utf-8")).decode("ascii")

        return {
            "resourceType": "DocumentReference",
            "id": f"docref-{uuid.uuid4()}",
            "status": "current",
            "type": {
                "coding": [
                    {
                        "system": LOINC_SYSTEM,
                        "code": code.code,
                        "display": code.display_name,
                    }
                ]
            },
            "subject": {"reference": f"Patient/{patient.get('id', '')}"},
            "date": datetime.now(timezone.utc).isoformat(),
            "description": f"CDA R2 {code.title_prefix} pour DMP",
            "content": [
                {
                    "attachment": {
                        "contentType": "application/xml",
                        "data": data,
                        "title": code.title_prefix,
                    },
                    "format": {
                        "system": CDA_FORMAT_SYSTEM,
                        "code": CDA_FORMAT_CODE,
                        "display": "CDA R2 CI-SIS",
                    },
                }
            ],
            "context": {
                "related": [{"reference": f"DiagnosticReport/{report.get('id', '')}"}]
            },
        }


_default_generator = CDAGenerator()


def generate_cr_bio(
    patient: Dict[str, Any],
    report: Dict[str, Any],
    observations: List[Dict[str, Any]],
    options: CDAGeneratorOptions,
) -> str:
    """Generate a clinical document with the shared generator."""
    return _default_generator.generate_cr_bio(patient, report, observations, options)


def create_document_reference(
    document: str,
    patient: Dict[str, Any],
    report: Dict[str, Any],
    document_code: str = "CR_BIO",
) -> Dict[str, Any]:
    """Wrap a generated document in a DocumentReference."""
    return _default_generator.create_document_reference(
        document, patient, report, document_code
    )
