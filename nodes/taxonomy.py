"""
Document Type Taxonomy

The fixed set of document types a sales pack can contain. Used for
prompting the classification oracle, for the reviewer's type-change
dropdown, and for naming uploaded files.

The taxonomy is injectable: every consumer accepts an optional
DocumentTaxonomy and falls back to the process-wide default.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


OTHER_TYPE = "other"


@dataclass(frozen=True)
class DocumentTypeInfo:
    """A single entry in the taxonomy."""
    value: str           # stable tag, e.g. "nric_front"
    label: str           # human readable name, e.g. "NRIC Front"
    folder: str          # storage folder for uploads
    description: str = ""  # hint for the classification prompt

    def to_option(self) -> Dict[str, str]:
        return {"value": self.value, "label": self.label}


DEFAULT_DOCUMENT_TYPES: List[DocumentTypeInfo] = [
    DocumentTypeInfo("nric_front", "NRIC Front", "nric_front",
                     "Front of Singapore NRIC card (pink card with photo, name, NRIC number starting with S/T/F/G)"),
    DocumentTypeInfo("nric_back", "NRIC Back", "nric_back",
                     "Back of Singapore NRIC card showing address"),
    DocumentTypeInfo("nric", "NRIC (Combined)", "nric",
                     "Combined NRIC (front and back together on same page)"),
    DocumentTypeInfo("driving_license", "Driving License", "driving_license",
                     "Singapore Driving License (card with \"REPUBLIC OF SINGAPORE DRIVING LICENCE\", photo, license classes)"),
    DocumentTypeInfo("driving_license_front", "Driving License Front", "driving_license_front",
                     "Front of Singapore Driving License"),
    DocumentTypeInfo("driving_license_back", "Driving License Back", "driving_license_back",
                     "Back of Singapore Driving License"),
    DocumentTypeInfo("test_drive_form", "Test Drive Form", "test_drive_form",
                     "Test Drive Agreement/Form"),
    DocumentTypeInfo("vsa", "Vehicle Sales Agreement", "vsa",
                     "Vehicle Sales Agreement, Proforma Invoice, Sales Contract"),
    DocumentTypeInfo("pdpa", "PDPA Consent Form", "pdpa",
                     "PDPA Consent Form (data protection), Privacy Policy acknowledgment"),
    DocumentTypeInfo("loan_approval", "Loan Approval Letter", "loan_approval",
                     "Bank/Finance Loan Approval Letter"),
    DocumentTypeInfo("loan_application", "Loan Application", "loan_application",
                     "Loan Application Form"),
    DocumentTypeInfo("insurance_quote", "Insurance Quote", "insurance_quote",
                     "Insurance Quote/Proposal/Quotation"),
    DocumentTypeInfo("insurance_policy", "Cover Note", "insurance_policy",
                     "Insurance Policy Document, Certificate of Insurance, Cover Note"),
    DocumentTypeInfo("insurance_acceptance", "Insurance Acceptance", "insurance_acceptance",
                     "Insurance Acceptance Form, Declaration of Loss of Insurance"),
    DocumentTypeInfo("payment_proof", "Payment Proof", "payment_proof",
                     "Payment receipt, bank transfer, invoice for payment"),
    DocumentTypeInfo("delivery_checklist", "Delivery Checklist", "delivery_checklist",
                     "Vehicle Delivery Checklist"),
    DocumentTypeInfo("registration_card", "Registration Card", "registration_card",
                     "Vehicle Registration Card"),
    DocumentTypeInfo("trade_in_docs", "Trade-in Documents", "trade_in_docs",
                     "Trade-in related documents, vehicle valuation"),
    DocumentTypeInfo("coe_bidding", "COE Bidding Form", "coe_bidding",
                     "COE Bidding Form, COE Authorization Letter"),
    DocumentTypeInfo("purchase_agreement", "Purchase Agreement", "purchase_agreement",
                     "Vehicle Purchase Agreement (trade-in)"),
    DocumentTypeInfo("parf_rebate", "PARF/COE Rebate", "parf_rebate",
                     "PARF/COE Rebate inquiry, rebate documents"),
    DocumentTypeInfo("authorized_letter", "Authorized Letter", "authorized_letter",
                     "Authorized Letter for finance/HP settlement"),
    DocumentTypeInfo("proposal_form", "Proposal Form", "proposal_form",
                     "New Car Proposal Form (internal sales document)"),
    DocumentTypeInfo("price_list", "Price List", "price_list",
                     "Vehicle Price List, promotional pricing"),
    DocumentTypeInfo("id_documents", "ID Documents", "id_documents",
                     "Multiple ID documents scanned together on same page"),
    DocumentTypeInfo(OTHER_TYPE, "Other Document", OTHER_TYPE,
                     "Document does not match any of the above categories"),
]


class DocumentTaxonomy:
    """
    Ordered registry of document types.

    Lookups never fail: unknown values resolve to the "other" entry,
    which must always be present.
    """

    def __init__(self, types: Iterable[DocumentTypeInfo]):
        self._types: Dict[str, DocumentTypeInfo] = {}
        for info in types:
            if info.value in self._types:
                raise ValueError(f"Duplicate document type: {info.value}")
            self._types[info.value] = info

        if OTHER_TYPE not in self._types:
            raise ValueError(f"Taxonomy must include the '{OTHER_TYPE}' type")

    def get_info(self, value: Optional[str]) -> DocumentTypeInfo:
        """Get the entry for a type, falling back to 'other'."""
        if value and value in self._types:
            return self._types[value]
        return self._types[OTHER_TYPE]

    def display_name(self, value: Optional[str]) -> str:
        return self.get_info(value).label

    def folder(self, value: Optional[str]) -> str:
        return self.get_info(value).folder

    def normalize(self, value: Optional[str]) -> str:
        """
        Map a loosely formatted type string onto a known value.

        Accepts "NRIC Front", "nric-front", "NRIC_FRONT" and the display
        label itself. Anything unrecognised becomes "other".
        """
        if not value:
            return OTHER_TYPE

        candidate = re.sub(r"[\s\-]+", "_", value.strip().lower())
        if candidate in self._types:
            return candidate

        value_lower = value.strip().lower()
        for info in self._types.values():
            if info.label.lower() == value_lower:
                return info.value

        logger.debug(f"Unknown document type '{value}', using '{OTHER_TYPE}'")
        return OTHER_TYPE

    def options(self) -> List[Dict[str, str]]:
        """Value/label pairs for a type selection dropdown."""
        return [info.to_option() for info in self._types.values()]

    def values(self) -> List[str]:
        return list(self._types.keys())

    def prompt_listing(self) -> str:
        """One line per type, formatted for an LLM prompt."""
        return "\n".join(
            f"- {info.value}: {info.description or info.label}"
            for info in self._types.values()
        )

    def __contains__(self, value: object) -> bool:
        return value in self._types

    def __iter__(self) -> Iterator[DocumentTypeInfo]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)


# ============================================================================
# Default taxonomy
# ============================================================================

_default_taxonomy: Optional[DocumentTaxonomy] = None


def get_default_taxonomy() -> DocumentTaxonomy:
    """Get the process-wide taxonomy (created on first use)."""
    global _default_taxonomy
    if _default_taxonomy is None:
        _default_taxonomy = DocumentTaxonomy(DEFAULT_DOCUMENT_TYPES)
    return _default_taxonomy


def set_default_taxonomy(taxonomy: Optional[DocumentTaxonomy]) -> None:
    """Replace the process-wide taxonomy. Pass None to restore the built-in one."""
    global _default_taxonomy
    _default_taxonomy = taxonomy
