import base64
import logging
from typing import Dict, Optional

from signing.exceptions import MissingInputError
from zatca_api.client import base_headers, send
from zatca_api.registration import Credentials, auth_for

logger = logging.getLogger(__name__)

COMPLIANCE_INVOICES_PATH = "compliance/invoices"
REPORTING_PATH = "invoices/reporting/single"
CLEARANCE_PATH = "invoices/clearance/single"


def _invoice_payload(invoice_hash: str, uuid: str, signed_xml: str) -> Dict:
    for name, value in (("invoice_hash", invoice_hash), ("uuid", uuid), ("signed_xml", signed_xml)):
        if not value or not str(value).strip():
            raise MissingInputError(name)
    return {
        "invoiceHash": invoice_hash,
        "uuid": uuid,
        "invoice": base64.b64encode(signed_xml.encode("utf-8")).decode("utf-8")
    }


def check_invoice_compliance(invoice_hash: str, uuid: str, signed_xml: str, credentials: Credentials,
                             secret: Optional[str] = None, allow_warnings: bool = True) -> Dict:
    """ Runs a signed invoice through the compliance checks with the compliance CSID. """
    extra, auth = auth_for(credentials, secret)
    logger.info("Checking invoice %s for compliance", uuid)
    return send("post", COMPLIANCE_INVOICES_PATH, _invoice_payload(invoice_hash, uuid, signed_xml),
                base_headers(**extra, **{"Accept-Language": "en"}), auth=auth, allow_warnings=allow_warnings)


def report_invoice(invoice_hash: str, uuid: str, signed_xml: str, credentials: Credentials,
                   secret: Optional[str] = None, allow_warnings: bool = True) -> Dict:
    """ Reports a simplified (B2C) invoice with the production CSID. """
    extra, auth = auth_for(credentials, secret)
    logger.info("Reporting invoice %s", uuid)
    return send("post", REPORTING_PATH, _invoice_payload(invoice_hash, uuid, signed_xml),
                base_headers(**extra, **{"Accept-Language": "en"}), auth=auth, allow_warnings=allow_warnings)


def clear_invoice(invoice_hash: str, uuid: str, signed_xml: str, credentials: Credentials,
                  secret: Optional[str] = None, allow_warnings: bool = True) -> Dict:
    """ Submits a standard (B2B) invoice for clearance; the response carries the cleared XML. """
    extra, auth = auth_for(credentials, secret)
    logger.info("Submitting invoice %s for clearance", uuid)
    return send("post", CLEARANCE_PATH, _invoice_payload(invoice_hash, uuid, signed_xml),
                base_headers(**extra, **{"Accept-Language": "en", "Clearance-Status": "1"}),
                auth=auth, allow_warnings=allow_warnings)
