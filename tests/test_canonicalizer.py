import pytest
from lxml import etree

from signing.canonicalizer import canonicalize, parse_document, strip_reserved
from signing.digest import compute_digest, hash_document
from signing.exceptions import ParseError

INVOICE_NS = 'xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"'
CBC_NS = 'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"'
CAC_NS = 'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"'


def test_canonicalize_is_deterministic(invoice_xml):
    first = canonicalize(invoice_xml)
    second = canonicalize(invoice_xml)

    assert first == second
    assert compute_digest(first) == compute_digest(second)
    assert hash_document(invoice_xml) == hash_document(invoice_xml)


def test_reserved_subtrees_are_excluded(invoice_xml):
    canonical = canonicalize(invoice_xml)

    assert b"UBLExtensions" not in canonical
    assert b"cac:Signature" not in canonical
    assert b">QR<" not in canonical
    assert b">PIH<" in canonical
    assert b"SME00023" in canonical


def test_reserved_subtrees_are_excluded_wherever_they_occur(invoice_xml):
    nested = invoice_xml.replace(
        "<cbc:Name>Book</cbc:Name>",
        "<cbc:Name>Book</cbc:Name>"
        "<cac:AdditionalDocumentReference><cbc:ID>QR</cbc:ID></cac:AdditionalDocumentReference>"
        "<cac:Signature><cbc:ID>nested</cbc:ID></cac:Signature>"
        "<ext:UBLExtensions><ext:UBLExtension/></ext:UBLExtensions>"
    )

    canonical = canonicalize(nested)

    assert b"nested" not in canonical
    assert b"UBLExtension" not in canonical
    assert canonical == canonicalize(invoice_xml)


def test_other_document_references_are_kept():
    doc = (
        '<Invoice xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2" '
        'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
        'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">'
        '<cac:AdditionalDocumentReference><cbc:ID>QRX</cbc:ID></cac:AdditionalDocumentReference>'
        '</Invoice>'
    )
    assert b"QRX" in canonicalize(doc)


def test_formatting_and_attribute_order_do_not_change_the_hash():
    ns = (
        'xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2" '
        'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"'
    )
    compact = f'<Invoice {ns}><cbc:TaxAmount currencyID="SAR" a="1">0.60</cbc:TaxAmount></Invoice>'
    pretty = f'<Invoice {ns}>\n    <cbc:TaxAmount a="1" currencyID="SAR">0.60</cbc:TaxAmount>\n</Invoice>\n'

    assert canonicalize(compact) == canonicalize(pretty)
    assert hash_document(compact) == hash_document(pretty)


def test_namespace_declaration_order_and_repeats_do_not_change_the_hash():
    reference = f'<Invoice {INVOICE_NS} {CBC_NS} {CAC_NS}><cbc:ID>1</cbc:ID></Invoice>'
    reordered = f'<Invoice {CAC_NS} {CBC_NS} {INVOICE_NS}><cbc:ID>1</cbc:ID></Invoice>'
    repeated = f'<Invoice {INVOICE_NS} {CBC_NS} {CAC_NS}><cbc:ID {CBC_NS}>1</cbc:ID></Invoice>'

    assert canonicalize(reordered) == canonicalize(reference)
    assert canonicalize(repeated) == canonicalize(reference)


def test_namespace_declarations_stay_where_they_are_written():
    # The gateway hashes with plain C14N, so a declaration made below the root stays there.
    on_root = f'<Invoice {INVOICE_NS} {CBC_NS}><cbc:ID>1</cbc:ID></Invoice>'
    on_element = f'<Invoice {INVOICE_NS}><cbc:ID {CBC_NS}>1</cbc:ID></Invoice>'

    assert canonicalize(on_element) == f'<Invoice {INVOICE_NS}><cbc:ID {CBC_NS}>1</cbc:ID></Invoice>'.encode()
    assert canonicalize(on_root) == f'<Invoice {INVOICE_NS} {CBC_NS}><cbc:ID>1</cbc:ID></Invoice>'.encode()


def test_text_content_changes_the_hash(invoice_xml):
    tampered = invoice_xml.replace("<cbc:TaxInclusiveAmount currencyID=\"SAR\">4.60",
                                   "<cbc:TaxInclusiveAmount currencyID=\"SAR\">4.61")
    assert hash_document(tampered) != hash_document(invoice_xml)


def test_input_tree_is_not_modified(invoice_xml):
    root = parse_document(invoice_xml)
    before = etree.tostring(root)

    canonicalize(root)
    pruned = strip_reserved(root)

    assert etree.tostring(root) == before
    assert pruned is not root
    assert root.find("{urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2}UBLExtensions") \
        is not None


def test_element_tree_input(invoice_xml):
    tree = etree.ElementTree(parse_document(invoice_xml))
    assert canonicalize(tree) == canonicalize(invoice_xml)


def test_canonical_form_has_no_declaration_or_comments():
    doc = '<?xml version="1.0" encoding="UTF-8"?><a><!-- note --><b>1</b></a>'
    assert canonicalize(doc) == b"<a><b>1</b></a>"


@pytest.mark.parametrize("bad", ["", "   ", "<Invoice>", "not xml at all"])
def test_malformed_input_raises_parse_error(bad):
    with pytest.raises(ParseError):
        canonicalize(bad)


def test_unsupported_input_type():
    with pytest.raises(TypeError):
        canonicalize(42)


def test_compute_digest_rejects_text():
    with pytest.raises(TypeError):
        compute_digest("<a/>")
    assert len(compute_digest(b"<a/>")) == 32
