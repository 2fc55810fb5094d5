"""
Tests for the TLS material generators
"""

# Standard
import base64

# Third Party
from cryptography import x509
from cryptography.x509.oid import NameOID

# Local
from gateway_operator import constants
from gateway_operator.api import DataPlane
from gateway_operator.resources import tls
from gateway_operator.resources.secrets import generate_tls_secret
from gateway_operator.test_helpers.helpers import TEST_NAMESPACE, make_data_plane


def load_cert(data: dict) -> x509.Certificate:
    return x509.load_pem_x509_certificate(base64.b64decode(data[tls.TLS_CERT_KEY]))


def test_make_tls_secret_data_keys():
    data = tls.make_tls_secret_data("foo.bar", ["foo.bar"])
    assert set(data) == set(tls.SECRET_DATA_KEYS)
    assert data[tls.CA_CERT_KEY] == data[tls.TLS_CERT_KEY]
    assert b"PRIVATE KEY" in base64.b64decode(data[tls.TLS_KEY_KEY])


def test_self_signed_cert_content():
    data = tls.make_tls_secret_data("foo.bar", ["foo.bar", "*.bar.svc"])
    cert = load_cert(data)
    assert cert.subject == cert.issuer
    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    assert common_names[0].value == "foo.bar"
    sans = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    assert sans.value.get_values_for_type(x509.DNSName) == ["foo.bar", "*.bar.svc"]


def test_generate_tls_secret():
    data_plane = DataPlane(make_data_plane(name="dp"))
    secret = generate_tls_secret(data_plane, constants.STATE_PREVIEW)
    assert secret["type"] == "kubernetes.io/tls"
    assert secret["metadata"]["namespace"] == TEST_NAMESPACE
    assert (
        secret["metadata"]["labels"][constants.GENERATION_STATE_LABEL]
        == constants.STATE_PREVIEW
    )
    sans = load_cert(secret["data"]).extensions.get_extension_for_class(
        x509.SubjectAlternativeName
    )
    assert f"*.{TEST_NAMESPACE}.svc" in sans.value.get_values_for_type(x509.DNSName)
