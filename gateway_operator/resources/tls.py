"""
Shared utilities for generating the TLS material that secures the data plane
admin API
"""

# Standard
from typing import Dict, List, Tuple
import base64
import datetime

# Third Party
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# First Party
import alog

# Local
from .. import constants

log = alog.use_channel("TLS")

# Keys of the generated secret data
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"
CA_CERT_KEY = "ca.crt"
SECRET_DATA_KEYS = (TLS_CERT_KEY, TLS_KEY_KEY, CA_CERT_KEY)

CERT_VALIDITY_DAYS = 365


def get_subject(common_name: str) -> x509.Name:
    """Get the subject object used when creating self-signed certificates

    Args:
        common_name:  str
            The Common Name to use for this subject

    Returns:
        subject:  x509.Name
            The full subject object to use when constructing certificates
    """
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, constants.GROUP),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def generate_key() -> Tuple[ec.EllipticCurvePrivateKey, bytes]:
    """Generate a new P-256 key

    Returns:
        key:  EllipticCurvePrivateKey
            The key object that can be used to sign certificates
        key_pem:  bytes
            The PEM encoded key
    """
    key = ec.generate_private_key(ec.SECP256R1())
    key_pem = key.private_bytes(
        Encoding.PEM,
        PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return key, key_pem


def generate_self_signed_cert(
    key: ec.EllipticCurvePrivateKey, common_name: str, san_list: List[str]
) -> bytes:
    """Generate a self-signed serving and client certificate

    Args:
        key:  EllipticCurvePrivateKey
            The private key that will pair with this cert
        common_name:  str
            The subject's Common Name
        san_list:  List[str]
            DNS names for the Subject Alternative Name

    Returns:
        cert_pem:  bytes
            The PEM encoded certificate
    """
    log.debug("Creating self-signed certificate for %s", common_name)
    subject = get_subject(common_name)
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=CERT_VALIDITY_DAYS))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(san) for san in san_list]),
            critical=False,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.PEM)


def make_tls_secret_data(common_name: str, san_list: List[str]) -> Dict[str, str]:
    """Generate the base64 encoded data of a kubernetes TLS secret. The
    certificate is self-signed, so it doubles as the CA.
    """
    key, key_pem = generate_key()
    cert_pem = generate_self_signed_cert(key, common_name, san_list)
    return {
        TLS_CERT_KEY: base64.b64encode(cert_pem).decode("utf-8"),
        TLS_KEY_KEY: base64.b64encode(key_pem).decode("utf-8"),
        CA_CERT_KEY: base64.b64encode(cert_pem).decode("utf-8"),
    }
