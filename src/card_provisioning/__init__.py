"""Card provisioning service: payment verification and virtual card issuance."""

__version__ = "0.1.0"
