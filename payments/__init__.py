# payments/__init__.py
from .wix import WixOrder, parse_order, read_signature, sign, verify_signature

__all__ = ["WixOrder", "parse_order", "read_signature", "sign", "verify_signature"]
