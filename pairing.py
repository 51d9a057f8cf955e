"""Pairing token presentation — renders the one-time code as a terminal QR."""

from __future__ import annotations

import io
import logging
import sys
from typing import TextIO

import qrcode

log = logging.getLogger(__name__)


def render_qr(token: str) -> str:
    """Render token as an ASCII-art QR code."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(token)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def present_pairing(token: str, out: TextIO | None = None) -> None:
    """Show a pairing QR so the operator can link the device."""
    out = out or sys.stderr
    log.info("Scan the QR code below with the linked-devices screen to pair")
    print(render_qr(token), file=out, flush=True)
