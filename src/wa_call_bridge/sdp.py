"""SDP helpers for the provider leg.

The provider expects the bridge to take the active DTLS role, while most
engines answer with `a=setup:actpass`. The rewrite below is the only change
ever made to an engine-produced SDP.
"""

ACTPASS_SETUP = "a=setup:actpass"
ACTIVE_SETUP = "a=setup:active"


def force_active_setup_role(sdp: str) -> str:
    """Replace the first `a=setup:actpass` attribute with `a=setup:active`.

    Exactly one occurrence is rewritten; every other byte is left untouched.
    An SDP without the attribute is returned unchanged.
    """
    return sdp.replace(ACTPASS_SETUP, ACTIVE_SETUP, 1)


def describe(sdp: str | None) -> str:
    """Short description of an SDP for log lines."""
    if not sdp:
        return "<none>"
    media = [line.split(" ", 1)[0][2:] for line in sdp.splitlines() if line.startswith("m=")]
    return f"{len(sdp)} bytes, media={','.join(media) or '-'}"
