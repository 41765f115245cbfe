"""
callcap/tools — adapters for the external capture tools.
"""

from callcap.tools.base import Merger, RtpExtractor, SipExtractor, run_tool
from callcap.tools.mergecap import MergecapMerger
from callcap.tools.tar import TarSipExtractor
from callcap.tools.xfvm import XfvmRtpExtractor

__all__ = [
    "Merger",
    "RtpExtractor",
    "SipExtractor",
    "run_tool",
    "MergecapMerger",
    "TarSipExtractor",
    "XfvmRtpExtractor",
]
