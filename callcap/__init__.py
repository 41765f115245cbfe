"""
callcap — per-call PCAP reconstruction.

Correlates CDR rows with the per-minute SIP/RTP capture archives and writes
one merged <call_id>.pcap per call.
"""

__version__ = '1.0.0'
